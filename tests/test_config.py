from pathlib import Path

import pytest

from faceauth.config import FaceAuthConfig, load_faceauth_config, load_yaml_section
from faceauth.core.models import ProfileType
from faceauth.utils.config_utils import as_bool, as_float, as_int, get_section

SHIPPED = Path(__file__).resolve().parent.parent / "config" / "faceauth_config.yaml"


def _write(tmp_path, text):
    p = tmp_path / "cfg.yaml"
    p.write_text(text)
    return str(p)


def test_shipped_config_matches_defaults():
    assert load_faceauth_config(str(SHIPPED)) == FaceAuthConfig()


def test_missing_file_uses_defaults(tmp_path):
    assert load_faceauth_config(str(tmp_path / "nope.yaml")) == FaceAuthConfig()


def test_broken_yaml_uses_defaults(tmp_path):
    path = _write(tmp_path, "faceauth: [unclosed\n")
    assert load_faceauth_config(path) == FaceAuthConfig()


def test_overrides_and_bad_values(tmp_path):
    path = _write(
        tmp_path,
        """
faceauth:
  matching:
    match_threshold: 0.9
  enrollment:
    required_stable_frames: 0
    profile_type: helmet
  authentication:
    run_max_sec: not-a-number
  guide:
    presets:
      phone_portrait: {diameter_ratio: 0.5}
  secondary:
    enabled: "yes"
  storage:
    database_file: /tmp/x.db
""",
    )
    cfg = load_faceauth_config(path)

    assert cfg.matching.match_threshold == pytest.approx(0.9)
    assert cfg.enrollment.required_stable_frames == 1
    assert cfg.enrollment.profile_type is ProfileType.HELMET
    assert cfg.authentication.run_max_sec == 60.0
    assert cfg.guide.phone_portrait.diameter_ratio == pytest.approx(0.5)
    assert cfg.guide.phone_portrait.center_y_offset_ratio == pytest.approx(-0.06)
    assert cfg.secondary.enabled is True
    assert cfg.storage.database_file == "/tmp/x.db"


def test_liveness_fallbacks(tmp_path):
    path = _write(
        tmp_path,
        """
faceauth:
  liveness:
    policy: smile
    head_turn:
      timeout_sec: 0.2
""",
    )
    cfg = load_faceauth_config(path)
    assert cfg.liveness.policy == "head_turn"
    assert cfg.liveness.head_turn.timeout_sec == 60.0


def test_unknown_profile_type_falls_back(tmp_path):
    path = _write(tmp_path, "faceauth:\n  enrollment:\n    profile_type: SCUBA\n")
    assert load_faceauth_config(path).enrollment.profile_type is ProfileType.NORMAL


def test_dotted_section_lookup(tmp_path):
    path = _write(tmp_path, "faceauth:\n  quality:\n    blur_min: 12\n")
    assert load_yaml_section(path, "faceauth.quality") == {"blur_min": 12}
    assert load_yaml_section(path, "faceauth.missing") == {}
    assert load_yaml_section(path, "faceauth.quality.blur_min") == {}


def test_coercion_helpers():
    assert as_float("1.5", 0.0) == 1.5
    assert as_float(None, 2.0) == 2.0
    assert as_int("x", 3) == 3
    assert as_bool("off", True) is False
    assert as_bool(None, True) is True
    assert get_section({"a": 5}, "a") == {}
