from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import yaml

from faceauth.core.models import ProfileType
from faceauth.utils.config_utils import as_bool, as_float, as_int, as_str, get_section

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/faceauth_config.yaml"


@dataclass(frozen=True)
class MatchingConfig:
    match_threshold: float = 0.80


@dataclass(frozen=True)
class EnrollmentConfig:
    required_stable_frames: int = 7
    min_face_area_ratio: float = 0.14
    max_abs_yaw: float = 10.0
    profile_type: ProfileType = ProfileType.NORMAL


@dataclass(frozen=True)
class AuthenticationConfig:
    min_face_area_ratio: float = 0.12
    max_abs_yaw: float = 18.0
    stable_frames_required: int = 5
    run_max_sec: float = 60.0


@dataclass(frozen=True)
class QualityConfig:
    bbox_ratio_min: float = 0.08
    yaw_max_deg: float = 15.0
    pitch_max_deg: float = 15.0
    blur_min: float = 80.0
    brightness_min: float = 40.0
    brightness_max: float = 220.0
    blur_window: int = 320
    brightness_window: int = 160
    color_order: str = "BGR"


@dataclass(frozen=True)
class GuidePreset:
    diameter_ratio: float
    center_y_offset_ratio: float


@dataclass(frozen=True)
class GuideConfig:
    circle_radius_ratio: float = 0.35
    inner_margin_ratio: float = 0.92
    tablet_min_width_dp: int = 600
    phone_portrait: GuidePreset = GuidePreset(0.80, -0.06)
    phone_landscape: GuidePreset = GuidePreset(0.68, -0.04)
    tablet_portrait: GuidePreset = GuidePreset(0.72, -0.04)
    tablet_landscape: GuidePreset = GuidePreset(0.62, -0.02)

    def preset_for(self, is_tablet: bool, is_landscape: bool) -> GuidePreset:
        if is_tablet:
            return self.tablet_landscape if is_landscape else self.tablet_portrait
        return self.phone_landscape if is_landscape else self.phone_portrait

    def preset_for_view(self, view_w: int, view_h: int, smallest_width_dp: int) -> GuidePreset:
        return self.preset_for(smallest_width_dp >= self.tablet_min_width_dp, view_w > view_h)


@dataclass(frozen=True)
class HeadTurnConfig:
    center_max_abs_deg: float = 10.0
    left_max_deg: float = -13.0
    right_min_deg: float = 13.0
    smoothing_frames: int = 5
    consecutive_required: int = 3
    timeout_sec: float = 60.0


@dataclass(frozen=True)
class BlinkConfig:
    window_sec: float = 3.0
    blink_count: int = 2
    ear_close_threshold: float = 0.21
    ear_open_threshold: float = 0.27


@dataclass(frozen=True)
class LivenessConfig:
    policy: str = "head_turn"
    head_turn: HeadTurnConfig = HeadTurnConfig()
    blink: BlinkConfig = BlinkConfig()


@dataclass(frozen=True)
class SecondaryConfig:
    enabled: bool = False
    t2: float = 0.85
    m2: float = 0.05
    m_ambiguous: float = 0.02
    gray_zone_min: float = 0.70


@dataclass(frozen=True)
class EmbeddingConfig:
    model_path: Optional[str] = None
    input_size: int = 112
    dim: int = 192
    input_mean: float = 127.5
    input_std: float = 128.0
    output_is_normalized: bool = True
    model_version: str = "face_embedder-v1.0"


@dataclass(frozen=True)
class StorageConfig:
    database_file: str = "data/faceauth.db"
    poc_mode: bool = False


@dataclass(frozen=True)
class FaceAuthConfig:
    """Every threshold the engine reads. Built once, then passed around read-only."""
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    enrollment: EnrollmentConfig = field(default_factory=EnrollmentConfig)
    authentication: AuthenticationConfig = field(default_factory=AuthenticationConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    guide: GuideConfig = field(default_factory=GuideConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    secondary: SecondaryConfig = field(default_factory=SecondaryConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_yaml_section(path: str, section: str = "faceauth") -> Dict[str, Any]:
    """
    The mapping at a dotted key path (`faceauth`, `faceauth.liveness.blink`).
    A missing or unreadable file, or a key that is not a mapping, gives {}
    and every threshold keeps its built-in default.
    """
    try:
        with open(path, "r") as f:
            doc = yaml.safe_load(f) or {}
    except OSError as e:
        log.warning("FaceAuth config %s not readable (%s), using defaults", path, e)
        return {}
    except yaml.YAMLError as e:
        log.warning("FaceAuth config %s is not valid YAML (%s), using defaults", path, e)
        return {}

    node: Any = doc
    for key in filter(None, (section or "").split(".")):
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _profile_type(x: Any, default: ProfileType) -> ProfileType:
    try:
        return ProfileType(as_str(x, default.value).upper())
    except ValueError:
        log.warning("Unknown profile_type %r, using %s", x, default.value)
        return default


def _preset(node: Dict[str, Any], default: GuidePreset) -> GuidePreset:
    return GuidePreset(
        diameter_ratio=as_float(node.get("diameter_ratio"), default.diameter_ratio),
        center_y_offset_ratio=as_float(node.get("center_y_offset_ratio"), default.center_y_offset_ratio),
    )


def _liveness_timeout(x: Any, default: float) -> float:
    sec = as_float(x, default)
    # sub-second budgets are treated as misconfiguration
    return sec if sec >= 1.0 else default


def load_faceauth_config(path: str = DEFAULT_CONFIG_PATH) -> FaceAuthConfig:
    root = load_yaml_section(path, "faceauth")
    if not root:
        log.info("No 'faceauth' section in %s, using built-in defaults", path)

    d = FaceAuthConfig()

    m = get_section(root, "matching")
    en = get_section(root, "enrollment")
    au = get_section(root, "authentication")
    q = get_section(root, "quality")
    g = get_section(root, "guide")
    presets = get_section(g, "presets")
    lv = get_section(root, "liveness")
    ht = get_section(lv, "head_turn")
    bl = get_section(lv, "blink")
    sec = get_section(root, "secondary")
    emb = get_section(root, "embedding")
    st = get_section(root, "storage")

    cfg = FaceAuthConfig(
        matching=MatchingConfig(
            match_threshold=as_float(m.get("match_threshold"), d.matching.match_threshold),
        ),
        enrollment=EnrollmentConfig(
            required_stable_frames=max(1, as_int(en.get("required_stable_frames"), d.enrollment.required_stable_frames)),
            min_face_area_ratio=as_float(en.get("min_face_area_ratio"), d.enrollment.min_face_area_ratio),
            max_abs_yaw=as_float(en.get("max_abs_yaw"), d.enrollment.max_abs_yaw),
            profile_type=_profile_type(en.get("profile_type"), d.enrollment.profile_type),
        ),
        authentication=AuthenticationConfig(
            min_face_area_ratio=as_float(au.get("min_face_area_ratio"), d.authentication.min_face_area_ratio),
            max_abs_yaw=as_float(au.get("max_abs_yaw"), d.authentication.max_abs_yaw),
            stable_frames_required=max(1, as_int(au.get("stable_frames_required"), d.authentication.stable_frames_required)),
            run_max_sec=as_float(au.get("run_max_sec"), d.authentication.run_max_sec),
        ),
        quality=QualityConfig(
            bbox_ratio_min=as_float(q.get("bbox_ratio_min"), d.quality.bbox_ratio_min),
            yaw_max_deg=as_float(q.get("yaw_max_deg"), d.quality.yaw_max_deg),
            pitch_max_deg=as_float(q.get("pitch_max_deg"), d.quality.pitch_max_deg),
            blur_min=as_float(q.get("blur_min"), d.quality.blur_min),
            brightness_min=as_float(q.get("brightness_min"), d.quality.brightness_min),
            brightness_max=as_float(q.get("brightness_max"), d.quality.brightness_max),
            blur_window=max(3, as_int(q.get("blur_window"), d.quality.blur_window)),
            brightness_window=max(1, as_int(q.get("brightness_window"), d.quality.brightness_window)),
            color_order=as_str(q.get("color_order"), d.quality.color_order).upper(),
        ),
        guide=GuideConfig(
            circle_radius_ratio=as_float(g.get("circle_radius_ratio"), d.guide.circle_radius_ratio),
            inner_margin_ratio=as_float(g.get("inner_margin_ratio"), d.guide.inner_margin_ratio),
            tablet_min_width_dp=as_int(g.get("tablet_min_width_dp"), d.guide.tablet_min_width_dp),
            phone_portrait=_preset(get_section(presets, "phone_portrait"), d.guide.phone_portrait),
            phone_landscape=_preset(get_section(presets, "phone_landscape"), d.guide.phone_landscape),
            tablet_portrait=_preset(get_section(presets, "tablet_portrait"), d.guide.tablet_portrait),
            tablet_landscape=_preset(get_section(presets, "tablet_landscape"), d.guide.tablet_landscape),
        ),
        liveness=LivenessConfig(
            policy=as_str(lv.get("policy"), d.liveness.policy).lower(),
            head_turn=HeadTurnConfig(
                center_max_abs_deg=as_float(ht.get("center_max_abs_deg"), d.liveness.head_turn.center_max_abs_deg),
                left_max_deg=as_float(ht.get("left_max_deg"), d.liveness.head_turn.left_max_deg),
                right_min_deg=as_float(ht.get("right_min_deg"), d.liveness.head_turn.right_min_deg),
                smoothing_frames=max(1, as_int(ht.get("smoothing_frames"), d.liveness.head_turn.smoothing_frames)),
                consecutive_required=max(1, as_int(ht.get("consecutive_required"), d.liveness.head_turn.consecutive_required)),
                timeout_sec=_liveness_timeout(ht.get("timeout_sec"), d.liveness.head_turn.timeout_sec),
            ),
            blink=BlinkConfig(
                window_sec=as_float(bl.get("window_sec"), d.liveness.blink.window_sec),
                blink_count=max(1, as_int(bl.get("blink_count"), d.liveness.blink.blink_count)),
                ear_close_threshold=as_float(bl.get("ear_close_threshold"), d.liveness.blink.ear_close_threshold),
                ear_open_threshold=as_float(bl.get("ear_open_threshold"), d.liveness.blink.ear_open_threshold),
            ),
        ),
        secondary=SecondaryConfig(
            enabled=as_bool(sec.get("enabled"), d.secondary.enabled),
            t2=as_float(sec.get("t2"), d.secondary.t2),
            m2=as_float(sec.get("m2"), d.secondary.m2),
            m_ambiguous=as_float(sec.get("m_ambiguous"), d.secondary.m_ambiguous),
            gray_zone_min=as_float(sec.get("gray_zone_min"), d.secondary.gray_zone_min),
        ),
        embedding=EmbeddingConfig(
            model_path=emb.get("model_path") or None,
            input_size=max(1, as_int(emb.get("input_size"), d.embedding.input_size)),
            dim=max(1, as_int(emb.get("dim"), d.embedding.dim)),
            input_mean=as_float(emb.get("input_mean"), d.embedding.input_mean),
            input_std=as_float(emb.get("input_std"), d.embedding.input_std),
            output_is_normalized=as_bool(emb.get("output_is_normalized"), d.embedding.output_is_normalized),
            model_version=as_str(emb.get("model_version"), d.embedding.model_version),
        ),
        storage=StorageConfig(
            database_file=as_str(st.get("database_file"), d.storage.database_file),
            poc_mode=as_bool(st.get("poc_mode"), d.storage.poc_mode),
        ),
    )

    if cfg.liveness.policy not in ("head_turn", "blink"):
        log.warning("Unknown liveness policy %r, falling back to head_turn", cfg.liveness.policy)
        cfg = _replace_policy(cfg, "head_turn")

    log.info(
        "FaceAuth config loaded: match_threshold=%.2f enroll_frames=%d auth_frames=%d liveness=%s secondary=%s",
        cfg.matching.match_threshold,
        cfg.enrollment.required_stable_frames,
        cfg.authentication.stable_frames_required,
        cfg.liveness.policy,
        cfg.secondary.enabled,
    )
    return cfg


def _replace_policy(cfg: FaceAuthConfig, policy: str) -> FaceAuthConfig:
    return replace(cfg, liveness=replace(cfg.liveness, policy=policy))

