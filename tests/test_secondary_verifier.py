import math

import numpy as np
import pytest

from conftest import make_record, unit_at
from faceauth.config import SecondaryConfig
from faceauth.core.models import ProfileType
from faceauth.matching.embedding_matcher import find_top_match, find_top_two_users_with_margin
from faceauth.matching.secondary_verifier import SecondaryDecision, SecondaryVerifier, verify
from faceauth.matching.template_cache import TemplateCache

T2, M2, M_AMB = 0.85, 0.05, 0.02


def test_centroid_is_mean_and_memoized():
    cache = TemplateCache(3)
    cache.set_profiles([
        make_record(1, "u", [1.0, 0.0, 0.0]),
        make_record(2, "u", [0.0, 1.0, 0.0]),
    ])

    c1 = cache.get_centroid(ProfileType.NORMAL, "u")
    c2 = cache.get_centroid("NORMAL", "u")

    np.testing.assert_allclose(c1, [0.5, 0.5, 0.0])
    assert c1 is c2


def test_set_profiles_rebuilds_cache():
    cache = TemplateCache(3)
    cache.set_profiles([make_record(1, "u", [1.0, 0.0, 0.0])])
    cache.get_centroid(ProfileType.NORMAL, "u")

    cache.set_profiles([make_record(2, "u", [0.0, 0.0, 1.0])])

    np.testing.assert_allclose(cache.get_centroid(ProfileType.NORMAL, "u"), [0.0, 0.0, 1.0])


def test_cache_groups_by_type_and_skips_wrong_dim():
    cache = TemplateCache(3)
    cache.set_profiles([
        make_record(1, "u", [1.0, 0.0, 0.0]),
        make_record(2, "u", [0.0, 1.0, 0.0], ProfileType.HELMET),
        make_record(3, "u", [1.0, 1.0, 1.0, 1.0]),
    ])
    assert len(cache.get_templates(ProfileType.NORMAL, "u")) == 1
    assert len(cache.get_templates(ProfileType.HELMET, "u")) == 1
    assert cache.get_centroid(ProfileType.NORMAL, "nobody") is None
    assert cache.get_templates(ProfileType.NORMAL, "nobody") == []


def _cache_with(user_id, vector):
    cache = TemplateCache(3)
    cache.set_profiles([make_record(1, user_id, vector)])
    return cache


def test_missing_centroid_fails_with_nan():
    res = verify(np.ones(3), "ghost", ProfileType.NORMAL, TemplateCache(3), T2, M2, M_AMB, 0.5)
    assert res.decision is SecondaryDecision.SECONDARY_FAIL
    assert math.isnan(res.centroid_score)
    assert not res.computed


def test_missing_inputs_fail_with_nan():
    cache = _cache_with("u", [1.0, 0.0, 0.0])
    assert verify(None, "u", ProfileType.NORMAL, cache, T2, M2, M_AMB, 0.5).decision is SecondaryDecision.SECONDARY_FAIL
    assert verify(np.ones(3), None, ProfileType.NORMAL, cache, T2, M2, M_AMB, 0.5).decision is SecondaryDecision.SECONDARY_FAIL


def test_low_margin_is_uncertain_even_with_high_centroid_score():
    query = np.array([1.0, 0.0, 0.0])
    cache = _cache_with("u", unit_at(0.98))  # centroid score 0.99

    res = verify(query, "u", ProfileType.NORMAL, cache, T2, M2, M_AMB, margin=0.01)

    assert res.centroid_score == pytest.approx(0.99, abs=1e-6)
    assert res.decision is SecondaryDecision.UNCERTAIN


def test_accept_needs_score_and_margin():
    query = np.array([1.0, 0.0, 0.0])
    cache = _cache_with("u", unit_at(0.9))  # 0.95

    assert verify(query, "u", ProfileType.NORMAL, cache, T2, M2, M_AMB, 0.10).decision is SecondaryDecision.ACCEPT
    assert verify(query, "u", ProfileType.NORMAL, cache, T2, M2, M_AMB, 0.03).decision is SecondaryDecision.SECONDARY_FAIL


def test_low_centroid_score_fails():
    query = np.array([1.0, 0.0, 0.0])
    cache = _cache_with("u", unit_at(0.5))  # 0.75
    res = verify(query, "u", ProfileType.NORMAL, cache, T2, M2, M_AMB, 0.3)
    assert res.decision is SecondaryDecision.SECONDARY_FAIL
    assert res.centroid_score == pytest.approx(0.75, abs=1e-6)


def test_three_users_closest_to_b_is_accepted():
    query = np.array([1.0, 0.0, 0.0])
    gallery = [
        make_record(1, "A", [0.56, 0.0, np.sqrt(1 - 0.56 ** 2)]),  # 0.78
        make_record(2, "B", unit_at(0.86)),                         # 0.93
        make_record(3, "C", [0.0, 0.0, 1.0]),                       # 0.50
    ]
    cache = TemplateCache(3)
    cache.set_profiles(gallery)

    assert find_top_match(query, gallery).best_profile.user_id == "B"

    top = find_top_two_users_with_margin(query, gallery)
    assert top.top1_user_id == "B"
    assert top.margin == pytest.approx(0.15, abs=1e-5)

    res = SecondaryVerifier(SecondaryConfig(t2=T2, m2=M2, m_ambiguous=M_AMB)).verify(
        query, top.top1_user_id, ProfileType.NORMAL, cache, top.margin
    )
    assert res.centroid_score == pytest.approx(0.93, abs=1e-5)
    assert res.decision is SecondaryDecision.ACCEPT
