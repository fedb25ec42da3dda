"""
Unit tests for the plan catalog.
"""
import json

import pytest

from jobbyai.core.errors import UnknownPlanError
from jobbyai.core.plan_catalog import (
    PLANS,
    UNLIMITED,
    FeatureKey,
    PlanId,
    get_all_plans,
    get_limit,
    get_plan,
    is_unlimited,
)


def test_catalog_has_closed_plan_set():
    """Every PlanId has exactly one plan."""
    assert set(PLANS) == set(PlanId)
    assert [plan.id for plan in get_all_plans()] == [PlanId.FREE, PlanId.BASIC, PlanId.PRO, PlanId.ENTERPRISE]


def test_free_plan_limits():
    assert get_limit(PlanId.FREE, FeatureKey.RESUME_GENERATION) == 1
    assert get_limit(PlanId.FREE, FeatureKey.JOB_ANALYSIS) == 5
    assert get_limit(PlanId.FREE, FeatureKey.TEMPLATES) == 3
    assert get_limit(PlanId.FREE, FeatureKey.AI_ANALYSIS) == 5


def test_basic_plan_mixes_finite_and_unlimited():
    assert get_limit(PlanId.BASIC, FeatureKey.RESUME_GENERATION) == 25
    assert get_limit(PlanId.BASIC, FeatureKey.TEMPLATES) is UNLIMITED


def test_paid_top_tiers_are_unlimited():
    for plan_id in (PlanId.PRO, PlanId.ENTERPRISE):
        for feature in FeatureKey:
            assert is_unlimited(get_limit(plan_id, feature))


def test_plan_lookup_accepts_strings_case_insensitively():
    assert get_plan("pro").id is PlanId.PRO
    assert get_limit("basic", "job_analysis") == 50


def test_unknown_plan_raises():
    with pytest.raises(UnknownPlanError) as exc_info:
        get_plan("GOLD")
    assert exc_info.value.plan_id == "GOLD"
    assert exc_info.value.code == "UNKNOWN_PLAN"

    with pytest.raises(UnknownPlanError):
        get_limit(None, FeatureKey.TEMPLATES)


def test_unknown_feature_is_rejected():
    with pytest.raises(ValueError):
        get_limit(PlanId.FREE, "cover_letter")


def test_plans_are_immutable():
    plan = get_plan(PlanId.FREE)
    with pytest.raises(TypeError):
        plan.limits[FeatureKey.RESUME_GENERATION] = 100
    with pytest.raises(AttributeError):
        plan.price = 0


def test_plan_features_match_limits():
    for plan in get_all_plans():
        assert plan.features == frozenset(FeatureKey)


def test_plan_to_dict_is_json_ready():
    data = get_plan(PlanId.PRO).to_dict()
    assert data["id"] == "PRO"
    assert data["price"] == 1999
    assert data["limits"]["resume_generation"] == "unlimited"
    assert data["popular"] is True
    json.dumps(data)
