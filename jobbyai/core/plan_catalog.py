"""
Subscription plan catalog.

Single source of truth for per-plan feature quotas. Plans are configuration:
they are defined here at deploy time and never mutated at runtime.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Tuple, Union

from jobbyai.core.errors import UnknownPlanError


class FeatureKey(str, Enum):
    """Billable features gated by the subscription plan."""
    RESUME_GENERATION = "resume_generation"
    JOB_ANALYSIS = "job_analysis"
    TEMPLATES = "templates"
    AI_ANALYSIS = "ai_analysis"


class PlanId(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class Unlimited(str, Enum):
    """Quota sentinel; serializes as "unlimited"."""
    UNLIMITED = "unlimited"


UNLIMITED = Unlimited.UNLIMITED

# A quota is either a finite non-negative cap or UNLIMITED
Quota = Union[int, Unlimited]


def is_unlimited(quota: Quota) -> bool:
    return quota is UNLIMITED


@dataclass(frozen=True)
class Plan:
    id: PlanId
    name: str
    description: str
    price: int  # in cents
    limits: Mapping[FeatureKey, Quota]
    highlights: Tuple[str, ...] = ()
    popular: bool = False
    features: FrozenSet[FeatureKey] = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        object.__setattr__(self, "features", frozenset(self.limits))

    def limit_for(self, feature: FeatureKey) -> Quota:
        # Features a plan does not offer have a zero quota
        return self.limits.get(FeatureKey(feature), 0)

    def to_dict(self) -> Dict:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "features": sorted(feature.value for feature in self.features),
            "limits": {feature.value: quota if isinstance(quota, int) else quota.value
                       for feature, quota in self.limits.items()},
            "highlights": list(self.highlights),
            "popular": self.popular,
        }


PLANS: Mapping[PlanId, Plan] = MappingProxyType({
    PlanId.FREE: Plan(
        id=PlanId.FREE,
        name="Free",
        description="Get started with basic features",
        price=0,
        limits={
            FeatureKey.RESUME_GENERATION: 1,
            FeatureKey.JOB_ANALYSIS: 5,
            FeatureKey.TEMPLATES: 3,
            FeatureKey.AI_ANALYSIS: 5,
        },
        highlights=(
            "1 resume generation per month",
            "5 job analyses per month",
            "3 basic templates",
            "Email support",
            "14-day trial",
        ),
    ),
    PlanId.BASIC: Plan(
        id=PlanId.BASIC,
        name="Basic",
        description="Great for active job seekers",
        price=999,
        limits={
            FeatureKey.RESUME_GENERATION: 25,
            FeatureKey.JOB_ANALYSIS: 50,
            FeatureKey.TEMPLATES: UNLIMITED,
            FeatureKey.AI_ANALYSIS: 50,
        },
        highlights=(
            "25 resume generations per month",
            "50 job analyses per month",
            "All templates",
            "Priority email support",
            "Chrome extension",
        ),
    ),
    PlanId.PRO: Plan(
        id=PlanId.PRO,
        name="Pro",
        description="Best for professionals and career changers",
        price=1999,
        limits={
            FeatureKey.RESUME_GENERATION: UNLIMITED,
            FeatureKey.JOB_ANALYSIS: UNLIMITED,
            FeatureKey.TEMPLATES: UNLIMITED,
            FeatureKey.AI_ANALYSIS: UNLIMITED,
        },
        highlights=(
            "Unlimited resume generations",
            "Unlimited job analyses",
            "All premium templates",
            "Priority support",
            "Chrome extension",
            "Advanced AI insights",
        ),
        popular=True,
    ),
    PlanId.ENTERPRISE: Plan(
        id=PlanId.ENTERPRISE,
        name="Enterprise",
        description="For teams and organizations",
        price=4999,
        limits={
            FeatureKey.RESUME_GENERATION: UNLIMITED,
            FeatureKey.JOB_ANALYSIS: UNLIMITED,
            FeatureKey.TEMPLATES: UNLIMITED,
            FeatureKey.AI_ANALYSIS: UNLIMITED,
        },
        highlights=(
            "Everything in Pro",
            "Team management",
            "API access",
            "Dedicated support",
        ),
    ),
})


def resolve_plan_id(plan_id: Union[PlanId, str, None]) -> PlanId:
    """Normalize a stored plan id (case-insensitive) to a PlanId."""
    if isinstance(plan_id, PlanId):
        return plan_id
    try:
        return PlanId(str(plan_id).upper())
    except ValueError:
        raise UnknownPlanError(plan_id)


def get_plan(plan_id: Union[PlanId, str]) -> Plan:
    """
    Get plan details.

    Raises:
        UnknownPlanError: plan_id is not in the catalog
    """
    return PLANS[resolve_plan_id(plan_id)]


def get_limit(plan_id: Union[PlanId, str], feature: FeatureKey) -> Quota:
    """
    Get the per-period quota for a feature in a given plan.

    Returns:
        Finite limit (int) or UNLIMITED
    """
    return get_plan(plan_id).limit_for(feature)


def get_all_plans() -> List[Plan]:
    return list(PLANS.values())
