"""
Entitlement checker.

The single decision point for "may this user consume one unit of a feature
right now?". The quota check and the usage increment are one atomic ledger
operation, so concurrent requests can never be approved past the limit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Union

from sqlalchemy.orm import Session

from jobbyai.core import config
from jobbyai.core.errors import NoSubscriptionError
from jobbyai.core.plan_catalog import (
    UNLIMITED,
    FeatureKey,
    Quota,
    Unlimited,
    get_limit,
    get_plan,
    is_unlimited,
)
from jobbyai.db.models.subscription import Subscription
from jobbyai.services import subscription_service, usage_ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementResult:
    allowed: bool
    remaining: Union[int, Unlimited]
    limit: Quota
    used: int
    plan: str

    def to_dict(self) -> Dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining if isinstance(self.remaining, int) else self.remaining.value,
            "limit": self.limit if isinstance(self.limit, int) else self.limit.value,
            "used": self.used,
            "plan": self.plan,
        }


def resolve_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Subscription:
    """
    Get the user's subscription, provisioning the FREE trial if allowed.

    Raises:
        NoSubscriptionError: no subscription and AUTO_PROVISION_SUBSCRIPTIONS is off
    """
    try:
        return subscription_service.get_active_subscription(db, user_id)
    except NoSubscriptionError:
        if not config.AUTO_PROVISION_SUBSCRIPTIONS:
            logger.error(f"No subscription for user_id={user_id} and auto-provisioning is disabled")
            raise
        logger.warning(f"No subscription for user_id={user_id}, provisioning FREE trial")
        return subscription_service.provision_subscription(db, user_id, now=now)


def check_and_reserve(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    now: Optional[datetime] = None,
) -> EntitlementResult:
    """
    Decide whether the user may use `feature` once, reserving the unit if so.

    Unlimited quotas always allow and still record usage for analytics.
    Denied attempts never consume quota.

    Raises:
        UnknownPlanError: the subscription references a plan outside the catalog
        NoSubscriptionError: see resolve_subscription()
        UsageLedgerWriteConflict: the increment kept colliding with other writers
    """
    feature = FeatureKey(feature)
    now = now or subscription_service.utcnow()

    subscription = resolve_subscription(db, user_id, now=now)
    period_start, period_end = subscription_service.get_current_period(subscription, now)
    plan_id = subscription_service.get_entitled_plan(subscription, now)
    limit = get_limit(plan_id, feature)

    if is_unlimited(limit):
        used = usage_ledger.increment_usage(db, user_id, feature, period_start, period_end)
        logger.debug(f"Entitlement granted (unlimited): user_id={user_id}, feature={feature.value}, used={used}")
        return EntitlementResult(allowed=True, remaining=UNLIMITED, limit=UNLIMITED, used=used, plan=plan_id.value)

    applied, used = usage_ledger.try_increment_usage(
        db, user_id, feature, period_start, period_end, limit=limit
    )

    if not applied:
        logger.warning(
            f"Usage limit reached: user_id={user_id}, feature={feature.value}, "
            f"plan={plan_id.value}, limit={limit}, used={used}"
        )
        return EntitlementResult(allowed=False, remaining=0, limit=limit, used=used, plan=plan_id.value)

    return EntitlementResult(
        allowed=True,
        remaining=max(0, limit - used),
        limit=limit,
        used=used,
        plan=plan_id.value,
    )


def peek_entitlement(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    now: Optional[datetime] = None,
) -> EntitlementResult:
    """Same decision as check_and_reserve() without consuming anything."""
    feature = FeatureKey(feature)
    now = now or subscription_service.utcnow()

    subscription = resolve_subscription(db, user_id, now=now)
    period_start, period_end = subscription_service.get_current_period(subscription, now)
    plan_id = subscription_service.get_entitled_plan(subscription, now)
    limit = get_limit(plan_id, feature)
    used = usage_ledger.get_usage(db, user_id, feature, period_start, period_end)

    if is_unlimited(limit):
        return EntitlementResult(allowed=True, remaining=UNLIMITED, limit=UNLIMITED, used=used, plan=plan_id.value)

    remaining = max(0, limit - used)
    return EntitlementResult(allowed=remaining > 0, remaining=remaining, limit=limit, used=used, plan=plan_id.value)


def get_usage_summary(db: Session, user_id: int, now: Optional[datetime] = None) -> Dict:
    """
    Get usage data formatted for GET /me/usage.

    Returns:
        Dictionary with plan, status, period bounds and per-feature usage
    """
    now = now or subscription_service.utcnow()
    subscription = resolve_subscription(db, user_id, now=now)
    period_start, period_end = subscription_service.get_current_period(subscription, now)
    plan_id = subscription_service.get_entitled_plan(subscription, now)
    plan = get_plan(plan_id)
    usage = usage_ledger.get_period_usage(db, user_id, period_start)

    features = {}
    for feature in FeatureKey:
        limit = plan.limit_for(feature)
        used = usage.get(feature, 0)

        if is_unlimited(limit):
            features[feature.value] = {
                "limit": None,
                "used": used,
                "remaining": None,
                "unlimited": True,
            }
        else:
            features[feature.value] = {
                "limit": limit,
                "used": used,
                "remaining": max(0, limit - used),
                "unlimited": False,
            }

    return {
        "plan": plan_id.value,
        "subscribed_plan": subscription.plan,
        "status": subscription.status,
        "period_start": period_start,
        "period_end": period_end,
        "features": features,
    }
