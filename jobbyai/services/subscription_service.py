"""
Subscription state service.

Resolves which plan and usage period apply to a user right now, and records
status transitions reported by the billing provider or by admin actions.
Transitions are only ever recorded here, never initiated.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jobbyai.core import config
from jobbyai.core.errors import InvalidTransitionError, NoSubscriptionError
from jobbyai.core.plan_catalog import PlanId, get_plan, resolve_plan_id
from jobbyai.db.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

# In-place status changes recorded from billing events.
# ACTIVE -> ACTIVE is a renewal and opens a new period through activate().
ALLOWED_TRANSITIONS = {
    SubscriptionStatus.TRIALING: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.PAST_DUE: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.CANCELED: set(),
}


def utcnow() -> datetime:
    return datetime.utcnow()


def billing_cycle() -> timedelta:
    return timedelta(days=config.BILLING_CYCLE_DAYS)


def _current_subscription(db: Session, user_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.superseded_at.is_(None),
    ).first()


def get_active_subscription(db: Session, user_id: int) -> Subscription:
    """
    Get the user's current (non-superseded) subscription.

    Raises:
        NoSubscriptionError: the user has never been provisioned
    """
    subscription = _current_subscription(db, user_id)
    if subscription is None:
        raise NoSubscriptionError(user_id)
    return subscription


def find_by_stripe_subscription_id(db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
    if not stripe_subscription_id:
        return None
    return db.query(Subscription).filter(
        Subscription.stripe_subscription_id == stripe_subscription_id,
        Subscription.superseded_at.is_(None),
    ).first()


def provision_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Subscription:
    """
    Create the default FREE trial subscription for a user.

    Idempotent: returns the current subscription if the user already has one.
    """
    existing = _current_subscription(db, user_id)
    if existing is not None:
        return existing

    now = now or utcnow()
    trial_end = now + timedelta(days=config.TRIAL_DAYS)
    subscription = Subscription(
        user_id=user_id,
        plan=PlanId.FREE.value,
        status=SubscriptionStatus.TRIALING.value,
        trial_start=now,
        trial_end=trial_end,
        current_period_start=now,
        current_period_end=trial_end,
        cancel_at_period_end=False,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent provisioning for the same user won the unique index
        db.rollback()
        existing = _current_subscription(db, user_id)
        if existing is not None:
            return existing
        raise
    db.refresh(subscription)

    logger.info(f"Subscription provisioned: user_id={user_id}, plan=FREE, trial_end={trial_end.isoformat()}")
    return subscription


def get_current_period(subscription: Subscription, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Get the usage period [start, end) containing `now`.

    - Active trial: [trial_start, trial_end)
    - Within the recorded billing period: [current_period_start, current_period_end)
    - Otherwise: billing cycles anchored on current_period_end (or on
      trial_end for an expired trial), rolled forward by whole cycles once
      `now` has passed it.
    """
    now = now or utcnow()
    status = subscription.status_enum

    if status is SubscriptionStatus.TRIALING and subscription.trial_end is not None:
        if now < subscription.trial_end:
            return subscription.trial_start or subscription.created_at, subscription.trial_end
        anchor = subscription.trial_end
    else:
        anchor = subscription.current_period_end
        period_start = subscription.current_period_start
        # Provider periods run 28 to 31 days
        if period_start is not None and period_start <= now < anchor:
            return period_start, anchor

    cycle = billing_cycle()
    cycles = (now - anchor) // cycle + 1
    period_end = anchor + cycle * cycles
    return period_end - cycle, period_end


def get_entitled_plan(subscription: Subscription, now: Optional[datetime] = None) -> PlanId:
    """
    Resolve the plan whose limits apply right now.

    Falls back to FREE (least privilege) for canceled subscriptions, expired
    trials, past-due subscriptions beyond the grace period, and subscriptions
    set to cancel whose period has ended.

    Raises:
        UnknownPlanError: the stored plan id is not in the catalog
    """
    now = now or utcnow()
    plan_id = resolve_plan_id(subscription.plan)
    status = subscription.status_enum

    if status is SubscriptionStatus.CANCELED:
        return PlanId.FREE

    if status is SubscriptionStatus.PAST_DUE:
        past_due_since = subscription.past_due_since or subscription.current_period_end
        if now >= past_due_since + timedelta(days=config.PAST_DUE_GRACE_DAYS):
            return PlanId.FREE

    if status is SubscriptionStatus.TRIALING and subscription.trial_end is not None and now >= subscription.trial_end:
        return PlanId.FREE

    if subscription.cancel_at_period_end and now >= subscription.current_period_end:
        return PlanId.FREE

    return plan_id


def transition(
    db: Session,
    subscription: Subscription,
    new_status: Union[SubscriptionStatus, str],
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Record an in-place status change.

    Repeating the current status is a no-op so re-delivered webhooks are safe.

    Raises:
        InvalidTransitionError: the move is not in ALLOWED_TRANSITIONS
    """
    now = now or utcnow()
    current = subscription.status_enum
    new_status = SubscriptionStatus(new_status)

    if new_status is current:
        logger.debug(f"Subscription already {current.value}: subscription_id={subscription.id}")
        return subscription

    if new_status not in ALLOWED_TRANSITIONS[current]:
        logger.warning(
            f"Rejected subscription transition: subscription_id={subscription.id}, "
            f"{current.value} -> {new_status.value}"
        )
        raise InvalidTransitionError(current.value, new_status.value)

    subscription.status = new_status.value
    if new_status is SubscriptionStatus.PAST_DUE:
        subscription.past_due_since = now
    elif new_status is SubscriptionStatus.ACTIVE:
        subscription.past_due_since = None
    elif new_status is SubscriptionStatus.CANCELED:
        subscription.canceled_at = now

    db.commit()
    db.refresh(subscription)

    logger.info(
        f"Subscription transition: user_id={subscription.user_id}, subscription_id={subscription.id}, "
        f"{current.value} -> {new_status.value}"
    )
    return subscription


def activate(
    db: Session,
    user_id: int,
    plan_id: Union[PlanId, str],
    current_period_end: datetime,
    now: Optional[datetime] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    current_period_start: Optional[datetime] = None,
) -> Subscription:
    """
    Open a new ACTIVE billing period on `plan_id`.

    Used for trial conversion, renewal, payment recovery, plan changes and
    re-subscribing after cancellation. The current row is superseded, not
    edited, so the previous period stays on record.

    `current_period_start` is the billing provider's period start; it
    defaults to `now`. A plan change inside a period keeps the provider's
    start, so usage already recorded in that period still counts.

    Raises:
        UnknownPlanError: plan_id is not in the catalog
        ValueError: current_period_end is not in the future, or not after
            current_period_start
    """
    plan = resolve_plan_id(plan_id)
    now = now or utcnow()
    if current_period_end <= now:
        raise ValueError("current_period_end must be in the future")
    current_period_start = current_period_start or now
    if current_period_start >= current_period_end:
        raise ValueError("current_period_start must be before current_period_end")

    current = _current_subscription(db, user_id)
    if current is not None:
        if (
            current.status_enum is SubscriptionStatus.ACTIVE
            and current.plan == plan.value
            and current.current_period_end == current_period_end
        ):
            return current

        stripe_customer_id = stripe_customer_id or current.stripe_customer_id
        stripe_subscription_id = stripe_subscription_id or current.stripe_subscription_id
        current.superseded_at = now
        db.flush()

    subscription = Subscription(
        user_id=user_id,
        plan=plan.value,
        status=SubscriptionStatus.ACTIVE.value,
        current_period_start=current_period_start,
        current_period_end=current_period_end,
        cancel_at_period_end=False,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)

    logger.info(
        f"Subscription activated: user_id={user_id}, plan={plan.value}, "
        f"period_end={current_period_end.isoformat()}, "
        f"previous_status={current.status if current is not None else None}"
    )
    return subscription


def cancel_subscription(
    db: Session,
    user_id: int,
    immediate: bool = False,
    now: Optional[datetime] = None,
) -> Subscription:
    """Cancel now, or at the end of the current period."""
    subscription = get_active_subscription(db, user_id)

    if immediate:
        return transition(db, subscription, SubscriptionStatus.CANCELED, now=now)

    if subscription.status_enum is SubscriptionStatus.CANCELED:
        raise InvalidTransitionError(subscription.status, SubscriptionStatus.CANCELED.value)

    subscription.cancel_at_period_end = True
    db.commit()
    db.refresh(subscription)

    logger.info(f"Subscription set to cancel at period end: user_id={user_id}, subscription_id={subscription.id}")
    return subscription


def describe_subscription(subscription: Subscription, now: Optional[datetime] = None) -> Dict:
    """Subscription details for GET /subscription/current."""
    now = now or utcnow()
    period_start, period_end = get_current_period(subscription, now)
    is_trial_active = (
        subscription.status_enum is SubscriptionStatus.TRIALING
        and subscription.trial_end is not None
        and subscription.trial_end > now
    )
    days_left_in_trial = 0
    if subscription.trial_end is not None:
        days_left_in_trial = max(0, math.ceil((subscription.trial_end - now).total_seconds() / 86400))

    return {
        "id": subscription.id,
        "plan": subscription.plan,
        "plan_details": get_plan(subscription.plan).to_dict(),
        "entitled_plan": get_entitled_plan(subscription, now).value,
        "status": subscription.status,
        "trial_start": subscription.trial_start,
        "trial_end": subscription.trial_end,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "canceled_at": subscription.canceled_at,
        "is_trial_active": is_trial_active,
        "days_left_in_trial": days_left_in_trial,
    }
