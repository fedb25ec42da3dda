"""
Subscription endpoints: plan catalog, current subscription, upgrade checkout,
cancellation and per-feature entitlement checks.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from jobbyai.db.session import get_db
from jobbyai.db.models.subscription import SubscriptionStatus
from jobbyai.db.models.user import User
from jobbyai.core.auth_dependency import get_current_user_obj
from jobbyai.core.errors import UnknownPlanError, UsageLimitExceeded
from jobbyai.core.plan_catalog import FeatureKey, get_all_plans, resolve_plan_id
from jobbyai.schemas.subscription import (
    CancelRequest,
    CheckoutResponse,
    PlansResponse,
    SubscriptionResponse,
    UpgradeRequest,
)
from jobbyai.schemas.usage import EntitlementResponse
from jobbyai.services import billing_service, entitlement_service, subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get("/plans", response_model=PlansResponse)
def list_plans():
    return {
        "success": True,
        "data": [plan.to_dict() for plan in get_all_plans()]
    }


@router.get("/current", response_model=SubscriptionResponse)
def get_current_subscription(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    subscription = entitlement_service.resolve_subscription(db, user.id)
    return {
        "success": True,
        "data": subscription_service.describe_subscription(subscription)
    }


@router.post("/upgrade", response_model=CheckoutResponse)
def upgrade_subscription(
    body: UpgradeRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Start a Stripe Checkout for a paid plan.

    The plan changes only when the checkout.session.completed webhook arrives.
    """
    try:
        plan = resolve_plan_id(body.plan)
    except UnknownPlanError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    subscription = entitlement_service.resolve_subscription(db, user.id)
    if (
        subscription.status_enum is SubscriptionStatus.ACTIVE
        and subscription_service.get_entitled_plan(subscription) is plan
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Already subscribed to {plan.value}"
        )

    try:
        checkout = billing_service.create_checkout_session(
            user,
            plan,
            customer_id=subscription.stripe_customer_id,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "success": True,
        "data": checkout
    }


@router.post("/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    body: CancelRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Cancel immediately, or at the end of the current period (default)."""
    subscription = subscription_service.cancel_subscription(db, user.id, immediate=body.immediate)
    return {
        "success": True,
        "data": subscription_service.describe_subscription(subscription)
    }


@router.get("/usage/{feature}", response_model=EntitlementResponse)
def check_feature_usage(
    feature: FeatureKey,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Check whether the feature is available without consuming quota."""
    return entitlement_service.peek_entitlement(db, user.id, feature).to_dict()


@router.post("/usage/{feature}", response_model=EntitlementResponse)
def record_feature_usage(
    feature: FeatureKey,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Reserve one unit of the feature.

    Returns the entitlement result, or 429 with USAGE_LIMIT_EXCEEDED when the
    quota for the current period is used up.
    """
    result = entitlement_service.check_and_reserve(db, user.id, feature)
    if not result.allowed:
        raise UsageLimitExceeded(feature.value, result)
    return result.to_dict()
