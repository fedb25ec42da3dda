"""
Billing service for Stripe integration.

Starts upgrades through Stripe Checkout and translates Stripe webhook events
into subscription state changes. The billing provider drives every
transition; this module only records them.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import stripe
from sqlalchemy.orm import Session

from jobbyai.core import config
from jobbyai.core.errors import InvalidTransitionError
from jobbyai.core.plan_catalog import PlanId, resolve_plan_id
from jobbyai.db.models.subscription import Subscription, SubscriptionStatus
from jobbyai.db.models.user import User
from jobbyai.services import subscription_service

logger = logging.getLogger(__name__)

# Initialize Stripe
if config.STRIPE_SECRET_KEY:
    stripe.api_key = config.STRIPE_SECRET_KEY

STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def _build_price_mappings() -> Dict[str, PlanId]:
    """Build price ID -> plan mapping from environment variables."""
    price_to_plan: Dict[str, PlanId] = {}
    for price_id, plan in (
        (config.STRIPE_PRICE_ID_BASIC, PlanId.BASIC),
        (config.STRIPE_PRICE_ID_PRO, PlanId.PRO),
        (config.STRIPE_PRICE_ID_ENTERPRISE, PlanId.ENTERPRISE),
    ):
        if price_id:
            price_to_plan[price_id] = plan
    return price_to_plan


PRICE_ID_TO_PLAN = _build_price_mappings()


def get_plan_from_price_id(price_id: Optional[str]) -> Optional[PlanId]:
    """Get plan from Stripe price ID."""
    if not price_id:
        return None
    return PRICE_ID_TO_PLAN.get(price_id)


def get_price_id_for_plan(plan: PlanId) -> Optional[str]:
    """Get the Stripe price ID configured for a plan."""
    for price_id, mapped_plan in PRICE_ID_TO_PLAN.items():
        if mapped_plan is plan:
            return price_id
    return None


def create_checkout_session(
    user: User,
    plan_id,
    customer_id: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None
) -> Dict[str, str]:
    """
    Create a Stripe Checkout session for a paid plan.

    The session and the subscription it creates both carry
    {user_id, plan} metadata, which the webhook handlers use to find the
    user again.

    Raises:
        UnknownPlanError: plan_id is not in the catalog
        ValueError: FREE plan, Stripe not configured, or a Stripe error
    """
    plan = resolve_plan_id(plan_id)
    if plan is PlanId.FREE:
        raise ValueError("FREE plan does not need checkout")

    price_id = get_price_id_for_plan(plan)
    if not config.STRIPE_SECRET_KEY or not price_id:
        raise ValueError(f"Stripe not configured - STRIPE_SECRET_KEY and a price ID for {plan.value} are required")

    metadata = {"user_id": str(user.id), "plan": plan.value}
    params = {
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "subscription",
        "success_url": success_url or f"{config.FRONTEND_URL}/dashboard?upgraded=1",
        "cancel_url": cancel_url or f"{config.FRONTEND_URL}/pricing?cancelled=1",
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
        "allow_promotion_codes": True,
    }
    # Stripe rejects customer and customer_email together
    if customer_id:
        params["customer"] = customer_id
    else:
        params["customer_email"] = user.email

    try:
        stripe.api_key = config.STRIPE_SECRET_KEY
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for user_id={user.id}, plan={plan.value}: {e}")
        raise ValueError(f"Failed to create checkout session: {str(e)}")

    logger.info(f"Created checkout session for user_id={user.id}, plan={plan.value}, session_id={session.id}")
    return {"url": session.url, "session_id": session.id}


def construct_webhook_event(payload: bytes, sig_header: Optional[str]):
    """
    Verify a webhook payload signature.

    Raises:
        ValueError: invalid payload
        stripe.SignatureVerificationError: invalid signature
    """
    return stripe.Webhook.construct_event(
        payload=payload,
        sig_header=sig_header,
        secret=config.STRIPE_WEBHOOK_SECRET,
    )


def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _first_item(container: Optional[Dict]) -> Dict:
    data = (container or {}).get("data") or [{}]
    return data[0] or {}


def _subscription_price_and_period(
    subscription_data: Dict,
) -> Tuple[Optional[str], Optional[datetime], Optional[datetime]]:
    """Returns (price_id, period_start, period_end) of a Stripe subscription object."""
    item = _first_item(subscription_data.get("items"))
    price_id = (item.get("price") or {}).get("id")
    # Newer API versions report the period on the subscription item
    period_start = subscription_data.get("current_period_start") or item.get("current_period_start")
    period_end = subscription_data.get("current_period_end") or item.get("current_period_end")
    return price_id, _timestamp(period_start), _timestamp(period_end)


def _find_subscription(db: Session, stripe_subscription_id: Optional[str], metadata: Optional[Dict]) -> Subscription:
    subscription = subscription_service.find_by_stripe_subscription_id(db, stripe_subscription_id)
    if subscription is None and metadata and metadata.get("user_id"):
        subscription = subscription_service.get_active_subscription(db, int(metadata["user_id"]))
    if subscription is None:
        raise ValueError(f"Subscription not found for stripe_subscription_id={stripe_subscription_id}")
    return subscription


def handle_checkout_session_completed(event_data: Dict, db: Session, now: datetime) -> Subscription:
    """
    Handle checkout.session.completed: the user paid for a plan.

    Opens an ACTIVE period on the plan named in the session metadata.
    """
    session_data = event_data.get("object", {})
    metadata = session_data.get("metadata") or {}
    customer_email = session_data.get("customer_email")

    if metadata.get("user_id"):
        user_id = int(metadata["user_id"])
    elif customer_email:
        user = db.query(User).filter(User.email == customer_email.lower()).first()
        if not user:
            raise ValueError(f"User not found for checkout session email={customer_email}")
        user_id = user.id
    else:
        raise ValueError("Cannot identify user from checkout session")

    plan = metadata.get("plan")
    if not plan:
        raise ValueError(f"Checkout session for user_id={user_id} has no plan metadata")

    return subscription_service.activate(
        db,
        user_id,
        resolve_plan_id(plan),
        current_period_end=now + subscription_service.billing_cycle(),
        now=now,
        stripe_customer_id=session_data.get("customer"),
        stripe_subscription_id=session_data.get("subscription"),
    )


def handle_subscription_updated(event_data: Dict, db: Session, now: datetime) -> Subscription:
    """
    Handle customer.subscription.updated.

    A new period end or a plan change opens a new period; anything else is an
    in-place status change.
    """
    subscription_data = event_data.get("object", {})
    subscription = _find_subscription(db, subscription_data.get("id"), subscription_data.get("metadata"))

    stripe_status = subscription_data.get("status")
    status = STRIPE_STATUS_MAP.get(stripe_status)
    if status is None:
        logger.info(f"Ignoring Stripe subscription status {stripe_status}: subscription_id={subscription.id}")
        return subscription

    price_id, period_start, period_end = _subscription_price_and_period(subscription_data)
    plan = get_plan_from_price_id(price_id) or resolve_plan_id(subscription.plan)

    if status is SubscriptionStatus.ACTIVE and period_end is not None and period_end > now:
        opens_new_period = (
            subscription.status_enum is not SubscriptionStatus.ACTIVE
            or subscription.current_period_end != period_end
            or subscription.plan != plan.value
        )
        if opens_new_period:
            return subscription_service.activate(
                db, subscription.user_id, plan, period_end, now=now, current_period_start=period_start
            )

    if status is SubscriptionStatus.TRIALING:
        return subscription

    return subscription_service.transition(db, subscription, status, now=now)


def handle_invoice_paid(event_data: Dict, db: Session, now: datetime) -> Subscription:
    """Handle invoice.paid: renewal, or recovery from PAST_DUE."""
    invoice = event_data.get("object", {})
    subscription = _find_subscription(db, invoice.get("subscription"), invoice.get("metadata"))

    line = _first_item(invoice.get("lines"))
    period = line.get("period") or {}
    period_start = _timestamp(period.get("start"))
    period_end = _timestamp(period.get("end"))
    plan = get_plan_from_price_id((line.get("price") or {}).get("id")) or resolve_plan_id(subscription.plan)

    if period_end is None or period_end <= now:
        logger.info(f"Invoice paid without a future period end: subscription_id={subscription.id}")
        return subscription_service.transition(db, subscription, SubscriptionStatus.ACTIVE, now=now)

    return subscription_service.activate(
        db, subscription.user_id, plan, period_end, now=now, current_period_start=period_start
    )


def handle_invoice_payment_failed(event_data: Dict, db: Session, now: datetime) -> Subscription:
    invoice = event_data.get("object", {})
    subscription = _find_subscription(db, invoice.get("subscription"), invoice.get("metadata"))
    return subscription_service.transition(db, subscription, SubscriptionStatus.PAST_DUE, now=now)


def handle_subscription_deleted(event_data: Dict, db: Session, now: datetime) -> Subscription:
    """Handle customer.subscription.deleted. Entitlements fall back to FREE."""
    subscription_data = event_data.get("object", {})
    subscription = _find_subscription(db, subscription_data.get("id"), subscription_data.get("metadata"))
    return subscription_service.transition(db, subscription, SubscriptionStatus.CANCELED, now=now)


EVENT_HANDLERS: Dict[str, Callable[[Dict, Session, datetime], Subscription]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


def handle_event(db: Session, event: Dict, now: Optional[datetime] = None) -> Optional[Subscription]:
    """
    Dispatch a verified Stripe event.

    Returns the affected subscription, or None when the event type is not
    handled or arrived out of order.
    """
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"Unhandled Stripe event type: {event_type}")
        return None

    now = now or subscription_service.utcnow()
    try:
        subscription = handler(event.get("data", {}), db, now)
    except InvalidTransitionError as e:
        # Out-of-order delivery; the later event already moved the subscription on
        logger.warning(f"Skipping Stripe event {event.get('id')} ({event_type}): {e}")
        return None

    logger.info(
        f"Stripe event processed: event_id={event.get('id')}, type={event_type}, "
        f"user_id={subscription.user_id}, status={subscription.status}, plan={subscription.plan}"
    )
    return subscription
