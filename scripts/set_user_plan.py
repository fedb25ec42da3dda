"""
Admin script: move a user onto a plan for one billing cycle.

Run: python -m scripts.set_user_plan user@example.com PRO
"""
import logging
import sys

from jobbyai.db.session import SessionLocal
from jobbyai.db.models.user import User
from jobbyai.core.errors import UnknownPlanError
from jobbyai.core.plan_catalog import resolve_plan_id
from jobbyai.services import subscription_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def set_user_plan(email: str, plan: str) -> bool:
    """Open a new ACTIVE period on `plan` for the user with this email."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            logger.error(f"User {email} not found")
            return False

        plan_id = resolve_plan_id(plan)
        now = subscription_service.utcnow()
        subscription = subscription_service.activate(
            db,
            user.id,
            plan_id,
            current_period_end=now + subscription_service.billing_cycle(),
            now=now,
        )
        logger.info(
            f"User {email} (ID: {user.id}) is now on {subscription.plan} "
            f"until {subscription.current_period_end.isoformat()}"
        )
        return True
    except UnknownPlanError as e:
        logger.error(str(e))
        return False
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating user plan: {e}", exc_info=True)
        raise
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: python -m scripts.set_user_plan <email> <FREE|BASIC|PRO|ENTERPRISE>")
        sys.exit(2)

    if not set_user_plan(sys.argv[1], sys.argv[2]):
        sys.exit(1)
