"""
Usage tracking endpoints.

Provides usage statistics and quota information for authenticated users.
"""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from jobbyai.db.session import get_db
from jobbyai.db.models.user import User
from jobbyai.core.auth_dependency import get_current_user_obj
from jobbyai.schemas.usage import UsageResponse
from jobbyai.services.entitlement_service import get_usage_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me", tags=["Usage"])


@router.get("/usage", status_code=status.HTTP_200_OK, response_model=UsageResponse)
def get_usage(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Get current period usage statistics for the authenticated user.

    Returns:
    - plan: Plan whose limits currently apply (FREE after cancellation or lapsed payment)
    - period_start / period_end: Current usage period
    - features: Mapping of feature name to limit, used, remaining, unlimited

    Requires authentication via Bearer token.
    """
    usage_data = get_usage_summary(db, user.id)

    logger.debug(f"Usage summary requested: user_id={user.id}, plan={usage_data['plan']}")

    return usage_data
