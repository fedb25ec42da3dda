"""
Entitlement enforcement dependency for gated features.

This module provides require_entitlement() dependency that:
1. Authenticates the user
2. Reserves one unit of the feature against the plan quota
3. Raises UsageLimitExceeded (rendered as 429) when the quota is used up
"""
import logging
from fastapi import Depends
from sqlalchemy.orm import Session

from jobbyai.core.auth_dependency import get_current_user_obj
from jobbyai.core.errors import UsageLimitExceeded
from jobbyai.core.plan_catalog import FeatureKey
from jobbyai.db.models.user import User
from jobbyai.db.session import get_db
from jobbyai.services.entitlement_service import check_and_reserve

logger = logging.getLogger(__name__)


def require_entitlement(feature: FeatureKey):
    """
    Dependency that reserves one unit of `feature` before the route runs.

    Returns:
        User object if the reservation succeeded

    Raises:
        UsageLimitExceeded: quota used up for the current period (429)
        HTTPException 401/404: unauthenticated or unknown user
    """
    feature = FeatureKey(feature)

    def entitlement_checker(
        user: User = Depends(get_current_user_obj),
        db: Session = Depends(get_db)
    ) -> User:
        result = check_and_reserve(db, user.id, feature)

        if not result.allowed:
            raise UsageLimitExceeded(feature.value, result)

        logger.debug(
            f"Entitlement check passed: user_id={user.id}, feature={feature.value}, "
            f"plan={result.plan}, remaining={result.to_dict()['remaining']}"
        )
        return user

    return entitlement_checker
