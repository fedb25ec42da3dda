"""
Usage ledger: persisted per-user, per-feature, per-period consumption counters.

All writes are single storage-level statements keyed on the unique
(user_id, feature, period_start) constraint, so concurrent requests for the
same key are serialized by the database rather than by the application.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from jobbyai.core.errors import UsageLedgerWriteConflict
from jobbyai.core.plan_catalog import FeatureKey
from jobbyai.db.models.usage import UsageAdjustment, UsageRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One internal retry for transient write collisions (deadlock, locked database)
MAX_WRITE_ATTEMPTS = 2


def _feature_value(feature) -> str:
    return FeatureKey(feature).value


def _record_key(user_id: int, feature: str, period_start: datetime):
    return (
        UsageRecord.user_id == user_id,
        UsageRecord.feature == feature,
        UsageRecord.period_start == period_start,
    )


def _adjustment_total(db: Session, user_id: int, feature: str, period_start: datetime) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(UsageAdjustment.delta), 0)).where(
            UsageAdjustment.user_id == user_id,
            UsageAdjustment.feature == feature,
            UsageAdjustment.period_start == period_start,
        )
    ).scalar_one()
    return int(total)


def _ensure_record(
    db: Session,
    user_id: int,
    feature: str,
    period_start: datetime,
    period_end: datetime,
) -> None:
    """Create the zero-count row for this period key unless it already exists."""
    values = {
        "user_id": user_id,
        "feature": feature,
        "period_start": period_start,
        "period_end": period_end,
        "count": 0,
    }
    index_elements = ["user_id", "feature", "period_start"]
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        db.execute(pg_insert(UsageRecord).values(**values).on_conflict_do_nothing(index_elements=index_elements))
    elif dialect == "sqlite":
        db.execute(sqlite_insert(UsageRecord).values(**values).on_conflict_do_nothing(index_elements=index_elements))
    else:
        try:
            with db.begin_nested():
                db.add(UsageRecord(**values))
        except IntegrityError:
            # Another writer created the row first
            pass


def _run_write(db: Session, operation: Callable[[], T], description: str) -> T:
    """Run a ledger write, retrying once on a transient storage conflict."""
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        try:
            return operation()
        except OperationalError as e:
            db.rollback()
            if attempt < MAX_WRITE_ATTEMPTS:
                logger.warning(f"Usage ledger write conflict ({description}), retrying: {e}")
                continue
            logger.error(f"Usage ledger write failed after {attempt} attempts ({description}): {e}")
            raise UsageLedgerWriteConflict(f"Usage ledger write failed: {description}") from e
        except SQLAlchemyError:
            db.rollback()
            raise
    raise UsageLedgerWriteConflict(f"Usage ledger write failed: {description}")


def get_usage(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    period_start: datetime,
    period_end: Optional[datetime] = None,
) -> int:
    """
    Get effective usage for a user/feature/period.

    Returns 0 when no record exists. Compensating adjustments are included and
    the result never drops below 0.
    """
    feature = _feature_value(feature)
    count = db.execute(
        select(UsageRecord.count).where(*_record_key(user_id, feature, period_start))
    ).scalar_one_or_none() or 0
    return max(0, count + _adjustment_total(db, user_id, feature, period_start))


def get_period_usage(db: Session, user_id: int, period_start: datetime) -> Dict[FeatureKey, int]:
    """Get effective usage for every feature in one period."""
    return {
        feature: get_usage(db, user_id, feature, period_start)
        for feature in FeatureKey
    }


def increment_usage(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    period_start: datetime,
    period_end: datetime,
) -> int:
    """
    Create-or-increment the usage record for this exact period key.

    The increment is committed before returning.

    Returns:
        Effective usage after the increment
    """
    applied, used = try_increment_usage(db, user_id, feature, period_start, period_end, limit=None)
    return used


def try_increment_usage(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    period_start: datetime,
    period_end: datetime,
    limit: Optional[int],
) -> Tuple[bool, int]:
    """
    Atomically increment usage if it is below `limit`.

    The comparison and the increment happen in one UPDATE, so concurrent
    callers can never push the count past the limit. `limit=None` increments
    unconditionally.

    Returns:
        (applied, used) where used is the effective usage after the call.
        When applied is False nothing was written.
    """
    feature = _feature_value(feature)

    def operation() -> Tuple[bool, int]:
        adjustment = _adjustment_total(db, user_id, feature, period_start)
        record_key = _record_key(user_id, feature, period_start)

        if limit is not None and adjustment >= limit:
            # No increment can apply, so a missing row stays missing
            count = db.execute(select(UsageRecord.count).where(*record_key)).scalar_one_or_none() or 0
            db.commit()
            return False, max(0, count + adjustment)

        _ensure_record(db, user_id, feature, period_start, period_end)

        stmt = (
            update(UsageRecord)
            .where(*record_key)
            .values(count=UsageRecord.count + 1)
            .execution_options(synchronize_session=False)
        )
        if limit is not None:
            stmt = stmt.where(UsageRecord.count + adjustment < limit)

        result = db.execute(stmt)
        applied = result.rowcount == 1

        count = db.execute(select(UsageRecord.count).where(*record_key)).scalar_one()
        db.commit()
        return applied, max(0, count + adjustment)

    applied, used = _run_write(db, operation, f"user_id={user_id}, feature={feature}")

    if applied:
        logger.info(
            f"Usage recorded: user_id={user_id}, feature={feature}, "
            f"period_start={period_start.isoformat()}, used={used}, limit={limit if limit is not None else 'unlimited'}"
        )
    return applied, used


def record_adjustment(
    db: Session,
    user_id: int,
    feature: FeatureKey,
    period_start: datetime,
    delta: int,
    reason: Optional[str] = None,
) -> UsageAdjustment:
    """
    Insert a compensating usage record for a period.

    A negative delta refunds usage (e.g. a generation that failed downstream);
    a positive delta charges extra. The usage record itself is never edited.
    """
    if delta == 0:
        raise ValueError("Adjustment delta must be non-zero")

    adjustment = UsageAdjustment(
        user_id=user_id,
        feature=_feature_value(feature),
        period_start=period_start,
        delta=delta,
        reason=reason,
    )

    def operation() -> UsageAdjustment:
        db.add(adjustment)
        db.commit()
        db.refresh(adjustment)
        return adjustment

    _run_write(db, operation, f"adjustment user_id={user_id}, feature={adjustment.feature}")
    logger.info(
        f"Usage adjusted: user_id={user_id}, feature={adjustment.feature}, "
        f"delta={delta}, reason={reason}"
    )
    return adjustment
