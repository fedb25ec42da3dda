from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func
from jobbyai.db.base import Base


class UsageRecord(Base):
    """
    Per-user, per-feature, per-period consumption counter.

    One row per (user_id, feature, period_start). `count` only increases; a new
    period gets a new row instead of resetting an old one.
    """
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    feature = Column(String, nullable=False)  # "resume_generation", "job_analysis", "templates", "ai_analysis"
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "feature", "period_start", name="uq_usage_user_feature_period"),
    )


class UsageAdjustment(Base):
    """
    Compensating usage record.

    Corrections never edit usage_records; a signed delta is inserted here and
    added to the period's count when usage is read.
    """
    __tablename__ = "usage_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    feature = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_adjustment_user_feature_period", "user_id", "feature", "period_start"),
    )
