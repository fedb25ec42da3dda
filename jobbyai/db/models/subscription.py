import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.sql import func
from jobbyai.db.base import Base


class SubscriptionStatus(str, enum.Enum):
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"


class Subscription(Base):
    """
    Subscription period row.

    Rows are never deleted. The current subscription for a user is the one with
    superseded_at IS NULL; opening a new billing period or switching plan
    supersedes it with a fresh row so usage history stays auditable.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    plan = Column(String, nullable=False, default="FREE")  # FREE | BASIC | PRO | ENTERPRISE
    status = Column(String, nullable=False, default=SubscriptionStatus.TRIALING.value)

    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=False)
    past_due_since = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime, nullable=True)
    superseded_at = Column(DateTime, nullable=True, index=True)

    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # At most one current (non-superseded) subscription per user
    __table_args__ = (
        Index(
            "uq_subscriptions_user_current",
            "user_id",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
    )

    @property
    def status_enum(self) -> SubscriptionStatus:
        return SubscriptionStatus(self.status)
