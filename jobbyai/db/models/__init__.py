"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.
"""
from jobbyai.db.models.user import User
from jobbyai.db.models.subscription import Subscription, SubscriptionStatus
from jobbyai.db.models.usage import UsageRecord, UsageAdjustment

__all__ = [
    "User",
    "Subscription",
    "SubscriptionStatus",
    "UsageRecord",
    "UsageAdjustment",
]
