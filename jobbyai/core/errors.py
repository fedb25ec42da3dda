"""
Entitlement error taxonomy.

A denied feature use is a normal result, not an error; these exceptions cover
configuration and data inconsistencies and storage failures.
"""


class EntitlementError(Exception):
    """Base class for entitlement failures. `code` is the machine-readable error code."""

    code = "ENTITLEMENT_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownPlanError(EntitlementError):
    """A subscription references a plan id outside the catalog."""

    code = "UNKNOWN_PLAN"

    def __init__(self, plan_id):
        super().__init__(f"Unknown plan: {plan_id}")
        self.plan_id = plan_id


class NoSubscriptionError(EntitlementError):
    """The user has no current subscription row."""

    code = "NO_SUBSCRIPTION"

    def __init__(self, user_id):
        super().__init__(f"No subscription for user_id={user_id}")
        self.user_id = user_id


class UsageLedgerWriteConflict(EntitlementError):
    """The usage increment kept colliding with concurrent writers."""

    code = "USAGE_LEDGER_CONFLICT"


class InvalidTransitionError(EntitlementError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current, requested):
        super().__init__(f"Cannot move subscription from {current} to {requested}")
        self.current = current
        self.requested = requested


class UsageLimitExceeded(Exception):
    """Raised by the HTTP guard to render a 429 for a denied feature use."""

    code = "USAGE_LIMIT_EXCEEDED"

    def __init__(self, feature: str, result=None):
        super().__init__(f"{feature} limit reached")
        self.feature = feature
        self.result = result
