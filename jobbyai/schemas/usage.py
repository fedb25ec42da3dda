"""
Pydantic schemas for usage and entitlement endpoints.
"""
from datetime import datetime
from typing import Dict, Literal, Optional, Union
from pydantic import BaseModel, Field


class EntitlementResponse(BaseModel):
    """Result of an entitlement check or reservation."""
    allowed: bool = Field(..., description="Whether the feature may be used")
    remaining: Union[int, Literal["unlimited"]] = Field(..., description="Remaining quota in the current period")
    limit: Union[int, Literal["unlimited"]] = Field(..., description="Quota for the current period")
    used: int = Field(..., description="Usage in the current period")
    plan: str = Field(..., description="Plan whose limits were applied")

    class Config:
        json_schema_extra = {
            "example": {
                "allowed": True,
                "remaining": 0,
                "limit": 1,
                "used": 1,
                "plan": "FREE"
            }
        }


class FeatureUsageDetail(BaseModel):
    """Usage details for a single feature."""
    limit: Optional[int] = Field(None, description="Period limit (None for unlimited)")
    used: int = Field(..., description="Current period usage")
    remaining: Optional[int] = Field(None, description="Remaining quota (None for unlimited)")
    unlimited: bool = Field(..., description="Whether this feature has unlimited quota")


class UsageResponse(BaseModel):
    """Response schema for GET /me/usage."""
    plan: str = Field(..., description="Plan whose limits currently apply")
    subscribed_plan: str = Field(..., description="Plan on the subscription record")
    status: str = Field(..., description="Subscription status")
    period_start: datetime
    period_end: datetime
    features: Dict[str, FeatureUsageDetail] = Field(..., description="Per-feature usage details")

    class Config:
        json_schema_extra = {
            "example": {
                "plan": "BASIC",
                "subscribed_plan": "BASIC",
                "status": "ACTIVE",
                "period_start": "2026-01-01T00:00:00",
                "period_end": "2026-01-31T00:00:00",
                "features": {
                    "resume_generation": {"limit": 25, "used": 5, "remaining": 20, "unlimited": False},
                    "templates": {"limit": None, "used": 2, "remaining": None, "unlimited": True}
                }
            }
        }


class ErrorResponse(BaseModel):
    """Error envelope for 429 and 5xx responses."""
    success: bool = False
    error: str
    code: str

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "resume_generation limit reached",
                "code": "USAGE_LIMIT_EXCEEDED"
            }
        }
