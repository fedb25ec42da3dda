"""
Pydantic schemas for subscription endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field


class PlanResponse(BaseModel):
    id: str
    name: str
    description: str
    price: int = Field(..., description="Monthly price in cents")
    features: List[str]
    limits: Dict[str, Union[int, str]] = Field(..., description="Per-feature quota, or \"unlimited\"")
    highlights: List[str]
    popular: bool = False


class PlansResponse(BaseModel):
    success: bool = True
    data: List[PlanResponse]


class SubscriptionDetail(BaseModel):
    id: int
    plan: str
    plan_details: PlanResponse
    entitled_plan: str = Field(..., description="Plan whose limits apply after fallbacks")
    status: str
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: Optional[datetime] = None
    is_trial_active: bool
    days_left_in_trial: int


class SubscriptionResponse(BaseModel):
    success: bool = True
    data: SubscriptionDetail


class CancelRequest(BaseModel):
    immediate: bool = False


class UpgradeRequest(BaseModel):
    plan: str = Field(..., description="Paid plan id: BASIC, PRO or ENTERPRISE")
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSession(BaseModel):
    url: str
    session_id: str


class CheckoutResponse(BaseModel):
    success: bool = True
    data: CheckoutSession
