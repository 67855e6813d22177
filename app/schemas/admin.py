from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RejectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Literal["INVALID_PROOF", "UNDERPAID"]
    note: Optional[str] = Field(default=None, max_length=500)
    received_amount_ghs: Optional[float] = Field(default=None, gt=0, alias="receivedAmountGhs")
    expected_amount_ghs: Optional[float] = Field(default=None, gt=0, alias="expectedAmountGhs")


class ReadingOutcomeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1, max_length=20000)
    force_resend: bool = Field(default=False, alias="forceResend")


class ActionResponse(BaseModel):
    ok: bool
    saved: bool = True
    delivered: bool = True
    error: Optional[str] = None


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    phone: str
    status: str
    selected_plan: Optional[str] = None
    service_type: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    reading_sent: bool = False
    reading_sent_at: Optional[datetime] = None
    reading_send_error: Optional[str] = None
    notify_error: Optional[str] = None


class CollectedDetails(BaseModel):
    full_name: Optional[str] = None
    dob: Optional[str] = None
    birth_time_type: Optional[str] = None
    birth_time_value: Optional[str] = None
    birth_place: Optional[str] = None
    current_location: Optional[str] = None
    gender: Optional[str] = None


class PaymentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    screenshot_url: str
    verified: bool
    service_type: str
    rejection_reason: Optional[str] = None
    rejection_note: Optional[str] = None
    received_amount_ghs: Optional[float] = None
    expected_amount_ghs: Optional[float] = None
    payment_verified_notified: bool = False
    notify_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UnverifiedPayment(PaymentSummary):
    phone: str
    selected_plan: Optional[str] = None


class ProfileResponse(BaseModel):
    user: UserSummary
    current_step: Optional[str] = None
    details: CollectedDetails
    payment: Optional[PaymentSummary] = None
    reading_outcome_text: Optional[str] = None
