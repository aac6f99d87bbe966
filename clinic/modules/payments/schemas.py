# clinic/modules/payments/schemas.py
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from clinic.modules.payments.models import PaymentMethod, PaymentStatus

# Pakistani mobile wallet numbers: 03XXXXXXXXX
WALLET_PHONE_RE = re.compile(r"^03\d{9}$")


class PaymentProcessRequest(BaseModel):
    """
    Patient pays for an approved appointment.
    - phone_number is required for easypaisa / jazzcash
    - card_last_four is optional for card methods
    """
    appointment_id: UUID
    payment_method: PaymentMethod
    phone_number: Optional[str] = None
    card_last_four: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def _strip_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = re.sub(r"[\s-]", "", v)
        return v or None

    @field_validator("card_last_four")
    @classmethod
    def _check_last_four(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not re.fullmatch(r"\d{4}", v):
            raise ValueError("card_last_four must be exactly 4 digits")
        return v

    @model_validator(mode="after")
    def _check_method_fields(self):
        if self.payment_method.requires_phone:
            if not self.phone_number or not WALLET_PHONE_RE.match(self.phone_number):
                raise ValueError("A valid 11-digit mobile number starting with 03 is required")
        else:
            self.phone_number = None
        if not self.payment_method.is_card:
            self.card_last_four = None
        return self


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason must not be empty")
        return v


class RefundDecision(BaseModel):
    approved: bool
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


class PaymentPublic(BaseModel):
    id: UUID
    appointment_id: UUID
    patient_id: UUID
    doctor_id: UUID
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    transaction_id: str
    invoice_number: str
    transaction_date: Optional[datetime] = None
    phone_number: Optional[str] = None
    card_last_four: Optional[str] = None
    description: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refund_processed_at: Optional[datetime] = None
    refund_processed_by: Optional[UUID] = None
    refund_amount: Optional[Decimal] = None
    confirmed_by: Optional[UUID] = None
    confirmed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusAggregate(BaseModel):
    count: int
    total: Decimal


class PaymentListPage(BaseModel):
    items: List[PaymentPublic]
    total: int
    limit: int
    offset: int
    has_next: bool
    # count and amount per status over the filtered set
    by_status: Dict[str, StatusAggregate] = Field(default_factory=dict)


class MethodBreakdown(BaseModel):
    payment_method: str
    count: int
    total: Decimal


class PaymentStatistics(BaseModel):
    total_payments: int
    by_status: Dict[str, int]
    total_revenue: Decimal
    total_refunded: Decimal
    net_revenue: Decimal
    by_method: List[MethodBreakdown]
    recent: List[PaymentPublic]


class DoctorEarnings(BaseModel):
    total_earnings: Decimal
    total_refunded: Decimal
    payment_count: int
    payments: List[PaymentPublic]


class InvoiceSummary(BaseModel):
    invoice_number: str
    transaction_id: str
    issued_at: datetime
    status: str
    patient_name: str
    patient_email: str
    doctor_name: str
    doctor_specialization: Optional[str] = None
    appointment_date: str
    appointment_time: str
    payment_method: str
    amount: Decimal
    refund_amount: Optional[Decimal] = None
    currency: str

