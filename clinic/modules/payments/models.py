# clinic/modules/payments/models.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import FrozenSet, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from clinic.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    @property
    def next_states(self) -> FrozenSet["PaymentStatus"]:
        return _PAYMENT_TRANSITIONS[self]

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in self.next_states

    @property
    def is_terminal(self) -> bool:
        return not _PAYMENT_TRANSITIONS[self]

    @property
    def is_active(self) -> bool:
        """An active payment blocks another payment for the same appointment."""
        return self not in (PaymentStatus.FAILED, PaymentStatus.CANCELLED)


_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUND_REQUESTED, PaymentStatus.CANCELLED}),
    PaymentStatus.REFUND_REQUESTED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PAID}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}


class PaymentMethod(str, PyEnum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    EASYPAISA = "easypaisa"
    JAZZCASH = "jazzcash"
    CLINIC_VISIT = "clinic_visit"

    @property
    def is_card(self) -> bool:
        return self in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD)

    @property
    def requires_phone(self) -> bool:
        return self in (PaymentMethod.EASYPAISA, PaymentMethod.JAZZCASH)

    @property
    def settles_instantly(self) -> bool:
        return self is not PaymentMethod.CLINIC_VISIT


_ACTIVE_PAYMENT = text("status NOT IN ('failed', 'cancelled')")


class Payment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Money record for one approved appointment.
    `amount` is copied from the appointment's consultation fee and never changes.
    """

    __tablename__ = "payments"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PKR")
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        server_default=PaymentStatus.PENDING.value,
    )

    transaction_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    invoice_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    transaction_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    phone_number: Mapped[Optional[str]] = mapped_column(String(11), nullable=True)
    card_last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Refund sub-flow
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_requested_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    refund_processed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    refund_processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(nullable=True)

    # Clinic-visit confirmation
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def method_enum(self) -> PaymentMethod:
        return PaymentMethod(self.payment_method)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'refund_requested', 'refunded', 'cancelled')",
            name="ck_payment_status_valid",
        ),
        CheckConstraint(
            "payment_method IN ('credit_card', 'debit_card', 'easypaisa', 'jazzcash', 'clinic_visit')",
            name="ck_payment_method_valid",
        ),
        # One live payment per appointment; failed/cancelled ones may be retried
        Index(
            "uq_payment_active_per_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=_ACTIVE_PAYMENT,
            sqlite_where=_ACTIVE_PAYMENT,
        ),
        Index("ix_payment_patient_created", "patient_id", "created_at"),
        Index("ix_payment_doctor_status", "doctor_id", "status"),
        Index("ix_payment_status_created", "status", "created_at"),
    )
