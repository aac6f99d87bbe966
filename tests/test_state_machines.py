# tests/test_state_machines.py
import re

import pytest

from clinic.modules.appointments.models import ApptStatus
from clinic.modules.payments.gateway import (
    SimulatedGateway,
    new_invoice_number,
    new_transaction_id,
)
from clinic.modules.payments.models import PaymentMethod, PaymentStatus


APPT_EDGES = {
    (ApptStatus.PENDING, ApptStatus.APPROVED),
    (ApptStatus.PENDING, ApptStatus.REJECTED),
    (ApptStatus.APPROVED, ApptStatus.COMPLETED),
    (ApptStatus.APPROVED, ApptStatus.CANCELLED),
}

PAYMENT_EDGES = {
    (PaymentStatus.PENDING, PaymentStatus.PAID),
    (PaymentStatus.PENDING, PaymentStatus.FAILED),
    (PaymentStatus.PENDING, PaymentStatus.CANCELLED),
    (PaymentStatus.PAID, PaymentStatus.REFUND_REQUESTED),
    (PaymentStatus.PAID, PaymentStatus.CANCELLED),
    (PaymentStatus.REFUND_REQUESTED, PaymentStatus.REFUNDED),
    (PaymentStatus.REFUND_REQUESTED, PaymentStatus.PAID),
}


@pytest.mark.parametrize("src", list(ApptStatus))
@pytest.mark.parametrize("dst", list(ApptStatus))
def test_appointment_graph(src, dst):
    assert src.can_transition_to(dst) == ((src, dst) in APPT_EDGES)


@pytest.mark.parametrize("src", list(PaymentStatus))
@pytest.mark.parametrize("dst", list(PaymentStatus))
def test_payment_graph(src, dst):
    assert src.can_transition_to(dst) == ((src, dst) in PAYMENT_EDGES)


def test_terminal_states():
    assert {s for s in ApptStatus if s.is_terminal} == {
        ApptStatus.REJECTED, ApptStatus.COMPLETED, ApptStatus.CANCELLED,
    }
    assert {s for s in PaymentStatus if s.is_terminal} == {
        PaymentStatus.FAILED, PaymentStatus.REFUNDED, PaymentStatus.CANCELLED,
    }


def test_refund_states_only_reachable_from_paid():
    for s in PaymentStatus:
        if s.can_transition_to(PaymentStatus.REFUND_REQUESTED):
            assert s is PaymentStatus.PAID
        if s.can_transition_to(PaymentStatus.REFUNDED):
            assert s is PaymentStatus.REFUND_REQUESTED


def test_slot_holding_statuses():
    assert ApptStatus.PENDING.holds_slot
    assert ApptStatus.APPROVED.holds_slot
    assert not ApptStatus.REJECTED.holds_slot
    assert not ApptStatus.CANCELLED.holds_slot


def test_payment_method_traits():
    assert PaymentMethod.EASYPAISA.requires_phone
    assert PaymentMethod.JAZZCASH.requires_phone
    assert not PaymentMethod.CREDIT_CARD.requires_phone
    assert PaymentMethod.DEBIT_CARD.is_card
    assert not PaymentMethod.CLINIC_VISIT.settles_instantly
    assert all(m.settles_instantly for m in PaymentMethod if m is not PaymentMethod.CLINIC_VISIT)


def test_identifier_formats():
    assert re.fullmatch(r"TXN-\d{13}-[A-Z0-9]{9}", new_transaction_id())
    assert re.fullmatch(r"INV-\d{6}-[A-Z0-9]{6}", new_invoice_number())
    assert len({new_transaction_id() for _ in range(50)}) == 50


async def test_gateway_settles_cards_and_holds_clinic_visits():
    gw = SimulatedGateway(delay_ms=0)
    paid = await gw.charge(PaymentMethod.JAZZCASH, 1500)
    assert paid.status is PaymentStatus.PAID
    assert paid.transaction_date is not None

    held = await gw.charge(PaymentMethod.CLINIC_VISIT, 1500)
    assert held.status is PaymentStatus.PENDING
    assert held.transaction_date is None
