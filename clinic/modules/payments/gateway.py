# clinic/modules/payments/gateway.py
from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from clinic.core.config import settings
from clinic.modules.payments.models import PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_uppercase + string.digits


def _random_code(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_transaction_id() -> str:
    """TXN-<epoch millis>-<9 upper-case alphanumerics>"""
    return f"TXN-{int(time.time() * 1000)}-{_random_code(9)}"


def new_invoice_number(now: Optional[datetime] = None) -> str:
    """INV-<YYYYMM>-<6 upper-case alphanumerics>"""
    now = now or datetime.now()
    return f"INV-{now:%Y%m}-{_random_code(6)}"


@dataclass(frozen=True)
class GatewayResult:
    status: PaymentStatus
    transaction_id: str
    transaction_date: Optional[datetime]


class SimulatedGateway:
    """
    Stand-in for a real processor. Card and wallet payments settle
    immediately; clinic-visit payments stay pending until the doctor
    confirms cash was received.
    """

    def __init__(self, delay_ms: Optional[int] = None):
        self.delay_ms = settings.PAYMENT_PROCESSING_DELAY_MS if delay_ms is None else delay_ms

    async def charge(self, method: PaymentMethod, amount: Decimal) -> GatewayResult:
        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000)

        txn = new_transaction_id()
        if method.settles_instantly:
            logger.info("Gateway settled %s %s via %s", txn, amount, method.value)
            return GatewayResult(PaymentStatus.PAID, txn, datetime.now())

        logger.info("Gateway recorded %s %s for clinic collection", txn, amount)
        return GatewayResult(PaymentStatus.PENDING, txn, None)


gateway = SimulatedGateway()
