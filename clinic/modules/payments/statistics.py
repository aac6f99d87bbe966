# clinic/modules/payments/statistics.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.modules.payments.models import Payment, PaymentStatus
from clinic.modules.payments.schemas import MethodBreakdown, PaymentPublic, PaymentStatistics

RECENT_LIMIT = 10


def to_money(value: Any) -> Decimal:
    # SQLite returns SUM() as float; keep two places either way
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal("0.01"))


def summarize(
    status_rows: Iterable[Tuple[str, int, Any]],
    refunded_total: Any,
    method_rows: Iterable[Tuple[str, int, Any]],
) -> Dict[str, Any]:
    """
    Reduce grouped rows into the statistics figures.

    status_rows: (status, count, sum(amount))
    method_rows: (payment_method, count, sum(amount)) over paid payments
    """
    by_status = {s.value: 0 for s in PaymentStatus}
    total_revenue = Decimal("0.00")
    for status, count, amount in status_rows:
        by_status[status] = int(count)
        if status == PaymentStatus.PAID.value:
            total_revenue = to_money(amount)

    total_refunded = to_money(refunded_total)
    by_method = sorted(
        (
            MethodBreakdown(payment_method=m, count=int(c), total=to_money(t))
            for m, c, t in method_rows
        ),
        key=lambda b: (-b.count, b.payment_method),
    )
    return {
        "total_payments": sum(by_status.values()),
        "by_status": by_status,
        "total_revenue": total_revenue,
        "total_refunded": total_refunded,
        "net_revenue": total_revenue - total_refunded,
        "by_method": by_method,
    }


async def payment_statistics(session: AsyncSession) -> PaymentStatistics:
    status_rows = (
        await session.execute(
            select(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .group_by(Payment.status)
        )
    ).all()

    refunded_total = (
        await session.execute(
            select(func.sum(Payment.refund_amount))
            .where(Payment.status == PaymentStatus.REFUNDED.value)
        )
    ).scalar_one()

    method_rows = (
        await session.execute(
            select(Payment.payment_method, func.count(Payment.id), func.sum(Payment.amount))
            .where(Payment.status == PaymentStatus.PAID.value)
            .group_by(Payment.payment_method)
        )
    ).all()

    recent: List[Payment] = list(
        (
            await session.execute(
                select(Payment).order_by(Payment.created_at.desc()).limit(RECENT_LIMIT)
            )
        ).scalars().all()
    )

    return PaymentStatistics(
        **summarize(status_rows, refunded_total, method_rows),
        recent=[PaymentPublic.model_validate(p) for p in recent],
    )
