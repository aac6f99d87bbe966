# clinic/modules/transitions.py
from __future__ import annotations

import logging
from typing import Any, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.errors import InvalidState

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def transition(session: AsyncSession, record: T, target: Any, **values: Any) -> T:
    """
    Move `record` along one edge of its status graph.

    `record` must expose `id`, `status` and `status_enum`, and its status
    enum must implement `can_transition_to`. The write is a compare-and-set
    on the current status, so two requests racing on the same record cannot
    both succeed.
    """
    model = type(record)
    label = model.__name__.lower()
    current = record.status_enum  # type: ignore[attr-defined]
    if not current.can_transition_to(target):
        raise InvalidState(
            "invalid_state",
            f"Cannot move {label} from '{current.value}' to '{target.value}'",
        )

    res = await session.execute(
        update(model)
        .where(model.id == record.id, model.status == current.value)  # type: ignore[attr-defined]
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if (res.rowcount or 0) != 1:  # type: ignore
        raise InvalidState("concurrent_update", f"The {label} was changed by another request")

    await session.refresh(record)
    logger.info("%s %s: %s -> %s", model.__name__, record.id, current.value, target.value)  # type: ignore[attr-defined]
    return record
