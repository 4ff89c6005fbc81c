"""Single-writer-per-order transactions.

Every mutation of an order and its applications runs inside
``order_write_unit``: the order row is locked with ``SELECT ... FOR UPDATE``,
the body runs, then the session commits. Any exception rolls the whole unit
back so callers never observe a half-applied transition.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from marketplace.errors import OrderLockTimeoutError, OrderNotFoundError
from marketplace.models import Order

logger = logging.getLogger(__name__)

LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


async def _bound_lock_wait(session: AsyncSession) -> None:
    if session.get_bind().dialect.name != "postgresql":
        # SQLite serialises writers itself and has no row locks
        return
    timeout_ms = int(get_settings().order_lock_timeout_ms)
    await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


async def lock_order(session: AsyncSession, order_id: int) -> Order:
    """Load and lock an order row inside the current transaction."""
    try:
        await _bound_lock_wait(session)
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    except DBAPIError as exc:
        if _is_lock_timeout(exc):
            logger.warning("Order lock wait timed out", extra={"order_id": order_id})
            raise OrderLockTimeoutError(order_id) from exc
        raise
    order = result.scalars().first()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


@asynccontextmanager
async def order_write_unit(session: AsyncSession, order_id: int) -> AsyncIterator[Order]:
    """Lock ``order_id``, yield it, commit on success and roll back on any error."""
    try:
        order = await lock_order(session, order_id)
        yield order
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
