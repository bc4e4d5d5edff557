"""Single-writer-per-account discipline.

Every mutation that touches an account's balances, snapshots or periods runs
inside ``account_writer``.  Within one process an ``asyncio.Lock`` per account
queues the writers; across processes the ``SELECT ... FOR UPDATE`` on the
account row does the same on PostgreSQL.  The unit of work is committed
before the lock is released, so the next writer always sees a consistent
snapshot chain.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.exceptions import StorageError
from iafa.models.ledger import Account
from iafa.services.ledger_store import lock_account

logger = logging.getLogger(__name__)

_account_locks: dict[uuid.UUID, asyncio.Lock] = {}


def _lock_for(account_id: uuid.UUID) -> asyncio.Lock:
    lock = _account_locks.get(account_id)
    if lock is None:
        lock = _account_locks[account_id] = asyncio.Lock()
    return lock


@asynccontextmanager
async def account_writer(
    db: AsyncSession, account_id: uuid.UUID
) -> AsyncIterator[Account]:
    """Serialise writers on *account_id* and commit their unit of work.

    Yields the row-locked ``Account``.  Any exception rolls the whole unit of
    work back; nothing is retried.
    """
    async with _lock_for(account_id):
        try:
            account = await lock_account(db, account_id)
            yield account
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Write on account %s failed: %s", account_id, exc)
            raise StorageError("The ledger could not be updated") from exc
        except BaseException:
            await db.rollback()
            raise
