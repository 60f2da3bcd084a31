"""
Repository for call request database operations.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_queue.calls.models import (
    ACTIVE_STATUSES,
    CallKind,
    CallRequest,
    CallRequestRecord,
    CallRequestStatus,
)
from hospital_queue.shared.exceptions import StoreError
from hospital_queue.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class CallRequestRepository:
    """SQL implementation of ``CallRequestStore``.

    Every operation runs in its own transaction and is bounded by
    ``timeout_seconds`` so a hung database cannot wedge the sequencer.
    """

    def __init__(self, session_scope: SessionScope, timeout_seconds: float = 5.0) -> None:
        """Initialize repository.

        Args:
            session_scope: Factory returning a transactional session context.
            timeout_seconds: Upper bound for each operation.
        """
        self._session_scope = session_scope
        self._timeout = timeout_seconds

    async def _run(self, op: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _in_session() -> T:
            async with self._session_scope() as session:
                return await fn(session)

        try:
            return await asyncio.wait_for(_in_session(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                f"Call request store timed out during {op}",
                details={"timeout_seconds": self._timeout},
            ) from exc

    async def insert(self, request: CallRequest) -> CallRequest:
        async def _insert(session: AsyncSession) -> CallRequest:
            record = CallRequestRecord.from_domain(request)
            session.add(record)
            await session.flush()
            return record.to_domain()

        return await self._run("insert", _insert)

    async def find_next_pending(self) -> CallRequest | None:
        stmt = (
            select(CallRequestRecord)
            .where(CallRequestRecord.status == CallRequestStatus.PENDING.value)
            .order_by(
                CallRequestRecord.priority_rank.desc(),
                CallRequestRecord.requested_at.asc(),
            )
            .limit(1)
        )

        async def _find(session: AsyncSession) -> CallRequest | None:
            record = (await session.execute(stmt)).scalar_one_or_none()
            return record.to_domain() if record is not None else None

        return await self._run("find_next_pending", _find)

    async def find_active(self, ticket_id: str, kind: CallKind) -> CallRequest | None:
        stmt = (
            select(CallRequestRecord)
            .where(
                CallRequestRecord.ticket_id == ticket_id,
                CallRequestRecord.kind == kind.value,
                CallRequestRecord.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(CallRequestRecord.requested_at.asc())
            .limit(1)
        )

        async def _find(session: AsyncSession) -> CallRequest | None:
            record = (await session.execute(stmt)).scalar_one_or_none()
            return record.to_domain() if record is not None else None

        return await self._run("find_active", _find)

    async def mark_processing(self, request_id: str, at: datetime) -> None:
        stmt = (
            update(CallRequestRecord)
            .where(CallRequestRecord.id == request_id)
            .values(status=CallRequestStatus.PROCESSING.value, processing_started_at=at)
        )

        async def _mark(session: AsyncSession) -> None:
            await session.execute(stmt)

        await self._run("mark_processing", _mark)

    async def mark_failed(self, request_id: str, error: str) -> None:
        stmt = (
            update(CallRequestRecord)
            .where(CallRequestRecord.id == request_id)
            .values(status=CallRequestStatus.FAILED.value, error=error)
        )

        async def _mark(session: AsyncSession) -> None:
            await session.execute(stmt)

        await self._run("mark_failed", _mark)

    async def requeue_processing(self) -> int:
        stmt = (
            update(CallRequestRecord)
            .where(CallRequestRecord.status == CallRequestStatus.PROCESSING.value)
            .values(status=CallRequestStatus.PENDING.value, processing_started_at=None)
        )

        async def _requeue(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            return int(result.rowcount or 0)

        return await self._run("requeue_processing", _requeue)

    async def delete(self, request_id: str) -> None:
        stmt = delete(CallRequestRecord).where(CallRequestRecord.id == request_id)

        async def _delete(session: AsyncSession) -> None:
            await session.execute(stmt)

        await self._run("delete", _delete)

    async def count_by_status(self, status: CallRequestStatus) -> int:
        stmt = (
            select(func.count())
            .select_from(CallRequestRecord)
            .where(CallRequestRecord.status == status.value)
        )

        async def _count(session: AsyncSession) -> int:
            return int((await session.execute(stmt)).scalar_one())

        return await self._run("count_by_status", _count)

    async def purge_expired(self, older_than: datetime) -> int:
        stmt = delete(CallRequestRecord).where(CallRequestRecord.created_at < older_than)

        async def _purge(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            return int(result.rowcount or 0)

        purged = await self._run("purge_expired", _purge)
        if purged:
            logger.info(
                "Purged expired call requests",
                extra={"purged": purged, "older_than": older_than.isoformat()},
            )
        return purged
