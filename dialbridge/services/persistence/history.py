"""Call history persistence service."""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional
from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dialbridge.core.config import settings
from dialbridge.core.errors import HistoryUnavailableError
from dialbridge.db.models import CallLog
from dialbridge.services.call_session.models import CallLogEntry

logger = logging.getLogger(__name__)


class HistorySink(ABC):
    """Anything call history can be written to and read from."""

    @abstractmethod
    async def append(self, entry: CallLogEntry) -> CallLogEntry:
        pass

    @abstractmethod
    async def query(self, user_id: str, limit: Optional[int] = None) -> List[CallLogEntry]:
        pass


class HistoryRecorder(HistorySink):
    """Append-only call log backed by the ``call_logs`` table.

    Each operation opens its own short-lived database session, so one recorder
    can be shared by every request for the life of the process.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, entry: CallLogEntry) -> CallLogEntry:
        """Write one log entry."""
        row = CallLog(
            user_id=entry.user_id,
            call_id=entry.call_id,
            to_number=entry.to_number,
            duration=entry.duration,
            call_type=entry.call_type.value,
            status=entry.status,
            transport=entry.transport.value,
            timestamp=entry.timestamp,
        )
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                f"[HISTORY] Failed to append entry - User: {entry.user_id}, "
                f"Call: {entry.call_id}, Error: {type(e).__name__}: {str(e)}"
            )
            raise HistoryUnavailableError(f"Could not record call: {str(e)}") from e

        logger.info(
            f"[HISTORY] Recorded {entry.status} call - User: {entry.user_id}, "
            f"To: {entry.to_number}, Duration: {entry.duration}s"
        )
        return entry

    async def query(self, user_id: str, limit: Optional[int] = None) -> List[CallLogEntry]:
        """Get a user's call history, most recent first."""
        if limit is None:
            limit = settings.history_default_limit
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(CallLog)
                    .where(CallLog.user_id == user_id)
                    .order_by(desc(CallLog.timestamp), desc(CallLog.id))
                    .limit(limit)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                f"[HISTORY] Failed to query history - User: {user_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            raise HistoryUnavailableError(f"Could not load call history: {str(e)}") from e

        return [CallLogEntry.model_validate(row) for row in rows]
