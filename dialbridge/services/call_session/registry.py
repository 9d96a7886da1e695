"""Session registry: authoritative table of in-flight call sessions."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from dialbridge.core.config import settings
from dialbridge.core.errors import (
    CallValidationError,
    HistoryUnavailableError,
    InvalidProviderRequestError,
    InvalidTransitionError,
    ProviderError,
    ProviderUnavailableError,
    ProvisioningFailedError,
    SessionNotFoundError,
)
from dialbridge.services.call_session.models import (
    CallLogEntry,
    CallSession,
    CallStatus,
    CallType,
    Transport,
)
from dialbridge.services.call_session.store import InMemorySessionStore, KeyedLock, SessionStore
from dialbridge.services.meetings.base import MeetingProvider
from dialbridge.services.persistence.history import HistorySink

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENT_CALL_STARTED = "call.started"
EVENT_CALL_ENDED = "call.ended"


class SessionRegistry:
    """Owns creation, status transitions and removal of call sessions.

    Every operation on a call id runs under that id's lock, so unrelated
    calls never wait on each other.
    """

    def __init__(
        self,
        provider: MeetingProvider,
        history: HistorySink,
        store: Optional[SessionStore] = None,
        provider_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        initial_backoff_ms: Optional[int] = None,
        max_backoff_ms: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.provider = provider
        self.history = history
        self.store = store or InMemorySessionStore()
        self.locks = KeyedLock()
        self.provider_timeout = provider_timeout or settings.provider_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.provider_max_attempts
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        self.initial_backoff_ms = (
            initial_backoff_ms if initial_backoff_ms is not None
            else settings.provider_initial_backoff_ms
        )
        self.max_backoff_ms = (
            max_backoff_ms if max_backoff_ms is not None else settings.provider_max_backoff_ms
        )
        self.backoff_base = settings.provider_backoff_base
        self.clock = clock

    async def _call_provider(
        self, operation: str, func: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        """Call the provider with a timeout, retrying transient failures."""
        last_error: Optional[ProviderError] = None
        for attempt in range(self.max_attempts):
            try:
                return await asyncio.wait_for(func(*args), timeout=self.provider_timeout)
            except asyncio.TimeoutError:
                last_error = ProviderUnavailableError(
                    f"{operation} timed out after {self.provider_timeout}s"
                )
            except (ProviderUnavailableError, InvalidProviderRequestError) as e:
                last_error = e

            if attempt < self.max_attempts - 1:
                backoff_ms = min(
                    self.initial_backoff_ms * (self.backoff_base ** attempt),
                    self.max_backoff_ms,
                )
                logger.warning(
                    f"[REGISTRY] {operation} failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {backoff_ms}ms - Error: {last_error.detail}"
                )
                await asyncio.sleep(backoff_ms / 1000)

        logger.error(
            f"[REGISTRY] {operation} failed after {self.max_attempts} attempts - "
            f"Error: {last_error.detail}"
        )
        raise last_error

    async def _release_meeting(self, meeting_id: str) -> None:
        """Best-effort meeting teardown; failures are logged only."""
        try:
            await self._call_provider("delete_meeting", self.provider.delete_meeting, meeting_id)
        except ProviderError as e:
            logger.error(
                f"[REGISTRY] Meeting teardown failed - MeetingId: {meeting_id}, "
                f"Error: {type(e).__name__}: {e.detail}"
            )

    async def _record(self, entry: CallLogEntry) -> None:
        """Append to history without letting its failure reach the call path."""
        try:
            await self.history.append(entry)
        except HistoryUnavailableError as e:
            logger.warning(
                f"[REGISTRY] History unavailable, entry dropped - Call: {entry.call_id}, "
                f"Error: {e.detail}"
            )

    async def open_session(
        self,
        to_number: Optional[str],
        call_type: Any = CallType.VOICE,
        user_id: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> CallSession:
        """
        Open a session and provision its meeting resources.

        Args:
            to_number: Destination phone number
            call_type: "voice" or "video"
            user_id: Verified id of the calling user
            call_id: Request token from the client; a repeated token returns
                the session created by the first request

        Returns:
            The stored session, status ``initiated``

        Raises:
            CallValidationError: bad input, or a call id whose session already ended
            ProvisioningFailedError: the provider could not allocate resources
        """
        to_number = (to_number or "").strip()
        if not to_number:
            raise CallValidationError("Phone number is required")
        if not user_id:
            raise CallValidationError("User id is required")
        try:
            call_type = CallType(call_type or CallType.VOICE)
        except ValueError:
            raise CallValidationError(f"Unsupported call type: {call_type}")

        call_id = call_id or str(uuid.uuid4())

        async with self.locks.hold(call_id):
            existing = await self.store.get(call_id)
            if existing:
                if existing.user_id != user_id:
                    raise CallValidationError("Call id already in use")
                logger.info(f"[REGISTRY] Repeated open for {call_id}, returning existing session")
                return existing
            if await self.store.get_ended(call_id):
                logger.warning(f"[REGISTRY] Open for already ended call {call_id} rejected")
                raise CallValidationError("Call id already used")

            session = CallSession(
                call_id=call_id,
                to_number=to_number,
                call_type=call_type,
                user_id=user_id,
                transport=Transport.INTERNET,
                start_time=self.clock(),
            )

            try:
                meeting = await self._call_provider(
                    "create_meeting", self.provider.create_meeting, call_id, user_id
                )
                try:
                    attendee = await self._call_provider(
                        "create_attendee",
                        self.provider.create_attendee,
                        meeting.meeting_id,
                        user_id,
                        call_type,
                    )
                except BaseException:
                    # Cancellation included; the meeting exists and must not leak
                    await asyncio.shield(self._release_meeting(meeting.meeting_id))
                    raise
            except ProviderError as e:
                session.status = CallStatus.FAILED
                session.end_time = self.clock()
                logger.error(
                    f"[REGISTRY] Provisioning failed - Call: {call_id}, User: {user_id}, "
                    f"Error: {type(e).__name__}: {e.detail}"
                )
                raise ProvisioningFailedError(f"Failed to initiate call: {e.detail}") from e

            session.meeting_id = meeting.meeting_id
            session.media_region = meeting.media_region
            session.attendee_id = attendee.attendee_id
            session.join_token = attendee.join_token
            await self.store.put(session)

        logger.info(
            f"[REGISTRY] Session opened - Call: {call_id}, User: {user_id}, "
            f"Meeting: {session.meeting_id}"
        )
        return session

    async def mark_active(self, call_id: str, user_id: Optional[str] = None) -> CallSession:
        """Move a session from ``initiated`` to ``active``.

        When ``user_id`` is given, sessions owned by someone else are reported
        as not found.
        """
        async with self.locks.hold(call_id):
            session = await self.store.get(call_id)
            if session is None or (user_id and session.user_id != user_id):
                logger.warning(f"[REGISTRY] mark_active for unknown call {call_id}")
                raise SessionNotFoundError(f"Call session {call_id} not found")
            if not session.can_transition_to(CallStatus.ACTIVE):
                logger.warning(
                    f"[REGISTRY] Invalid transition {session.status} -> active for {call_id}"
                )
                raise InvalidTransitionError(
                    f"Call {call_id} cannot become active from {session.status}"
                )
            session.status = CallStatus.ACTIVE
            await self.store.put(session)

        logger.info(f"[REGISTRY] Session active - Call: {call_id}")
        return session

    async def end_session(
        self,
        call_id: str,
        duration: Optional[int] = None,
        user_id: Optional[str] = None,
        abandoned: bool = False,
    ) -> CallLogEntry:
        """
        End a live session, release its meeting and record it in history.

        Args:
            call_id: Session to end
            duration: Call length in seconds as measured by the client; when
                omitted the elapsed time since the session started is used
            user_id: When given, only this user's session may be ended
            abandoned: The client gave up on the session (it fell back to a
                carrier call or no longer holds it). A session that never
                connected is then recorded as ``failed`` with duration 0.

        Returns:
            The history entry for the call
        """
        if duration is not None and duration < 0:
            raise CallValidationError("Duration must not be negative")

        async with self.locks.hold(call_id):
            session = await self.store.get(call_id)
            if session is None or (user_id and session.user_id != user_id):
                logger.warning(f"[REGISTRY] end_session for unknown call {call_id}")
                raise SessionNotFoundError(f"Call session {call_id} not found")

            final_status = CallStatus.COMPLETED
            if abandoned and session.status == CallStatus.INITIATED:
                final_status = CallStatus.FAILED
            if not session.can_transition_to(final_status):
                raise InvalidTransitionError(
                    f"Call {call_id} cannot become {final_status} from {session.status}"
                )

            if session.meeting_id:
                await self._release_meeting(session.meeting_id)

            session.end_time = self.clock()
            if final_status == CallStatus.FAILED:
                session.duration = 0
            elif duration is not None:
                session.duration = duration
            else:
                session.duration = session.elapsed_seconds(session.end_time)
            session.status = final_status
            await self.store.delete(call_id)
            await self.store.remember_ended(session)

        logger.info(
            f"[REGISTRY] Session ended ({final_status}) - Call: {call_id}, "
            f"Duration: {session.duration}s"
        )
        entry = CallLogEntry.from_session(session, final_status.value)
        await self._record(entry)
        return entry

    async def get_session(self, call_id: str) -> Optional[CallSession]:
        """Get a live session by id."""
        return await self.store.get(call_id)

    async def list_active(self, user_id: Optional[str] = None) -> List[CallSession]:
        """Snapshot of live sessions, optionally for one user."""
        sessions = await self.store.list()
        if user_id is not None:
            sessions = [s for s in sessions if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.start_time)

    async def handle_provider_event(
        self, event_type: str, call_id: Optional[str], data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Apply an asynchronous provider notification.

        Delivery is at-least-once, so an end event for a session that is
        already gone is ignored. Start events are logged only; sessions become
        active through ``mark_active``.

        Returns:
            True if the event changed registry state
        """
        data = data or {}
        if event_type == EVENT_CALL_ENDED:
            if not call_id:
                logger.warning("[REGISTRY] call.ended event without callId ignored")
                return False
            duration = data.get("duration")
            if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
                duration = None
            try:
                await self.end_session(call_id, duration)
            except SessionNotFoundError:
                logger.info(f"[REGISTRY] call.ended for {call_id} already applied, ignoring")
                return False
            return True

        if event_type == EVENT_CALL_STARTED:
            logger.info(f"[REGISTRY] Call {call_id} started (provider notification)")
        else:
            logger.info(f"[REGISTRY] Unknown event type: {event_type}")
        return False
