"""Client-side call orchestration with carrier-dial fallback."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

import httpx

from dialbridge.client.events import CallEvent, CallPhase, EventEmitter, Listener
from dialbridge.client.platform import Dialer, HttpReachabilityProbe, Identity, ReachabilityProbe
from dialbridge.client.registry_client import HttpHistoryClient, HttpRegistryClient, RegistryClient
from dialbridge.core.config import settings
from dialbridge.core.errors import (
    CallInProgressError,
    CallValidationError,
    DialNotSupportedError,
    HistoryUnavailableError,
    InvalidInputError,
    NotAuthenticatedError,
    RegistryUnavailableError,
    SessionNotFoundError,
)
from dialbridge.services.call_session.models import (
    LOG_STATUS_PSTN_INITIATED,
    CallLogEntry,
    CallSession,
    CallStatus,
    CallType,
    Transport,
)
from dialbridge.services.persistence.history import HistorySink

logger = logging.getLogger(__name__)


class CallOrchestrator:
    """
    Places calls for one signed-in user, one call at a time.

    A call attempt goes through reachability check, then either provisioning
    an internet session with the registry or, when that is not possible,
    exactly one carrier-dial fallback. The cached session is for display only;
    the registry's copy wins whenever the two disagree.
    """

    def __init__(
        self,
        registry: RegistryClient,
        history: HistorySink,
        reachability: ReachabilityProbe,
        dialer: Dialer,
        identity: Identity,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.registry = registry
        self.history = history
        self.reachability = reachability
        self.dialer = dialer
        self.identity = identity
        self.clock = clock
        self._active_call: Optional[CallSession] = None
        self._pending = False
        self._phase = CallPhase.IDLE
        self._events = EventEmitter()

    @property
    def phase(self) -> CallPhase:
        return self._phase

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Receive one event per phase change; returns an unsubscribe function."""
        return self._events.subscribe(listener)

    def _set_phase(
        self,
        phase: CallPhase,
        session: Optional[CallSession] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._phase = phase
        self._events.emit(
            CallEvent(
                phase=phase,
                session=session.model_copy() if session else None,
                error=f"{type(error).__name__}: {error}" if error else None,
            )
        )

    def get_active_call(self) -> Optional[CallSession]:
        """Get the locally cached call, if any."""
        return self._active_call

    async def _is_reachable(self) -> bool:
        try:
            return await self.reachability.is_reachable()
        except Exception as e:
            logger.warning(f"[ORCHESTRATOR] Reachability check failed: {type(e).__name__}: {str(e)}")
            return False

    async def _record(self, entry: CallLogEntry) -> None:
        """Best-effort history write."""
        try:
            await self.history.append(entry)
        except HistoryUnavailableError as e:
            logger.warning(
                f"[ORCHESTRATOR] History unavailable, entry dropped - Call: {entry.call_id}, "
                f"Error: {e.detail}"
            )

    async def _abandon_remote(self, call_id: str, user_id: str) -> None:
        """Best-effort end of a registry session this client does not hold."""
        try:
            await self.registry.abandon_session(call_id, user_id)
        except Exception as e:
            logger.warning(
                f"[ORCHESTRATOR] Could not release server session {call_id}, "
                f"reconcile will retry - Error: {type(e).__name__}: {str(e)}"
            )
            return
        logger.info(f"[ORCHESTRATOR] Released server session {call_id}")

    async def initiate_call(self, to_number: str, call_type: CallType = CallType.VOICE) -> CallSession:
        """
        Place a call, over the internet when possible, by carrier otherwise.

        Args:
            to_number: Destination phone number
            call_type: "voice" or "video"

        Returns:
            The new active session

        Raises:
            InvalidInputError: empty number or unknown call type
            CallInProgressError: a call is active or being set up
            NotAuthenticatedError: nobody is signed in
            DialNotSupportedError: fallback needed but the device cannot dial
        """
        to_number = (to_number or "").strip()
        if not to_number:
            raise InvalidInputError()
        if self._active_call is not None or self._pending:
            raise CallInProgressError()
        try:
            call_type = CallType(call_type)
        except ValueError:
            raise InvalidInputError(f"Unsupported call type: {call_type}")
        user_id = self.identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError()

        self._pending = True
        call_id = str(uuid.uuid4())
        abandon_remote = False
        try:
            self._set_phase(CallPhase.CHECKING_REACHABILITY)
            if await self._is_reachable():
                self._set_phase(CallPhase.PROVISIONING)
                try:
                    session = await self.registry.open_session(call_id, to_number, call_type, user_id)
                except CallValidationError:
                    raise
                except Exception as e:
                    # Gave up waiting; the server may still finish opening this call id
                    abandon_remote = isinstance(e, RegistryUnavailableError)
                    logger.warning(
                        f"[ORCHESTRATOR] Internet call failed, falling back to carrier - "
                        f"Call: {call_id}, Error: {type(e).__name__}: {str(e)}"
                    )
                else:
                    self._active_call = session
                    self._set_phase(CallPhase.CONNECTED, session)
                    logger.info(f"[ORCHESTRATOR] Calling {to_number} via internet - Call: {call_id}")
                    return session
            else:
                logger.info("[ORCHESTRATOR] No network path, using carrier dial")

            try:
                return await self._dial_fallback(call_id, to_number, user_id)
            finally:
                if abandon_remote:
                    await asyncio.shield(self._abandon_remote(call_id, user_id))
        except BaseException as e:
            # Covers cancellation too: nothing cached means back to idle
            if self._active_call is None:
                self._set_phase(CallPhase.IDLE, error=e)
            raise
        finally:
            self._pending = False

    async def _dial_fallback(self, call_id: str, to_number: str, user_id: str) -> CallSession:
        """Hand the number to the phone app and log the attempt."""
        self._set_phase(CallPhase.DIALING_FALLBACK)
        url = f"tel:{to_number}"
        if not await self.dialer.can_dial(url):
            logger.error(f"[ORCHESTRATOR] Device cannot dial {url}")
            raise DialNotSupportedError()

        # No awaits between issuing the intent and caching the session
        self.dialer.dial(url)
        session = CallSession(
            call_id=call_id,
            to_number=to_number,
            call_type=CallType.VOICE,
            user_id=user_id,
            transport=Transport.PSTN,
            start_time=self.clock(),
        )
        self._active_call = session
        self._set_phase(CallPhase.CONNECTED, session)
        logger.info(f"[ORCHESTRATOR] Calling {to_number} via cellular network - Call: {call_id}")

        entry = CallLogEntry(
            user_id=user_id,
            to_number=to_number,
            duration=0,
            call_type=CallType.VOICE,
            status=LOG_STATUS_PSTN_INITIATED,
            timestamp=session.start_time,
            call_id=call_id,
            transport=Transport.PSTN,
        )
        await asyncio.shield(self._record(entry))
        return session

    def _discard_active_call(self, reason: str) -> None:
        session = self._active_call
        self._active_call = None
        logger.warning(f"[ORCHESTRATOR] Dropping cached call {session.call_id}: {reason}")
        self._set_phase(CallPhase.TERMINATED, session)
        self._set_phase(CallPhase.IDLE)

    async def mark_connected(self) -> CallSession:
        """Tell the registry the active call connected."""
        session = self._active_call
        if session is None:
            raise SessionNotFoundError("No active call")

        if session.transport == Transport.PSTN:
            session.status = CallStatus.ACTIVE
            return session

        try:
            remote = await self.registry.mark_active(session.call_id)
        except SessionNotFoundError:
            self._discard_active_call("unknown to the registry")
            raise
        session.status = remote.status
        return session

    async def end_call(self) -> Optional[CallLogEntry]:
        """
        Hang up the active call.

        Ending when nothing is active is a no-op. The cached call is cleared
        even when the registry could not be told, so the UI never stays stuck
        on a call the user already ended.
        """
        session = self._active_call
        if session is None:
            return None

        duration = session.elapsed_seconds(self.clock())
        error: Optional[BaseException] = None
        try:
            if session.transport == Transport.INTERNET:
                entry = await self.registry.end_session(session, duration)
            else:
                entry = CallLogEntry(
                    user_id=session.user_id,
                    to_number=session.to_number,
                    duration=duration,
                    call_type=session.call_type,
                    status=CallStatus.COMPLETED.value,
                    timestamp=self.clock(),
                    call_id=session.call_id,
                    transport=Transport.PSTN,
                )
                await self._record(entry)
        except BaseException as e:
            error = e
            logger.error(
                f"[ORCHESTRATOR] End call error - Call: {session.call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            raise
        finally:
            self._active_call = None
            self._set_phase(CallPhase.TERMINATED, session, error)
            self._set_phase(CallPhase.IDLE)

        logger.info(f"[ORCHESTRATOR] Call ended - Call: {session.call_id}, Duration: {duration}s")
        return entry

    async def reconcile(self) -> Optional[CallSession]:
        """
        Align the cached call with the registry.

        The registry's copy of the cached internet call replaces the cache, and
        a cached internet call the registry no longer knows is dropped. Any
        other live registry session of this user is ended, since the cache
        holds the user's only call. Carrier calls are never in the registry.
        """
        session = self._active_call
        user_id = self.identity.current_user_id()
        if not user_id:
            return session

        try:
            remote_sessions = await self.registry.list_active(user_id)
        except Exception as e:
            logger.warning(f"[ORCHESTRATOR] Cannot reconcile right now: {type(e).__name__}: {str(e)}")
            return session

        held_id = session.call_id if session and session.transport == Transport.INTERNET else None
        for orphan in remote_sessions:
            if orphan.call_id != held_id:
                logger.warning(f"[ORCHESTRATOR] Server holds untracked call {orphan.call_id}, ending it")
                await self._abandon_remote(orphan.call_id, user_id)

        if held_id is None:
            return session

        remote = next((s for s in remote_sessions if s.call_id == held_id), None)
        if remote is None:
            self._discard_active_call("ended on the server")
            return None

        remote.join_token = session.join_token
        self._active_call = remote
        return remote

    async def get_call_history(self, limit: Optional[int] = None) -> List[CallLogEntry]:
        """Get the signed-in user's call history; empty when unavailable."""
        user_id = self.identity.current_user_id()
        if not user_id:
            return []
        try:
            return await self.history.query(user_id, limit or settings.history_default_limit)
        except HistoryUnavailableError as e:
            logger.error(f"[ORCHESTRATOR] Get call history error: {e.detail}")
            return []


def build_http_orchestrator(
    identity: Identity,
    dialer: Dialer,
    base_url: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CallOrchestrator:
    """Wire an orchestrator that talks to the calls API over one HTTP client."""
    client = http_client or httpx.AsyncClient(
        base_url=(base_url or settings.api_base_url).rstrip("/"),
        timeout=settings.client_timeout_seconds,
    )
    return CallOrchestrator(
        registry=HttpRegistryClient(identity, client=client),
        history=HttpHistoryClient(identity, client=client),
        reachability=HttpReachabilityProbe(client=client),
        dialer=dialer,
        identity=identity,
    )
