"""Clients for reaching the session registry and call history."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

import httpx

from dialbridge.api.schemas import (
    ActiveCallsResponse,
    CallHistoryResponse,
    CallLogEntryRequest,
    CallSessionResponse,
    EndCallResponse,
    InitiateCallResponse,
)
from dialbridge.core.config import settings
from dialbridge.core.errors import (
    AuthenticationError,
    CallError,
    CallValidationError,
    HistoryUnavailableError,
    InvalidTransitionError,
    NotAuthenticatedError,
    ProvisioningFailedError,
    RegistryUnavailableError,
    SessionNotFoundError,
)
from dialbridge.services.call_session.models import (
    CallLogEntry,
    CallSession,
    CallStatus,
    CallType,
    Transport,
)
from dialbridge.services.call_session.registry import SessionRegistry
from dialbridge.services.persistence.history import HistorySink
from dialbridge.client.platform import Identity

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: CallValidationError,
    401: AuthenticationError,
    404: SessionNotFoundError,
    409: InvalidTransitionError,
    502: ProvisioningFailedError,
}


class RegistryClient(ABC):
    """Client view of the session registry."""

    @abstractmethod
    async def open_session(
        self, call_id: str, to_number: str, call_type: CallType, user_id: str
    ) -> CallSession:
        pass

    @abstractmethod
    async def mark_active(self, call_id: str) -> CallSession:
        pass

    @abstractmethod
    async def end_session(self, session: CallSession, duration: int) -> CallLogEntry:
        pass

    @abstractmethod
    async def list_active(self, user_id: str) -> List[CallSession]:
        """The user's live sessions as the registry sees them."""
        pass

    @abstractmethod
    async def abandon_session(self, call_id: str, user_id: str) -> None:
        """End a session this client gave up on. Unknown ids are ignored."""
        pass


class LocalRegistryClient(RegistryClient):
    """Registry client for a registry living in the same process."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def open_session(
        self, call_id: str, to_number: str, call_type: CallType, user_id: str
    ) -> CallSession:
        return await self.registry.open_session(to_number, call_type, user_id, call_id=call_id)

    async def mark_active(self, call_id: str) -> CallSession:
        return await self.registry.mark_active(call_id)

    async def end_session(self, session: CallSession, duration: int) -> CallLogEntry:
        return await self.registry.end_session(session.call_id, duration, user_id=session.user_id)

    async def list_active(self, user_id: str) -> List[CallSession]:
        return await self.registry.list_active(user_id=user_id)

    async def abandon_session(self, call_id: str, user_id: str) -> None:
        try:
            await self.registry.end_session(call_id, user_id=user_id, abandoned=True)
        except SessionNotFoundError:
            logger.debug(f"[API CLIENT] Abandoned call {call_id} was never stored")


class _ApiClient:
    """Shared plumbing for talking to the calls API over HTTP."""

    def __init__(
        self,
        identity: Identity,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.identity = identity
        self.client = client or httpx.AsyncClient(
            base_url=(base_url or settings.api_base_url).rstrip("/"),
            timeout=timeout or settings.client_timeout_seconds,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self.identity.get_token()
        if not token:
            raise NotAuthenticatedError()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = await self.client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[API CLIENT] {method} {path} failed: {type(e).__name__}: {str(e)}")
            raise RegistryUnavailableError(f"{type(e).__name__}: {str(e)}") from e

        if response.is_success:
            return response

        try:
            message = response.json().get("error")
        except ValueError:
            message = None
        message = message or f"HTTP {response.status_code}"
        error_class = _STATUS_ERRORS.get(response.status_code, RegistryUnavailableError)
        logger.warning(f"[API CLIENT] {method} {path} returned {response.status_code}: {message}")
        raise error_class(message)

    async def aclose(self) -> None:
        await self.client.aclose()


class HttpRegistryClient(_ApiClient, RegistryClient):
    """Registry client over the HTTP API."""

    async def open_session(
        self, call_id: str, to_number: str, call_type: CallType, user_id: str
    ) -> CallSession:
        response = await self._request(
            "POST",
            "/calls/initiate",
            json={"toPhoneNumber": to_number, "callType": call_type.value, "callId": call_id},
            timeout=settings.open_session_timeout_seconds(),
        )
        data = InitiateCallResponse.model_validate(response.json())
        return CallSession(
            call_id=data.call_id,
            to_number=to_number,
            call_type=call_type,
            user_id=user_id,
            status=data.status,
            transport=Transport.INTERNET,
            start_time=datetime.utcnow(),
            meeting_id=data.meeting_id,
            attendee_id=data.attendee_response.attendee_id,
            media_region=data.meeting_response.media_region,
            join_token=data.attendee_response.join_token,
        )

    async def mark_active(self, call_id: str) -> CallSession:
        response = await self._request("POST", f"/calls/{call_id}/active")
        return CallSessionResponse.model_validate(response.json()).to_session()

    async def end_session(self, session: CallSession, duration: int) -> CallLogEntry:
        response = await self._request(
            "POST", "/calls/end", json={"callId": session.call_id, "duration": duration}
        )
        data = EndCallResponse.model_validate(response.json())
        return CallLogEntry(
            user_id=session.user_id,
            to_number=session.to_number,
            duration=data.duration,
            call_type=session.call_type,
            status=CallStatus.COMPLETED.value,
            call_id=session.call_id,
            transport=Transport.INTERNET,
        )

    async def list_active(self, user_id: str) -> List[CallSession]:
        # The service scopes the list to the token's user
        response = await self._request("GET", "/calls/active")
        data = ActiveCallsResponse.model_validate(response.json())
        return [call.to_session() for call in data.active_calls]

    async def abandon_session(self, call_id: str, user_id: str) -> None:
        try:
            await self._request(
                "POST", "/calls/end", json={"callId": call_id, "abandoned": True}
            )
        except SessionNotFoundError:
            logger.debug(f"[API CLIENT] Abandoned call {call_id} was never stored")


class HttpHistoryClient(_ApiClient, HistorySink):
    """Call history over the HTTP API. Every failure is HistoryUnavailableError."""

    async def append(self, entry: CallLogEntry) -> CallLogEntry:
        payload = CallLogEntryRequest(
            to_number=entry.to_number,
            duration=entry.duration,
            call_type=entry.call_type,
            status=entry.status,
            timestamp=entry.timestamp,
            call_id=entry.call_id,
            transport=entry.transport,
        )
        try:
            await self._request(
                "POST", "/calls/history", json=payload.model_dump(mode="json", by_alias=True)
            )
        except CallError as e:
            raise HistoryUnavailableError(e.detail) from e
        return entry

    async def query(self, user_id: str, limit: Optional[int] = None) -> List[CallLogEntry]:
        """Get history for the signed-in user; the service derives the user from the token."""
        params = {"limit": limit or settings.history_default_limit}
        try:
            response = await self._request("GET", "/calls/history", params=params)
        except CallError as e:
            raise HistoryUnavailableError(e.detail) from e
        data = CallHistoryResponse.model_validate(response.json())
        return [call.to_entry() for call in data.calls]
