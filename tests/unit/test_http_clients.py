"""Unit tests for the HTTP registry and history clients."""
import httpx
import pytest

from dialbridge.client.events import CallPhase
from dialbridge.client.orchestrator import build_http_orchestrator
from dialbridge.client.platform import HttpReachabilityProbe, TokenIdentity
from dialbridge.client.registry_client import HttpHistoryClient, HttpRegistryClient
from dialbridge.core.config import settings
from dialbridge.core.errors import (
    AuthenticationError,
    CallValidationError,
    HistoryUnavailableError,
    InvalidTransitionError,
    NotAuthenticatedError,
    ProvisioningFailedError,
    RegistryUnavailableError,
    SessionNotFoundError,
)
from dialbridge.main import app
from dialbridge.services.call_session.models import CallLogEntry, CallStatus, CallType, Transport


@pytest.fixture
async def api_client(override_dependencies):
    """HTTP client routed straight into the app."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")


class TestHttpOrchestrator:
    """Test the orchestrator end to end over HTTP."""

    @pytest.mark.asyncio
    async def test_internet_call_round_trip(self, api_client, identity, dialer, registry, history):
        orchestrator = build_http_orchestrator(identity, dialer, http_client=api_client)

        session = await orchestrator.initiate_call("+15551234567", CallType.VIDEO)
        assert session.transport == Transport.INTERNET
        assert session.join_token
        assert (await registry.get_session(session.call_id)).user_id == "user-a"

        connected = await orchestrator.mark_connected()
        assert connected.status == CallStatus.ACTIVE

        active = await orchestrator.registry.list_active("user-a")
        assert [s.call_id for s in active] == [session.call_id]

        entry = await orchestrator.end_call()

        assert entry.call_id == session.call_id
        assert await registry.list_active() == []
        assert [e.call_id for e in history.entries] == [session.call_id]
        assert [e.call_id for e in await orchestrator.get_call_history()] == [session.call_id]
        assert orchestrator.phase == CallPhase.IDLE

    @pytest.mark.asyncio
    async def test_provisioning_failure_falls_back(
        self, api_client, identity, dialer, meeting_provider, history
    ):
        meeting_provider.meeting_failures = 100
        orchestrator = build_http_orchestrator(identity, dialer, http_client=api_client)

        session = await orchestrator.initiate_call("+15551234567")

        assert session.transport == Transport.PSTN
        assert dialer.dialed == ["tel:+15551234567"]
        assert [(e.status, e.transport) for e in history.entries] == [
            ("pstn_initiated", Transport.PSTN)
        ]

    @pytest.mark.asyncio
    async def test_service_unreachable_dials_carrier(self, identity, dialer):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        orchestrator = build_http_orchestrator(identity, dialer, http_client=mock_client(handler))

        session = await orchestrator.initiate_call("+15557654321")

        # History write failed too, but the call still went through
        assert session.transport == Transport.PSTN
        assert dialer.dialed == ["tel:+15557654321"]
        assert await orchestrator.get_call_history() == []


class TestHttpRegistryClient:
    """Test status code mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_class",
        [
            (400, CallValidationError),
            (401, AuthenticationError),
            (404, SessionNotFoundError),
            (409, InvalidTransitionError),
            (502, ProvisioningFailedError),
            (500, RegistryUnavailableError),
            (503, RegistryUnavailableError),
        ],
    )
    async def test_error_statuses(self, identity, status, error_class):
        client = HttpRegistryClient(
            identity,
            client=mock_client(lambda request: httpx.Response(status, json={"error": "nope"})),
        )

        with pytest.raises(error_class) as exc_info:
            await client.mark_active("call-1")

        assert exc_info.value.detail == "nope"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, identity):
        client = HttpRegistryClient(
            identity, client=mock_client(lambda request: httpx.Response(500, text="oops"))
        )

        with pytest.raises(RegistryUnavailableError) as exc_info:
            await client.list_active("user-a")

        assert exc_info.value.detail == "HTTP 500"

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, identity):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json={"activeCalls": []})

        client = HttpRegistryClient(identity, client=mock_client(handler))

        assert await client.list_active("user-a") == []
        assert seen["authorization"] == f"Bearer {identity.token}"

    @pytest.mark.asyncio
    async def test_open_waits_longer_than_provider_budget(self, identity):
        """Test the client does not give up while the service can still be provisioning."""
        seen = {}

        def handler(request):
            seen["timeout"] = request.extensions["timeout"]
            return httpx.Response(503, json={"error": "busy"})

        client = HttpRegistryClient(identity, client=mock_client(handler))

        with pytest.raises(RegistryUnavailableError):
            await client.open_session("call-1", "+15551234567", CallType.VOICE, "user-a")

        assert seen["timeout"]["read"] == settings.open_session_timeout_seconds()
        assert seen["timeout"]["read"] > settings.provider_budget_seconds()

    @pytest.mark.asyncio
    async def test_signed_out(self):
        client = HttpRegistryClient(
            TokenIdentity(), client=mock_client(lambda request: httpx.Response(200))
        )

        with pytest.raises(NotAuthenticatedError):
            await client.list_active("user-a")


class TestHttpHistoryClient:
    """Test history access over HTTP."""

    @pytest.mark.asyncio
    async def test_failures_become_history_unavailable(self, identity):
        client = HttpHistoryClient(
            identity, client=mock_client(lambda request: httpx.Response(503, json={"error": "down"}))
        )
        entry = CallLogEntry(user_id="user-a", to_number="+15551234567", status="completed")

        with pytest.raises(HistoryUnavailableError):
            await client.append(entry)
        with pytest.raises(HistoryUnavailableError):
            await client.query("user-a")

    @pytest.mark.asyncio
    async def test_append_posts_entry(self, api_client, identity, history):
        client = HttpHistoryClient(identity, client=api_client)
        entry = CallLogEntry(
            user_id="user-a",
            to_number="+15551234567",
            duration=12,
            status="completed",
            call_id="c-9",
            transport=Transport.PSTN,
        )

        await client.append(entry)

        assert len(history.entries) == 1
        stored = history.entries[0]
        assert (stored.call_id, stored.duration, stored.transport) == ("c-9", 12, Transport.PSTN)


class TestReachabilityProbe:
    """Test the health probe."""

    @pytest.mark.asyncio
    async def test_healthy(self, api_client):
        assert await HttpReachabilityProbe(client=api_client).is_reachable() is True

    @pytest.mark.asyncio
    async def test_unhealthy_status(self):
        probe = HttpReachabilityProbe(client=mock_client(lambda request: httpx.Response(503)))

        assert await probe.is_reachable() is False

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        probe = HttpReachabilityProbe(client=mock_client(handler))

        assert await probe.is_reachable() is False
