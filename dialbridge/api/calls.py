"""Call session API endpoints."""
import hmac
import logging
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from dialbridge.api.auth import require_user
from dialbridge.api.schemas import (
    ActiveCallsResponse,
    CallHistoryResponse,
    CallLogEntryRequest,
    CallLogEntryResponse,
    CallSessionResponse,
    EndCallRequest,
    EndCallResponse,
    InitiateCallRequest,
    InitiateCallResponse,
    WebhookAck,
    WebhookEvent,
)
from dialbridge.core.config import settings
from dialbridge.core.dependencies import get_history_recorder, get_session_registry
from dialbridge.core.errors import AuthenticationError, CallError, CallValidationError
from dialbridge.services.call_session.registry import SessionRegistry
from dialbridge.services.persistence.history import HistorySink

router = APIRouter(prefix="/calls")
logger = logging.getLogger(__name__)


def _error_response(message: str, e: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": message, "details": str(e)})


async def verify_webhook_secret(request: Request) -> None:
    """Check the shared secret on provider notifications. Rejects everything while unset."""
    if not settings.webhook_secret:
        logger.warning("[WEBHOOK] Rejected: no webhook secret configured")
        raise AuthenticationError("Webhook secret not configured")
    supplied = request.headers.get("x-webhook-secret", "")
    if not hmac.compare_digest(supplied.encode(), settings.webhook_secret.encode()):
        raise AuthenticationError("Invalid webhook secret")


@router.post("/initiate", response_model=InitiateCallResponse)
async def initiate_call(
    body: InitiateCallRequest,
    user_id: str = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Open a session and provision its meeting."""
    logger.info(
        f"[CALLS API] Initiate requested - User: {user_id}, "
        f"To: {body.to_phone_number}, Type: {body.call_type}"
    )
    try:
        session = await registry.open_session(
            body.to_phone_number, body.call_type, user_id, call_id=body.call_id
        )
    except CallError:
        raise
    except Exception as e:
        logger.error(
            f"[CALLS API] Call initiation error - User: {user_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return _error_response("Failed to initiate call", e)

    return InitiateCallResponse.from_session(session)


@router.post("/end", response_model=EndCallResponse)
async def end_call(
    body: EndCallRequest,
    user_id: str = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """End a session and record it in history."""
    if not body.call_id:
        raise CallValidationError("Call ID is required")

    logger.info(
        f"[CALLS API] End requested - User: {user_id}, Call: {body.call_id}, "
        f"Duration: {body.duration}"
    )
    try:
        entry = await registry.end_session(
            body.call_id, body.duration, user_id=user_id, abandoned=body.abandoned
        )
    except CallError:
        raise
    except Exception as e:
        logger.error(
            f"[CALLS API] End call error - Call: {body.call_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return _error_response("Failed to end call", e)

    return EndCallResponse(duration=entry.duration, call_id=body.call_id)


@router.post("/{call_id}/active", response_model=CallSessionResponse)
async def mark_call_active(
    call_id: str,
    user_id: str = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Mark a session as connected."""
    session = await registry.mark_active(call_id, user_id=user_id)
    return CallSessionResponse.from_session(session)


@router.get("/active", response_model=ActiveCallsResponse)
async def list_active_calls(
    user_id: str = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """List the caller's live sessions."""
    sessions = await registry.list_active(user_id=user_id)
    logger.debug(f"[CALLS API] {len(sessions)} active calls for {user_id}")
    return ActiveCallsResponse(
        active_calls=[CallSessionResponse.from_session(s) for s in sessions]
    )


@router.post("/webhook", response_model=WebhookAck, dependencies=[Depends(verify_webhook_secret)])
async def provider_webhook(
    event: WebhookEvent,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Receive provider notifications.

    Delivery is at-least-once; repeated events are acknowledged without effect.
    """
    logger.info(
        f"[WEBHOOK] Event received - Type: {event.event_type}, Call: {event.call_id}"
    )
    try:
        await registry.handle_provider_event(event.event_type, event.call_id, event.data)
    except Exception as e:
        logger.error(
            f"[WEBHOOK] Webhook processing failed - Type: {event.event_type}, "
            f"Call: {event.call_id}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
    return WebhookAck()


@router.get("/history", response_model=CallHistoryResponse)
async def get_call_history(
    limit: int = Query(default=settings.history_default_limit, ge=1, le=500),
    user_id: str = Depends(require_user),
    history: HistorySink = Depends(get_history_recorder),
):
    """Get the caller's call history, most recent first."""
    entries = await history.query(user_id, limit)
    return CallHistoryResponse(calls=[CallLogEntryResponse.from_entry(e) for e in entries])


@router.post("/history", response_model=CallLogEntryResponse)
async def record_call(
    body: CallLogEntryRequest,
    user_id: str = Depends(require_user),
    history: HistorySink = Depends(get_history_recorder),
):
    """Record a call the client completed without the registry (carrier dial)."""
    entry = await history.append(body.to_entry(user_id))
    return CallLogEntryResponse.from_entry(entry)
