"""FastAPI dependencies and component construction."""
from typing import Optional
from fastapi import Request

from dialbridge.core.config import settings
from dialbridge.services.call_session.registry import SessionRegistry
from dialbridge.services.meetings.base import MeetingProvider
from dialbridge.services.persistence.history import HistorySink


def create_meeting_provider(name: Optional[str] = None) -> MeetingProvider:
    """Build the configured meeting provider."""
    name = (name or settings.meeting_provider).lower()
    if name == "chime":
        from dialbridge.services.meetings.chime import ChimeMeetingProvider

        return ChimeMeetingProvider()
    if name == "in_memory":
        from dialbridge.services.meetings.in_memory import InMemoryMeetingProvider

        return InMemoryMeetingProvider(media_region=settings.aws_region)
    raise ValueError(f"Unknown meeting provider: {name}")


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the process-wide session registry built at startup."""
    return request.app.state.registry


def get_history_recorder(request: Request) -> HistorySink:
    """Get the history recorder built at startup."""
    return request.app.state.history
