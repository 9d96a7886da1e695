"""Meeting provider interface."""
from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel

from dialbridge.services.call_session.models import CallType


class MeetingInfo(BaseModel):
    """Remote meeting allocated for one call."""

    meeting_id: str
    media_region: str
    external_meeting_id: Optional[str] = None


class AttendeeInfo(BaseModel):
    """Attendee record joined to a meeting."""

    attendee_id: str
    external_user_id: str
    join_token: Optional[str] = None


class MeetingProvider(ABC):
    """Abstract base class for conferencing resource providers.

    Implementations hold no local call state. Every method is a request to an
    external capability and may block, so callers bound them with a timeout.
    """

    @abstractmethod
    async def create_meeting(self, call_id: str, user_id: str) -> MeetingInfo:
        """Create a meeting, using ``call_id`` as the idempotency token."""
        pass

    @abstractmethod
    async def create_attendee(
        self, meeting_id: str, user_id: str, call_type: CallType = CallType.VOICE
    ) -> AttendeeInfo:
        """Add an attendee to a live meeting."""
        pass

    @abstractmethod
    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting. Unknown meetings are treated as already deleted."""
        pass
