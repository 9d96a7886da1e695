"""In-memory meeting provider."""
import logging
import secrets
from typing import Dict, Optional

from dialbridge.core.errors import InvalidProviderRequestError, MeetingNotFoundError
from dialbridge.services.call_session.models import CallType
from dialbridge.services.meetings.base import AttendeeInfo, MeetingInfo, MeetingProvider

logger = logging.getLogger(__name__)


class InMemoryMeetingProvider(MeetingProvider):
    """Meeting provider that mints local handles instead of calling a backend.

    Used for local development and tests. It keeps the same contracts as the
    real provider: meeting creation is idempotent per request token and
    attendees can only join live meetings.
    """

    def __init__(self, media_region: str = "us-east-1"):
        self.media_region = media_region
        self._meetings: Dict[str, MeetingInfo] = {}
        self._tokens: Dict[str, str] = {}  # request token -> meeting id
        self.meetings_created = 0

    async def create_meeting(self, call_id: str, user_id: str) -> MeetingInfo:
        """Create a meeting, returning the existing one for a repeated token."""
        if not call_id or not user_id:
            raise InvalidProviderRequestError("call_id and user_id are required")

        existing_id = self._tokens.get(call_id)
        if existing_id and existing_id in self._meetings:
            logger.debug(f"[MEETINGS] Reusing meeting for token {call_id}")
            return self._meetings[existing_id]

        meeting = MeetingInfo(
            meeting_id=f"meeting-{call_id}",
            media_region=self.media_region,
            external_meeting_id=f"call-{user_id}-{call_id}",
        )
        self._meetings[meeting.meeting_id] = meeting
        self._tokens[call_id] = meeting.meeting_id
        self.meetings_created += 1
        logger.info(f"[MEETINGS] Meeting created: {meeting.meeting_id}")
        return meeting

    async def create_attendee(
        self, meeting_id: str, user_id: str, call_type: CallType = CallType.VOICE
    ) -> AttendeeInfo:
        """Add an attendee to a live meeting."""
        if meeting_id not in self._meetings:
            raise MeetingNotFoundError(f"Meeting {meeting_id} not found")
        attendee = AttendeeInfo(
            attendee_id=f"attendee-{user_id}",
            external_user_id=user_id,
            join_token=secrets.token_urlsafe(16),
        )
        logger.info(f"[MEETINGS] Attendee created: {attendee.attendee_id}")
        return attendee

    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting; unknown ids succeed silently."""
        if self._meetings.pop(meeting_id, None) is None:
            logger.debug(f"[MEETINGS] Meeting {meeting_id} already gone")
            return
        logger.info(f"[MEETINGS] Meeting deleted: {meeting_id}")

    def get_meeting(self, meeting_id: str) -> Optional[MeetingInfo]:
        """Get a live meeting by id."""
        return self._meetings.get(meeting_id)
