"""Amazon Chime SDK meeting provider."""
import asyncio
import logging
import time
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dialbridge.core.config import settings
from dialbridge.core.errors import (
    InvalidProviderRequestError,
    MeetingNotFoundError,
    ProviderError,
    ProviderUnavailableError,
)
from dialbridge.services.call_session.models import CallType
from dialbridge.services.meetings.base import AttendeeInfo, MeetingInfo, MeetingProvider

logger = logging.getLogger(__name__)

_INVALID_REQUEST_CODES = {"BadRequestException", "ValidationException"}


def _map_client_error(error: ClientError) -> ProviderError:
    """Translate a botocore ClientError into a provider error."""
    code = error.response.get("Error", {}).get("Code", "")
    message = error.response.get("Error", {}).get("Message", str(error))
    if code == "NotFoundException":
        return MeetingNotFoundError(message)
    if code in _INVALID_REQUEST_CODES:
        return InvalidProviderRequestError(message)
    return ProviderUnavailableError(f"{code}: {message}")


class ChimeMeetingProvider(MeetingProvider):
    """Meeting provider backed by the Chime SDK Meetings API.

    boto3 clients are synchronous, so every request runs in a worker thread to
    keep the event loop free.
    """

    def __init__(self, client: Optional[Any] = None, region: Optional[str] = None):
        self.region = region or settings.aws_region
        self.client = client or boto3.client(
            "chime-sdk-meetings",
            region_name=self.region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )

    async def _send(self, operation: str, **params: Any) -> dict:
        """Run one SDK operation off the event loop and map its errors."""
        method = getattr(self.client, operation)
        try:
            return await asyncio.to_thread(method, **params)
        except ClientError as e:
            raise _map_client_error(e) from e
        except BotoCoreError as e:
            raise ProviderUnavailableError(f"{type(e).__name__}: {e}") from e

    async def create_meeting(self, call_id: str, user_id: str) -> MeetingInfo:
        """Create a meeting using the call id as ClientRequestToken."""
        if not call_id or not user_id:
            raise InvalidProviderRequestError("call_id and user_id are required")

        # ExternalMeetingId is capped at 64 characters by the API
        external_id = f"call-{user_id}-{int(time.time() * 1000)}"[:64]
        response = await self._send(
            "create_meeting",
            ClientRequestToken=call_id,
            MediaRegion=self.region,
            ExternalMeetingId=external_id,
            MeetingFeatures={"Audio": {"EchoReduction": "AVAILABLE"}},
        )
        meeting = response["Meeting"]
        logger.info(f"[CHIME] Meeting created: {meeting['MeetingId']}")
        return MeetingInfo(
            meeting_id=meeting["MeetingId"],
            media_region=meeting.get("MediaRegion", self.region),
            external_meeting_id=meeting.get("ExternalMeetingId", external_id),
        )

    async def create_attendee(
        self, meeting_id: str, user_id: str, call_type: CallType = CallType.VOICE
    ) -> AttendeeInfo:
        """Create an attendee for the calling user."""
        video = "SendReceive" if call_type == CallType.VIDEO else "None"
        response = await self._send(
            "create_attendee",
            MeetingId=meeting_id,
            ExternalUserId=user_id,
            Capabilities={"Audio": "SendReceive", "Video": video, "Content": "None"},
        )
        attendee = response["Attendee"]
        logger.info(f"[CHIME] Attendee created: {attendee['AttendeeId']}")
        return AttendeeInfo(
            attendee_id=attendee["AttendeeId"],
            external_user_id=attendee.get("ExternalUserId", user_id),
            join_token=attendee.get("JoinToken"),
        )

    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting; a meeting that is already gone counts as deleted."""
        try:
            await self._send("delete_meeting", MeetingId=meeting_id)
        except MeetingNotFoundError:
            logger.info(f"[CHIME] Meeting {meeting_id} already deleted")
            return
        logger.info(f"[CHIME] Meeting deleted: {meeting_id}")
