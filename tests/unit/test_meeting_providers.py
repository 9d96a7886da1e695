"""Unit tests for meeting providers."""
import uuid

import boto3
import pytest
from botocore.stub import ANY, Stubber

from dialbridge.core.dependencies import create_meeting_provider
from dialbridge.core.errors import (
    InvalidProviderRequestError,
    MeetingNotFoundError,
    ProviderUnavailableError,
)
from dialbridge.services.call_session.models import CallType
from dialbridge.services.meetings.chime import ChimeMeetingProvider
from dialbridge.services.meetings.in_memory import InMemoryMeetingProvider


class TestInMemoryMeetingProvider:
    """Test the local provider."""

    @pytest.mark.asyncio
    async def test_create_meeting_is_idempotent_per_token(self):
        provider = InMemoryMeetingProvider()

        first = await provider.create_meeting("call-1", "user-a")
        second = await provider.create_meeting("call-1", "user-a")

        assert first == second
        assert provider.meetings_created == 1

    @pytest.mark.asyncio
    async def test_create_attendee(self):
        provider = InMemoryMeetingProvider(media_region="eu-west-1")
        meeting = await provider.create_meeting("call-1", "user-a")

        attendee = await provider.create_attendee(meeting.meeting_id, "user-a", CallType.VIDEO)

        assert meeting.media_region == "eu-west-1"
        assert attendee.external_user_id == "user-a"
        assert attendee.join_token

    @pytest.mark.asyncio
    async def test_attendee_for_unknown_meeting(self):
        provider = InMemoryMeetingProvider()

        with pytest.raises(MeetingNotFoundError):
            await provider.create_attendee("missing", "user-a")

    @pytest.mark.asyncio
    async def test_delete_meeting(self):
        provider = InMemoryMeetingProvider()
        meeting = await provider.create_meeting("call-1", "user-a")

        await provider.delete_meeting(meeting.meeting_id)
        # Deleting again is fine
        await provider.delete_meeting(meeting.meeting_id)

        assert provider.get_meeting(meeting.meeting_id) is None

    @pytest.mark.asyncio
    async def test_missing_ids_rejected(self):
        provider = InMemoryMeetingProvider()

        with pytest.raises(InvalidProviderRequestError):
            await provider.create_meeting("", "user-a")


@pytest.fixture
def chime_client():
    client = boto3.client(
        "chime-sdk-meetings",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


class TestChimeMeetingProvider:
    """Test the Chime provider against a stubbed client."""

    @pytest.mark.asyncio
    async def test_create_meeting(self, chime_client):
        client, stubber = chime_client
        call_id = str(uuid.uuid4())
        meeting_id = str(uuid.uuid4())
        stubber.add_response(
            "create_meeting",
            {
                "Meeting": {
                    "MeetingId": meeting_id,
                    "MediaRegion": "us-east-1",
                    "ExternalMeetingId": "call-user-a-1",
                }
            },
            {
                "ClientRequestToken": call_id,
                "MediaRegion": "us-east-1",
                "ExternalMeetingId": ANY,
                "MeetingFeatures": {"Audio": {"EchoReduction": "AVAILABLE"}},
            },
        )
        provider = ChimeMeetingProvider(client=client, region="us-east-1")

        meeting = await provider.create_meeting(call_id, "user-a")

        assert meeting.meeting_id == meeting_id
        assert meeting.media_region == "us-east-1"
        assert meeting.external_meeting_id == "call-user-a-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call_type,video",
        [(CallType.VOICE, "None"), (CallType.VIDEO, "SendReceive")],
    )
    async def test_create_attendee_capabilities(self, chime_client, call_type, video):
        client, stubber = chime_client
        meeting_id = str(uuid.uuid4())
        attendee_id = str(uuid.uuid4())
        stubber.add_response(
            "create_attendee",
            {
                "Attendee": {
                    "AttendeeId": attendee_id,
                    "ExternalUserId": "user-a",
                    "JoinToken": "join-token-value",
                }
            },
            {
                "MeetingId": meeting_id,
                "ExternalUserId": "user-a",
                "Capabilities": {"Audio": "SendReceive", "Video": video, "Content": "None"},
            },
        )
        provider = ChimeMeetingProvider(client=client, region="us-east-1")

        attendee = await provider.create_attendee(meeting_id, "user-a", call_type)

        assert attendee.attendee_id == attendee_id
        assert attendee.join_token == "join-token-value"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,status,error_class",
        [
            ("NotFoundException", 404, MeetingNotFoundError),
            ("BadRequestException", 400, InvalidProviderRequestError),
            ("ServiceUnavailableException", 503, ProviderUnavailableError),
            ("ThrottledClientException", 429, ProviderUnavailableError),
        ],
    )
    async def test_client_errors_are_mapped(self, chime_client, code, status, error_class):
        client, stubber = chime_client
        stubber.add_client_error(
            "create_attendee",
            service_error_code=code,
            service_message="boom",
            http_status_code=status,
        )
        provider = ChimeMeetingProvider(client=client, region="us-east-1")

        with pytest.raises(error_class):
            await provider.create_attendee(str(uuid.uuid4()), "user-a")

    @pytest.mark.asyncio
    async def test_delete_meeting(self, chime_client):
        client, stubber = chime_client
        meeting_id = str(uuid.uuid4())
        stubber.add_response("delete_meeting", {}, {"MeetingId": meeting_id})
        provider = ChimeMeetingProvider(client=client, region="us-east-1")

        await provider.delete_meeting(meeting_id)

    @pytest.mark.asyncio
    async def test_delete_missing_meeting_is_not_an_error(self, chime_client):
        client, stubber = chime_client
        stubber.add_client_error(
            "delete_meeting",
            service_error_code="NotFoundException",
            http_status_code=404,
        )
        provider = ChimeMeetingProvider(client=client, region="us-east-1")

        await provider.delete_meeting(str(uuid.uuid4()))


class TestProviderFactory:
    """Test provider selection by name."""

    def test_in_memory(self):
        assert isinstance(create_meeting_provider("in_memory"), InMemoryMeetingProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_meeting_provider("carrier-pigeon")
