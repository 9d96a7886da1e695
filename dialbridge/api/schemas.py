"""Request and response models for the calls API.

Field aliases follow the JSON the mobile client already speaks (camelCase,
and the provider's PascalCase for meeting/attendee payloads). The client
library parses responses with the same models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from dialbridge.services.call_session.models import (
    CallLogEntry,
    CallSession,
    CallStatus,
    CallType,
    Transport,
)


class InitiateCallRequest(BaseModel):
    """Body of POST /calls/initiate."""
    to_phone_number: Optional[str] = Field(default=None, alias="toPhoneNumber")
    call_type: CallType = Field(default=CallType.VOICE, alias="callType")
    call_id: Optional[str] = Field(default=None, alias="callId")

    class Config:
        populate_by_name = True


class MeetingResponse(BaseModel):
    """Meeting handle returned to the client."""
    meeting_id: str = Field(alias="MeetingId")
    media_region: Optional[str] = Field(default=None, alias="MediaRegion")

    class Config:
        populate_by_name = True


class AttendeeResponse(BaseModel):
    """Attendee handle returned to the client."""
    attendee_id: str = Field(alias="AttendeeId")
    external_user_id: str = Field(alias="ExternalUserId")
    join_token: Optional[str] = Field(default=None, alias="JoinToken")

    class Config:
        populate_by_name = True


class InitiateCallResponse(BaseModel):
    """Response of POST /calls/initiate."""
    call_id: str = Field(alias="callId")
    meeting_id: str = Field(alias="meetingId")
    meeting_response: MeetingResponse = Field(alias="meetingResponse")
    attendee_response: AttendeeResponse = Field(alias="attendeeResponse")
    status: CallStatus = CallStatus.INITIATED
    message: str = "Call initiated successfully"

    class Config:
        populate_by_name = True

    @classmethod
    def from_session(cls, session: CallSession) -> "InitiateCallResponse":
        return cls(
            call_id=session.call_id,
            meeting_id=session.meeting_id,
            meeting_response=MeetingResponse(
                meeting_id=session.meeting_id,
                media_region=session.media_region,
            ),
            attendee_response=AttendeeResponse(
                attendee_id=session.attendee_id,
                external_user_id=session.user_id,
                join_token=session.join_token,
            ),
            status=session.status,
        )


class EndCallRequest(BaseModel):
    """Body of POST /calls/end."""
    call_id: Optional[str] = Field(default=None, alias="callId")
    duration: Optional[int] = Field(default=None, ge=0)
    abandoned: bool = False

    class Config:
        populate_by_name = True


class EndCallResponse(BaseModel):
    """Response of POST /calls/end."""
    message: str = "Call ended successfully"
    duration: int
    call_id: str = Field(alias="callId")

    class Config:
        populate_by_name = True


class CallSessionResponse(BaseModel):
    """Public view of a session (no join token)."""
    call_id: str = Field(alias="callId")
    to_number: str = Field(alias="toNumber")
    call_type: CallType = Field(alias="callType")
    user_id: str = Field(alias="userId")
    status: CallStatus
    transport: Transport
    start_time: datetime = Field(alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    duration: int = 0
    meeting_id: Optional[str] = Field(default=None, alias="meetingId")
    attendee_id: Optional[str] = Field(default=None, alias="attendeeId")
    media_region: Optional[str] = Field(default=None, alias="mediaRegion")

    class Config:
        populate_by_name = True
        from_attributes = True

    @classmethod
    def from_session(cls, session: CallSession) -> "CallSessionResponse":
        return cls.model_validate(session)

    def to_session(self) -> CallSession:
        return CallSession(**self.model_dump(by_alias=False))


class ActiveCallsResponse(BaseModel):
    """Response of GET /calls/active."""
    active_calls: List[CallSessionResponse] = Field(default_factory=list, alias="activeCalls")

    class Config:
        populate_by_name = True


class WebhookEvent(BaseModel):
    """Provider notification posted to /calls/webhook."""
    event_type: str = Field(alias="eventType")
    call_id: Optional[str] = Field(default=None, alias="callId")
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class WebhookAck(BaseModel):
    """Webhook acknowledgement."""
    received: bool = True


class CallLogEntryRequest(BaseModel):
    """History entry posted by a client that completed a call itself."""
    to_number: str = Field(alias="toNumber", min_length=1)
    duration: int = Field(default=0, ge=0)
    call_type: CallType = Field(default=CallType.VOICE, alias="callType")
    status: str = Field(min_length=1)
    timestamp: Optional[datetime] = None
    call_id: Optional[str] = Field(default=None, alias="callId")
    transport: Transport = Transport.PSTN

    class Config:
        populate_by_name = True

    def to_entry(self, user_id: str) -> CallLogEntry:
        fields = self.model_dump(by_alias=False, exclude_none=True)
        return CallLogEntry(user_id=user_id, **fields)


class CallLogEntryResponse(BaseModel):
    """One history entry."""
    user_id: str = Field(alias="userId")
    to_number: str = Field(alias="toNumber")
    duration: int
    call_type: CallType = Field(alias="callType")
    status: str
    timestamp: datetime
    call_id: Optional[str] = Field(default=None, alias="callId")
    transport: Transport

    class Config:
        populate_by_name = True
        from_attributes = True

    @classmethod
    def from_entry(cls, entry: CallLogEntry) -> "CallLogEntryResponse":
        return cls.model_validate(entry)

    def to_entry(self) -> CallLogEntry:
        return CallLogEntry(**self.model_dump(by_alias=False))


class CallHistoryResponse(BaseModel):
    """Response of GET /calls/history."""
    calls: List[CallLogEntryResponse] = Field(default_factory=list)
