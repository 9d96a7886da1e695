"""Call session models."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class CallType(str, Enum):
    """Kind of call the user asked for."""

    VOICE = "voice"
    VIDEO = "video"

    def __str__(self) -> str:
        return self.value


class CallStatus(str, Enum):
    """Lifecycle status of a call session."""

    INITIATED = "initiated"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.COMPLETED, CallStatus.FAILED)


class Transport(str, Enum):
    """Path used to carry the call."""

    INTERNET = "internet"  # Conferencing backend
    PSTN = "pstn"  # Carrier dial on the device

    def __str__(self) -> str:
        return self.value


# Allowed status edges; nothing re-enters INITIATED
ALLOWED_TRANSITIONS = {
    CallStatus.INITIATED: {CallStatus.ACTIVE, CallStatus.FAILED, CallStatus.COMPLETED},
    CallStatus.ACTIVE: {CallStatus.COMPLETED},
    CallStatus.COMPLETED: set(),
    CallStatus.FAILED: set(),
}

# Log statuses beyond the session statuses
LOG_STATUS_PSTN_INITIATED = "pstn_initiated"


class CallSession(BaseModel):
    """One tracked call attempt from initiation to termination."""

    call_id: str
    to_number: str
    call_type: CallType = CallType.VOICE
    user_id: str
    status: CallStatus = CallStatus.INITIATED
    transport: Transport = Transport.INTERNET
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    duration: int = 0
    meeting_id: Optional[str] = None
    attendee_id: Optional[str] = None
    media_region: Optional[str] = None
    join_token: Optional[str] = Field(default=None, exclude=True, repr=False)

    def can_transition_to(self, status: CallStatus) -> bool:
        """Check whether the state machine allows moving to ``status``."""
        return status in ALLOWED_TRANSITIONS[self.status]

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        """Whole seconds since the session started, never negative."""
        now = now or datetime.utcnow()
        return max(0, int((now - self.start_time).total_seconds()))


class CallLogEntry(BaseModel):
    """Immutable history record of a finished call attempt."""

    user_id: str
    to_number: str
    duration: int = Field(default=0, ge=0)
    call_type: CallType = CallType.VOICE
    status: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    call_id: Optional[str] = None
    transport: Transport = Transport.INTERNET

    class Config:
        frozen = True
        from_attributes = True

    @classmethod
    def from_session(cls, session: CallSession, status: str) -> "CallLogEntry":
        """Build the log entry for a session that just ended."""
        return cls(
            user_id=session.user_id,
            to_number=session.to_number,
            duration=session.duration,
            call_type=session.call_type,
            status=status,
            timestamp=session.end_time or datetime.utcnow(),
            call_id=session.call_id,
            transport=session.transport,
        )
