"""Call phase events and subscriptions."""
import logging
from enum import Enum
from typing import Callable, List, Optional
from pydantic import BaseModel

from dialbridge.services.call_session.models import CallSession

logger = logging.getLogger(__name__)


class CallPhase(str, Enum):
    """Client-side phases of one call attempt."""

    IDLE = "idle"
    CHECKING_REACHABILITY = "checking_reachability"
    PROVISIONING = "provisioning"
    DIALING_FALLBACK = "dialing_fallback"
    CONNECTED = "connected"
    TERMINATED = "terminated"

    def __str__(self) -> str:
        return self.value


class CallEvent(BaseModel):
    """One phase change, with the session it concerns if any."""

    phase: CallPhase
    session: Optional[CallSession] = None
    error: Optional[str] = None


Listener = Callable[[CallEvent], None]


class EventEmitter:
    """Synchronous fan-out of call events to subscribers, in emit order."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; call the returned function to unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: CallEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"[EVENTS] Listener failed on {event.phase} event")
