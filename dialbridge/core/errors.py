"""Call orchestration exceptions.

Every error carries the HTTP status the API layer maps it to, so services can
raise them without knowing about FastAPI.
"""
from typing import Optional


class CallError(Exception):
    status_code: int = 500
    default_detail: str = "Call error"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class CallValidationError(CallError):
    status_code = 400
    default_detail = "Invalid call request"


class InvalidInputError(CallValidationError):
    default_detail = "Phone number is required"


class AuthenticationError(CallError):
    status_code = 401
    default_detail = "Invalid token"


class NotAuthenticatedError(CallError):
    status_code = 401
    default_detail = "Please login to make calls"


class SessionNotFoundError(CallError):
    status_code = 404
    default_detail = "Call session not found"


class InvalidTransitionError(CallError):
    status_code = 409
    default_detail = "Invalid call status transition"


class CallInProgressError(CallError):
    status_code = 409
    default_detail = "A call is already in progress"


class DialNotSupportedError(CallError):
    status_code = 501
    default_detail = "Cannot make phone calls on this device"


class ProvisioningFailedError(CallError):
    status_code = 502
    default_detail = "Failed to initiate call"


class ProviderError(CallError):
    status_code = 502
    default_detail = "Meeting provider error"


class ProviderUnavailableError(ProviderError):
    status_code = 503
    default_detail = "Meeting provider unavailable"


class InvalidProviderRequestError(ProviderError):
    status_code = 400
    default_detail = "Meeting provider rejected the request"


class MeetingNotFoundError(ProviderError):
    status_code = 404
    default_detail = "Meeting not found"


class HistoryUnavailableError(CallError):
    status_code = 503
    default_detail = "Call history unavailable"


class RegistryUnavailableError(CallError):
    status_code = 503
    default_detail = "Call service unreachable"
