"""Device capabilities the orchestrator depends on."""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from dialbridge.core.config import settings

logger = logging.getLogger(__name__)


class Identity(ABC):
    """Signed-in user of this client."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, or None."""
        pass

    @abstractmethod
    async def get_token(self) -> Optional[str]:
        """Bearer token for API requests, or None when signed out."""
        pass


class TokenIdentity(Identity):
    """Identity holding a user id and an already-issued bearer token."""

    def __init__(self, user_id: Optional[str] = None, token: Optional[str] = None):
        self.user_id = user_id
        self.token = token

    def sign_in(self, user_id: str, token: str) -> None:
        self.user_id = user_id
        self.token = token

    def sign_out(self) -> None:
        self.user_id = None
        self.token = None

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    async def get_token(self) -> Optional[str]:
        return self.token


class ReachabilityProbe(ABC):
    """Answers whether the call service can be reached right now."""

    @abstractmethod
    async def is_reachable(self) -> bool:
        pass


class HttpReachabilityProbe(ReachabilityProbe):
    """Probe that GETs the service health endpoint with a short timeout."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url)
        self.timeout = timeout or settings.reachability_timeout_seconds

    async def is_reachable(self) -> bool:
        try:
            response = await self.client.get("/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.info(f"[REACHABILITY] Service unreachable: {type(e).__name__}: {str(e)}")
            return False
        return response.status_code == 200


class Dialer(ABC):
    """Platform capability that hands a ``tel:`` URL to the phone app."""

    @abstractmethod
    async def can_dial(self, url: str) -> bool:
        """Whether this device can place a carrier call for ``url``."""
        pass

    @abstractmethod
    def dial(self, url: str) -> None:
        """Issue the dial intent. Fire-and-forget; cannot be taken back."""
        pass
