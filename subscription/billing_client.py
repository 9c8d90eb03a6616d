"""
Billing Provider Client

Fetches canonical subscriber state from RevenueCat's REST API (v1):
    GET {api_base}/subscribers/{app_user_id}

The v1 API takes the secret key as the raw Authorization header value
(no Bearer prefix) and a platform header.
"""

from typing import Optional
from urllib.parse import quote

import httpx

from subscription.models import SubscriberInfo
from utils.logger import logger


class BillingProviderError(Exception):
    """Raised when subscriber state cannot be fetched"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RevenueCatClient:
    """Async RevenueCat subscriber lookup"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: str = "https://api.revenuecat.com/v1",
        platform: str = "ios",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.platform = platform
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "RevenueCatClient":
        return cls(
            api_key=settings.REVENUECAT_API_KEY,
            api_base=settings.REVENUECAT_API_BASE,
            platform=settings.REVENUECAT_PLATFORM,
            client=client,
        )

    async def get_subscriber(self, app_user_id: str) -> SubscriberInfo:
        """
        Fetch a subscriber.

        Raises:
            BillingProviderError: On missing credentials, network errors,
                non-200 responses or an unparseable body.
        """
        if not self.api_key:
            raise BillingProviderError("REVENUECAT_API_KEY is not configured")

        url = f"{self.api_base}/subscribers/{quote(app_user_id, safe='')}"
        headers = {
            "Authorization": self.api_key,
            "X-Platform": self.platform,
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Network error fetching subscriber {app_user_id}: {e}")
            raise BillingProviderError(f"Network error: {e}") from e

        if response.status_code != 200:
            logger.error(f"Subscriber fetch for {app_user_id} failed: {response.status_code}")
            raise BillingProviderError(
                f"Billing provider returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BillingProviderError(f"Invalid subscriber response: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("subscriber"), dict):
            raise BillingProviderError("Subscriber response has no 'subscriber' object")

        try:
            return SubscriberInfo.from_response(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Malformed subscriber record for {app_user_id}: {e}")
            raise BillingProviderError(f"Invalid subscriber record: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
