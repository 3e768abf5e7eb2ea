"""Async JSON HTTP client used for REST market data sources."""

import logging
from typing import Any, Dict, Optional, cast

import aiohttp

from portfolio_ledger.lib.errors import MarketDataUnavailableError, RateLimitedError

logger = logging.getLogger(__name__)


class APIClient:
    """Thin aiohttp wrapper that maps HTTP failures onto the engine's errors.

    Retries are not done here: the market data cache owns retry and
    spacing policy for every provider call.

    Example:
        async with APIClient("https://v6.exchangerate-api.com/v6") as client:
            data = await client.get("/KEY/pair/USD/CAD")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        default_timeout: int = 10,
        provider_name: str = "http",
    ):
        """Initialize API client.

        Args:
            base_url: Base URL for all API requests (optional, can use full URLs instead)
            default_timeout: Default request timeout in seconds
            provider_name: Name used in error messages
        """
        self.base_url = base_url.rstrip("/") if base_url else None
        self.default_timeout = default_timeout
        self.provider_name = provider_name
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "APIClient":
        """Enter async context manager."""
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager and cleanup session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Make a single GET request.

        Args:
            endpoint: API endpoint (appended to base_url) or full URL
            params: Query parameters
            timeout: Request timeout in seconds (uses default_timeout if None)

        Returns:
            JSON response as dictionary

        Raises:
            RateLimitedError: Server answered 429
            MarketDataUnavailableError: Any other HTTP or network failure
        """
        if self.session is None:
            raise RuntimeError("APIClient must be used as context manager")

        url = f"{self.base_url}{endpoint}" if self.base_url else endpoint
        timeout_obj = aiohttp.ClientTimeout(total=timeout or self.default_timeout)

        try:
            async with self.session.get(url, params=params, timeout=timeout_obj) as response:
                response.raise_for_status()
                data = await response.json()
                return cast(Dict[str, Any], data)
        except aiohttp.ClientResponseError as e:
            if e.status == 429:
                raise RateLimitedError(self.provider_name, url) from e
            raise MarketDataUnavailableError(
                url, f"{self.provider_name} returned {e.status} {e.message}"
            ) from e
        except aiohttp.ClientError as e:
            raise MarketDataUnavailableError(url, f"network error: {e}") from e
