"""
External FX quote sources.

A quote source returns a mapping of currency code -> units of that currency
per 1 unit of the source's base denomination (e.g. 1 TZS = 0.0004 USD).
Fetching and parsing live here so the derivation in rate_sync can be
exercised without network access.
"""

from typing import Mapping, Optional, Protocol

import httpx
import structlog

from cms_api.config import settings

logger = structlog.get_logger()


class ExternalSourceError(Exception):
    """Quote source unreachable, returned a non-success status, or sent an unparseable body."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class QuoteSource(Protocol):
    async def fetch_quotes(self) -> Mapping[str, object]:
        ...


class ExchangeRateApiSource:
    """Reads `{"rates": {...}}` from an exchangerate-api style endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _get(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(self.url, timeout=self.timeout)

    async def fetch_quotes(self) -> Mapping[str, object]:
        try:
            if self._client is not None:
                response = await self._get(self._client)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client)
        except httpx.TimeoutException as e:
            raise ExternalSourceError(
                f"Quote source timed out after {self.timeout}s", cause=e
            ) from e
        except httpx.HTTPError as e:
            raise ExternalSourceError(f"Quote source unreachable: {e}", cause=e) from e

        if not response.is_success:
            raise ExternalSourceError(
                f"Quote source returned status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalSourceError("Failed to parse quote source response", cause=e) from e

        rates = body.get("rates") if isinstance(body, dict) else None
        if not isinstance(rates, dict):
            raise ExternalSourceError("Quote source response has no 'rates' mapping")

        logger.debug("fx_quotes_fetched", url=self.url, count=len(rates))
        return rates


def default_quote_source() -> ExchangeRateApiSource:
    return ExchangeRateApiSource(
        settings.FX_SOURCE_URL, timeout=settings.FX_SOURCE_TIMEOUT_SECONDS
    )
