"""
HTTP client shared by the upstream adapters and the same-origin fetcher.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .exceptions import (
    NetworkUnavailable,
    UpstreamHttpError,
    UpstreamMalformedResponse,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)


class UpstreamClient:
    """
    Thin async wrapper over ``httpx.AsyncClient``.

    Translates transport failures into the reservoirhub error taxonomy so that
    adapters only ever see ``UpstreamError`` subclasses. Pass ``transport``
    (for example ``httpx.MockTransport``) to make every call deterministic in
    tests.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = "Barren-River-Lake-Hub/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/json",
            },
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client (only when this wrapper created it)."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        source: Optional[str] = None,
    ) -> Any:
        """GET ``url`` and decode its JSON body, raising typed upstream errors."""
        budget = timeout if timeout is not None else self.timeout
        logger.debug(f"GET {url} params={params}")

        try:
            response = await self._client.get(url, params=params, timeout=budget)
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            raise UpstreamTimeout(
                f"Request timeout after {budget}s", source=source
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                message = "Rate limit exceeded"
            elif status >= 500:
                message = f"Upstream service temporarily unavailable ({status})"
            else:
                message = f"HTTP error {status}"
            raise UpstreamHttpError(message, status_code=status, source=source) from e
        except httpx.RequestError as e:
            raise NetworkUnavailable(f"Network error: {e}", source=source) from e
        except (json.JSONDecodeError, ValueError) as e:
            raise UpstreamMalformedResponse(
                f"Invalid JSON response: {e}", source=source
            ) from e
