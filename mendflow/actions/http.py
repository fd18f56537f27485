"""HTTP request action backed by httpx."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..contracts import ExecutionContext
from ..errors import ActionFailure

logger = logging.getLogger(__name__)

_ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"}


class HttpRequestAction:
    """Perform the request described by a step config.

    Config keys: ``url`` (required), ``method`` (default GET), ``headers``,
    ``params``, ``json``, ``timeout``.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def __call__(
        self, config: Dict[str, Any], context: ExecutionContext
    ) -> Dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ActionFailure("Missing required parameter: url")
        method = str(config.get("method", "GET")).upper()
        if method not in _ALLOWED_METHODS:
            raise ActionFailure(f"Invalid HTTP method: {method}")

        client = self._client or httpx.AsyncClient()
        try:
            response = await client.request(
                method,
                url,
                headers=config.get("headers"),
                params=config.get("params"),
                json=config.get("json"),
                timeout=config.get("timeout", 10.0),
            )
        except httpx.InvalidURL as exc:
            raise ActionFailure(f"Invalid url: {url}") from exc
        except httpx.HTTPError as exc:
            raise ActionFailure(
                f"HTTP request to {url} failed: {exc}",
                details={"exception_type": exc.__class__.__name__},
            ) from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.is_error:
            raise ActionFailure(
                f"{response.status_code} {response.reason_phrase}: {method} {url}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        logger.debug(f"{method} {url} -> {response.status_code}")
        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        return {"success": True, "status": response.status_code, "data": data}
