"""
HTTP transport for the remote modify call (JSON in, JSON out).
Classifies failures for the retry policy: 5xx/timeouts/connection errors
are transient, 4xx and unparseable bodies are fatal.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from infraflow.config import Settings
from infraflow.errors import FatalNetworkError, TransientNetworkError
from infraflow.spec import ModifyRequest, ModifyResult

logger = logging.getLogger(__name__)

MODIFY_PATH = "/api/modify"


def _error_detail(resp: httpx.Response) -> dict[str, Any] | None:
    """The server's structured failure, when the error body is a ModifyResult."""
    try:
        result = ModifyResult.model_validate(resp.json())
    except (ValueError, ValidationError):
        return None
    if result.error_detail is None:
        return None
    return result.error_detail.model_dump()


def _retry_after(resp: httpx.Response) -> int | None:
    raw = resp.headers.get("retry-after")
    try:
        return max(1, int(float(raw))) if raw else None
    except ValueError:
        return None


class ModifyClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> ModifyClient:
        return cls(settings.modify_url, timeout=settings.http_timeout, transport=transport)

    async def __aenter__(self) -> ModifyClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def modify(self, request: ModifyRequest) -> ModifyResult:
        body = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            resp = await self._http.post(MODIFY_PATH, json=body)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Modify request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Modify request failed: {e}") from e

        if resp.status_code >= 500:
            raise TransientNetworkError(
                f"Modify endpoint returned {resp.status_code}",
                resp.status_code,
                detail=_error_detail(resp),
                retry_after=_retry_after(resp),
            )
        if resp.status_code >= 400:
            raise FatalNetworkError(
                f"Modify endpoint rejected request: {resp.status_code}",
                resp.status_code,
                detail=_error_detail(resp),
                retry_after=_retry_after(resp),
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise FatalNetworkError(f"Modify endpoint returned malformed JSON: {e}", resp.status_code) from e
        try:
            return ModifyResult.model_validate(payload)
        except ValidationError as e:
            logger.warning("Unexpected modify response shape: %s", e)
            raise FatalNetworkError(f"Modify endpoint returned an unexpected body: {e}", resp.status_code) from e
