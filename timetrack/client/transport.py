"""HTTP client for the remote session service.

Connection errors, timeouts, non-2xx responses and unreadable bodies all
surface as :class:`TransportError`.
"""

from __future__ import annotations

from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence

import httpx
from pydantic import ValidationError

from timetrack.config import get_settings
from timetrack.constants import API_PREFIX
from timetrack.constants import DEVICE_ID_HEADER
from timetrack.constants import SESSIONS_PREFIX
from timetrack.constants import SYNC_PREFIX
from timetrack.constants import USER_CODE_PREFIX
from timetrack.schemas.operations import Operation
from timetrack.schemas.schemas import SessionListResponse
from timetrack.schemas.schemas import StartSessionResponse
from timetrack.schemas.schemas import SyncResponse
from timetrack.schemas.schemas import UserCodeResponse
from timetrack.utils.retry import async_retry
from timetrack.utils.retry import is_retryable_http_exc


class TransportError(Exception):
    """A remote call did not produce a usable 2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteSessionClient:
    """Thin async wrapper around the session service endpoints.

    ``transport`` is handed to :class:`httpx.AsyncClient`; tests pass an
    ``httpx.ASGITransport`` to talk to the app in-process.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        device_id: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.device_id = device_id
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_url,
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            headers={DEVICE_ID_HEADER: device_id},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Low-level request helper
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc.__class__.__name__}: {exc}") from exc

        if response.status_code >= 300:
            raise TransportError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {url} returned a non-JSON body", status_code=response.status_code) from exc

    @staticmethod
    def _parse(model, payload: Any, what: str):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"Unexpected {what} response: {exc.errors()[:1]}") from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def health(self) -> bool:
        await self._request("GET", "/health")
        return True

    @async_retry(max_attempts=4, base_delay=1.0, max_delay=8.0, retriable=is_retryable_http_exc, provider="timetrack-api")
    async def generate_user_code(self) -> str:
        payload = await self._request("POST", f"{API_PREFIX}{USER_CODE_PREFIX}")
        return self._parse(UserCodeResponse, payload, "user-code").code

    async def list_sessions(
        self,
        user_code: str,
        *,
        since: Optional[int] = None,
        include_deleted: bool = False,
    ) -> SessionListResponse:
        params: Dict[str, Any] = {}
        if since is not None:
            params["since"] = since
        if include_deleted:
            params["includeDeleted"] = "true"
        payload = await self._request("GET", f"{API_PREFIX}{SESSIONS_PREFIX}/{user_code}", params=params)
        return self._parse(SessionListResponse, payload, "session list")

    async def create_session(
        self,
        user_code: str,
        start_time: int,
        *,
        session_id: Optional[str] = None,
    ) -> StartSessionResponse:
        body: Dict[str, Any] = {"startTime": start_time}
        if session_id is not None:
            body["sessionId"] = session_id
        payload = await self._request("POST", f"{API_PREFIX}{SESSIONS_PREFIX}/{user_code}", json=body)
        return self._parse(StartSessionResponse, payload, "start session")

    async def update_session(self, user_code: str, session_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"{API_PREFIX}{SESSIONS_PREFIX}/{user_code}/{session_id}", json=changes)

    async def delete_session(self, user_code: str, session_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"{API_PREFIX}{SESSIONS_PREFIX}/{user_code}/{session_id}")

    async def sync_operations(self, user_code: str, operations: Sequence[Operation]) -> SyncResponse:
        body: List[Dict[str, Any]] = [op.to_wire() for op in operations]
        payload = await self._request("POST", f"{API_PREFIX}{SYNC_PREFIX}/{user_code}", json=body)
        return self._parse(SyncResponse, payload, "sync")
