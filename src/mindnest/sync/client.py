"""
Async HTTP client for the Mindnest sync server.

One pooled httpx.AsyncClient is shared by every push in a run. Each call
sends ``Authorization: Bearer <token>`` with the token from TokenProvider,
so a rotated token is used as soon as the cache is refreshed.

Outcomes:
  2xx      body decoded as {success, message}; success=false is a failure
  non-2xx  body decoded as {status_code, error, message}, falling back to
           the raw HTTP status and reason phrase -> APIError
  no response (connect error, timeout) -> NetworkError
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from mindnest.models.sync import EntityType
from mindnest.sync.auth import TokenProvider
from mindnest.sync.errors import (
    APIError,
    NetworkError,
    PushRejectedError,
    ResponseDecodeError,
)
from mindnest.sync.payloads import (
    APIErrorBody,
    FilePayload,
    IssuePayload,
    ReviewFilePayload,
    ReviewPayload,
    SyncResponse,
    WorkspacePayload,
)

ENDPOINT_BY_ENTITY_TYPE: Dict[EntityType, str] = {
    EntityType.WORKSPACE: "/api/sync/workspace",
    EntityType.REVIEW: "/api/sync/review",
    EntityType.REVIEW_FILE: "/api/sync/review-file",
    EntityType.ISSUE: "/api/sync/issue",
    EntityType.FILE: "/api/sync/file",
}
VERIFY_ENDPOINT = "/api/auth/verify"


class SyncClient:
    """
    Thin async wrapper over httpx for the sync endpoints.

    Use as an async context manager, or call aclose() when done:

        async with SyncClient(base_url, tokens) as client:
            await client.sync_workspace(WorkspacePayload.from_model(ws))
    """

    def __init__(
        self,
        base_url: str,
        tokens: TokenProvider,
        *,
        timeout: float = 30.0,
        max_connections: int = 10,
        max_keepalive: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            base_url: Server root, e.g. "https://mindnest.example.com".
            tokens: Source of the bearer token.
            timeout: Default per-request timeout in seconds.
            max_connections: Cap on concurrent connections in the pool.
            max_keepalive: Cap on idle keep-alive connections.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self.base_url = base_url.rstrip("/")
        self.tokens = tokens
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive,
                keepalive_expiry=90.0,
            ),
            transport=transport,
        )

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Push endpoints ────────────────────────────────────────────────────────

    async def push(
        self,
        entity_type: EntityType,
        body: Dict[str, Any],
        *,
        timeout: Optional[float] = None,
    ) -> SyncResponse:
        """POST one entity's payload to its endpoint.

        Args:
            entity_type: Selects the endpoint.
            body: Wire payload (``payload.to_wire()``).
            timeout: Per-request override, e.g. the time left in the run.

        Returns:
            The decoded SyncResponse (always success=True).

        Raises:
            APIError, NetworkError, ResponseDecodeError, PushRejectedError.
        """
        path = ENDPOINT_BY_ENTITY_TYPE[EntityType(entity_type)]
        response = await self._send("POST", path, json=body, timeout=timeout)

        if not response.is_success:
            raise self._api_error(response)

        try:
            decoded = SyncResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ResponseDecodeError(f"decoding response: {exc}") from exc

        if not decoded.success:
            raise PushRejectedError(
                decoded.error_message or decoded.message or "server rejected the push"
            )
        return decoded

    async def sync_workspace(self, payload: WorkspacePayload, **kwargs) -> SyncResponse:
        return await self.push(EntityType.WORKSPACE, payload.to_wire(), **kwargs)

    async def sync_file(self, payload: FilePayload, **kwargs) -> SyncResponse:
        return await self.push(EntityType.FILE, payload.to_wire(), **kwargs)

    async def sync_review(self, payload: ReviewPayload, **kwargs) -> SyncResponse:
        return await self.push(EntityType.REVIEW, payload.to_wire(), **kwargs)

    async def sync_review_file(self, payload: ReviewFilePayload, **kwargs) -> SyncResponse:
        return await self.push(EntityType.REVIEW_FILE, payload.to_wire(), **kwargs)

    async def sync_issue(self, payload: IssuePayload, **kwargs) -> SyncResponse:
        return await self.push(EntityType.ISSUE, payload.to_wire(), **kwargs)

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def verify_token(self) -> bool:
        """Check the current token against the server.

        Returns:
            True on 200, False on 401.

        Raises:
            APIError for any other status, NetworkError if unreachable.
        """
        response = await self._send("GET", VERIFY_ENDPOINT)
        if response.status_code == 200:
            return True
        if response.status_code == 401:
            return False
        raise self._api_error(response)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.tokens.get()}",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": self._headers()}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(
                f"executing request: {type(exc).__name__}: {exc}"
            ) from exc

    @staticmethod
    def _api_error(response: httpx.Response) -> APIError:
        """Build an APIError from a non-2xx response.

        The HTTP status always wins for classification; a body that is not
        the expected JSON object falls back to the reason phrase.
        """
        try:
            body = APIErrorBody.model_validate(response.json())
        except (ValueError, ValidationError):
            return APIError(response.status_code, response.reason_phrase or "")
        return APIError(
            response.status_code,
            body.message or response.reason_phrase or "",
            error_code=body.error or "",
        )
