"""Async Microsoft Graph API client with MSAL authentication."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import msal

from onedrive_storage.errors import GraphAuthError, RemoteRequestFailed

if TYPE_CHECKING:
    from types import TracebackType

    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_BASE_URL = "https://login.microsoftonline.com"
DEFAULT_TIMEOUT = 30.0


class TokenProvider(Protocol):
    """Anything that can attach credentials to an outgoing request."""

    async def authorize(self, headers: dict[str, str]) -> None: ...


class MsalTokenProvider:
    """Attaches MSAL client-credentials bearer tokens to outgoing requests."""

    def __init__(self, client_id: str, client_secret: str, tenant_id: str) -> None:
        """Initialise the MSAL confidential client application.

        Args:
            client_id: Azure AD application (client) ID.
            client_secret: Azure AD application client secret.
            tenant_id: Azure AD tenant ID.
        """
        authority = f"{AUTHORITY_BASE_URL}/{tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=authority,
        )

    def acquire_token(self) -> str:
        """Acquire a Bearer token using client credentials flow.

        MSAL serves the token from its in-memory cache until it nears expiry.

        Returns:
            Access token string.

        Raises:
            GraphAuthError: If MSAL cannot acquire a token.
        """
        result: dict[str, Any] = self._app.acquire_token_for_client(scopes=GRAPH_SCOPES) or {}
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            description = result.get("error_description", "No description provided")
            logger.error("[acquire_token] MSAL token acquisition failed; error:%s", error)
            raise GraphAuthError(f"Token acquisition failed: {error}: {description}")
        return str(result["access_token"])

    async def authorize(self, headers: dict[str, str]) -> None:
        """Add the Authorization header to a request's headers in place.

        MSAL is synchronous, so acquisition runs in a worker thread.
        """
        token = await asyncio.to_thread(self.acquire_token)
        headers["Authorization"] = f"Bearer {token}"


class GraphClient:
    """Authenticated async client for Microsoft Graph API.

    Relative paths are resolved against the Graph base URL. Absolute URLs,
    such as ``@odata.nextLink`` continuations and upload session URLs, are
    sent as-is.
    """

    def __init__(
        self,
        auth: TokenProvider,
        http: httpx.AsyncClient | None = None,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialise the client.

        Args:
            auth: Token provider that authorizes each outgoing request.
            http: httpx client used as the transport. When omitted the
                GraphClient creates and owns one.
            base_url: Graph API root that relative paths are joined to.
            timeout: Timeout in seconds for an owned httpx client.
        """
        self._auth = auth
        self._owns_http = http is None
        self._http = http if http is not None else httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")

    async def __aenter__(self) -> GraphClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this GraphClient created it."""
        if self._owns_http:
            await self._http.aclose()

    def url_for(self, path: str) -> str:
        """Return the absolute URL for a relative Graph path or an absolute URL."""
        if path.startswith(("https://", "http://")):
            return path
        return f"{self._base_url}{path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        authenticate: bool = True,
    ) -> httpx.Response:
        """Send a request and return the response if it succeeded.

        Args:
            method: HTTP method.
            path: Relative Graph path (starting with '/') or absolute URL.
            params: Query string parameters.
            json: JSON-serializable request body.
            content: Raw request body.
            headers: Extra request headers.
            authenticate: Whether to attach a bearer token. Upload session
                URLs are pre-authorized and must be sent without one.

        Returns:
            The httpx response for a 2xx status.

        Raises:
            GraphAuthError: If token acquisition fails.
            RemoteRequestFailed: If the API returns a non-2xx status code or
                the transport fails.
        """
        request_headers = {"Accept": "application/json", **(headers or {})}
        if authenticate:
            await self._auth.authorize(request_headers)
        url = self.url_for(path)
        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            logger.error("[request] transport failure; method:%s;url:%s", method, url)
            raise RemoteRequestFailed(None, str(exc)) from exc

        if not response.is_success:
            detail = _error_detail(response)
            logger.error(
                "[request] non-success response; method:%s;url:%s;status:%d",
                method,
                url,
                response.status_code,
            )
            raise RemoteRequestFailed(response.status_code, detail)
        return response

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Perform an authenticated GET and return the parsed JSON body."""
        response = await self.request("GET", path, params=params)
        return _json_body(response)

    async def get_content(self, path: str) -> bytes:
        """Perform an authenticated GET and return the raw response bytes."""
        response = await self.request("GET", path, headers={"Accept": "*/*"})
        return response.content

    async def put_content(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Upload raw bytes with an authenticated PUT.

        Args:
            path: Relative Graph path (starting with '/').
            content: Raw bytes to upload.
            content_type: MIME type for the Content-Type header.
            params: Query string parameters.

        Returns:
            Parsed JSON body of the response (the written drive item).
        """
        response = await self.request(
            "PUT",
            path,
            params=params,
            content=content,
            headers={"Content-Type": content_type},
        )
        return _json_body(response)

    async def post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated POST with a JSON body."""
        response = await self.request("POST", path, json=body)
        return _json_body(response)

    async def patch_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated PATCH with a JSON body."""
        response = await self.request("PATCH", path, json=body)
        return _json_body(response)

    async def delete(self, path: str, authenticate: bool = True) -> None:
        """Perform a DELETE; the response body is ignored."""
        await self.request("DELETE", path, authenticate=authenticate)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON response body, treating an empty body as an empty object."""
    if not response.content:
        return {}
    return response.json()  # type: ignore[no-any-return]


def _error_detail(response: httpx.Response) -> str:
    """Extract the Graph error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    error = body.get("error") if isinstance(body, dict) else None
    detail = error.get("message") if isinstance(error, dict) else None
    return str(detail) if detail else response.reason_phrase


def graph_client_from_config(config: AppConfig) -> GraphClient:
    """Construct a GraphClient from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured GraphClient instance owning its own httpx client.
    """
    auth = MsalTokenProvider(
        client_id=config.client_id,
        client_secret=config.client_secret,
        tenant_id=config.tenant_id,
    )
    return GraphClient(auth, timeout=config.request_timeout)
