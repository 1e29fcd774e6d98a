"""HTTP transport for talking to a todosync server."""

import logging
from typing import Any

import httpx

from ..errors import TransportError, UnauthorizedError
from ..models import HistorySummary, SyncResult

logger = logging.getLogger(__name__)


class SyncTransport:
    """Client for the server's sync and history endpoints.

    Makes a single attempt per call: retrying is left to the caller's
    normal edit/poll cadence.
    """

    def __init__(
        self,
        server_url: str,
        password: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            server_url: Base URL of the server (e.g., "http://localhost:8080").
            password: Shared credential sent with every request.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.server_url = server_url.rstrip("/")
        self.password = password
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.server_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body with the credential attached.

        Raises:
            UnauthorizedError: On HTTP 401.
            TransportError: On connection failure, timeout, any other
                non-200 status or an undecodable body.
        """
        client = await self._get_client()
        payload = {"password": self.password, **body}

        try:
            response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            raise UnauthorizedError("Server rejected credential")
        if response.status_code != 200:
            raise TransportError(
                f"HTTP {response.status_code} from {path}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response body from {path}")
        return data

    async def sync(self, content: str, client_timestamp: int) -> SyncResult:
        """Push content and its timestamp.

        Returns:
            SyncResult parsed from the server's answer.
        """
        data = await self._post(
            "/api/sync", {"content": content, "clientTimestamp": client_timestamp}
        )
        try:
            return SyncResult.from_dict(data)
        except ValueError as e:
            raise TransportError(str(e)) from e

    async def list_history(self, limit: int | None = None) -> list[HistorySummary]:
        """List archived revisions, newest first."""
        body: dict[str, Any] = {"action": "list"}
        if limit is not None:
            body["limit"] = limit
        data = await self._post("/api/history", body)
        try:
            return [HistorySummary.from_dict(item) for item in data.get("history", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError("Malformed history listing") from e

    async def get_history_content(self, entry_id: int) -> str | None:
        """Fetch an archived revision's content.

        Returns:
            The content, or None if the server has no such revision.
        """
        data = await self._post("/api/history", {"action": "get", "id": entry_id})
        if data.get("found") is False:
            return None
        content = data.get("content", "")
        if not isinstance(content, str):
            raise TransportError("Malformed history content")
        return content

    async def check_health(self) -> dict[str, Any] | None:
        """Fetch the server's health report.

        Returns:
            Health dict, or None if the server could not be reached.
        """
        try:
            client = await self._get_client()
            response = await client.get("/api/health")
            if response.status_code == 200:
                return response.json()
            logger.debug(f"Health check returned HTTP {response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Health check failed: {e}")
        return None
