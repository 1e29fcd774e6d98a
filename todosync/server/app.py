"""FastAPI application exposing the sync and history endpoints."""

import logging
import secrets
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Config
from ..errors import InvalidRequestError, StoreError, UnauthorizedError
from ..store import DocumentStore
from .history_service import HistoryService
from .sync_service import EqualTimestampPolicy, SyncService
from .validation import validate_history_request, validate_sync_request

logger = logging.getLogger(__name__)


def create_app(config: Config, store: DocumentStore) -> FastAPI:
    """Create the FastAPI sync server application.

    Args:
        config: Application configuration.
        store: Connected DocumentStore holding the authoritative copy.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="todosync",
        description="Authoritative store and history for a synchronized todo list",
        version=__version__,
    )

    server_config = config.server
    sync_service = SyncService(
        store,
        document_id=server_config.document_id,
        equal_policy=EqualTimestampPolicy(server_config.equal_timestamp_policy),
    )
    history_service = HistoryService(
        store,
        document_id=server_config.document_id,
        max_limit=server_config.history_limit,
    )

    # Store references for route handlers
    app.state.config = config
    app.state.store = store
    app.state.sync_service = sync_service
    app.state.history_service = history_service

    if not server_config.password:
        logger.warning("No server password configured; all requests will be rejected")

    # ==================== Error handlers ====================

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        logger.warning(f"Unauthorized request to {request.url.path}")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(f"Store failure on {request.url.path}: {exc}")
        return JSONResponse({"error": "Service Unavailable"}, status_code=503)

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse({"error": "Internal Server Error"}, status_code=500)

    async def authorized_payload(request: Request) -> dict[str, Any]:
        """Decode the JSON body and check its credential before anything else."""
        try:
            payload = await request.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            raise UnauthorizedError("Missing credential")

        password = payload.get("password")
        if (
            not server_config.password
            or not isinstance(password, str)
            or not secrets.compare_digest(
                password.encode("utf-8"), server_config.password.encode("utf-8")
            )
        ):
            raise UnauthorizedError("Bad credential")

        return payload

    # ==================== API Routes (JSON) ====================

    @app.post("/api/sync")
    async def api_sync(request: Request) -> dict[str, Any]:
        """Push the client's copy; returns synced or the newer server copy."""
        payload = await authorized_payload(request)
        content, client_timestamp = validate_sync_request(payload)

        result = sync_service.sync(content, client_timestamp)
        return result.to_dict()

    @app.post("/api/history")
    async def api_history(request: Request) -> dict[str, Any]:
        """List archived revisions or fetch one revision's content."""
        payload = await authorized_payload(request)
        params = validate_history_request(payload)

        if params["action"] == "list":
            entries = history_service.list_recent(params["limit"])
            return {"history": [entry.to_dict() for entry in entries]}

        content = history_service.get_content(params["id"])
        if content is None:
            return {"content": "", "found": False}
        return {"content": content, "found": True}

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers.

        Always returns 200 OK; store problems are reported in the body.
        """
        health = {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "document_id": server_config.document_id,
            "components": {"store": True},
        }

        try:
            health["components"]["history_entries"] = store.count_history(
                server_config.document_id
            )
        except StoreError as e:
            health["components"]["store"] = False
            health["components"]["store_error"] = str(e)

        return health

    return app
