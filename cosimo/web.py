"""
Starlette application for Cosimo MCP Server.

Routes:
- GET  /sse             open an MCP session (event stream)
- POST /messages        JSON-RPC messages for an open session
- GET  /mcp/manifest    tool manifest for the execute endpoint
- POST /mcp/execute     one tool call, {success, data, created?} response
- GET  /api/blob        raw stored blob (for clients that encrypt locally)
- PUT  /api/blob        replace the raw stored blob
- POST /api/encryption  enable end-to-end encryption for the account
- GET  /health          liveness and open session count
"""

from typing import Any

import structlog
from mcp.types import PARSE_ERROR
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .auth import ApiKeyAuthenticator, enable_account_encryption, read_credentials
from .config import Settings, settings
from .models import Account
from .protocol import McpProtocol, error_response
from .sessions import SessionRegistry, session_events
from .store import AccountStore, BlobStore
from .tools import ERROR_STATUS, ToolDispatcher, manifest
from .utils import Clock, CosimoError, utc_now

logger = structlog.get_logger(__name__)


def error_json(error: CosimoError) -> JSONResponse:
    return JSONResponse({"error": str(error), "code": error.code}, status_code=ERROR_STATUS.get(error.code, 500))


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (ValueError, RecursionError):
        return None


def create_app(
    accounts: AccountStore,
    blobs: BlobStore,
    config: Settings = settings,
    clock: Clock = utc_now,
) -> Starlette:
    """Build the HTTP application around the given stores."""
    dispatcher = ToolDispatcher(blobs, clock)
    protocol = McpProtocol(dispatcher, config)
    authenticator = ApiKeyAuthenticator(accounts)
    registry = SessionRegistry()

    async def authenticated_account(request: Request) -> Account:
        api_key, _ = read_credentials(request.headers, request.query_params)
        return await authenticator.account_for(api_key)

    # ============== Session transport ==============

    async def open_session(request: Request) -> Response:
        api_key, passphrase = read_credentials(request.headers, request.query_params)
        try:
            identity = await authenticator.authenticate(api_key, passphrase)
        except CosimoError as e:
            return error_json(e)

        session = registry.open(identity)
        return EventSourceResponse(
            session_events(registry, session, config.messages_path),
            ping=config.ping_interval,
            background=BackgroundTask(registry.close, session.session_id),
        )

    async def post_message(request: Request) -> Response:
        session = registry.get(request.query_params.get("session_id"))
        if session is None:
            return JSONResponse({"error": "Unknown or expired session"}, status_code=400)

        try:
            message = await request.json()
        except (ValueError, RecursionError):
            response = error_response(None, PARSE_ERROR, "Parse error")
        else:
            response = await protocol.handle(message, session.identity)

        if response is None:
            return Response(status_code=202)
        await session.send(response)
        return JSONResponse(response)

    # ============== Direct HTTP views ==============

    async def get_manifest(request: Request) -> Response:
        return JSONResponse(manifest())

    async def execute(request: Request) -> Response:
        api_key, passphrase = read_credentials(request.headers, request.query_params)
        try:
            identity = await authenticator.authenticate(api_key, passphrase)
        except CosimoError as e:
            return error_json(e)

        body = await _read_json(request)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        tool = body.get("tool")
        try:
            status, payload = await dispatcher.execute(tool, body.get("parameters") or {}, identity)
        except Exception as e:
            logger.exception("execute_failed", tool=tool, user_id=identity.user_id)
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(payload, status_code=status)

    async def get_blob(request: Request) -> Response:
        try:
            account = await authenticated_account(request)
            raw = await blobs.get_blob(account.user_id)
        except CosimoError as e:
            return error_json(e)
        return JSONResponse({"data": raw})

    async def put_blob(request: Request) -> Response:
        try:
            account = await authenticated_account(request)
        except CosimoError as e:
            return error_json(e)

        body = await _read_json(request)
        raw = body.get("data") if isinstance(body, dict) else None
        if not isinstance(raw, str):
            return JSONResponse({"error": "data required"}, status_code=400)

        try:
            await blobs.put_blob(account.user_id, raw)
        except CosimoError as e:
            return error_json(e)
        return JSONResponse({"success": True})

    async def enable_encryption(request: Request) -> Response:
        body = await _read_json(request)
        passphrase = body.get("passphrase") if isinstance(body, dict) else None
        try:
            account = await authenticated_account(request)
            await enable_account_encryption(accounts, blobs, account.user_id, passphrase or "")
        except CosimoError as e:
            return error_json(e)
        return JSONResponse({"success": True})

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok", "sessions": len(registry)})

    app = Starlette(
        routes=[
            Route("/sse", open_session, methods=["GET"]),
            Route(config.messages_path, post_message, methods=["POST"]),
            Route("/mcp/manifest", get_manifest, methods=["GET"]),
            Route("/mcp/execute", execute, methods=["POST"]),
            Route("/api/blob", get_blob, methods=["GET"]),
            Route("/api/blob", put_blob, methods=["PUT"]),
            Route("/api/encryption", enable_encryption, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
    )
    app.state.registry = registry
    app.state.protocol = protocol
    return app
