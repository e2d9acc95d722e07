"""
Main entry points for Cosimo MCP Server.

- cosimo-mcp:    line transport on stdio, single user, local encryption
- cosimo-server: HTTP server with SSE sessions and the blob API
                 (`cosimo-server create-account` provisions an API key)
"""

import argparse
import sys

import anyio
import structlog
import uvicorn

from .auth import static_identity
from .config import settings
from .logging import configure_logging
from .protocol import McpProtocol, run_stdio
from .store import BlobStore, FileAccountStore, FileBlobStore, RemoteBlobStore
from .tools import ToolDispatcher
from .utils import CosimoError
from .web import create_app

logger = structlog.get_logger(__name__)


def build_blob_store() -> BlobStore:
    """Blob store for the stdio deployment, per settings.store."""
    if settings.store == "file":
        return FileBlobStore(settings.data_path / "blobs")
    return RemoteBlobStore(settings.server_url, settings.api_key or "")


def main():
    """Run the stdio server."""
    configure_logging()

    if settings.store == "remote" and not settings.api_key:
        print("Error: COSIMO_API_KEY environment variable required", file=sys.stderr)
        sys.exit(1)

    store = build_blob_store()
    protocol = McpProtocol(ToolDispatcher(store))
    identity = static_identity(settings)

    async def run():
        try:
            await run_stdio(protocol, identity)
        finally:
            if isinstance(store, RemoteBlobStore):
                await store.aclose()

    logger.info("stdio_server_starting", store=settings.store, encrypted=identity.encryption_enabled)
    anyio.run(run)


def create_parser() -> argparse.ArgumentParser:
    """Argument parser for the cosimo-server script."""
    parser = argparse.ArgumentParser(
        prog="cosimo-server",
        description="Cosimo HTTP server with SSE sessions and the blob API",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    create_account = subparsers.add_parser(
        "create-account",
        help="Create an account and print its API key",
    )
    create_account.add_argument(
        "--user-id",
        default=None,
        help="User id for the new account (random if omitted)",
    )
    return parser


def serve(argv: list[str] | None = None):
    """Run the HTTP server, or provision an account."""
    args = create_parser().parse_args(argv)
    configure_logging()

    accounts = FileAccountStore(settings.data_path / "accounts.json")

    if args.command == "create-account":
        try:
            account = anyio.run(accounts.create_account, args.user_id)
        except CosimoError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(account.api_key)
        return

    blobs = FileBlobStore(settings.data_path / "blobs")
    app = create_app(accounts, blobs)

    logger.info("http_server_starting", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
