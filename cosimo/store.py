"""
Storage collaborators for Cosimo MCP Server.

Blob stores hold one opaque value per user (an envelope or JSON text) and
never interpret it. Account stores resolve API keys to account records.

Local stores serialize read-modify-write cycles per user with an
asyncio.Lock. RemoteBlobStore cannot, so concurrent writers for the same
user are last-writer-wins.
"""

import asyncio
import contextlib
import json
import re
import secrets
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any, AsyncContextManager

import aiofiles
import aiofiles.os
import httpx
import structlog

from .models import Account
from .utils import InvalidArguments, StoreError

logger = structlog.get_logger(__name__)

UNSAFE_FILENAME_PATTERN = re.compile(r'[^\w-]')

API_KEY_PREFIX = "csk_"


def generate_api_key() -> str:
    """Create a new random API key."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(24)}"


async def _write_atomic(path: Path, content: str) -> None:
    """Write a file via a temporary sibling and rename."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(content)
    await aiofiles.os.replace(tmp_path, path)


# ============== Blob stores ==============

class BlobStore(ABC):
    """Per-user opaque value storage."""

    @abstractmethod
    async def get_blob(self, user_id: str) -> str | None:
        """Return the stored value, or None when absent."""

    @abstractmethod
    async def put_blob(self, user_id: str, raw: str) -> None:
        """Replace the stored value."""

    def lock(self, user_id: str) -> AsyncContextManager[Any]:
        """Context manager held for one load-mutate-store cycle."""
        return contextlib.nullcontext()


class _LockingBlobStore(BlobStore):
    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, user_id: str) -> asyncio.Lock:
        return self._locks[user_id]


class MemoryBlobStore(_LockingBlobStore):
    """Blob store kept in a dict. Used by tests and ephemeral servers."""

    def __init__(self, blobs: dict[str, str] | None = None):
        super().__init__()
        self.blobs: dict[str, str] = dict(blobs or {})

    async def get_blob(self, user_id: str) -> str | None:
        return self.blobs.get(user_id)

    async def put_blob(self, user_id: str, raw: str) -> None:
        self.blobs[user_id] = raw


class FileBlobStore(_LockingBlobStore):
    """One file per user under a directory."""

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = directory

    def path_for(self, user_id: str) -> Path:
        safe_name = UNSAFE_FILENAME_PATTERN.sub("_", user_id)
        return self.directory / f"{safe_name}.blob"

    async def get_blob(self, user_id: str) -> str | None:
        path = self.path_for(user_id)
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("blob_read_failed", path=str(path), error=str(e))
            raise StoreError(f"Failed to read blob: {e}") from e

    async def put_blob(self, user_id: str, raw: str) -> None:
        path = self.path_for(user_id)
        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            await _write_atomic(path, raw)
        except OSError as e:
            logger.error("blob_write_failed", path=str(path), error=str(e))
            raise StoreError(f"Failed to write blob: {e}") from e


class RemoteBlobStore(BlobStore):
    """Blob store backed by a Cosimo server's /api/blob endpoint.

    The server resolves the user from the API key, so user_id is unused.
    Encryption happens before put_blob, so the server only sees ciphertext.
    """

    def __init__(self, server_url: str, api_key: str, client: httpx.AsyncClient | None = None):
        self.server_url = server_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._headers = {"x-api-key": api_key}

    async def get_blob(self, user_id: str) -> str | None:
        try:
            response = await self._client.get(f"{self.server_url}/api/blob", headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(f"Server error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise StoreError(f"Server unreachable: {e}") from e
        return response.json().get("data")

    async def put_blob(self, user_id: str, raw: str) -> None:
        try:
            response = await self._client.put(
                f"{self.server_url}/api/blob",
                headers=self._headers,
                json={"data": raw},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(f"Server error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise StoreError(f"Server unreachable: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()


# ============== Account stores ==============

class AccountStore(ABC):
    """Resolves credentials to account records."""

    @abstractmethod
    async def get(self, user_id: str) -> Account | None:
        """Look up an account by user id."""

    @abstractmethod
    async def get_by_api_key(self, api_key: str) -> Account | None:
        """Look up an account by API key."""

    @abstractmethod
    async def save(self, account: Account) -> None:
        """Insert or replace an account."""

    async def create_account(self, user_id: str | None = None) -> Account:
        """Create an account with a fresh API key and encryption disabled.

        Raises:
            InvalidArguments: an account with this user id already exists.
        """
        if user_id and await self.get(user_id) is not None:
            raise InvalidArguments(f"Account already exists: {user_id}")
        account = Account(user_id=user_id or uuid.uuid4().hex, api_key=generate_api_key())
        await self.save(account)
        logger.info("account_created", user_id=account.user_id)
        return account


class MemoryAccountStore(AccountStore):
    def __init__(self, accounts: list[Account] | None = None):
        self._accounts: dict[str, Account] = {a.user_id: a for a in accounts or []}

    async def get(self, user_id: str) -> Account | None:
        return self._accounts.get(user_id)

    async def get_by_api_key(self, api_key: str) -> Account | None:
        for account in self._accounts.values():
            if secrets.compare_digest(account.api_key.encode(), api_key.encode()):
                return account
        return None

    async def save(self, account: Account) -> None:
        self._accounts[account.user_id] = account


class FileAccountStore(AccountStore):
    """Accounts kept in a single JSON file, keyed by user id."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, Account]:
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreError(f"Failed to read accounts: {e}") from e

        try:
            records = json.loads(content)
        except json.JSONDecodeError as e:
            raise StoreError(f"Accounts file is corrupt: {e}") from e
        return {user_id: Account.model_validate(record) for user_id, record in records.items()}

    async def get(self, user_id: str) -> Account | None:
        return (await self._load()).get(user_id)

    async def get_by_api_key(self, api_key: str) -> Account | None:
        for account in (await self._load()).values():
            if secrets.compare_digest(account.api_key.encode(), api_key.encode()):
                return account
        return None

    async def save(self, account: Account) -> None:
        async with self._lock:
            accounts = await self._load()
            accounts[account.user_id] = account
            content = json.dumps({uid: a.model_dump() for uid, a in accounts.items()}, indent=2)
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                await _write_atomic(self.path, content)
            except OSError as e:
                raise StoreError(f"Failed to write accounts: {e}") from e
