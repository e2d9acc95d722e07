"""
Identity resolution for Cosimo MCP Server.

Transports never see raw credentials past this module: they receive an
Identity (user id, encryption flag, passphrase) and hand it to the
protocol layer.
"""

from collections.abc import Mapping

import anyio.to_thread
import structlog

from .codec import enable_encryption
from .config import Settings
from .crypto import verify_passphrase
from .models import Account, Identity
from .store import AccountStore, BlobStore
from .utils import AuthenticationError, InvalidArguments, InvalidPassphrase, PassphraseRequired

logger = structlog.get_logger(__name__)

API_KEY_HEADER = "x-api-key"
PASSPHRASE_HEADER = "x-passphrase"
API_KEY_PARAM = "api_key"
PASSPHRASE_PARAM = "passphrase"


def read_credentials(headers: Mapping[str, str], query: Mapping[str, str]) -> tuple[str | None, str | None]:
    """Extract (api_key, passphrase). Headers win over query parameters."""
    api_key = headers.get(API_KEY_HEADER) or query.get(API_KEY_PARAM)
    passphrase = headers.get(PASSPHRASE_HEADER) or query.get(PASSPHRASE_PARAM)
    return api_key, passphrase


class ApiKeyAuthenticator:
    """Resolves an API key (plus passphrase when required) to an Identity."""

    def __init__(self, accounts: AccountStore):
        self.accounts = accounts

    async def account_for(self, api_key: str | None) -> Account:
        """Look up the account behind an API key.

        Raises:
            AuthenticationError: key missing or unknown.
        """
        if not api_key:
            raise AuthenticationError("API key required")
        account = await self.accounts.get_by_api_key(api_key)
        if account is None:
            raise AuthenticationError("Invalid API key")
        return account

    async def authenticate(self, api_key: str | None, passphrase: str | None) -> Identity:
        """Authenticate a caller.

        When the account has encryption enabled, the passphrase is checked
        against the stored verifier before any decryption is attempted.

        Raises:
            AuthenticationError: key missing or unknown.
            PassphraseRequired: encryption enabled, no passphrase supplied.
            InvalidPassphrase: passphrase does not match the verifier.
        """
        account = await self.account_for(api_key)

        if account.encryption_enabled:
            if not passphrase:
                raise PassphraseRequired()
            verified = await anyio.to_thread.run_sync(verify_passphrase, passphrase, account.passphrase_hash)
            if not verified:
                logger.info("passphrase_rejected", user_id=account.user_id)
                raise InvalidPassphrase()

        return Identity(
            user_id=account.user_id,
            encryption_enabled=account.encryption_enabled,
            passphrase=passphrase if account.encryption_enabled else None,
        )


def static_identity(config: Settings) -> Identity:
    """Identity for a single-user stdio deployment.

    Encryption is on exactly when a passphrase is configured; the blob is
    sealed locally before it reaches the store.
    """
    return Identity(
        user_id=config.user_id,
        encryption_enabled=bool(config.passphrase),
        passphrase=config.passphrase or None,
    )


async def enable_account_encryption(
    accounts: AccountStore,
    blobs: BlobStore,
    user_id: str,
    passphrase: str,
) -> Account:
    """Turn on encryption for an account, sealing its current blob.

    Raises:
        AuthenticationError: the account does not exist.
        InvalidArguments: encryption already enabled, or passphrase too short.
    """
    account = await accounts.get(user_id)
    if account is None:
        raise AuthenticationError("User not found")
    if account.encryption_enabled:
        raise InvalidArguments("Encryption already enabled")

    async with blobs.lock(user_id):
        raw = await blobs.get_blob(user_id)
        sealed, token = await anyio.to_thread.run_sync(enable_encryption, raw, passphrase)
        await blobs.put_blob(user_id, sealed)

    account = account.model_copy(update={"encryption_enabled": True, "passphrase_hash": token})
    await accounts.save(account)
    logger.info("encryption_enabled", user_id=user_id)
    return account
