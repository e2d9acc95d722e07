"""
Utility functions and error types for Cosimo MCP Server.

Contains the exception taxonomy shared by every layer, canonical JSON
serialization, the wall-clock source, and id helpers.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable

OBJECTIVE_PREFIX = "obj-"
DELIVERABLE_PREFIX = "del-"

Clock = Callable[[], str]


# ============== Exceptions ==============

class CosimoError(Exception):
    """Base class for errors surfaced to callers as tool-level failures."""

    code = "COSIMO_ERROR"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidArguments(CosimoError):
    """Raised when tool arguments fail validation."""

    code = "INVALID_ARGUMENTS"
    default_message = "Invalid arguments"


class UnknownTool(CosimoError):
    """Raised when a tool name is not in the catalog."""

    code = "UNKNOWN_TOOL"
    default_message = "Unknown tool"


class NotFound(CosimoError):
    """Raised when an update targets an id that does not exist."""

    code = "NOT_FOUND"
    default_message = "Not found"


class PassphraseRequired(CosimoError):
    """Raised when encryption is enabled but no passphrase was supplied."""

    code = "PASSPHRASE_REQUIRED"
    default_message = "Passphrase required. Add x-passphrase header to your MCP configuration."


class InvalidPassphrase(CosimoError):
    """Raised when a passphrase does not match the stored verifier."""

    code = "INVALID_PASSPHRASE"
    default_message = "Invalid passphrase"


class DecryptionFailed(CosimoError):
    """Raised for any envelope that cannot be opened.

    Wrong passphrase and corrupted ciphertext are reported identically.
    """

    code = "DECRYPTION_FAILED"
    default_message = "Decryption failed - invalid passphrase or corrupted data"


class AuthenticationError(CosimoError):
    """Raised when an API key is missing or unknown."""

    code = "AUTHENTICATION_FAILED"
    default_message = "Not authenticated"


class StoreError(CosimoError):
    """Raised when the backing blob store cannot be reached."""

    code = "STORE_ERROR"
    default_message = "Store unavailable"


# ============== Helper Functions ==============

def canonical_json(document: Any) -> str:
    """Serialize a document compactly, preserving key insertion order."""
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False)


def pretty_json(document: Any) -> str:
    """Serialize a document for display in tool results."""
    return json.dumps(document, indent=2, ensure_ascii=False)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def id_suffix(item_id: Any) -> int:
    """Numeric suffix of an entity id, or 0 when the id is malformed."""
    if not isinstance(item_id, str) or "-" not in item_id:
        return 0
    suffix = item_id.split("-", 1)[1]
    # ASCII digits only ("1_000" and " 5" are malformed)
    if not (suffix.isascii() and suffix.isdigit()):
        return 0
    return int(suffix)


def relationship_key(objective_id: str, deliverable_id: str) -> str:
    """Composite key used in the relationships map."""
    return f"{objective_id}:{deliverable_id}"
