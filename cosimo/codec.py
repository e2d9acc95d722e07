"""
Blob codec for Cosimo MCP Server.

Turns the raw value held by a blob store into a Graph and back. A stored
value is either an encrypted envelope, plain JSON, or absent/corrupt; all
three normalize to a usable Graph.
"""

import json
from typing import Any

import structlog

from .config import MIN_PASSPHRASE_LENGTH
from .crypto import hash_passphrase, looks_sealed, open_envelope, seal
from .utils import InvalidArguments, PassphraseRequired, canonical_json

logger = structlog.get_logger(__name__)


def empty_graph() -> dict[str, Any]:
    """The canonical empty graph."""
    return {
        "objectives": [],
        "deliverables": [],
        "relationships": {},
        "lastUpdated": None,
    }


def ensure_shape(graph: dict[str, Any]) -> dict[str, Any]:
    """Default any missing collection so engine operations can run.

    A replaced document may carry any shape; fields it lacks are filled in,
    fields it has are left as-is.
    """
    if not isinstance(graph.get("objectives"), list):
        graph["objectives"] = []
    if not isinstance(graph.get("deliverables"), list):
        graph["deliverables"] = []
    if not isinstance(graph.get("relationships"), dict):
        graph["relationships"] = {}
    graph.setdefault("lastUpdated", None)
    return graph


def load_graph(raw: str | None, encryption_enabled: bool, passphrase: str | None) -> dict[str, Any]:
    """Decode a stored value into a Graph.

    Raises:
        PassphraseRequired: the value is an envelope but no passphrase was given.
        DecryptionFailed: the envelope could not be opened.
    """
    if not raw:
        return empty_graph()

    if encryption_enabled and looks_sealed(raw):
        if not passphrase:
            raise PassphraseRequired()
        document = open_envelope(raw, passphrase)
    else:
        try:
            document = json.loads(raw)
        except (TypeError, ValueError):
            # Corrupt legacy blob: start fresh rather than lock the user out
            logger.warning("blob_unparsable", length=len(raw))
            return empty_graph()

    if not isinstance(document, dict):
        logger.warning("blob_not_an_object", kind=type(document).__name__)
        return empty_graph()

    return ensure_shape(document)


def dump_graph(graph: dict[str, Any], encryption_enabled: bool, passphrase: str | None) -> str:
    """Encode a Graph into the value to persist.

    Raises:
        PassphraseRequired: encryption is enabled but no passphrase was given.
    """
    if encryption_enabled:
        if not passphrase:
            raise PassphraseRequired()
        return seal(graph, passphrase)
    return canonical_json(graph)


def enable_encryption(raw: str | None, passphrase: str) -> tuple[str, str]:
    """Convert a plaintext blob into an envelope.

    Returns:
        (sealed blob, passphrase verification token)
    """
    if not passphrase or len(passphrase) < MIN_PASSPHRASE_LENGTH:
        raise InvalidArguments(f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters")

    graph = load_graph(raw, encryption_enabled=False, passphrase=None)
    return seal(graph, passphrase), hash_passphrase(passphrase)
