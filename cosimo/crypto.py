"""
Cryptographic functions for Cosimo MCP Server.

Envelope: AES-256-GCM under a PBKDF2-HMAC-SHA256 key derived from the
user's passphrase. The envelope is base64(salt | nonce | tag | ciphertext),
with a fresh salt and nonce per seal.

Verifier: a separate PBKDF2 domain (shorter salt, fewer iterations) whose
token ("salt_hex:hash_hex") lets the server check a passphrase without
storing it. The token cannot be used to derive the envelope key.
"""

import base64
import binascii
import hmac
import json
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import (
    KDF_ITERATIONS,
    KEY_LENGTH,
    NONCE_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    VERIFIER_ITERATIONS,
    VERIFIER_SALT_LENGTH,
)
from .utils import DecryptionFailed, canonical_json

HEADER_LENGTH = SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH

# Shortest decoded value treated as an envelope
MIN_ENVELOPE_LENGTH = HEADER_LENGTH + 10


def derive_key(passphrase: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """Derive a 256-bit key from a passphrase and salt."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ============== Envelope Cipher ==============

def seal(document: Any, passphrase: str) -> str:
    """Encrypt a JSON-serializable document into a base64 envelope."""
    plaintext = canonical_json(document).encode("utf-8")

    salt = secrets.token_bytes(SALT_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    key = derive_key(passphrase, salt)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")


def open_envelope(envelope: str, passphrase: str) -> Any:
    """Decrypt an envelope produced by seal().

    Raises:
        DecryptionFailed: for a wrong passphrase, tampered data, or a
            malformed envelope alike.
    """
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, TypeError, ValueError):
        raise DecryptionFailed() from None

    if len(raw) <= HEADER_LENGTH:
        raise DecryptionFailed()

    salt = raw[:SALT_LENGTH]
    nonce = raw[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
    tag = raw[SALT_LENGTH + NONCE_LENGTH:HEADER_LENGTH]
    ciphertext = raw[HEADER_LENGTH:]

    key = derive_key(passphrase, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        return json.loads(plaintext.decode("utf-8"))
    except (InvalidTag, UnicodeDecodeError, ValueError):
        raise DecryptionFailed() from None


def looks_sealed(value: Any) -> bool:
    """Heuristic: does this stored value look like an envelope?

    Only used to choose a decode path, never to authorize anything.
    """
    if not isinstance(value, str):
        return False
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(raw) > MIN_ENVELOPE_LENGTH


# ============== Passphrase Verifier ==============

def hash_passphrase(passphrase: str) -> str:
    """Create a verification token for a passphrase."""
    salt = secrets.token_bytes(VERIFIER_SALT_LENGTH)
    digest = derive_key(passphrase, salt, iterations=VERIFIER_ITERATIONS)
    return f"{salt.hex()}:{digest.hex()}"


def verify_passphrase(passphrase: str, token: str | None) -> bool:
    """Check a passphrase against a stored token. Fails closed."""
    try:
        salt_hex, hash_hex = token.split(":")
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
        digest = derive_key(passphrase, salt, iterations=VERIFIER_ITERATIONS)
    except (AttributeError, TypeError, ValueError):
        return False
    return hmac.compare_digest(digest, expected)
