"""
Configuration module for Cosimo MCP Server.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use COSIMO_ prefix (e.g., COSIMO_API_KEY).
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_data_path() -> Path:
    """Get default directory for local blob and account files."""
    return Path.home() / ".cosimo"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - COSIMO_API_KEY: API key used by the stdio client against a remote server
    - COSIMO_PASSPHRASE: Passphrase for client-side encryption (optional)
    - COSIMO_USER_ID: User id for the local file store
    - COSIMO_SERVER_URL: Base URL of the Cosimo HTTP server
    - COSIMO_STORE: Blob backend for stdio ("remote" or "file")
    - COSIMO_DATA_PATH: Directory for local blob and account files
    - COSIMO_HOST / COSIMO_PORT: HTTP server bind address
    - COSIMO_PING_INTERVAL: Seconds between SSE keep-alive pings
    """

    api_key: str | None = None
    passphrase: str | None = None
    user_id: str = "local"
    server_url: str = "http://localhost:3000"
    store: Literal["remote", "file"] = "remote"
    data_path: Path = Field(default_factory=_get_default_data_path)

    host: str = "127.0.0.1"
    port: int = 3000
    ping_interval: int = 30
    messages_path: str = "/messages"

    protocol_version: str = "2024-11-05"
    server_name: str = "cosimo"
    server_version: str = "1.0.0"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="COSIMO_")


# Global settings instance
settings = Settings()

# Key-derivation parameters. The passphrase verifier uses its own salt
# length and iteration count.
SALT_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

VERIFIER_SALT_LENGTH = 16
VERIFIER_ITERATIONS = 10_000

MIN_PASSPHRASE_LENGTH = 4
