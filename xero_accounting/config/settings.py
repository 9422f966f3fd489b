"""Configuration settings for the Xero accounting client."""

import json
from pathlib import Path
from typing import Any, NamedTuple, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from xero_accounting.cache.ttl import TTL, parse_ttl
from xero_accounting.xero.errors import XeroConfigError

APP_NAME = "xero-accounting-manager"


def _default_state_dir() -> Path:
    # tmpfs keeps the tenant ID off disk when available
    shm = Path("/dev/shm")
    if shm.exists():
        return shm / APP_NAME
    return Path.home() / ".cache" / APP_NAME


class XeroCredentials(NamedTuple):
    client_id: str
    client_secret: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Xero OAuth client credentials
    xero_client_id: Optional[str] = Field(
        default=None,
        description="Xero app client ID (custom connection)",
    )
    xero_client_secret: Optional[str] = Field(
        default=None,
        description="Xero app client secret",
    )
    xero_config_path: Optional[Path] = Field(
        default=None,
        description="config.json holding the client credentials; defaults to ./config.json when present",
    )

    # Xero endpoints
    xero_api_base: str = Field(
        default="https://api.xero.com/api.xro/2.0",
        description="Base URL of the Xero Accounting API",
    )
    xero_connections_url: str = Field(
        default="https://api.xero.com/connections",
        description="URL listing connected organisations",
    )
    xero_token_url: str = Field(
        default="https://identity.xero.com/connect/token",
        description="OAuth 2.0 token endpoint",
    )
    xero_scopes: str = Field(
        default=(
            "accounting.transactions accounting.contacts "
            "accounting.settings.read accounting.reports.read"
        ),
        description="Space separated OAuth scopes",
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for Xero HTTP requests"
    )

    tenant_id_path: Path = Field(
        default_factory=lambda: _default_state_dir() / "tenant-id.txt",
        description="Where the discovered tenant ID is remembered",
    )

    # Cache settings
    cache_enabled: bool = Field(default=True, description="Enable caching")
    cache_namespace: str = Field(
        default=APP_NAME, description="Key namespace for this client's cache"
    )
    cache_persist: bool = Field(
        default=True, description="Persist cache entries to SQLite across runs"
    )
    cache_path: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / APP_NAME / "cache.db",
        description="SQLite cache path",
    )
    cache_default_ttl: TTL = Field(
        default=TTL.FIVE_MINUTES, description="TTL when a call site sets none"
    )
    cache_ttl_contacts: TTL = Field(
        default=TTL.HOUR, description="TTL for contact lists"
    )
    cache_ttl_reference: TTL = Field(
        default=TTL.DAY,
        description="TTL for accounts, tax rates and organisation details",
    )
    cache_memory_max_items: int = Field(
        default=1000, description="Max items in memory cache"
    )
    cache_single_flight: bool = Field(
        default=False,
        description="Coalesce concurrent misses for the same key into one fetch",
    )

    # API
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, description="API port")
    environment: str = Field(
        default="development",
        description="Environment: 'development' or 'production'",
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator(
        "cache_default_ttl", "cache_ttl_contacts", "cache_ttl_reference", mode="before"
    )
    @classmethod
    def _accept_ttl_names(cls, value: Any) -> Any:
        return parse_ttl(value)

    def resolve_credentials(self) -> XeroCredentials:
        """Return the client credentials from the environment or config file.

        Environment values win. The config file may hold either
        {"xero": {"clientId", "clientSecret"}} or
        {"mcpServer": {"env": {"XERO_CLIENT_ID", "XERO_CLIENT_SECRET"}}}.

        Raises:
            XeroConfigError: If no complete pair of credentials is found
        """
        if self.xero_client_id and self.xero_client_secret:
            return XeroCredentials(self.xero_client_id, self.xero_client_secret)

        config_path = self.xero_config_path or _default_config_path()
        if config_path is not None:
            credentials = _load_config_file(config_path)
            if credentials is not None:
                return credentials

        raise XeroConfigError(
            "Missing required config. Set XERO_CLIENT_ID and XERO_CLIENT_SECRET, "
            "or provide a config file with xero.{clientId,clientSecret} or "
            "mcpServer.env.{XERO_CLIENT_ID,XERO_CLIENT_SECRET}"
        )


def _default_config_path() -> Optional[Path]:
    candidate = Path.cwd() / "config.json"
    return candidate if candidate.is_file() else None


def _load_config_file(path: Path) -> Optional[XeroCredentials]:
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise XeroConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise XeroConfigError(f"Config file {path} is not valid JSON: {e}")

    xero = config.get("xero") or {}
    if xero.get("clientId") and xero.get("clientSecret"):
        return XeroCredentials(xero["clientId"], xero["clientSecret"])

    env = (config.get("mcpServer") or {}).get("env") or {}
    if env.get("XERO_CLIENT_ID") and env.get("XERO_CLIENT_SECRET"):
        return XeroCredentials(env["XERO_CLIENT_ID"], env["XERO_CLIENT_SECRET"])

    return None


settings = Settings()
