from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .vendors import VENDORS


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


class Credential(BaseModel):
    key: str = ""
    label: str = ""
    model: str = ""
    enabled: bool = True
    status: Literal["unknown", "ok", "fail"] = "unknown"

    @field_validator("key", "label", "model", mode="before")
    @classmethod
    def _strip(cls, v: str | None) -> str:
        return (v or "").strip()

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: str | None) -> str:
        return v if v in ("unknown", "ok", "fail") else "unknown"

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.key)


class AiWireConfig(BaseModel):
    # Dispatch defaults
    default_provider: str = Field(default_factory=lambda: os.getenv("AIWIRE_DEFAULT_PROVIDER", "anthropic"))
    default_key_index: int | None = Field(default_factory=lambda: _env_optional_int("AIWIRE_DEFAULT_KEY_INDEX"))
    system_prompt: str = Field(default_factory=lambda: os.getenv("AIWIRE_SYSTEM_PROMPT", ""))
    max_tokens: int = Field(default_factory=lambda: int(os.getenv("AIWIRE_MAX_TOKENS", "1024")))
    temperature: float = Field(default_factory=lambda: float(os.getenv("AIWIRE_TEMPERATURE", "0.7")))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("AIWIRE_TIMEOUT_SECONDS", "30")))
    connect_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AIWIRE_CONNECT_TIMEOUT_SECONDS", "10"))
    )

    # Credentials: {vendor: [Credential, ...]}, list position is the key index
    credentials: dict[str, list[Credential]] = Field(default_factory=dict)
    credentials_path: str | None = Field(default_factory=lambda: os.getenv("AIWIRE_CREDENTIALS_PATH"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("CREDENTIALS_FERNET_KEY"))
    openrouter_referer: str = Field(default_factory=lambda: os.getenv("OPENROUTER_REFERER", ""))

    # Response cache
    enable_cache: bool = Field(default_factory=lambda: _env_bool("AIWIRE_ENABLE_CACHE"))
    default_cache_ttl: int | str = Field(default_factory=lambda: os.getenv("AIWIRE_DEFAULT_CACHE_TTL", "D"))
    cache_dir: str = Field(default_factory=lambda: os.getenv("AIWIRE_CACHE_DIR", "cache/aiwire"))
    cache_sweep_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AIWIRE_CACHE_SWEEP_INTERVAL_SECONDS", "86400"))
    )

    # Observability
    enable_logging: bool = Field(default_factory=lambda: _env_bool("AIWIRE_ENABLE_LOGGING", "true"))
    enable_debug_logging: bool = Field(default_factory=lambda: _env_bool("AIWIRE_ENABLE_DEBUG_LOGGING"))
    log_name: str = Field(default_factory=lambda: os.getenv("AIWIRE_LOG_NAME", "aiwire"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    # Admin server
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    enable_api_docs: bool = Field(default_factory=lambda: _env_bool("ENABLE_API_DOCS"))

    @field_validator("credentials")
    @classmethod
    def _known_vendors_only(cls, v: dict[str, list[Credential]]) -> dict[str, list[Credential]]:
        return {vendor: keys for vendor, keys in v.items() if vendor in VENDORS}

    def require_fernet_key(self) -> str:
        if not self.fernet_key:
            raise ValueError("CREDENTIALS_FERNET_KEY is required for encrypted credential storage.")
        return self.fernet_key

    def vendor_headers(self, vendor: str) -> dict[str, str]:
        if vendor == "openrouter" and self.openrouter_referer:
            return {"HTTP-Referer": self.openrouter_referer}
        return {}

    def cache_ttl_or_default(self) -> int | str:
        return self.default_cache_ttl or "D"

    def with_stored_credentials(self) -> "AiWireConfig":
        """Return a copy whose credentials come from the encrypted file, when one is configured."""
        if not self.credentials_path:
            return self
        from .credential_store import EncryptedCredentialStore

        store = EncryptedCredentialStore(self.credentials_path, self.require_fernet_key())
        if not store.exists():
            return self
        return self.model_copy(update={"credentials": store.load().credentials})
