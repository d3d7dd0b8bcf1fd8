from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """Base error for provider failures."""


class ConfigurationError(ProviderError):
    pass


class TransportError(ProviderError):
    """Connection, DNS or timeout failure before a response arrived."""


class VendorAPIError(ProviderError):
    def __init__(self, message: str, *, status_code: int | None = None, raw: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.raw = raw


class UpstreamProtocolError(ProviderError):
    """Unexpected upstream response shape / contract mismatch."""

    def __init__(self, message: str, *, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class RecordStoreError(Exception):
    """Raised by record store implementations when a field cannot be written."""
