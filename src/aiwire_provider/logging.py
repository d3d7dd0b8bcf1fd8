from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog


_SENSITIVE_KEYS = {
    "authorization",
    "x-api-key",
    "api_key",
    "apikey",
    "key",
    "token",
    "secret",
    "password",
    "fernet_key",
    "credentials",
}

_SENSITIVE_SUFFIXES = ("_api_key", "_token", "_secret", "_password")

# Vendor key shapes: sk-..., sk-ant-..., sk-or-..., xai-...
_API_KEY_RE = re.compile(r"\b(?:sk|xai)-[A-Za-z0-9_-]{8,}")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return name in _SENSITIVE_KEYS or name.endswith(_SENSITIVE_SUFFIXES)


def _redact_str(value: str, *, secrets: list[str]) -> str:
    out = value
    for secret in secrets:
        if secret and secret in out:
            out = out.replace(secret, "[REDACTED]")
    out = _BEARER_RE.sub("Bearer [REDACTED]", out)
    return _API_KEY_RE.sub("[REDACTED]", out)


def redact(obj: Any, *, secrets: list[str] | None = None) -> Any:
    secrets = secrets or []
    if isinstance(obj, str):
        return _redact_str(obj, secrets=secrets)
    if isinstance(obj, list):
        return [redact(v, secrets=secrets) for v in obj]
    if isinstance(obj, tuple):
        return tuple(redact(v, secrets=secrets) for v in obj)
    if isinstance(obj, dict):
        return {k: "[REDACTED]" if _is_sensitive(k) else redact(v, secrets=secrets) for k, v in obj.items()}
    return obj


def _make_redaction_processor(*, secrets: list[str]) -> Processor:
    secrets_norm = [s for s in secrets if isinstance(s, str) and s]

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], redact(dict(event_dict), secrets=secrets_norm))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
    ]
    if fmt == "json":
        # Render tracebacks before redaction so they get scrubbed too.
        processors.append(cast(Processor, structlog.processors.format_exc_info))
    # Key shapes are always scrubbed; configured secrets on top.
    processors.append(_make_redaction_processor(secrets=secrets or []))

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


class LogChannels:
    """
    The three dispatch log channels.

    info   -> "<name>"        (success lines, gated by enable_logging)
    error  -> "<name>-errors" (always on)
    debug  -> "<name>-debug"  (request detail, may contain prompt text; gated by enable_debug)
    """

    def __init__(self, name: str = "aiwire", *, enable_logging: bool = True, enable_debug: bool = False):
        name = name or "aiwire"
        self.enable_logging = enable_logging
        self.enable_debug = enable_debug
        self._info = structlog.get_logger().bind(channel=name)
        self._error = structlog.get_logger().bind(channel=f"{name}-errors")
        self._debug = structlog.get_logger().bind(channel=f"{name}-debug")

    def info(self, event: str, **kw: Any) -> None:
        if self.enable_logging:
            self._info.info(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._error.error(event, **kw)

    def debug(self, event: str, **kw: Any) -> None:
        if self.enable_debug:
            # Emitted at info level so the channel flag, not the log level, decides.
            self._debug.info(event, **kw)
