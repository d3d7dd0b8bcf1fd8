from __future__ import annotations

import httpx
import pytest

from aiwire_provider.config import AiWireConfig
from aiwire_provider.dispatcher import Dispatcher
from aiwire_provider.errors import RecordStoreError

HOST_VENDORS = {
    "api.anthropic.com": "anthropic",
    "api.openai.com": "openai",
    "generativelanguage.googleapis.com": "google",
    "api.x.ai": "xai",
    "openrouter.ai": "openrouter",
}


def vendor_of(request: httpx.Request) -> str:
    return HOST_VENDORS[request.url.host]


def key_of(request: httpx.Request) -> str:
    if "x-api-key" in request.headers:
        return request.headers["x-api-key"]
    return request.headers.get("authorization", "").removeprefix("Bearer ")


def messages_reply(text: str = "hello", input_tokens: int = 3, output_tokens: int = 4) -> dict:
    return {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def chat_reply(text: str = "hello") -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 2, "completion_tokens": 3, "total_tokens": 5},
    }


def ok_response(request: httpx.Request, text: str = "hello") -> httpx.Response:
    if vendor_of(request) == "anthropic":
        return httpx.Response(200, json=messages_reply(text))
    return httpx.Response(200, json=chat_reply(text))


class Record:
    def __init__(self, id: int):
        self.id = id


class MemoryStore:
    def __init__(self, fields: dict | None = None, *, fail: bool = False):
        self.fields: dict[tuple[int, str], str] = dict(fields or {})
        self.writes: list[tuple[int, str, str, bool]] = []
        self.fail = fail

    def read_field(self, record, field):
        return self.fields.get((record.id, field))

    def write_field(self, record, field, text, *, quiet=True):
        if self.fail:
            raise RecordStoreError("store is read-only")
        self.fields[(record.id, field)] = text
        self.writes.append((record.id, field, text, quiet))
        return True


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides) -> AiWireConfig:
        data = {
            "default_provider": "anthropic",
            "default_key_index": None,
            "system_prompt": "",
            "max_tokens": 1024,
            "temperature": 0.7,
            "timeout_seconds": 30,
            "enable_cache": False,
            "default_cache_ttl": "D",
            "cache_dir": str(tmp_path / "cache"),
            "enable_logging": False,
            "enable_debug_logging": False,
            "credentials_path": None,
            "openrouter_referer": "",
            "enable_metrics": False,
            "server_auth_token": None,
        }
        data.update(overrides)
        return AiWireConfig(**data)

    return _make


@pytest.fixture
def make_dispatcher(make_config):
    """Build a Dispatcher whose HTTP traffic goes to `handler`; returns (dispatcher, recorded requests)."""

    def _make(handler, *, record_store=None, **cfg_overrides):
        calls: list[httpx.Request] = []

        def recording(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        dispatcher = Dispatcher(make_config(**cfg_overrides), client=client, record_store=record_store)
        return dispatcher, calls

    return _make
