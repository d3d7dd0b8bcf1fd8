from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError


class WireFormat(str, Enum):
    MESSAGES = "messages"
    CHAT_COMPLETIONS = "chat_completions"


class AuthStyle(str, Enum):
    API_KEY_HEADER = "x-api-key"
    BEARER = "bearer"


@dataclass(frozen=True)
class VendorSpec:
    name: str
    label: str
    url: str
    wire_format: WireFormat
    auth_style: AuthStyle
    default_model: str
    models: dict[str, str] = field(default_factory=dict)
    extra_headers: dict[str, str] = field(default_factory=dict)
    max_tokens_field: str = "max_tokens"
    max_temperature: float = 2.0

    def auth_headers(self, api_key: str) -> dict[str, str]:
        if self.auth_style is AuthStyle.API_KEY_HEADER:
            return {"x-api-key": api_key}
        return {"Authorization": f"Bearer {api_key}"}


VENDORS: dict[str, VendorSpec] = {
    "anthropic": VendorSpec(
        name="anthropic",
        label="Anthropic (Claude)",
        url="https://api.anthropic.com/v1/messages",
        wire_format=WireFormat.MESSAGES,
        auth_style=AuthStyle.API_KEY_HEADER,
        default_model="claude-sonnet-4-5-20250929",
        models={
            "claude-opus-4-6": "Claude Opus 4.6",
            "claude-sonnet-4-5-20250929": "Claude Sonnet 4.5",
            "claude-haiku-4-5-20251001": "Claude Haiku 4.5",
        },
        extra_headers={"anthropic-version": "2023-06-01"},
        max_temperature=1.0,
    ),
    "openai": VendorSpec(
        name="openai",
        label="OpenAI (GPT)",
        url="https://api.openai.com/v1/chat/completions",
        wire_format=WireFormat.CHAT_COMPLETIONS,
        auth_style=AuthStyle.BEARER,
        default_model="gpt-4.1",
        models={
            "gpt-5.2": "GPT-5.2",
            "gpt-5-mini": "GPT-5 Mini",
            "gpt-5-nano": "GPT-5 Nano",
            "gpt-4.1": "GPT-4.1",
        },
        # GPT-5 and o-series models reject max_tokens.
        max_tokens_field="max_completion_tokens",
    ),
    "google": VendorSpec(
        name="google",
        label="Google (Gemini)",
        url="https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
        wire_format=WireFormat.CHAT_COMPLETIONS,
        auth_style=AuthStyle.BEARER,
        default_model="gemini-flash-latest",
        models={
            "gemini-3-pro-preview": "Gemini 3 Pro Preview",
            "gemini-flash-latest": "Gemini Flash",
            "gemini-flash-lite-latest": "Gemini Flash Lite",
        },
    ),
    "xai": VendorSpec(
        name="xai",
        label="xAI (Grok)",
        url="https://api.x.ai/v1/chat/completions",
        wire_format=WireFormat.CHAT_COMPLETIONS,
        auth_style=AuthStyle.BEARER,
        default_model="grok-4-1-fast-non-reasoning",
        models={
            "grok-4-1-fast-reasoning": "Grok 4.1 Fast (Reasoning)",
            "grok-4-1-fast-non-reasoning": "Grok 4.1 Fast",
            "grok-3-mini": "Grok 3 Mini",
        },
    ),
    "openrouter": VendorSpec(
        name="openrouter",
        label="OpenRouter",
        url="https://openrouter.ai/api/v1/chat/completions",
        wire_format=WireFormat.CHAT_COMPLETIONS,
        auth_style=AuthStyle.BEARER,
        default_model="deepseek/deepseek-v3.2",
        models={
            "deepseek/deepseek-v3.2": "DeepSeek V3.2",
            "qwen/qwen3-max-thinking": "Qwen 3 Max Thinking",
            "google/gemini-2.5-flash": "Gemini 2.5 Flash",
            "mistralai/mistral-small-3.2-24b-instruct": "Mistral Small 3.2 24B",
            "meta-llama/llama-3.3-70b-instruct": "Llama 3.3 70B",
            "anthropic/claude-sonnet-4.5": "Claude Sonnet 4.5 (via OR)",
        },
        # Filled from config; empty headers are never sent.
        extra_headers={"HTTP-Referer": ""},
    ),
}


def get_vendor(name: str) -> VendorSpec:
    try:
        return VENDORS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown provider: {name!r}") from None
