from __future__ import annotations

import json
from typing import Any, Protocol

from .contracts import CompletionRequest, TokenUsage
from .errors import UpstreamProtocolError, VendorAPIError
from .vendors import VendorSpec, WireFormat


def _clamp_temperature(value: float, vendor: VendorSpec) -> float:
    return min(max(0.0, float(value)), vendor.max_temperature)


def _turns(request: CompletionRequest) -> list[dict[str, str]]:
    messages = [turn.to_dict() for turn in request.history]
    messages.append({"role": "user", "content": request.message})
    return messages


def _body_error_message(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
        return json.dumps(error)
    return str(error)


class WireFormatHandler(Protocol):
    def build_payload(self, request: CompletionRequest, vendor: VendorSpec) -> dict[str, Any]: ...

    def parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage]: ...


class MessagesFormat:
    """Native turn format: top-level system field, typed content blocks."""

    def build_payload(self, request: CompletionRequest, vendor: VendorSpec) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            vendor.max_tokens_field: request.max_tokens,
            "messages": _turns(request),
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        # Omitting temperature is not the same as sending 0 for this API.
        temperature = _clamp_temperature(request.temperature, vendor)
        if temperature > 0:
            payload["temperature"] = temperature
        return payload

    def parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage]:
        error = data.get("error")
        if error is not None:
            raise VendorAPIError(_body_error_message(error) or "API error", raw=data)

        blocks = data.get("content")
        parts: list[str] = []
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, dict) and block.get("type") == "text":
                    parts.append(str(block.get("text", "")))

        usage = TokenUsage()
        raw_usage = data.get("usage")
        if isinstance(raw_usage, dict):
            input_tokens = int(raw_usage.get("input_tokens", 0) or 0)
            output_tokens = int(raw_usage.get("output_tokens", 0) or 0)
            usage = TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        return "".join(parts), usage


class ChatCompletionsFormat:
    """OpenAI-compatible chat array format."""

    def build_payload(self, request: CompletionRequest, vendor: VendorSpec) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(_turns(request))
        return {
            "model": request.model,
            "temperature": _clamp_temperature(request.temperature, vendor),
            "messages": messages,
            vendor.max_tokens_field: request.max_tokens,
        }

    def parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage]:
        error = data.get("error")
        if error is not None:
            raise VendorAPIError(_body_error_message(error), raw=data)

        content = ""
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                content = message["content"]
        elif choices is not None and not isinstance(choices, list):
            raise UpstreamProtocolError("Invalid response format: 'choices' is not a list.", raw=data)

        usage = TokenUsage()
        raw_usage = data.get("usage")
        if isinstance(raw_usage, dict):
            usage = TokenUsage(
                input_tokens=int(raw_usage.get("prompt_tokens", 0) or 0),
                output_tokens=int(raw_usage.get("completion_tokens", 0) or 0),
                total_tokens=int(raw_usage.get("total_tokens", 0) or 0),
            )
        return content, usage


WIRE_FORMATS: dict[WireFormat, WireFormatHandler] = {
    WireFormat.MESSAGES: MessagesFormat(),
    WireFormat.CHAT_COMPLETIONS: ChatCompletionsFormat(),
}


def wire_format_for(vendor: VendorSpec) -> WireFormatHandler:
    return WIRE_FORMATS[vendor.wire_format]
