from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from .contracts import CompletionRequest, CompletionResult
from .errors import ProviderError, TransportError, UpstreamProtocolError, VendorAPIError
from .vendors import VendorSpec
from .wire_formats import wire_format_for

log = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 30.0
MIN_TIMEOUT_SECONDS = 5.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
RAW_BODY_LIMIT = 500


class VendorSession:
    """
    One vendor + one API key + one default model.

    `send()` never raises for transport or vendor problems: every failure
    comes back as an unsuccessful CompletionResult. Retrying is left to the
    caller; a session makes exactly one HTTP attempt per call.
    """

    def __init__(
        self,
        vendor: VendorSpec,
        api_key: str,
        model: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        extra_headers: Mapping[str, str] | None = None,
    ):
        self.vendor = vendor
        self.api_key = api_key
        self.model = model or vendor.default_model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._timeout_seconds = max(MIN_TIMEOUT_SECONDS, float(timeout_seconds))
        self._connect_timeout_seconds = max(0.0, float(connect_timeout_seconds))
        self._extra_headers = {**vendor.extra_headers, **(extra_headers or {})}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.vendor.auth_headers(self.api_key)}
        for name, value in self._extra_headers.items():
            if value:
                headers[name] = value
        return headers

    async def _post(self, payload: dict[str, Any], *, timeout_seconds: float) -> dict[str, Any]:
        timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, self._connect_timeout_seconds))
        try:
            resp = await self._client.post(self.vendor.url, json=payload, headers=self._headers(), timeout=timeout)
        except httpx.TimeoutException as e:
            raise TransportError(f"Transport error: request timed out after {timeout_seconds:g}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Transport error: {type(e).__name__}: {e}") from e

        body = resp.text
        data: Any = None
        decode_error: json.JSONDecodeError | None = None
        if body.strip():
            try:
                data = json.loads(body)
            except json.JSONDecodeError as e:
                decode_error = e

        if not 200 <= resp.status_code < 300:
            message = f"HTTP {resp.status_code}"
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and isinstance(error.get("message"), str):
                    message += f": {error['message']}"
                elif isinstance(error, str) and error:
                    message += f": {error}"
            raw = data if data is not None else {"body": body[:RAW_BODY_LIMIT]}
            raise VendorAPIError(message, status_code=resp.status_code, raw=raw)

        if decode_error is not None:
            raise UpstreamProtocolError(
                f"Invalid JSON response format (HTTP {resp.status_code})",
                raw={"body": body[:RAW_BODY_LIMIT]},
            ) from decode_error
        if not isinstance(data, dict):
            raise UpstreamProtocolError(
                f"Invalid response format (HTTP {resp.status_code})",
                raw={"body": body[:RAW_BODY_LIMIT]},
            )
        return data

    async def send(self, request: CompletionRequest) -> CompletionResult:
        wire = wire_format_for(self.vendor)
        payload = wire.build_payload(request, self.vendor)
        timeout_seconds = max(MIN_TIMEOUT_SECONDS, float(request.timeout_seconds or self._timeout_seconds))
        try:
            data = await self._post(payload, timeout_seconds=timeout_seconds)
            content, usage = wire.parse_response(data)
        except ProviderError as e:
            log.debug("vendor_request_failed", provider=self.vendor.name, model=request.model, error=str(e))
            return CompletionResult.failure(str(e), raw=getattr(e, "raw", None))

        log.debug(
            "vendor_request_ok",
            provider=self.vendor.name,
            model=request.model,
            prompt_chars=len(request.message) + sum(len(t.content) for t in request.history),
        )
        return CompletionResult.ok(content, usage=usage, raw=data)

    async def generate(self, message: str, **kwargs: Any) -> CompletionResult:
        kwargs.setdefault("timeout_seconds", self._timeout_seconds)
        request = CompletionRequest(
            message=message,
            vendor=self.vendor.name,
            model=kwargs.pop("model", None) or self.model,
            **kwargs,
        )
        return await self.send(request)

    async def test_connection(self) -> CompletionResult:
        result = await self.generate("Hi", max_tokens=10, temperature=0.0, system_prompt="")
        if result.success:
            return result.annotate(message=f"Connected! Model: {self.model}")
        return result
