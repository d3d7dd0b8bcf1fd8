from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from .cache import CacheStats, ResponseCache
from .config import AiWireConfig
from .contracts import CompletionRequest, CompletionResult, SideEffect
from .credentials import CredentialSelector, ProviderStatus, ResolvedCredential
from .logging import LogChannels
from .metrics import dispatch_latency_seconds, dispatch_total, fallback_attempts_total
from .options import AskOptions
from .records import RecordStore, RecordWriter
from .ttl import CacheTtl
from .vendor_session import MIN_TIMEOUT_SECONDS, VendorSession
from .vendors import VENDORS, get_vendor

TEST_CONNECTION_TIMEOUT_SECONDS = 15.0

Options = AskOptions | Mapping[str, Any] | None


class Dispatcher:
    """
    Uniform entry point for chat completions across vendors.

    `ask` makes at most one vendor call; `ask_with_fallback` walks every
    enabled key of the primary vendor, then every fallback vendor, and that
    walk is the only retry mechanism. Vendor, transport and configuration
    problems always come back as unsuccessful results.
    """

    def __init__(
        self,
        cfg: AiWireConfig,
        *,
        cache: ResponseCache | None = None,
        client: httpx.AsyncClient | None = None,
        selector: CredentialSelector | None = None,
        record_store: RecordStore | None = None,
        log: LogChannels | None = None,
    ):
        self.cfg = cfg
        self.log = log or LogChannels(
            cfg.log_name,
            enable_logging=cfg.enable_logging,
            enable_debug=cfg.enable_debug_logging,
        )
        self.selector = selector or CredentialSelector(
            cfg.credentials,
            default_vendor=cfg.default_provider,
            default_key_index=cfg.default_key_index,
        )
        self.cache = cache or ResponseCache(cfg.cache_dir, log=self.log)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self.records = RecordWriter(self, record_store) if record_store is not None else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _failure(self, message: str) -> CompletionResult:
        self.log.error("dispatch_error", error=message)
        return CompletionResult.failure(message)

    def _session(self, resolved: ResolvedCredential, *, timeout_seconds: float) -> VendorSession:
        return VendorSession(
            get_vendor(resolved.vendor),
            resolved.api_key,
            resolved.model,
            client=self._client,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=self.cfg.connect_timeout_seconds,
            extra_headers=self.cfg.vendor_headers(resolved.vendor),
        )

    def _cache_ttl(self, opts: AskOptions) -> CacheTtl | None:
        if opts.cache_explicit:
            value = opts.cache
        elif self.cfg.enable_cache:
            value = self.cfg.cache_ttl_or_default()
        else:
            value = False
        if value is True:
            value = self.cfg.cache_ttl_or_default()
        if value is None or value is False:
            return None
        return CacheTtl.parse(value)

    def _cache_identity(self, opts: AskOptions, vendor: str) -> AskOptions:
        # Model stays as the caller gave it: it is only known after key resolution.
        return opts.merged(
            {
                "provider": vendor,
                "system_prompt": opts.system_prompt if opts.system_prompt is not None else self.cfg.system_prompt,
                "temperature": opts.temperature if opts.temperature is not None else self.cfg.temperature,
            }
        )

    def _build_request(self, message: str, opts: AskOptions, resolved: ResolvedCredential) -> CompletionRequest:
        return CompletionRequest(
            message=message,
            vendor=resolved.vendor,
            model=opts.model or resolved.model,
            history=opts.history_turns(),
            system_prompt=opts.system_prompt if opts.system_prompt is not None else self.cfg.system_prompt,
            temperature=opts.temperature if opts.temperature is not None else self.cfg.temperature,
            max_tokens=opts.max_tokens or self.cfg.max_tokens,
            timeout_seconds=max(MIN_TIMEOUT_SECONDS, opts.timeout or self.cfg.timeout_seconds),
        )

    async def ask(self, message: str, options: Options = None) -> CompletionResult:
        """
        Send one message to one vendor with one key.

        Cache priority: an explicit `cache` option wins (a TTL or True turns
        it on, False/None turns it off); otherwise the global enable_cache
        setting applies with default_cache_ttl.
        """
        opts = AskOptions.coerce(options)
        vendor = opts.provider or self.selector.default_vendor
        context_id = opts.context_id or 0
        ttl = self._cache_ttl(opts)
        identity = self._cache_identity(opts, vendor)

        if ttl is not None:
            cached = self.cache.get(message, identity, context_id)
            if cached is not None:
                self.log.debug("ask_cache_hit", provider=vendor, context_id=context_id)
                return cached

        resolved = self.selector.resolve(vendor, opts.key, opts.key_index)
        if resolved is None:
            return self._failure(f"No active provider found for '{vendor}'")

        request = self._build_request(message, opts, resolved)
        self.log.debug(
            "ask_request",
            provider=vendor,
            model=request.model,
            cache=ttl.spec if ttl else "off",
            context_id=context_id,
            message=message,
            history_turns=len(request.history),
        )

        session = self._session(resolved, timeout_seconds=request.timeout_seconds)
        try:
            with dispatch_latency_seconds.labels(provider=vendor).time():
                result = await session.send(request)
        except Exception as e:
            dispatch_total.labels(provider=vendor, status="error").inc()
            self.log.error("ask_crashed", provider=vendor, model=request.model, error=str(e), exc_info=True)
            return CompletionResult.failure(f"ask() error: {e}")

        if not result.success:
            dispatch_total.labels(provider=vendor, status="error").inc()
            self.log.error("ask_failed", provider=vendor, model=request.model, error=result.message)
            return result.annotate(cached=False)

        dispatch_total.labels(provider=vendor, status="success").inc()
        self.log.info(
            "ask_ok",
            provider=vendor,
            model=request.model,
            total_tokens=result.usage.total_tokens,
        )
        result = result.annotate(cached=False)

        if ttl is not None:
            saved = self.cache.set(message, identity, result, ttl, context_id)
            result = result.with_side_effect(
                SideEffect("cache_write", ok=saved, error=None if saved else "cache write failed")
            )
        return result

    async def _try_all_keys(
        self, vendor: str, message: str, opts: AskOptions
    ) -> tuple[CompletionResult | None, str | None]:
        last_error: str | None = None
        for index, cred in self.selector.enabled_credentials(vendor):
            fallback_attempts_total.labels(provider=vendor).inc()
            self.log.debug("fallback_try_key", provider=vendor, key_index=index, key_label=cred.label)

            update: dict[str, Any] = {"provider": vendor, "key": cred.key, "key_index": None}
            if opts.model is None and cred.model:
                update["model"] = cred.model

            result = await self.ask(message, opts.merged(update))
            if result.success:
                return (
                    result.annotate(used_provider=vendor, used_key_index=index, used_key_label=cred.label),
                    None,
                )

            last_error = f"{vendor} key #{index}: {result.message}"
            self.log.debug("fallback_key_failed", provider=vendor, key_index=index, error=result.message)
        return None, last_error

    async def ask_with_fallback(self, message: str, options: Options = None) -> CompletionResult:
        """
        Try every enabled key of the primary vendor in index order, then the
        vendors listed in `fallback_providers`. Key, key index and model are
        vendor-specific, so they are dropped when moving to another vendor.
        """
        opts = AskOptions.coerce(options)
        primary = opts.provider or self.selector.default_vendor

        result, last_error = await self._try_all_keys(primary, message, opts)
        if result is not None:
            return result

        for vendor in opts.fallback_providers:
            if vendor == primary:
                continue
            self.log.debug("fallback_provider", provider=vendor)
            result, error = await self._try_all_keys(vendor, message, opts.without("key", "key_index", "model"))
            if result is not None:
                return result
            last_error = error or last_error

        return self._failure(f"All keys and fallback providers failed: {last_error or 'no enabled keys'}")

    async def ask_multiple(
        self, message: str, vendors: Sequence[str], options: Options = None
    ) -> dict[str, CompletionResult]:
        opts = AskOptions.coerce(options)
        results = await asyncio.gather(*(self.ask(message, opts.merged({"provider": v})) for v in vendors))
        return dict(zip(vendors, results))

    async def chat(self, message: str, options: Options = None) -> str:
        result = await self.ask(message, options)
        return result.content if result.success else ""

    async def test_credential(self, vendor: str, api_key: str, model: str | None = None) -> CompletionResult:
        if not vendor or not api_key:
            return CompletionResult.failure("Provider and API key are required")
        if vendor not in VENDORS:
            return CompletionResult.failure(f"Unknown provider: {vendor}")

        resolved = ResolvedCredential(vendor=vendor, api_key=api_key, model=model or VENDORS[vendor].default_model)
        result = await self._session(resolved, timeout_seconds=TEST_CONNECTION_TIMEOUT_SECONDS).test_connection()
        self.log.debug("test_credential", provider=vendor, ok=result.success)
        return result

    def providers_status(self) -> dict[str, ProviderStatus]:
        return self.selector.status()

    def clear_cache(self, context: Any = 0) -> int:
        context_id = int(getattr(context, "id", context) or 0)
        count = self.cache.clear_context(context_id)
        if count:
            self.log.info("cache_cleared", context_id=context_id, removed=count)
        return count

    def clear_all_cache(self) -> int:
        count = self.cache.clear_all()
        if count:
            self.log.info("cache_cleared_all", removed=count)
        return count

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def sweep_expired_cache(self) -> int:
        count = self.cache.sweep_expired()
        if count:
            self.log.info("cache_cleanup", removed=count)
        return count
