import httpx
import pytest

from conftest import ok_response
from aiwire_provider.dispatcher import Dispatcher


def _app(make_config, handler=ok_response, **cfg_overrides):
    pytest.importorskip("fastapi")
    from aiwire_provider.server import create_app

    cfg_overrides.setdefault("credentials", {"anthropic": [{"key": "ant-0", "label": "main"}]})
    cfg = make_config(**cfg_overrides)
    dispatcher = Dispatcher(cfg, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return create_app(cfg=cfg, dispatcher=dispatcher)


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_healthz_is_public(make_config):
    async with _client(_app(make_config, server_auth_token="sekret")) as client:
        resp = await client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_v1_requires_bearer_token_when_configured(make_config):
    async with _client(_app(make_config, server_auth_token="sekret")) as client:
        resp = await client.get("/v1/providers", headers={"X-Request-Id": "req-12345678"})
        assert resp.status_code == 401
        assert resp.headers.get("WWW-Authenticate", "").lower().startswith("bearer")
        assert resp.headers["X-Request-Id"] == "req-12345678"
        assert resp.json() == {
            "success": False,
            "message": "Missing or invalid authentication token.",
            "request_id": "req-12345678",
        }

        resp_ok = await client.get("/v1/providers", headers={"Authorization": "Bearer sekret"})
        assert resp_ok.status_code == 200
        assert resp_ok.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_ask_endpoint(make_config):
    async with _client(_app(make_config)) as client:
        resp = await client.post("/v1/ask", json={"message": "hi", "options": {"max_tokens": 20}})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["content"] == "hello"
        assert body["usage"]["total_tokens"] == 7


@pytest.mark.asyncio
async def test_ask_endpoint_reports_failures_in_body(make_config):
    async with _client(_app(make_config)) as client:
        resp = await client.post("/v1/ask", json={"message": "hi", "options": {"provider": "openai"}})
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["message"] == "No active provider found for 'openai'"


@pytest.mark.asyncio
async def test_ask_endpoint_validates_options(make_config):
    async with _client(_app(make_config)) as client:
        resp = await client.post("/v1/ask", json={"message": "hi", "options": {"temperature": 9}})
        assert resp.status_code == 422
        resp = await client.post("/v1/ask", json={"message": "hi", "options": {"bogus": 1}})
        assert resp.status_code == 422
        resp = await client.post("/v1/ask", json={"message": ""})
        assert resp.status_code == 422


@pytest.mark.asyncio
async def test_fallback_endpoint(make_config):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.anthropic.com":
            return httpx.Response(529, json={"error": {"message": "overloaded"}})
        return ok_response(request, "from openai")

    app = _app(
        make_config,
        handler=handler,
        credentials={"anthropic": [{"key": "ant-0"}], "openai": [{"key": "oai-0", "label": "main"}]},
    )
    async with _client(app) as client:
        resp = await client.post(
            "/v1/ask/fallback", json={"message": "hi", "options": {"fallback_providers": ["openai"]}}
        )
        body = resp.json()
        assert body["success"] is True
        assert body["used_provider"] == "openai"
        assert body["used_key_label"] == "main"


@pytest.mark.asyncio
async def test_providers_and_test_endpoint(make_config):
    async with _client(_app(make_config)) as client:
        providers = (await client.get("/v1/providers")).json()
        anthropic = providers["anthropic"]
        assert (anthropic["label"], anthropic["active"], anthropic["key_count"]) == ("Anthropic (Claude)", True, 1)
        assert anthropic["default_model"] in anthropic["models"]
        assert providers["openai"]["active"] is False

        resp = await client.post("/v1/providers/openai/test", json={"api_key": "sk-candidate-123456"})
        assert resp.json() == {"success": True, "message": "Connected! Model: gpt-4.1"}

        resp = await client.post("/v1/providers/mistral/test", json={"api_key": "k"})
        assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_cache_endpoints(make_config):
    async with _client(_app(make_config)) as client:
        await client.post("/v1/ask", json={"message": "a", "options": {"cache": "D", "context_id": 3}})
        await client.post("/v1/ask", json={"message": "b", "options": {"cache": "D"}})

        stats = (await client.get("/v1/cache/stats")).json()
        assert stats["total_files"] == 2
        assert stats["partitions"] == 2

        assert (await client.delete("/v1/cache", params={"context_id": 3})).json() == {"removed": 1}
        assert (await client.delete("/v1/cache")).json() == {"removed": 1}
        assert (await client.get("/v1/cache/stats")).json()["total_files"] == 0
