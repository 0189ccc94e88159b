# tests/providers/test_transport.py
"""
Tests for the aiohttp transport against a local aiohttp test server.
"""

import asyncio

import pytest
from aiohttp import test_utils, web

from llmbridge.api import LLMBridge
from llmbridge.config.models import RetrySettings, ServiceConfig
from llmbridge.exceptions import (ModelNotFoundError, RequestCancelledError,
                                  TransportError)
from llmbridge.lifecycle import CancellationToken
from llmbridge.models import AIRequestParams, Message, Provider, Role
from llmbridge.providers.requests import TransportRequest
from llmbridge.providers.transport import HttpTransport, decode_body


async def _ok(request):
    payload = await request.json()
    return web.json_response({"response": f"echo {payload['model']}", "eval_count": 1})


async def _ndjson(request):
    return web.Response(text='{"model":"m","response":"Hel"}\n{"model":"m","response":"lo"}\n')


async def _empty(request):
    return web.Response(text="")


async def _missing(request):
    return web.json_response({"error": "model 'ghost' not found"}, status=404)


async def _bad(request):
    return web.json_response({"error": "invalid options"}, status=400)


async def _boom(request):
    return web.Response(text="internal", status=500)


async def _teapot(request):
    return web.Response(text="short and stout", status=418)


async def _slow(request):
    await asyncio.sleep(1.0)
    return web.json_response({"response": "late"})


def _latin1(body: bytes):
    async def handler(request):
        return web.Response(body=body, content_type="application/json", charset="utf-8")

    return handler


def _app() -> web.Application:
    app = web.Application()
    app.router.add_post("/ok", _ok)
    app.router.add_post("/ndjson", _ndjson)
    app.router.add_post("/empty", _empty)
    app.router.add_post("/missing", _missing)
    app.router.add_post("/bad", _bad)
    app.router.add_post("/boom", _boom)
    app.router.add_post("/teapot", _teapot)
    app.router.add_post("/slow", _slow)
    app.router.add_post("/latin1", _latin1(b'{"response": "caf\xe9"}'))
    return app


def _request(url, model="ghost", timeout=5.0, token=None, provider=Provider.OLLAMA):
    return TransportRequest(
        method="POST",
        url=str(url),
        provider=provider,
        model=model,
        headers={"Content-Type": "application/json"},
        body={"model": model},
        timeout=timeout,
        cancel_token=token,
    )


class TestDecodeBody:

    def test_json(self):
        assert decode_body('{"a": 1}') == {"a": 1}

    def test_blank(self):
        assert decode_body("  \n") is None

    def test_not_json(self):
        assert decode_body("a\nb") == "a\nb"


class TestHttpTransport:

    @pytest.mark.asyncio
    async def test_status_mapping(self):
        server = test_utils.TestServer(_app())
        await server.start_server()
        transport = HttpTransport()
        try:
            response = await transport.send(_request(server.make_url("/ok"), model="qwen2.5:7b"))
            assert response.status == 200
            assert response.body == {"response": "echo qwen2.5:7b", "eval_count": 1}

            response = await transport.send(_request(server.make_url("/ndjson")))
            assert isinstance(response.body, str)
            assert response.body.count("\n") == 2

            response = await transport.send(_request(server.make_url("/empty")))
            assert response.body is None

            with pytest.raises(ModelNotFoundError) as exc_info:
                await transport.send(_request(server.make_url("/missing")))
            assert "ollama pull ghost" in str(exc_info.value)
            assert exc_info.value.status_code == 404

            with pytest.raises(TransportError) as exc_info:
                await transport.send(_request(server.make_url("/bad")))
            assert exc_info.value.status_code == 400
            assert "invalid options" in str(exc_info.value)

            with pytest.raises(TransportError) as exc_info:
                await transport.send(_request(server.make_url("/boom")))
            assert exc_info.value.status_code == 500
            assert "ollama serve" in str(exc_info.value)

            with pytest.raises(TransportError) as exc_info:
                await transport.send(_request(server.make_url("/teapot"), provider=Provider.OPENAI))
            assert exc_info.value.status_code == 418
            assert "HTTP 418" in str(exc_info.value)
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_timeout(self):
        server = test_utils.TestServer(_app())
        await server.start_server()
        transport = HttpTransport()
        try:
            with pytest.raises(TransportError, match="timed out"):
                await transport.send(_request(server.make_url("/slow"), timeout=0.1))
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_cancellation(self):
        server = test_utils.TestServer(_app())
        await server.start_server()
        transport = HttpTransport()
        token = CancellationToken("req_1")
        try:
            pending = asyncio.ensure_future(transport.send(_request(server.make_url("/slow"), token=token)))
            await asyncio.sleep(0.1)
            token.cancel()
            with pytest.raises(RequestCancelledError):
                await pending
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        transport = HttpTransport()
        try:
            with pytest.raises(TransportError, match="Could not connect to http://127.0.0.1:1/api/tags"):
                await transport.send(_request("http://127.0.0.1:1/api/tags"))
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        transport = HttpTransport()
        await transport.close()
        await transport.close()


# =============================================================================
# NON UTF-8 BODIES
# =============================================================================


def _latin1_server_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/api/tags", _latin1(b'{"models": [{"name": "caf\xe9:latest"}]}'))
    app.router.add_post("/api/generate", _latin1(b'{"response": "caf\xe9", "done": true}'))
    app.router.add_post("/api/chat", _latin1(b'{"message": {"role": "assistant", "content": "caf\xe9"}, "done": true}'))
    return app


class TestNonUtf8Responses:

    @pytest.mark.asyncio
    async def test_invalid_bytes_are_replaced(self):
        server = test_utils.TestServer(_app())
        await server.start_server()
        transport = HttpTransport()
        try:
            response = await transport.send(_request(server.make_url("/latin1")))
            assert response.status == 200
            assert response.body == {"response": "caf\ufffd"}
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_client_operations_survive(self):
        server = test_utils.TestServer(_latin1_server_app())
        await server.start_server()
        config = ServiceConfig(
            local_model_url=str(server.make_url("/")).rstrip("/"),
            retry=RetrySettings(probe_before_retry=False),
        )
        client = LLMBridge(config, transport=HttpTransport())
        try:
            models = await client.get_available_models()
            assert "caf\ufffd:latest" in [m.id for m in models]

            assert await client.test_connection(Provider.OLLAMA) is True

            response = await client.send_request(AIRequestParams(
                model="caf\ufffd:latest",
                messages=[Message(role=Role.USER, content="hi")],
                provider=Provider.OLLAMA,
            ))
            assert response.text == "caf\ufffd"
        finally:
            await client.close()
            await server.close()
