# tests/providers/test_local.py
"""
Tests for the local model server connectivity probe.
"""

import pytest

from llmbridge.config.models import ServiceConfig
from llmbridge.exceptions import ModelNotFoundError, TransportError
from llmbridge.providers.local import LocalModelServer

from llmbridge.providers.transport import TransportResponse

TAGS = {"models": [{"name": "qwen2.5:7b"}, {"name": "llama3:8b"}]}


@pytest.fixture
def server(fake_transport):
    return LocalModelServer(fake_transport)


class TestProbe:

    @pytest.mark.asyncio
    async def test_direct_route(self, server, fake_transport):
        fake_transport.on("http://localhost:11434/api/tags", TAGS)
        report = await server.probe(ServiceConfig(), "QWEN2.5:7B", include_model_test=False)
        assert report.method == "direct"
        assert report.url == "http://localhost:11434/api/tags"
        assert report.models == ["qwen2.5:7b", "llama3:8b"]
        assert report.has_requested_model
        assert report.model_test is None
        assert fake_transport.requests[0].timeout == 5.0

    @pytest.mark.asyncio
    async def test_proxy_route_tried_first(self, server, fake_transport):
        fake_transport.on("http://localhost:7070/ollama/tags", TAGS)
        config = ServiceConfig(local_model_proxy_url="http://localhost:7070/ollama")
        report = await server.probe(config, include_model_test=False)
        assert report.method == "proxy"
        assert fake_transport.urls() == ["http://localhost:7070/ollama/tags"]

    @pytest.mark.asyncio
    async def test_falls_back_to_direct_route(self, server, fake_transport):
        fake_transport.on("http://localhost:11434/api/tags", TAGS)
        config = ServiceConfig(local_model_proxy_url="http://localhost:7070/ollama")
        report = await server.probe(config, include_model_test=False)
        assert report.method == "direct"
        assert fake_transport.urls() == ["http://localhost:7070/ollama/tags", "http://localhost:11434/api/tags"]

    @pytest.mark.asyncio
    async def test_unreachable_server_raises_remediation(self, server):
        with pytest.raises(TransportError) as exc_info:
            await server.probe(ServiceConfig(), include_model_test=False)
        assert "ollama serve" in str(exc_info.value)
        assert "OLLAMA_HOST" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_model_test_success(self, server, fake_transport):
        fake_transport.on("/api/tags", TAGS)
        fake_transport.on("/api/chat", {"message": {"content": "Hello there"}})
        report = await server.probe(ServiceConfig(), "qwen2.5:7b")
        assert report.model_test.ok
        assert report.model_test.detail == "Hello there"
        chat_request = fake_transport.requests_to("/api/chat")[0]
        assert chat_request.body["options"] == {"temperature": 0.01, "num_predict": 10}
        assert chat_request.body["stream"] is False

    @pytest.mark.asyncio
    async def test_model_test_missing_model_only_annotates(self, server, fake_transport):
        fake_transport.on("/api/tags", TAGS)
        fake_transport.on("/api/chat", ModelNotFoundError("ollama", "ghost"))
        report = await server.probe(ServiceConfig(), "ghost")
        assert not report.has_requested_model
        assert not report.model_test.ok
        assert report.model_test.status_code == 404
        assert "ollama pull ghost" in report.model_test.detail

    @pytest.mark.asyncio
    async def test_model_test_bad_request(self, server, fake_transport):
        fake_transport.on("/api/tags", TAGS)
        fake_transport.on("/api/chat", TransportResponse(status=400, body={"error": "invalid options"}, text=""))
        report = await server.probe(ServiceConfig(), "qwen2.5:7b")
        assert report.model_test.status_code == 400
        assert "parameters" in report.model_test.detail
