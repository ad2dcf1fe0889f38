"""Tests for the Ollama HTTP client."""

import asyncio
import json

import httpx
import pytest

from inbox_triage.classifier.client import OllamaClient, sanitize_input
from inbox_triage.errors import ClassifierError, ClassifierTimeoutError, MalformedResponseError


def make_client(handler, timeout: float = 1.0, model: str = "gemma3:latest") -> OllamaClient:
    return OllamaClient(
        base_url="http://127.0.0.1:11434",
        model=model,
        timeout=timeout,
        transport=httpx.MockTransport(handler),
    )


class TestSanitizeInput:
    def test_escapes_brackets(self) -> None:
        assert sanitize_input("<b>[x]</b>") == "&lt;b&gt;&#91;x&#93;&lt;/b&gt;"

    def test_leaves_plain_text(self) -> None:
        assert sanitize_input("Review the ICD by Friday") == "Review the ICD by Friday"


class TestOllamaClientInit:
    @pytest.mark.parametrize(
        "url", ["http://127.0.0.1:11434", "http://localhost:11434", "http://[::1]:11434"]
    )
    def test_accepts_loopback(self, url: str) -> None:
        client = OllamaClient(base_url=url)
        assert client.base_url == url

    def test_rejects_remote_host(self) -> None:
        with pytest.raises(ValueError, match="loopback"):
            OllamaClient(base_url="http://ollama.example.com:11434")


class TestGenerate:
    """Tests for OllamaClient.generate."""

    @pytest.mark.asyncio
    async def test_posts_sanitized_prompt(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/generate"
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"response": '{"category": "UNCLEAR"}'})

        client = make_client(handler)
        try:
            text = await client.generate("Check <this> [now]")
        finally:
            await client.aclose()

        assert text == '{"category": "UNCLEAR"}'
        assert seen == [
            {"model": "gemma3:latest", "prompt": "Check &lt;this&gt; &#91;now&#93;", "stream": False}
        ]

    @pytest.mark.asyncio
    async def test_includes_system_prompt(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"response": "ok"})

        client = make_client(handler)
        try:
            await client.generate("prompt", system="Be terse")
        finally:
            await client.aclose()

        assert seen[0]["system"] == "Be terse"

    @pytest.mark.asyncio
    async def test_deadline_raises_timeout(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={"response": "late"})

        client = make_client(handler, timeout=0.05)
        try:
            with pytest.raises(ClassifierTimeoutError):
                await client.generate("prompt")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        client = make_client(lambda request: httpx.Response(500))
        try:
            with pytest.raises(ClassifierError, match="500"):
                await client.generate("prompt")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        try:
            with pytest.raises(ClassifierError, match="refused"):
                await client.generate("prompt")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_json_raises_malformed(self) -> None:
        client = make_client(lambda request: httpx.Response(200, text="not json"))
        try:
            with pytest.raises(MalformedResponseError):
                await client.generate("prompt")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_response_field_raises_malformed(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"done": True}))
        try:
            with pytest.raises(MalformedResponseError):
                await client.generate("prompt")
        finally:
            await client.aclose()


class TestConnection:
    """Tests for OllamaClient.test_connection."""

    @pytest.mark.asyncio
    async def test_reports_configured_model(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(
                200, json={"models": [{"name": "llama3"}, {"name": "gemma3:latest"}]}
            )

        client = make_client(handler)
        try:
            result = await client.test_connection()
        finally:
            await client.aclose()

        assert result.success is True
        assert result.model == "gemma3:latest"

    @pytest.mark.asyncio
    async def test_falls_back_to_first_model(self) -> None:
        client = make_client(
            lambda request: httpx.Response(200, json={"models": [{"name": "llama3"}]}),
            model="missing",
        )
        try:
            result = await client.test_connection()
        finally:
            await client.aclose()

        assert result.model == "llama3"

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self) -> None:
        client = make_client(lambda request: httpx.Response(503))
        try:
            result = await client.test_connection()
            available = await client.is_available()
        finally:
            await client.aclose()

        assert result.success is False
        assert result.error.startswith("HTTP 503")
        assert available is False
