"""HTTP client for a local Ollama text-generation server."""

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from inbox_triage.errors import ClassifierError, ClassifierTimeoutError, MalformedResponseError
from inbox_triage.logging import get_logger

logger = get_logger("ollama")

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
USER_AGENT = "inbox-triage/0.1"
LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}

# Connection checks use a short fixed deadline
CONNECTION_TEST_TIMEOUT = 5.0


@dataclass
class ConnectionTestResult:
    success: bool
    model: str | None = None
    error: str | None = None


def sanitize_input(text: str) -> str:
    """Escape characters that could be used to smuggle markup into the prompt."""
    return (
        text.replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("[", "&#91;")
        .replace("]", "&#93;")
    )


class OllamaClient:
    """Async client for the Ollama ``/api/generate`` endpoint.

    Only loopback addresses are accepted so classified content never leaves
    the machine. Every request carries a total deadline; exceeding it raises
    ClassifierTimeoutError.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gemma3:latest",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        host = urlparse(base_url).hostname
        if host not in LOOPBACK_HOSTS:
            raise ValueError(f"Classifier base URL must be a loopback address, got {base_url}")

        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    async def generate(self, prompt: str, system: str | None = None) -> str:
        """Generate a completion for ``prompt``.

        Raises:
            ClassifierTimeoutError: The deadline expired
            ClassifierError: Transport failure or non-success status
            MalformedResponseError: The body is not ``{"response": str}``
        """
        body: dict[str, Any] = {
            "model": self.model,
            "prompt": sanitize_input(prompt),
            "stream": False,
        }
        if system:
            body["system"] = sanitize_input(system)

        try:
            response = await asyncio.wait_for(
                self._client.post("/api/generate", json=body),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ClassifierTimeoutError(
                f"Ollama request timed out after {self.timeout:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise ClassifierError(f"Ollama request failed: {e}") from e

        if not response.is_success:
            raise ClassifierError(f"Ollama error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Ollama returned invalid JSON: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise MalformedResponseError("Ollama response has no 'response' string")

        return text

    async def test_connection(self) -> ConnectionTestResult:
        """Check that the server answers and report the model that will be used."""
        try:
            response = await asyncio.wait_for(
                self._client.get("/api/tags"),
                timeout=CONNECTION_TEST_TIMEOUT,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ConnectionTestResult(success=False, error="Connection timeout")
        except httpx.HTTPError as e:
            return ConnectionTestResult(success=False, error=str(e))

        if not response.is_success:
            return ConnectionTestResult(
                success=False,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        try:
            data = response.json()
        except ValueError as e:
            return ConnectionTestResult(success=False, error=f"Invalid JSON: {e}")

        entries = data.get("models", []) if isinstance(data, dict) else []
        models = [m.get("name") for m in entries if isinstance(m, dict)]
        if self.model in models:
            model = self.model
        else:
            model = models[0] if models else "unknown"
        return ConnectionTestResult(success=True, model=model)

    async def is_available(self) -> bool:
        result = await self.test_connection()
        return result.success

    async def aclose(self) -> None:
        await self._client.aclose()
