"""Tests for the triage context loader and classifier wiring."""

import json
import logging
import os
from pathlib import Path

import httpx
import pytest

from inbox_triage.classifier import OllamaClient, TriageClassifier, TriageContextLoader
from inbox_triage.classifier.context import MAX_CONTEXT_SIZE, sanitize_context
from inbox_triage.config import ClassifierConfig
from inbox_triage.errors import MalformedResponseError
from inbox_triage.models import TriageCategory


class TestSanitizeContext:
    def test_escapes_markup_and_fences(self) -> None:
        assert sanitize_context("<x> [y] ```") == "&lt;x&gt; &#91;y&#93; \\`\\`\\`"


class TestTriageContextLoader:
    """Tests for TriageContextLoader."""

    @pytest.mark.asyncio
    async def test_no_path_returns_nothing(self) -> None:
        result = await TriageContextLoader(None).load()
        assert result.content is None
        assert result.warning is None

    @pytest.mark.asyncio
    async def test_missing_file_warns(self, tmp_path: Path) -> None:
        result = await TriageContextLoader(tmp_path / "context.md").load()
        assert result.content is None
        assert "not found" in result.warning

    @pytest.mark.asyncio
    async def test_undecodable_file_warns(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_bytes(b"Clients: \xff\xfe bad")
        result = await TriageContextLoader(path).load()
        assert result.content is None
        assert result.warning.startswith("Failed to load context")

    @pytest.mark.asyncio
    async def test_loads_and_sanitizes(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_text("Clients: <Metro>")
        result = await TriageContextLoader(path).load()
        assert result.content == "Clients: &lt;Metro&gt;"

    @pytest.mark.asyncio
    async def test_truncates_large_file(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_text("a" * (MAX_CONTEXT_SIZE + 10))
        result = await TriageContextLoader(path).load()
        assert len(result.content) == MAX_CONTEXT_SIZE
        assert result.warning == "Context file truncated (>10KB)"

    @pytest.mark.asyncio
    async def test_reloads_after_modification(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_text("first")
        loader = TriageContextLoader(path)
        assert (await loader.load()).content == "first"

        path.write_text("second")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert (await loader.load()).content == "second"

    @pytest.mark.asyncio
    async def test_serves_cache_while_unchanged(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_text("first")
        loader = TriageContextLoader(path)
        await loader.load()

        mtime = path.stat().st_mtime
        path.write_text("other")
        os.utime(path, (mtime, mtime))
        assert (await loader.load()).content == "first"

        loader.clear_cache()
        assert (await loader.load()).content == "other"


def make_classifier(reply: str, **kwargs) -> tuple[TriageClassifier, list[dict]]:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": reply})

    client = OllamaClient(transport=httpx.MockTransport(handler))
    return TriageClassifier(client, **kwargs), seen


class TestTriageClassifier:
    """Tests for TriageClassifier."""

    @pytest.mark.asyncio
    async def test_classifies_text(self) -> None:
        classifier, seen = make_classifier(
            '{"category": "CLIENT_CORRESPONDENCE", "title": "Board question", "confidence": 0.75}',
            default_client="Metro Tolls",
        )
        try:
            suggestion = await classifier.classify("When is go-live?", "Go-live")
        finally:
            await classifier.aclose()

        assert suggestion.category is TriageCategory.CLIENT_CORRESPONDENCE
        assert "Subject/Title: Go-live" in seen[0]["prompt"]
        assert "Metro Tolls" in seen[0]["prompt"]

    @pytest.mark.asyncio
    async def test_includes_context(self, tmp_path: Path) -> None:
        path = tmp_path / "context.md"
        path.write_text("Acme is the SDDD vendor")
        classifier, seen = make_classifier(
            '{"category": "UNCLEAR", "title": "x", "confidence": 0.1}',
            context_loader=TriageContextLoader(path),
        )
        try:
            await classifier.classify("Body", "s")
        finally:
            await classifier.aclose()

        assert "Acme is the SDDD vendor" in seen[0]["prompt"]

    @pytest.mark.asyncio
    async def test_malformed_reply_propagates(self) -> None:
        classifier, _ = make_classifier("no json here")
        try:
            with pytest.raises(MalformedResponseError):
                await classifier.classify("Body", "s")
        finally:
            await classifier.aclose()

    @pytest.mark.asyncio
    async def test_from_config_resolves_context_in_vault(self, tmp_path: Path) -> None:
        config = ClassifierConfig(model="llama3", timeout_ms=2000, context_path="Triage/context.md")
        (tmp_path / "Triage").mkdir()
        (tmp_path / "Triage" / "context.md").write_text("vault context")

        classifier = TriageClassifier.from_config(config, tmp_path)
        try:
            assert classifier.client.model == "llama3"
            assert classifier.client.timeout == 2.0
            assert classifier._context_loader is not None
            result = await classifier._context_loader.load()
        finally:
            await classifier.aclose()

        assert result.content == "vault context"

    @pytest.mark.asyncio
    async def test_context_warning_logged_once(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        classifier, seen = make_classifier(
            '{"category": "UNCLEAR", "title": "x", "confidence": 0.1}',
            context_loader=TriageContextLoader(tmp_path / "context.md"),
        )
        try:
            with caplog.at_level(logging.WARNING, logger="inbox_triage"):
                await classifier.classify("Body", "s")
                await classifier.classify("Body", "s")
        finally:
            await classifier.aclose()

        warnings = [r for r in caplog.records if r.getMessage().startswith("Triage context")]
        assert len(warnings) == 1
        assert len(seen) == 2
