"""Classification of source text into triage suggestions."""

from pathlib import Path

from inbox_triage.classifier.client import OllamaClient
from inbox_triage.classifier.context import TriageContextLoader
from inbox_triage.classifier.prompt import build_triage_prompt, parse_triage_response
from inbox_triage.config import ClassifierConfig
from inbox_triage.logging import get_logger
from inbox_triage.models import TriageSuggestion

logger = get_logger("classifier")


class TriageClassifier:
    """Builds the triage prompt, calls the model and parses its answer.

    Failures propagate as ClassifierError subclasses; deciding what to do
    with a failed classification is the caller's job.
    """

    def __init__(
        self,
        client: OllamaClient,
        default_client: str = "",
        context_loader: TriageContextLoader | None = None,
    ) -> None:
        self._client = client
        self._default_client = default_client
        self._context_loader = context_loader
        self._last_context_warning: str | None = None

    @classmethod
    def from_config(
        cls, config: ClassifierConfig, vault_path: Path | None = None
    ) -> "TriageClassifier":
        client = OllamaClient(
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout,
        )
        loader = None
        if config.context_path.strip():
            context_path = Path(config.context_path)
            if not context_path.is_absolute() and vault_path is not None:
                context_path = vault_path / context_path
            loader = TriageContextLoader(context_path)
        return cls(client, default_client=config.default_client, context_loader=loader)

    @property
    def client(self) -> OllamaClient:
        return self._client

    async def classify(self, text: str, subject: str) -> TriageSuggestion:
        context = None
        if self._context_loader is not None:
            result = await self._context_loader.load()
            # Warn once per distinct problem
            if result.warning != self._last_context_warning:
                if result.warning:
                    logger.warning("Triage context: %s", result.warning)
                self._last_context_warning = result.warning
            context = result.content

        prompt = build_triage_prompt(text, subject, self._default_client, context)
        response = await self._client.generate(prompt)
        suggestion = parse_triage_response(response)
        logger.debug(
            "Classified item: subject=%s category=%s confidence=%.2f",
            subject,
            suggestion.category.value,
            suggestion.confidence,
        )
        return suggestion

    async def aclose(self) -> None:
        await self._client.aclose()
