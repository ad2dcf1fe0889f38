"""Classification of incoming items via a local text-generation server."""

from .client import ConnectionTestResult, OllamaClient, sanitize_input
from .context import ContextResult, TriageContextLoader
from .prompt import TRIAGE_SYSTEM_PROMPT, build_triage_prompt, parse_triage_response
from .triage import TriageClassifier

__all__ = [
    "ConnectionTestResult",
    "ContextResult",
    "OllamaClient",
    "TRIAGE_SYSTEM_PROMPT",
    "TriageClassifier",
    "TriageContextLoader",
    "build_triage_prompt",
    "parse_triage_response",
    "sanitize_input",
]
