"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_CONVERSATION_ID_PATTERN = r"^(19_[^-]+)"


@dataclass
class WatcherConfig:
    enabled: bool = True
    watched_folders: list[str] = field(
        default_factory=lambda: ["Emails/", "TeamsChats/", "Calendar/"]
    )
    conversation_prefixes: list[str] = field(default_factory=lambda: ["TeamsChats/"])
    conversation_id_pattern: str = DEFAULT_CONVERSATION_ID_PATTERN
    debounce_delay_ms: int = 1000
    debounce_max_wait_ms: int = 0  # 0 disables the ceiling
    batch_window_minutes: float = 5
    batch_max_wait_minutes: float = 0  # 0 disables the ceiling
    max_concurrent: int = 2

    @property
    def debounce_delay(self) -> float:
        """Debounce delay in seconds."""
        return self.debounce_delay_ms / 1000

    @property
    def debounce_max_wait(self) -> float | None:
        """Debounce ceiling in seconds, or None when disabled."""
        if self.debounce_max_wait_ms <= 0:
            return None
        return self.debounce_max_wait_ms / 1000

    @property
    def batch_window(self) -> float:
        """Conversation quiet window in seconds."""
        return self.batch_window_minutes * 60

    @property
    def batch_max_wait(self) -> float | None:
        """Conversation buffering ceiling in seconds, or None when disabled."""
        if self.batch_max_wait_minutes <= 0:
            return None
        return self.batch_max_wait_minutes * 60


@dataclass
class SensitivityConfig:
    patterns: list[str] = field(
        default_factory=lambda: ["#confidential", "#sensitive", "#private"]
    )
    skip_tags: list[str] = field(
        default_factory=lambda: ["confidential", "sensitive", "private"]
    )


@dataclass
class ClassifierConfig:
    base_url: str = "http://127.0.0.1:11434"
    model: str = "gemma3:latest"
    timeout_ms: int = 30000
    default_client: str = ""
    context_path: str = ""

    @property
    def timeout(self) -> float:
        """Request deadline in seconds."""
        return self.timeout_ms / 1000


@dataclass
class Config:
    vault_path: Path = field(default_factory=lambda: Path.home() / "vault")
    data_path: Path = field(
        default_factory=lambda: Path.home() / "inbox-triage" / "data.json"
    )
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    sensitivity: SensitivityConfig = field(default_factory=SensitivityConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def _string_list(value: object, default: list[str]) -> list[str]:
    """Coerce a YAML scalar or list into a list of strings."""
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "inbox-triage" / "config.yaml",
            Path("/etc/inbox-triage/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    # Parse watcher config
    watcher_data = data.get("watcher", {}) or {}
    watcher_defaults = defaults.watcher
    watcher = WatcherConfig(
        enabled=watcher_data.get("enabled", True),
        watched_folders=_string_list(
            watcher_data.get("watched_folders"), watcher_defaults.watched_folders
        ),
        conversation_prefixes=_string_list(
            watcher_data.get("conversation_prefixes"), watcher_defaults.conversation_prefixes
        ),
        conversation_id_pattern=watcher_data.get(
            "conversation_id_pattern", DEFAULT_CONVERSATION_ID_PATTERN
        ),
        debounce_delay_ms=int(watcher_data.get("debounce_delay_ms", 1000)),
        debounce_max_wait_ms=int(watcher_data.get("debounce_max_wait_ms", 0)),
        batch_window_minutes=float(watcher_data.get("batch_window_minutes", 5)),
        batch_max_wait_minutes=float(watcher_data.get("batch_max_wait_minutes", 0)),
        max_concurrent=int(watcher_data.get("max_concurrent", 2)),
    )

    # Parse sensitivity config
    sensitivity_data = data.get("sensitivity", {}) or {}
    sensitivity = SensitivityConfig(
        patterns=_string_list(sensitivity_data.get("patterns"), defaults.sensitivity.patterns),
        skip_tags=_string_list(sensitivity_data.get("skip_tags"), defaults.sensitivity.skip_tags),
    )

    # Parse classifier config
    classifier_data = data.get("classifier", {}) or {}
    classifier = ClassifierConfig(
        base_url=expand_env_var(classifier_data.get("base_url", "http://127.0.0.1:11434")),
        model=expand_env_var(classifier_data.get("model", "gemma3:latest")),
        timeout_ms=int(classifier_data.get("timeout_ms", 30000)),
        default_client=expand_env_var(classifier_data.get("default_client", "") or ""),
        context_path=classifier_data.get("context_path", "") or "",
    )

    return Config(
        vault_path=expand_path(data.get("vault_path", "~/vault")),
        data_path=expand_path(data.get("data_path", "~/inbox-triage/data.json")),
        watcher=watcher,
        sensitivity=sensitivity,
        classifier=classifier,
    )
