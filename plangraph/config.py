"""Shared plangraph configuration utilities.

Centralises reading of ~/.plangraph/configuration.json so that the runtime,
the CLI and the default graph share one implementation.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_FILE = Path.home() / ".plangraph" / "configuration.json"
DEFAULT_MODEL = "ollama/llama3.1"
DEFAULT_MAX_TOKENS = 2048


def get_config_path() -> Path:
    """Return the configuration file path, honouring PLANGRAPH_CONFIG."""
    override = os.environ.get("PLANGRAPH_CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_FILE


def get_plangraph_config() -> dict[str, Any]:
    """Load configuration from disk. Missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the configured model string (e.g. 'ollama/llama3.1')."""
    llm = get_plangraph_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_max_tokens() -> int:
    return get_plangraph_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_plangraph_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_plangraph_config().get("llm", {}).get("api_base")


def get_storage_path() -> Path:
    configured = get_plangraph_config().get("storage_path")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".plangraph" / "plans"


# ---------------------------------------------------------------------------
# GraphConfig - loop protection and revision bounds
# ---------------------------------------------------------------------------


@dataclass
class GraphConfig:
    """Bounds that guarantee every graph run terminates."""

    max_iterations: int = 50
    max_consecutive_same_node: int = 3
    max_revisions: int = 2
    max_final_revisions: int = 2
    max_llm_failures: int = 3
    tool_history_limit: int = 12
    tool_history_prompt_window: int = 5
    llm_timeout_seconds: float | None = 120.0
    tool_timeout_seconds: float | None = 300.0

    @classmethod
    def load(cls) -> "GraphConfig":
        """Build from the `graph` section of configuration.json, read once."""
        settings = get_plangraph_config().get("graph", {})
        if not isinstance(settings, dict):
            return cls()
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in settings.items() if key in names})


# ---------------------------------------------------------------------------
# RuntimeConfig - text backend and persistence
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Agent runtime configuration loaded from ~/.plangraph/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = 0.2
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = field(default_factory=get_api_base)
    storage_path: Path = field(default_factory=get_storage_path)
    graph: GraphConfig = field(default_factory=GraphConfig.load)
