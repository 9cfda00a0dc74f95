"""Configuration constants and AppConfig dataclass."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

logger = logging.getLogger(__name__)

# Default model for tool-calling tasks
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_ENDPOINT = os.environ.get(
    "LITEAGENT_ENDPOINT", "https://generativelanguage.googleapis.com/v1beta"
)

# Base directory for all liteagent data
DATA_DIR = Path.home() / ".liteagent"
LOGS_DIR = DATA_DIR / "logs"
TRACES_DIR = DATA_DIR / "traces"
MAX_TRACE_FILES = 100  # oldest traces are pruned past this
HISTORY_FILE = DATA_DIR / "history"
CONFIG_FILE = DATA_DIR / "config.toml"
MCP_CONFIG_FILE = DATA_DIR / "mcp.json"
PROJECT_MCP_CONFIG = ".liteagent/mcp.json"

# Retry settings (rate-limit only)
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds

# Timeouts (seconds)
REQUEST_TIMEOUT = 120.0
MCP_CONNECT_TIMEOUT = 30.0

# Tool output limits
MAX_TOOL_OUTPUT_CHARS = 30_000
MAX_FILE_READ_CHARS = 50_000


def load_config_file(path: Path | None = None) -> dict:
    """Load settings from ~/.liteagent/config.toml. Returns empty dict if not found."""
    path = path or CONFIG_FILE
    if not path.exists():
        return {}
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]
    try:
        return tomllib.loads(path.read_text())
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return {}


@dataclass
class AppConfig:
    """Runtime configuration for a conversation session."""

    model: str = DEFAULT_MODEL
    endpoint: str = DEFAULT_ENDPOINT
    working_dir: str = field(default_factory=lambda: os.getcwd())
    auto_approve: bool = False
    max_retries: int = MAX_RETRIES
    retry_base_delay: float = RETRY_BASE_DELAY
    request_timeout: float = REQUEST_TIMEOUT
    verbose: bool = False
    system_prompt: str | None = None
    trace: bool = True

    @classmethod
    def from_file_and_cli(cls, cli_overrides: dict, config_file: Path | None = None) -> "AppConfig":
        """Create AppConfig by merging config file defaults with CLI overrides.

        Priority: CLI flags > config.toml > dataclass defaults
        """
        file_config = load_config_file(config_file)
        known = {f.name for f in fields(cls)}

        merged: dict = {}
        for key, value in file_config.items():
            if key in known:
                merged[key] = value
            else:
                logger.debug("Unknown config key ignored: %s", key)

        # CLI overrides take priority (only non-None values)
        for key, value in cli_overrides.items():
            if value is not None:
                merged[key] = value

        return cls(**merged)

    @property
    def model_short_name(self) -> str:
        """Return model name without a models/ prefix for display."""
        return self.model.rsplit("/", 1)[-1]
