"""Structured logging, audit trail and execution traces for liteagent.

Provides:
- JSON file handler with rotation (~/.liteagent/logs/)
- Per-session logger adapters carrying the session id
- Dedicated audit log for tool executions
- Markdown execution traces, one file per send()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from liteagent.config import LOGS_DIR, MAX_TRACE_FILES

AUDIT_LOG_FILE = LOGS_DIR / "audit.jsonl"
APP_LOG_FILE = LOGS_DIR / "liteagent.log"

# Maximum log file size (5 MB) and backup count
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_EXTRA_FIELDS = ("session_id", "tool_name", "tool_args", "tool_result", "duration_s", "model")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        return json.dumps(entry, default=str)


def setup_logging(verbose: bool = False, logs_dir: Path | None = None) -> None:
    """Configure the ``liteagent`` logger tree.

    - File handler: JSON lines to ~/.liteagent/logs/liteagent.log (with rotation)
    - Console handler: only if verbose=True, WARNING+ level
    """
    logs_dir = logs_dir or LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("liteagent")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    file_handler = logging.handlers.RotatingFileHandler(
        str(logs_dir / APP_LOG_FILE.name),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())
    root.addHandler(file_handler)

    if verbose:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        root.addHandler(console_handler)


def session_logger(session_id: str) -> logging.LoggerAdapter:
    """Return a logger bound to one conversation session."""
    return logging.LoggerAdapter(
        logging.getLogger("liteagent.session"), {"session_id": session_id}
    )


def get_audit_logger() -> logging.Logger:
    """Get the dedicated audit logger for tool executions."""
    logger = logging.getLogger("liteagent.audit")
    if not any(
        isinstance(h, logging.handlers.RotatingFileHandler)
        and str(AUDIT_LOG_FILE) in getattr(h, "baseFilename", "")
        for h in logger.handlers
    ):
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            str(AUDIT_LOG_FILE),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    return logger


def log_tool_execution(
    tool_name: str,
    tool_args: dict,
    result: str,
    duration_s: float,
    audit_logger: logging.Logger | None = None,
) -> None:
    """Log a tool execution to the audit trail."""
    logger = audit_logger or get_audit_logger()
    result_preview = result[:500] if len(result) > 500 else result
    logger.info(
        "Tool executed: %s",
        tool_name,
        extra={
            "tool_name": tool_name,
            "tool_args": tool_args,
            "tool_result": result_preview,
            "duration_s": round(duration_s, 3),
        },
    )


class ExecutionTrace:
    """Markdown record of a single send(), saved when the turn closes."""

    def __init__(self, prompt: str, traces_dir: Path | None):
        self.traces_dir = traces_dir
        self.started = datetime.now()
        self._lines: list[str] = [
            f"# AI Execution Trace: {self.started.isoformat()}",
            f"\n## User Prompt\n```text\n{prompt}\n```\n",
        ]

    def add(self, text: str) -> None:
        self._lines.append(text)

    def turn(self, number: int) -> None:
        self._lines.append(f"\n### Turn {number}")

    def section(self, title: str, body: str) -> None:
        if body:
            self._lines.append(f"\n#### {title}\n{body}")

    def tool_request(self, name: str, args: dict) -> None:
        body = json.dumps(args, indent=2, default=str).replace("\n", "\n  ")
        self._lines.append(f"- **{name}**\n  ```json\n  {body}\n  ```")

    def render(self) -> str:
        return "\n".join(self._lines)

    def save(
        self,
        log: logging.Logger | logging.LoggerAdapter,
        keep: int = MAX_TRACE_FILES,
    ) -> Path | None:
        """Write the trace file and prune all but the newest ``keep``.

        Failures are logged, never raised.
        """
        if self.traces_dir is None:
            return None
        stamp = self.started.strftime("%Y-%m-%dT%H-%M-%S-%f")
        path = self.traces_dir / f"run-{stamp}.md"
        try:
            self.traces_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(self.render(), encoding="utf-8")
            for old in sorted(self.traces_dir.glob("run-*.md"))[:-keep]:
                old.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Failed to write execution trace: %s", e)
            return None
        log.debug("Execution trace saved to %s", path)
        return path
