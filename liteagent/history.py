"""Conversation history and its mapping onto request contents."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from liteagent.tools.base import ToolResult


class EntryKind(str, Enum):
    USER_TEXT = "user_text"
    MODEL_TEXT = "model_text"
    MODEL_TOOL_CALL = "model_tool_call"
    TOOL_RESULT = "tool_result"


_ROLES = {
    EntryKind.USER_TEXT: "user",
    EntryKind.MODEL_TEXT: "model",
    EntryKind.MODEL_TOOL_CALL: "model",
    EntryKind.TOOL_RESULT: "user",
}


@dataclass
class HistoryEntry:
    """One turn of the conversation."""

    kind: EntryKind
    text: str = ""
    tool_name: str = ""
    tool_args: dict = field(default_factory=dict)
    call_id: str = ""
    result: ToolResult | None = None

    @property
    def role(self) -> str:
        return _ROLES[self.kind]

    def to_part(self) -> dict:
        if self.kind == EntryKind.MODEL_TOOL_CALL:
            call: dict = {"name": self.tool_name, "args": self.tool_args}
            if self.call_id:
                call["id"] = self.call_id
            return {"functionCall": call}
        if self.kind == EntryKind.TOOL_RESULT:
            response: dict = {
                "name": self.tool_name,
                "response": (self.result or ToolResult()).to_response(),
            }
            if self.call_id:
                response["id"] = self.call_id
            return {"functionResponse": response}
        return {"text": self.text}


def format_prompt(prompt: str, attachments: list[str] | None = None) -> str:
    """Prefix attachment paths onto the prompt text."""
    if not attachments:
        return prompt
    return f"[Attached: {', '.join(attachments)}] {prompt}"


class ConversationHistory:
    """Append-only, ordered record of a session's turns."""

    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> HistoryEntry:
        return self._entries[index]

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def add_user_text(self, text: str) -> HistoryEntry:
        return self._append(HistoryEntry(kind=EntryKind.USER_TEXT, text=text))

    def add_model_text(self, text: str) -> HistoryEntry:
        return self._append(HistoryEntry(kind=EntryKind.MODEL_TEXT, text=text))

    def add_tool_call(self, name: str, args: dict, call_id: str = "") -> HistoryEntry:
        return self._append(HistoryEntry(
            kind=EntryKind.MODEL_TOOL_CALL, tool_name=name, tool_args=args, call_id=call_id,
        ))

    def add_tool_result(self, name: str, result: ToolResult, call_id: str = "") -> HistoryEntry:
        return self._append(HistoryEntry(
            kind=EntryKind.TOOL_RESULT, tool_name=name, result=result, call_id=call_id,
        ))

    def _append(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def to_contents(self) -> list[dict]:
        """Full history as request contents; consecutive same-role entries share one content."""
        contents: list[dict] = []
        for entry in self._entries:
            part = entry.to_part()
            if contents and contents[-1]["role"] == entry.role:
                contents[-1]["parts"].append(part)
            else:
                contents.append({"role": entry.role, "parts": [part]})
        return contents

    def summary(self) -> list[str]:
        """One line per entry, for /debug."""
        lines = []
        for i, entry in enumerate(self._entries):
            if entry.kind in (EntryKind.MODEL_TOOL_CALL, EntryKind.TOOL_RESULT):
                detail = entry.tool_name
                if entry.result is not None and entry.result.is_error:
                    detail += " (error)"
            else:
                detail = f"{len(entry.text)} chars"
            lines.append(f"[{i}] {entry.role} {entry.kind.value}: {detail}")
        return lines
