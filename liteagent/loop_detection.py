"""Detects a model stuck repeating itself within one send()."""

from __future__ import annotations

import hashlib
import json

# Identical consecutive tool calls before the turn is stopped
TOOL_CALL_LOOP_THRESHOLD = 5
# Identical consecutive text chunks before the turn is stopped
CONTENT_LOOP_THRESHOLD = 10


class LoopDetector:
    """Counts consecutive repeats of the same tool call or text chunk.

    One detector lives for a whole send(), so repeats spanning several
    turns are caught too.
    """

    def __init__(
        self,
        tool_call_threshold: int = TOOL_CALL_LOOP_THRESHOLD,
        content_threshold: int = CONTENT_LOOP_THRESHOLD,
    ):
        self.tool_call_threshold = tool_call_threshold
        self.content_threshold = content_threshold
        self._last_call: str | None = None
        self._call_repeats = 0
        self._last_chunk: str | None = None
        self._chunk_repeats = 0
        self.tripped = False

    @staticmethod
    def _call_key(name: str, args: dict) -> str:
        canonical = json.dumps(args, sort_keys=True, default=str)
        return hashlib.sha256(f"{name}:{canonical}".encode()).hexdigest()

    def check_tool_call(self, name: str, args: dict) -> bool:
        key = self._call_key(name, args)
        if key == self._last_call:
            self._call_repeats += 1
        else:
            self._last_call = key
            self._call_repeats = 1
        if self._call_repeats >= self.tool_call_threshold:
            self.tripped = True
        return self.tripped

    def check_content(self, text: str) -> bool:
        chunk = text.strip()
        if not chunk:
            return self.tripped
        if chunk == self._last_chunk:
            self._chunk_repeats += 1
        else:
            self._last_chunk = chunk
            self._chunk_repeats = 1
        if self._chunk_repeats >= self.content_threshold:
            self.tripped = True
        return self.tripped
