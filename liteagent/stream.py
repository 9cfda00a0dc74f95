"""Server-sent event decoding into structured response fragments."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from liteagent.cancellation import CancellationToken
from liteagent.errors import TurnCancelled
from liteagent.loop_detection import LoopDetector

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class FragmentType(str, Enum):
    """Kinds of fragment a model response stream can carry."""

    TEXT = "text"
    TOOL_CALL = "tool_call"
    THOUGHT = "thought"
    ERROR = "error"
    LOOP_DETECTED = "loop_detected"
    FINISHED = "finished"


@dataclass
class StreamFragment:
    """One decoded piece of a model response."""

    type: FragmentType
    text: str = ""
    tool_name: str = ""
    tool_args: dict = field(default_factory=dict)
    call_id: str = ""


class SSEDecoder:
    """Incremental event-stream framer.

    Bytes are split on newlines; the partial trailing line is carried over
    to the next ``feed``. ``data:`` lines accumulate until a blank line ends
    the frame.
    """

    def __init__(self) -> None:
        self._carry = b""
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[str]:
        """Consume raw bytes, returning the payloads of every completed frame."""
        self._carry += chunk
        *lines, self._carry = self._carry.split(b"\n")
        payloads = []
        for raw in lines:
            payload = self._handle_line(raw.rstrip(b"\r").decode("utf-8", errors="replace"))
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[str]:
        """End of stream: emit whatever frame is still open."""
        payloads = []
        if self._carry:
            payload = self._handle_line(self._carry.rstrip(b"\r").decode("utf-8", errors="replace"))
            self._carry = b""
            if payload is not None:
                payloads.append(payload)
        payload = self._dispatch()
        if payload is not None:
            payloads.append(payload)
        return payloads

    def _handle_line(self, line: str) -> str | None:
        if not line:
            return self._dispatch()
        if line.startswith(DATA_PREFIX):
            value = line[len(DATA_PREFIX):]
            if value.startswith(" "):
                value = value[1:]
            self._data_lines.append(value)
        # event:, id:, retry: and ":" comment lines carry nothing we need
        return None

    def _dispatch(self) -> str | None:
        if not self._data_lines:
            return None
        payload = "\n".join(self._data_lines)
        self._data_lines = []
        if payload.strip() == DONE_SENTINEL:
            return None
        return payload


def fragments_from_payload(data: Any) -> list[StreamFragment]:
    """Map one parsed frame payload onto fragments, one per content part."""
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return [StreamFragment(type=FragmentType.ERROR, text=message or "Unknown error")]

    fragments: list[StreamFragment] = []
    candidates = data.get("candidates") or []
    if not candidates:
        return fragments
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []

    for part in parts:
        if "functionCall" in part:
            call = part["functionCall"] or {}
            args = call.get("args") or {}
            if not isinstance(args, dict):
                args = {"raw": args}
            fragments.append(StreamFragment(
                type=FragmentType.TOOL_CALL,
                tool_name=call.get("name", ""),
                tool_args=args,
                call_id=call.get("id") or f"call_{uuid.uuid4().hex[:8]}",
            ))
        elif "text" in part:
            kind = FragmentType.THOUGHT if part.get("thought") else FragmentType.TEXT
            if part["text"]:
                fragments.append(StreamFragment(type=kind, text=part["text"]))

    finish_reason = candidate.get("finishReason")
    if finish_reason:
        fragments.append(StreamFragment(type=FragmentType.FINISHED, text=finish_reason))
    return fragments


def _trips_loop(fragment: StreamFragment, detector: LoopDetector | None) -> bool:
    if detector is None:
        return False
    if fragment.type == FragmentType.TOOL_CALL:
        return detector.check_tool_call(fragment.tool_name, fragment.tool_args)
    if fragment.type == FragmentType.TEXT:
        return detector.check_content(fragment.text)
    return False


async def _close(chunks: AsyncIterator[bytes]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


def _parse(payloads: list[str]) -> list[StreamFragment]:
    fragments: list[StreamFragment] = []
    for payload in payloads:
        try:
            fragments.extend(fragments_from_payload(json.loads(payload)))
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed stream frame: %s (%s)", payload[:200], e)
    return fragments


async def decode_stream(
    chunks: AsyncIterator[bytes],
    token: CancellationToken | None = None,
    loop_detector: LoopDetector | None = None,
) -> AsyncIterator[StreamFragment]:
    """Turn a raw event-stream byte iterator into StreamFragments, in arrival order.

    Malformed frames are logged and skipped. An error frame is yielded and
    ends the sequence. Cancellation closes ``chunks`` and stops at once;
    nothing still buffered is emitted afterwards.
    """
    decoder = SSEDecoder()
    iterator = chunks.__aiter__()
    exhausted = False

    try:
        while not exhausted:
            if token is not None and token.cancelled:
                return
            try:
                if token is not None:
                    chunk = await token.race(iterator.__anext__())
                else:
                    chunk = await iterator.__anext__()
                fragments = _parse(decoder.feed(chunk))
            except StopAsyncIteration:
                exhausted = True
                fragments = _parse(decoder.flush())
            except TurnCancelled:
                return

            for fragment in fragments:
                if token is not None and token.cancelled:
                    return
                if _trips_loop(fragment, loop_detector):
                    yield StreamFragment(type=FragmentType.LOOP_DETECTED)
                    return
                yield fragment
                if fragment.type == FragmentType.ERROR:
                    return
    finally:
        if not exhausted:
            await _close(iterator)
