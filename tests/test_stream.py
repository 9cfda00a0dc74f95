"""Tests for event-stream framing, payload mapping and stream decoding."""

import asyncio
import json

from liteagent.cancellation import CancellationToken
from liteagent.loop_detection import LoopDetector
from liteagent.stream import (
    FragmentType,
    SSEDecoder,
    decode_stream,
    fragments_from_payload,
)


def frame(payload: dict) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


def text_payload(value: str, thought: bool = False) -> dict:
    part = {"text": value}
    if thought:
        part["thought"] = True
    return {"candidates": [{"content": {"role": "model", "parts": [part]}}]}


def call_payload(name: str, args: dict, call_id: str | None = None) -> dict:
    fc = {"name": name, "args": args}
    if call_id:
        fc["id"] = call_id
    return {"candidates": [{"content": {"role": "model", "parts": [{"functionCall": fc}]}}]}


async def chunks_of(*pieces: bytes):
    for piece in pieces:
        yield piece
        await asyncio.sleep(0)


async def collect(stream):
    return [f async for f in stream]


class TestSSEDecoder:
    def test_frame_split_across_reads(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a"') == []
        assert decoder.feed(b": 1}\n") == []
        assert decoder.feed(b"\n") == ['{"a": 1}']

    def test_crlf_and_ignored_fields(self):
        decoder = SSEDecoder()
        payloads = decoder.feed(b"event: message\r\nid: 7\r\n: comment\r\ndata: {}\r\n\r\n")
        assert payloads == ["{}"]

    def test_multiline_data_joined(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: line1\ndata: line2\n\n") == ["line1\nline2"]

    def test_done_sentinel_skipped(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: [DONE]\n\n") == []

    def test_flush_emits_unterminated_frame(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: {}") == []
        assert decoder.flush() == ["{}"]


class TestPayloadMapping:
    def test_text_and_thought(self):
        assert fragments_from_payload(text_payload("hi"))[0].type == FragmentType.TEXT
        assert fragments_from_payload(text_payload("hmm", thought=True))[0].type == FragmentType.THOUGHT

    def test_function_call_keeps_id(self):
        fragment = fragments_from_payload(call_payload("list_dir", {"path": "."}, "c9"))[0]
        assert fragment.type == FragmentType.TOOL_CALL
        assert fragment.tool_name == "list_dir"
        assert fragment.tool_args == {"path": "."}
        assert fragment.call_id == "c9"

    def test_function_call_without_id_gets_one(self):
        fragment = fragments_from_payload(call_payload("list_dir", {}))[0]
        assert fragment.call_id.startswith("call_")

    def test_several_parts_in_order(self):
        payload = {"candidates": [{
            "content": {"parts": [
                {"text": "Looking."},
                {"functionCall": {"name": "a", "args": {}}},
                {"functionCall": {"name": "b", "args": {}}},
            ]},
            "finishReason": "STOP",
        }]}
        types = [f.type for f in fragments_from_payload(payload)]
        assert types == [
            FragmentType.TEXT,
            FragmentType.TOOL_CALL,
            FragmentType.TOOL_CALL,
            FragmentType.FINISHED,
        ]

    def test_error_frame(self):
        fragments = fragments_from_payload({"error": {"code": 429, "message": "slow down"}})
        assert fragments[0].type == FragmentType.ERROR
        assert fragments[0].text == "slow down"


class TestDecodeStream:
    async def test_fragments_in_arrival_order(self):
        raw = frame(text_payload("a")) + frame(call_payload("t", {"x": 1})) + frame(text_payload("b"))
        # split mid-frame to exercise the carry-over buffer
        fragments = await collect(decode_stream(chunks_of(raw[:13], raw[13:40], raw[40:])))
        assert [f.type for f in fragments] == [
            FragmentType.TEXT, FragmentType.TOOL_CALL, FragmentType.TEXT,
        ]
        assert fragments[1].tool_args == {"x": 1}

    async def test_malformed_frame_skipped(self):
        raw = b"data: {not json\n\n" + b"data: [1, 2]\n\n" + frame(text_payload("ok"))
        fragments = await collect(decode_stream(chunks_of(raw)))
        assert [f.text for f in fragments] == ["ok"]

    async def test_error_frame_ends_sequence(self):
        raw = frame({"error": {"message": "bad"}}) + frame(text_payload("after"))
        fragments = await collect(decode_stream(chunks_of(raw)))
        assert len(fragments) == 1
        assert fragments[0].type == FragmentType.ERROR

    async def test_cancellation_stops_emission_and_closes_source(self):
        token = CancellationToken()
        closed = asyncio.Event()
        never = asyncio.Event()

        async def source():
            try:
                yield frame(text_payload("first"))
                await never.wait()
                yield frame(text_payload("second"))
            finally:
                closed.set()

        stream = decode_stream(source(), token=token)
        first = await stream.__anext__()
        assert first.text == "first"

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        token.cancel()
        rest = []
        try:
            rest.append(await pending)
        except StopAsyncIteration:
            pass
        assert rest == []
        assert closed.is_set()

    async def test_buffered_fragment_not_emitted_after_cancel(self):
        token = CancellationToken()
        raw = frame(text_payload("one")) + frame(text_payload("two"))
        seen = []
        async for fragment in decode_stream(chunks_of(raw), token=token):
            seen.append(fragment.text)
            token.cancel()
        assert seen == ["one"]

    async def test_loop_detection_trips(self):
        raw = b"".join(frame(call_payload("same", {"a": 1})) for _ in range(8))
        detector = LoopDetector()
        fragments = await collect(decode_stream(chunks_of(raw), loop_detector=detector))
        assert fragments[-1].type == FragmentType.LOOP_DETECTED
        assert len(fragments) == 5
        assert detector.tripped


class TestLoopDetector:
    def test_varied_calls_do_not_trip(self):
        detector = LoopDetector()
        for i in range(20):
            assert not detector.check_tool_call("list_dir", {"path": str(i)})

    def test_repeated_text_trips(self):
        detector = LoopDetector(content_threshold=3)
        assert not detector.check_content("same")
        assert not detector.check_content("  ")
        assert not detector.check_content("same")
        assert detector.check_content("same")
