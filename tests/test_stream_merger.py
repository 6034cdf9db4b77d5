"""Tests for StreamMerger frame reassembly and reasoning handling."""

import json

import pytest

from nimbridge.chat.stream import DONE_FRAME, StreamMerger


def _event(delta: dict, finish_reason=None) -> bytes:
    payload = {"id": "c1", "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}
    return b"data: " + json.dumps(payload).encode() + b"\n\n"


def _payloads(frames: list[bytes]) -> list:
    out = []
    for frame in frames:
        body = frame[len(b"data: "):].strip()
        out.append(body.decode() if body == b"[DONE]" else json.loads(body))
    return out


def _feed_all(merger: StreamMerger, chunks: list[bytes]) -> list[bytes]:
    frames: list[bytes] = []
    for chunk in chunks:
        frames.extend(merger.feed(chunk))
    return frames


class TestChunkBoundaries:
    def test_split_frame_matches_whole_frame(self) -> None:
        raw = _event({"content": "Hello there, traveller. ☕"})
        whole = _feed_all(StreamMerger(), [raw])

        for cut in range(1, len(raw)):
            split = _feed_all(StreamMerger(), [raw[:cut], raw[cut:]])
            assert split == whole, f"cut at {cut}"

    def test_three_way_split(self) -> None:
        raw = _event({"content": "abc", "reasoning_content": "hmm"})
        whole = _feed_all(StreamMerger(), [raw])
        split = _feed_all(StreamMerger(), [raw[:5], raw[5:20], raw[20:]])
        assert split == whole

    def test_incomplete_line_is_not_parsed_early(self) -> None:
        merger = StreamMerger()
        raw = _event({"content": "partial"})
        assert merger.feed(raw[:-3]) == []
        assert len(merger.feed(raw[-3:])) == 1

    def test_crlf_line_endings(self) -> None:
        merger = StreamMerger()
        frames = merger.feed(_event({"content": "hi"}).replace(b"\n", b"\r\n"))
        assert _payloads(frames)[0]["choices"][0]["delta"]["content"] == "hi"


class TestFrames:
    def test_done_sentinel_forwarded(self) -> None:
        frames = StreamMerger().feed(b"data: [DONE]\n\n")
        assert frames == [DONE_FRAME]

    def test_non_data_lines_are_ignored(self) -> None:
        frames = StreamMerger().feed(b": keep-alive\n\nevent: ping\n")
        assert frames == []

    def test_malformed_json_forwarded_raw(self) -> None:
        frames = StreamMerger().feed(b"data: {not json\n")
        assert frames == [b"data: {not json\n\n"]

    def test_reasoning_dropped_by_default(self) -> None:
        merger = StreamMerger()
        frames = merger.feed(_event({"reasoning_content": "secret thoughts"}) + _event({"content": "Hi"}))
        deltas = [p["choices"][0]["delta"] for p in _payloads(frames)]
        assert deltas == [{"content": ""}, {"content": "Hi"}]

    def test_reasoning_shown_between_think_markers(self) -> None:
        merger = StreamMerger(show_reasoning=True)
        frames = merger.feed(
            _event({"reasoning_content": "Let me"})
            + _event({"reasoning_content": " think."})
            + _event({"content": "*bows*"})
            + _event({"content": " Welcome."})
        )
        contents = [p["choices"][0]["delta"]["content"] for p in _payloads(frames)]
        assert contents == ["<think>\nLet me", " think.", "</think>\n\n*bows*", " Welcome."]
        assert all("reasoning_content" not in p["choices"][0]["delta"] for p in _payloads(frames))


class TestEndOfStream:
    def test_finish_emits_final_frame_and_done(self) -> None:
        merger = StreamMerger()
        merger.feed(_event({"content": "Hi"}))
        payloads = _payloads(merger.finish())
        assert payloads[0]["choices"][0] == {"index": 0, "delta": {}, "finish_reason": "stop"}
        assert payloads[1] == "[DONE]"

    def test_finish_skips_final_frame_when_already_sent(self) -> None:
        merger = StreamMerger()
        merger.feed(_event({"content": "Hi"}, finish_reason="stop"))
        assert merger.finish() == [DONE_FRAME]

    def test_finish_after_done_emits_nothing(self) -> None:
        merger = StreamMerger()
        merger.feed(_event({"content": "Hi"}) + b"data: [DONE]\n\n")
        assert merger.finish() == []

    def test_finish_flushes_unterminated_line(self) -> None:
        merger = StreamMerger()
        merger.feed(_event({"content": "tail"}).rstrip(b"\n"))
        payloads = _payloads(merger.finish())
        assert payloads[0]["choices"][0]["delta"]["content"] == "tail"
        assert payloads[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_merge_stops_cleanly_on_upstream_error(self) -> None:
        async def _chunks():
            yield _event({"content": "Hi"})
            raise ConnectionError("reset by peer")

        frames = [f async for f in StreamMerger().merge(_chunks())]

        assert len(frames) == 1
        assert _payloads(frames)[0]["choices"][0]["delta"]["content"] == "Hi"

    @pytest.mark.asyncio
    async def test_merge_appends_terminal_frames(self) -> None:
        async def _chunks():
            raw = _event({"content": "Hello"})
            yield raw[:7]
            yield raw[7:]

        frames = [f async for f in StreamMerger().merge(_chunks())]

        assert frames[-1] == DONE_FRAME
        assert _payloads(frames)[0]["choices"][0]["delta"]["content"] == "Hello"
