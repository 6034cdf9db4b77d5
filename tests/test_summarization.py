"""Tests for the Summarizer and the cooldown-gated SummarizationScheduler."""

from unittest.mock import AsyncMock

import pytest

from nimbridge.errors import UpstreamError
from nimbridge.memory.scheduler import SummarizationScheduler
from nimbridge.memory.store import MemoryRecord, MemoryStore
from nimbridge.memory.summarizer import Summarizer, flatten_messages


def _messages(n: int) -> list[dict[str, str]]:
    return [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"line {i}"}
        for i in range(n)
    ]


def _scheduler(store: MemoryStore, summarizer, **kwargs) -> SummarizationScheduler:
    kwargs.setdefault("trigger_threshold", 60)
    kwargs.setdefault("cooldown", 40)
    return SummarizationScheduler(store, summarizer, **kwargs)


# ---------------------------------------------------------------------------
# Trigger policy
# ---------------------------------------------------------------------------

class TestTrigger:
    def test_never_fires_at_or_below_threshold(self) -> None:
        scheduler = _scheduler(MemoryStore(), summarizer=None)
        record = MemoryRecord(core="c")
        for n in range(0, 61):
            assert scheduler.should_summarize(n, record) is False

    def test_fires_past_threshold_with_cooldown_elapsed(self) -> None:
        scheduler = _scheduler(MemoryStore(), summarizer=None)
        assert scheduler.should_summarize(61, MemoryRecord(core="c", last_summary_at=0)) is True

    def test_cooldown_blocks_refire(self) -> None:
        scheduler = _scheduler(MemoryStore(), summarizer=None)
        record = MemoryRecord(core="c", last_summary_at=61)
        assert scheduler.should_summarize(70, record) is False
        assert scheduler.should_summarize(100, record) is False
        assert scheduler.should_summarize(101, record) is True

    def test_small_tunables(self) -> None:
        scheduler = _scheduler(MemoryStore(), summarizer=None, trigger_threshold=7, cooldown=6)
        assert scheduler.should_summarize(8, MemoryRecord(core="c")) is True
        assert scheduler.should_summarize(13, MemoryRecord(core="c", last_summary_at=8)) is False
        assert scheduler.should_summarize(14, MemoryRecord(core="c", last_summary_at=8)) is True

    def test_disabled_never_fires(self) -> None:
        scheduler = _scheduler(MemoryStore(), summarizer=None, enabled=False)
        assert scheduler.should_summarize(500, MemoryRecord(core="c")) is False


# ---------------------------------------------------------------------------
# Summarization rounds
# ---------------------------------------------------------------------------

class TestRounds:
    @pytest.mark.asyncio
    async def test_round_persists_and_cooldown_holds(self) -> None:
        store = MemoryStore(default_core="persona")
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(side_effect=["The story so far.", "They stand at the gate."])
        scheduler = _scheduler(store, summarizer)

        record = await store.get("chat")
        record = await scheduler.maybe_summarize("chat", _messages(61), record, model="m")

        assert record.summary == "The story so far."
        assert record.scene == "They stand at the gate."
        assert record.last_summary_at == 61
        assert record.core == "persona"
        assert (await store.peek("chat")).last_summary_at == 61

        again = await scheduler.maybe_summarize("chat", _messages(70), record, model="m")
        assert again == record
        assert summarizer.summarize.await_count == 2

    @pytest.mark.asyncio
    async def test_summary_excludes_recent_and_scene_uses_recent(self) -> None:
        store = MemoryStore(default_core="persona")
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(side_effect=["sum", "scene"])
        scheduler = _scheduler(store, summarizer, keep_recent=20, scene_window=25)
        messages = _messages(61)

        await scheduler.maybe_summarize("chat", messages, await store.get("chat"), model="m")

        summary_call, scene_call = summarizer.summarize.await_args_list
        assert summary_call.args[0] == messages[:41]
        assert summary_call.kwargs["kind"] == "summary"
        assert scene_call.args[0] == messages[-25:]
        assert scene_call.kwargs["kind"] == "scene"

    @pytest.mark.asyncio
    async def test_both_failures_leave_memory_untouched(self) -> None:
        store = MemoryStore(default_core="persona")
        await store.update("chat", summary="old summary", scene="old scene", last_summary_at=10)
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(return_value=None)
        scheduler = _scheduler(store, summarizer)

        before = await store.get("chat")
        after = await scheduler.maybe_summarize("chat", _messages(61), before, model="m")

        assert after == before
        stored = await store.peek("chat")
        assert stored.summary == "old summary"
        assert stored.scene == "old scene"
        assert stored.last_summary_at == 10

    @pytest.mark.asyncio
    async def test_partial_success_keeps_failed_field(self) -> None:
        store = MemoryStore(default_core="persona")
        await store.update("chat", summary="old summary", scene="old scene")
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(side_effect=[None, "new scene"])
        scheduler = _scheduler(store, summarizer)

        record = await scheduler.maybe_summarize("chat", _messages(61), await store.get("chat"), model="m")

        assert record.summary == "old summary"
        assert record.scene == "new scene"
        assert record.last_summary_at == 61

    @pytest.mark.asyncio
    async def test_later_round_only_reads_new_messages(self) -> None:
        store = MemoryStore(default_core="persona")
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(side_effect=["sum", "scene"])
        scheduler = _scheduler(store, summarizer, keep_recent=20)
        messages = _messages(101)
        record = MemoryRecord(core="persona", summary="Earlier.", last_summary_at=61)

        await scheduler.maybe_summarize("chat", messages, record, model="m")

        summary_call = summarizer.summarize.await_args_list[0]
        assert summary_call.args[0] == messages[41:81]
        assert summary_call.kwargs["previous"] == "Earlier."

    @pytest.mark.asyncio
    async def test_small_window_still_has_older_messages(self) -> None:
        store = MemoryStore(default_core="persona")
        summarizer = AsyncMock()
        summarizer.summarize = AsyncMock(side_effect=["sum", "scene"])
        scheduler = _scheduler(store, summarizer, trigger_threshold=7, cooldown=6, keep_recent=20)
        messages = _messages(8)

        record = await scheduler.maybe_summarize("chat", messages, await store.get("chat"), model="m")

        assert summarizer.summarize.await_args_list[0].args[0] == messages[:4]
        assert record.summary == "sum"

    @pytest.mark.asyncio
    async def test_long_chat_prompt_stays_bounded(self, fake_provider) -> None:
        fake_provider.replies = ["recap"]
        store = MemoryStore(default_core="persona")
        scheduler = _scheduler(store, Summarizer(fake_provider, max_input_chars=24000))
        messages = [{"role": "user", "content": "x" * 8000} for _ in range(400)]

        await scheduler.maybe_summarize("chat", messages, await store.get("chat"), model="m")

        for call in fake_provider.calls:
            assert len(call["messages"][1]["content"]) <= 24000


# ---------------------------------------------------------------------------
# Summarizer boundary
# ---------------------------------------------------------------------------

class TestSummarizer:
    def test_flatten_messages(self) -> None:
        text = flatten_messages([
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "*waves* Hi"},
        ])
        assert text == "user: Hello\nassistant: *waves* Hi"

    def test_instruction_forbids_meta(self) -> None:
        instruction = Summarizer.system_instruction("summary")
        assert "Never mention AI" in instruction
        assert "relationships" in instruction

    def test_prompt_input_is_capped_to_latest_text(self, fake_provider) -> None:
        summarizer = Summarizer(fake_provider, max_input_chars=50)
        messages = [{"role": "user", "content": "a" * 100}, {"role": "assistant", "content": "the end"}]

        body = summarizer.build_prompt(messages, "scene")[1]["content"]

        assert len(body) == 50
        assert body.endswith("assistant: the end")

    @pytest.mark.asyncio
    async def test_uses_low_temperature_and_kind_budget(self, fake_provider) -> None:
        fake_provider.replies = ["A recap."]
        summarizer = Summarizer(fake_provider, summary_max_tokens=600, scene_max_tokens=200)

        assert await summarizer.summarize(_messages(3), kind="scene", model="m") == "A recap."

        call = fake_provider.calls[0]
        assert call["temperature"] == 0.3
        assert call["max_tokens"] == 200
        assert call["messages"][0]["role"] == "system"
        assert call["messages"][1]["content"] == "user: line 0\nassistant: line 1\nuser: line 2"

    @pytest.mark.asyncio
    async def test_previous_summary_is_included(self, fake_provider) -> None:
        summarizer = Summarizer(fake_provider)
        await summarizer.summarize(_messages(1), kind="summary", model="m", previous="They met.")
        assert "They met." in fake_provider.calls[0]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_none(self, fake_provider) -> None:
        fake_provider.replies = [UpstreamError("boom", status_code=503)]
        summarizer = Summarizer(fake_provider)
        assert await summarizer.summarize(_messages(2), kind="summary", model="m") is None

    @pytest.mark.asyncio
    async def test_empty_text_becomes_none(self, fake_provider) -> None:
        fake_provider.replies = ["   "]
        summarizer = Summarizer(fake_provider)
        assert await summarizer.summarize(_messages(2), kind="summary", model="m") is None

    @pytest.mark.asyncio
    async def test_no_messages_skips_call(self, fake_provider) -> None:
        summarizer = Summarizer(fake_provider)
        assert await summarizer.summarize([], kind="summary", model="m") is None
        assert fake_provider.calls == []
