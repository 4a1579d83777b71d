import asyncio

import pytest

from companion_memory.memory_buffer import SessionMemoryBuffer
from companion_memory.openrouter_client import TextGenerationError


WORK_REPLY = (
    "TOPIC: work stress\n"
    "EMOTION: stressed\n"
    "SUMMARY: User is overwhelmed by a deadline and seeking reassurance."
)


class _FakeLLM:
    def __init__(self, reply=WORK_REPLY, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []
        self.started = asyncio.Event()
        self.release = None

    async def complete(self, prompt, task="generic"):
        self.prompts.append(prompt)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _fill(buffer, session_id, count, start=0):
    for i in range(start, start + count):
        role = "user" if i % 2 == 0 else "assistant"
        buffer.add_message(session_id, role, f"turn {i}")


def _make(llm=None, **kwargs):
    return SessionMemoryBuffer(llm or _FakeLLM(), summary_interval=10, lookback_turns=15, **kwargs)


@pytest.mark.asyncio
async def test_message_count_tracks_appends_across_updates():
    buffer = _make()
    buffer.initialize("s1", "u1")
    assert buffer.get_message_count("s1") == 0

    for i in range(23):
        buffer.add_message("s1", "user" if i % 2 == 0 else "assistant", f"m{i}")
        await buffer.update_memory_buffer("s1")
        buffer.get_working_memory("s1")

    assert buffer.get_message_count("s1") == 23
    assert buffer.get_message_count("unknown") == 0


@pytest.mark.asyncio
async def test_update_is_noop_below_threshold():
    llm = _FakeLLM()
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 9)
    before = buffer.get_buffer("s1").lastCompressedAt

    outcome = await buffer.update_memory_buffer("s1")

    assert outcome.status == "skipped"
    assert outcome.reason == "below_threshold"
    record = buffer.get_buffer("s1")
    assert record.rollingSummaries == []
    assert record.lastCompressedAt == before
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_ten_turns_produce_one_summary():
    buffer = _make()
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    outcome = await buffer.update_memory_buffer("s1")

    record = buffer.get_buffer("s1")
    assert outcome.status == "ok"
    assert len(record.rollingSummaries) == 1
    assert len(record.emotionTrail) == 1
    assert record.rollingSummaries[0].topic == "work stress"
    assert record.emotionTrail == ["stressed"]


@pytest.mark.asyncio
async def test_not_due_until_next_full_interval():
    llm = _FakeLLM()
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)
    await buffer.update_memory_buffer("s1")

    _fill(buffer, "s1", 9, start=10)
    outcome = await buffer.update_memory_buffer("s1")
    assert outcome.reason == "not_due"
    assert len(llm.prompts) == 1

    _fill(buffer, "s1", 1, start=19)
    outcome = await buffer.update_memory_buffer("s1")
    assert outcome.status == "ok"
    assert len(buffer.get_buffer("s1").rollingSummaries) == 2


@pytest.mark.asyncio
async def test_working_memory_empty_until_first_compression():
    buffer = _make()
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 5)
    assert buffer.get_working_memory("s1") == ""
    assert buffer.get_working_memory("missing") == ""

    _fill(buffer, "s1", 5, start=5)
    await buffer.update_memory_buffer("s1")

    memory = buffer.get_working_memory("s1")
    assert "work stress" in memory
    assert "1. work stress: User is overwhelmed by a deadline" in memory
    assert "Emotional Journey: stressed" in memory
    assert "User is currently focused on: work stress" in memory
    assert memory.endswith("They seem: stressed")


@pytest.mark.asyncio
async def test_working_memory_joins_emotion_trail_with_arrows():
    llm = _FakeLLM()
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)
    await buffer.update_memory_buffer("s1")

    llm.reply = "TOPIC: weekend plans\nEMOTION: excited\nSUMMARY: User is planning a trip."
    _fill(buffer, "s1", 10, start=10)
    await buffer.update_memory_buffer("s1")

    memory = buffer.get_working_memory("s1")
    assert "Emotional Journey: stressed → excited" in memory
    assert "Last 20 messages" in memory
    assert memory.index("1. work stress") < memory.index("2. weekend plans")
    assert "User is currently focused on: weekend plans" in memory
    assert memory.endswith("They seem: excited")


@pytest.mark.asyncio
async def test_missing_emotion_line_defaults_to_neutral():
    llm = _FakeLLM(reply="TOPIC: exams\nSUMMARY: User has finals next week.")
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    await buffer.update_memory_buffer("s1")

    entry = buffer.get_buffer("s1").rollingSummaries[0]
    assert entry.topic == "exams"
    assert entry.emotionLabel == "neutral"
    assert entry.summaryText == "User has finals next week."
    assert buffer.get_buffer("s1").emotionTrail == ["neutral"]


@pytest.mark.asyncio
async def test_unparseable_reply_appends_nothing():
    llm = _FakeLLM(reply="Sorry, I can't help with that.")
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)
    before = buffer.get_buffer("s1").lastCompressedAt

    outcome = await buffer.update_memory_buffer("s1")

    assert outcome.status == "failed"
    assert outcome.error == "unparseable_reply"
    record = buffer.get_buffer("s1")
    assert record.rollingSummaries == []
    assert record.emotionTrail == []
    assert record.lastCompressedAt == before


@pytest.mark.asyncio
async def test_backend_error_leaves_buffer_unchanged_and_retries_later():
    llm = _FakeLLM(error=TextGenerationError("rate limited"))
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    outcome = await buffer.update_memory_buffer("s1")
    assert outcome.status == "failed"
    assert "rate limited" in outcome.error
    assert buffer.get_buffer("s1").rollingSummaries == []

    llm.error = None
    _fill(buffer, "s1", 2, start=10)
    outcome = await buffer.update_memory_buffer("s1")
    assert outcome.status == "ok"
    assert len(buffer.get_buffer("s1").rollingSummaries) == 1
    assert "USER: turn 10" in llm.prompts[-1]


@pytest.mark.asyncio
async def test_backend_timeout_is_treated_as_failure():
    llm = _FakeLLM(delay=1.0)
    buffer = _make(llm, timeout=0.05)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    outcome = await buffer.update_memory_buffer("s1")

    assert outcome.status == "failed"
    assert outcome.error == "timeout"
    assert buffer.get_buffer("s1").rollingSummaries == []


@pytest.mark.asyncio
async def test_compression_prompt_uses_last_fifteen_turns_in_order():
    llm = _FakeLLM()
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 20)

    await buffer.update_memory_buffer("s1")

    prompt = llm.prompts[0]
    assert "turn 4\n" not in prompt
    expected = "\n".join(
        f"{'USER' if i % 2 == 0 else 'ASSISTANT'}: turn {i}" for i in range(5, 20)
    )
    assert expected in prompt
    assert "TOPIC:" in prompt and "EMOTION:" in prompt and "SUMMARY:" in prompt


@pytest.mark.asyncio
async def test_concurrent_updates_for_same_session_append_once():
    llm = _FakeLLM(delay=0.05)
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    first, second = await asyncio.gather(
        buffer.update_memory_buffer("s1"),
        buffer.update_memory_buffer("s1"),
    )

    statuses = sorted([first.status, second.status])
    assert statuses == ["ok", "skipped"]
    assert "in_flight" in (first.reason, second.reason)
    assert len(buffer.get_buffer("s1").rollingSummaries) == 1
    assert len(llm.prompts) == 1


@pytest.mark.asyncio
async def test_sessions_compress_independently():
    llm = _FakeLLM(delay=0.01)
    buffer = _make(llm)
    for sid in ("a", "b"):
        buffer.initialize(sid, "u1")
        _fill(buffer, sid, 10)

    results = await asyncio.gather(
        buffer.update_memory_buffer("a"),
        buffer.update_memory_buffer("b"),
    )

    assert [r.status for r in results] == ["ok", "ok"]
    assert len(buffer.get_buffer("a").rollingSummaries) == 1
    assert len(buffer.get_buffer("b").rollingSummaries) == 1


@pytest.mark.asyncio
async def test_clear_during_compression_discards_result():
    llm = _FakeLLM()
    llm.release = asyncio.Event()
    buffer = _make(llm)
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 10)

    task = asyncio.create_task(buffer.update_memory_buffer("s1"))
    await llm.started.wait()
    buffer.clear_buffer("s1")
    llm.release.set()
    outcome = await task

    assert outcome.status == "skipped"
    assert outcome.reason == "buffer_replaced"
    assert buffer.get_buffer("s1") is None


@pytest.mark.asyncio
async def test_update_missing_buffer_is_skipped():
    buffer = _make()
    outcome = await buffer.update_memory_buffer("nope")
    assert outcome.status == "skipped"
    assert outcome.reason == "no_buffer"


def test_clear_then_add_does_not_resurrect_buffer():
    buffer = _make()
    buffer.initialize("s1", "u1")
    _fill(buffer, "s1", 3)

    buffer.clear_buffer("s1")
    assert buffer.get_message_count("s1") == 0

    buffer.add_message("s1", "user", "hello again")
    assert buffer.get_message_count("s1") == 0
    assert buffer.get_buffer("s1") is None
    buffer.clear_buffer("s1")


def test_add_before_initialize_is_noop():
    buffer = _make()
    buffer.add_message("ghost", "user", "hi")
    assert buffer.get_buffer("ghost") is None
    assert buffer.active_sessions() == []


def test_initialize_keeps_existing_turns_and_reset_overwrites():
    buffer = _make()
    assert buffer.initialize("s1", "u1") is True
    _fill(buffer, "s1", 4)

    assert buffer.initialize("s1", "u1") is False
    assert buffer.get_message_count("s1") == 4

    buffer.reset("s1", "u2")
    assert buffer.get_message_count("s1") == 0
    assert buffer.get_buffer("s1").userId == "u2"


def test_unsupported_role_is_ignored():
    buffer = _make()
    buffer.initialize("s1", "u1")
    buffer.add_message("s1", "system", "you are a bot")
    buffer.add_message("s1", "user", "hi")
    assert buffer.get_message_count("s1") == 1


def test_format_transcript_labels_speakers():
    buffer = _make()
    buffer.initialize("s1", "u1")
    buffer.add_message("s1", "user", "I had a long day")
    buffer.add_message("s1", "assistant", "Tell me about it")
    assert buffer.format_transcript("s1") == "User: I had a long day\nAssistant: Tell me about it"
    assert buffer.format_transcript("missing") == ""
