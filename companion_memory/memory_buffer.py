"""
Session Memory Buffer - Rolling Working Memory

Per-session, process-lifetime accumulator of chat turns:
- Turns are append-only; nothing is evicted while the session is live
- Every `summary_interval` turns, the last `lookback_turns` turns are compressed
  into one rolling summary entry (topic, emotion, 2-3 sentence summary)
- `get_working_memory` renders all entries plus the emotion trail into a block
  that is concatenated into the next system prompt

Compression is enrichment, never a dependency of message delivery: backend
errors, timeouts and unparseable replies are logged and leave the buffer as it
was. The next trigger point retries with the same or a larger unsummarized tail.
"""

from typing import Dict, List, Optional, Set
from datetime import datetime, timezone
import asyncio
import logging

from pydantic import ValidationError

from .config import get_settings
from .interfaces import TextGenerationClient
from .models import CompressionOutcome, RollingSummary, SessionBuffer, Turn
from .parsing import LabeledField, normalize_label, parse_fields, strip_brackets
from .prompts import build_compression_prompt

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "general"
DEFAULT_EMOTION = "neutral"

_SUMMARY_FIELDS = (
    LabeledField("topic", "TOPIC", DEFAULT_TOPIC, convert=strip_brackets),
    LabeledField("emotion", "EMOTION", DEFAULT_EMOTION, convert=normalize_label),
    LabeledField("summary", "SUMMARY", "", convert=strip_brackets),
)


class SessionMemoryBuffer:
    def __init__(
        self,
        llm_client: TextGenerationClient,
        summary_interval: Optional[int] = None,
        lookback_turns: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.llm_client = llm_client
        self.summary_interval = summary_interval or settings.memory_summary_interval
        self.lookback_turns = lookback_turns or settings.memory_lookback_turns
        self.timeout = float(timeout or settings.llm_timeout)
        self._buffers: Dict[str, SessionBuffer] = {}
        self._in_flight: Set[str] = set()

    def initialize(self, session_id: str, user_id: str) -> bool:
        """Create an empty buffer unless one already exists. Returns True if created."""
        if session_id in self._buffers:
            logger.info(f"Buffer already initialized for session {session_id}; keeping existing turns")
            return False
        self._buffers[session_id] = SessionBuffer(sessionId=session_id, userId=user_id)
        logger.info(f"Initialized buffer for session {session_id}")
        return True

    def reset(self, session_id: str, user_id: str) -> None:
        """Replace any existing buffer for the session with an empty one."""
        previous = self._buffers.get(session_id)
        self._buffers[session_id] = SessionBuffer(sessionId=session_id, userId=user_id)
        if previous is not None:
            logger.info(f"Reset buffer for session {session_id} (dropped {len(previous.turns)} turns)")
        else:
            logger.info(f"Initialized buffer for session {session_id}")

    def add_message(self, session_id: str, role: str, content: str) -> None:
        buf = self._buffers.get(session_id)
        if buf is None:
            logger.warning(f"Buffer not found for session {session_id}; dropping {role} turn")
            return
        try:
            turn = Turn(role=role, content=content)
        except ValidationError:
            logger.warning(f"Ignoring turn with unsupported role {role!r} for session {session_id}")
            return
        buf.turns.append(turn)

    def get_message_count(self, session_id: str) -> int:
        buf = self._buffers.get(session_id)
        return len(buf.turns) if buf else 0

    def get_buffer(self, session_id: str) -> Optional[SessionBuffer]:
        """Raw buffer record, for diagnostics and tests only."""
        return self._buffers.get(session_id)

    def active_sessions(self) -> List[str]:
        return list(self._buffers.keys())

    def clear_buffer(self, session_id: str) -> None:
        buf = self._buffers.pop(session_id, None)
        if buf is not None:
            logger.info(f"Clearing buffer for session {session_id} ({len(buf.turns)} messages)")

    def _is_due(self, buf: SessionBuffer) -> bool:
        # One summary per full interval of turns; failed cycles leave the count
        # behind, so the next call catches up.
        uncompressed = len(buf.turns) - len(buf.rollingSummaries) * self.summary_interval
        return uncompressed >= self.summary_interval

    def _render_lookback(self, buf: SessionBuffer) -> str:
        recent = buf.turns[-self.lookback_turns:]
        return "\n".join(f"{turn.role.upper()}: {turn.content}" for turn in recent)

    @staticmethod
    def parse_summary_reply(text: str) -> Optional[RollingSummary]:
        """Parse a TOPIC/EMOTION/SUMMARY reply; None if no field could be read."""
        parsed = parse_fields(text, _SUMMARY_FIELDS)
        if not parsed.any_matched:
            return None
        return RollingSummary(
            topic=parsed["topic"],
            emotionLabel=parsed["emotion"],
            summaryText=parsed["summary"]
        )

    async def update_memory_buffer(self, session_id: str) -> CompressionOutcome:
        """
        Compress recent turns into one rolling summary entry when a full
        interval of new turns has accumulated.

        Never raises. The returned outcome says whether an entry was appended
        (ok), why nothing happened (skipped) or what went wrong (failed).
        """
        buf = self._buffers.get(session_id)
        if buf is None:
            return CompressionOutcome.skipped("no_buffer")
        if len(buf.turns) < self.summary_interval:
            return CompressionOutcome.skipped("below_threshold")
        if not self._is_due(buf):
            return CompressionOutcome.skipped("not_due")
        if session_id in self._in_flight:
            logger.info(f"Compression already running for session {session_id}; skipping")
            return CompressionOutcome.skipped("in_flight")

        self._in_flight.add(session_id)
        try:
            prompt = build_compression_prompt(self._render_lookback(buf))
            try:
                response = await asyncio.wait_for(
                    self.llm_client.complete(prompt, task="summary"),
                    timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.error(f"Compression timed out after {self.timeout}s for session {session_id}")
                return CompressionOutcome.failed("timeout")
            except Exception as e:
                logger.error(f"Error updating buffer for session {session_id}: {e}")
                return CompressionOutcome.failed(str(e) or type(e).__name__)

            entry = self.parse_summary_reply(response or "")
            if entry is None:
                logger.warning(
                    f"Unparseable compression reply for session {session_id}: {(response or '')[:80]!r}"
                )
                return CompressionOutcome.failed("unparseable_reply")

            if self._buffers.get(session_id) is not buf:
                logger.info(f"Buffer for session {session_id} was cleared during compression; discarding")
                return CompressionOutcome.skipped("buffer_replaced")

            buf.rollingSummaries.append(entry)
            buf.emotionTrail.append(entry.emotionLabel)
            buf.lastCompressedAt = datetime.now(timezone.utc)
            logger.info(
                f"Updated buffer for session {session_id}: "
                f"Topic={entry.topic}, Emotion={entry.emotionLabel}"
            )
            return CompressionOutcome.ok(entry)
        finally:
            self._in_flight.discard(session_id)

    def get_working_memory(self, session_id: str) -> str:
        """Formatted context block for the next system prompt; "" until the first compression."""
        buf = self._buffers.get(session_id)
        if buf is None or not buf.rollingSummaries:
            return ""

        entries = buf.rollingSummaries
        latest = entries[-1]
        current_emotion = buf.emotionTrail[-1] if buf.emotionTrail else DEFAULT_EMOTION
        topics = "\n".join(
            f"{i}. {entry.topic}: {entry.summaryText}" if entry.summaryText else f"{i}. {entry.topic}"
            for i, entry in enumerate(entries, start=1)
        )
        journey = " → ".join(buf.emotionTrail) or DEFAULT_EMOTION

        return (
            f"CURRENT CONVERSATION CONTEXT (Last {len(entries) * self.summary_interval} messages):\n"
            f"\n"
            f"Topics Discussed:\n"
            f"{topics}\n"
            f"\n"
            f"Emotional Journey: {journey}\n"
            f"\n"
            f"Remember This Context:\n"
            f"- This is a longer conversation - maintain continuity and reference earlier topics naturally\n"
            f"- User is currently focused on: {latest.topic}\n"
            f"- They seem: {current_emotion}"
        )

    def format_transcript(self, session_id: str) -> str:
        """All turns as `User: ...` / `Assistant: ...` lines, for session-end tagging."""
        buf = self._buffers.get(session_id)
        if buf is None:
            return ""
        return "\n".join(
            f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
            for turn in buf.turns
        )


# Process-default instance, set up by the app lifespan
_buffer: Optional[SessionMemoryBuffer] = None


def init_memory_buffer(llm_client: TextGenerationClient) -> SessionMemoryBuffer:
    """Initialize the process-default memory buffer"""
    global _buffer
    _buffer = SessionMemoryBuffer(llm_client)
    return _buffer


def get_memory_buffer() -> SessionMemoryBuffer:
    if _buffer is None:
        raise RuntimeError("SessionMemoryBuffer not initialized")
    return _buffer
