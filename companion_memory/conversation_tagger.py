"""
Conversation Tagger

One-shot, stateless classification of a session transcript into topic tags,
a primary emotion and an intensity score (1-10), used for memory indexing and
analytics at session end. Malformed replies degrade field by field; a backend
that cannot be reached yields the fixed fallback result so the session-end
flow always completes.
"""

from typing import List, Optional, Tuple
import asyncio
import logging

from .config import get_settings
from .interfaces import PersistenceGateway, TextGenerationClient
from .models import ConversationTag, TagResult
from .parsing import LabeledField, clamp, normalize_label, parse_fields, parse_int, split_bracket_list
from .prompts import build_tagging_prompt

logger = logging.getLogger(__name__)

DEFAULT_INTENSITY = 5
MIN_INTENSITY = 1
MAX_INTENSITY = 10

_TAG_FIELDS = (
    LabeledField("tags", "TAGS", [], convert=split_bracket_list),
    LabeledField("emotion", "EMOTION", "neutral", convert=normalize_label),
    LabeledField(
        "intensity",
        "INTENSITY",
        DEFAULT_INTENSITY,
        value_pattern=r"\[?(-?\d+)\b.*?",
        convert=lambda raw: parse_int(raw, DEFAULT_INTENSITY),
    ),
)


def fallback_result() -> TagResult:
    return TagResult(tags=["general"], primaryEmotion="neutral", intensity=DEFAULT_INTENSITY)


class ConversationTagger:
    def __init__(
        self,
        llm_client: TextGenerationClient,
        gateway: Optional[PersistenceGateway] = None,
        char_budget: Optional[int] = None,
        dedupe_tags: Optional[bool] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.llm_client = llm_client
        self.gateway = gateway
        self.char_budget = char_budget or settings.tagger_transcript_char_budget
        self.dedupe_tags = settings.tagger_dedupe_tags if dedupe_tags is None else dedupe_tags
        self.timeout = float(timeout or settings.llm_timeout)

    def _truncate(self, transcript: str) -> str:
        if len(transcript) <= self.char_budget:
            return transcript
        return transcript[:self.char_budget] + "..."

    def _finalize_tags(self, tags: List[str]) -> List[str]:
        if not self.dedupe_tags:
            return list(tags)
        return list(dict.fromkeys(tags))

    def parse_tag_reply(self, text: str) -> TagResult:
        parsed = parse_fields(text, _TAG_FIELDS)
        return TagResult(
            tags=self._finalize_tags(parsed["tags"]),
            primaryEmotion=parsed["emotion"],
            intensity=clamp(parsed["intensity"], MIN_INTENSITY, MAX_INTENSITY)
        )

    async def auto_tag_conversation(self, session_id: str, transcript: str) -> TagResult:
        """
        Tag a conversation transcript.

        Args:
            session_id: Used for log correlation only
            transcript: Full or partial transcript; capped at `char_budget` characters

        Returns:
            TagResult; the fallback result if the backend call fails
        """
        prompt = build_tagging_prompt(self._truncate(transcript or ""))
        try:
            response = await asyncio.wait_for(
                self.llm_client.complete(prompt, task="tagging"),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Tagging timed out after {self.timeout}s for session {session_id}")
            return fallback_result()
        except Exception as e:
            logger.error(f"Error tagging conversation for session {session_id}: {e}")
            return fallback_result()

        result = self.parse_tag_reply(response or "")
        logger.info(
            f"Tagged session {session_id}: tags={','.join(result.tags)}, "
            f"emotion={result.primaryEmotion}, intensity={result.intensity}"
        )
        return result

    def _require_gateway(self) -> PersistenceGateway:
        if self.gateway is None:
            raise RuntimeError("ConversationTagger has no persistence gateway")
        return self.gateway

    async def save_conversation_tags(
        self,
        user_id: str,
        session_id: str,
        tags: List[str],
        emotion: str,
        intensity: int
    ) -> ConversationTag:
        try:
            record = await self._require_gateway().save_tags(user_id, session_id, tags, emotion, intensity)
        except Exception as e:
            logger.error(f"Failed to save tags for session {session_id}: {e}")
            raise
        logger.info(f"Saved tags for session {session_id}: {tags}")
        return record

    async def get_conversations_by_tag(self, user_id: str, tag: str) -> List[ConversationTag]:
        return await self._require_gateway().query_by_session_tag(user_id, tag.strip().lower())

    async def get_session_tags(self, session_id: str) -> Optional[ConversationTag]:
        return await self._require_gateway().get_session_tags(session_id)

    async def tag_and_save(self, user_id: str, session_id: str, transcript: str) -> Tuple[TagResult, bool]:
        """
        End-of-session flow: classify, then persist through the gateway.

        Returns the tag result and whether it was stored. A failed save is
        logged and reported as False; the result is still returned.
        """
        result = await self.auto_tag_conversation(session_id, transcript)
        try:
            await self.save_conversation_tags(
                user_id,
                session_id,
                result.tags,
                result.primaryEmotion,
                result.intensity
            )
        except Exception as e:
            logger.error(f"Tags for session {session_id} were not stored: {e}")
            return result, False
        return result, True
