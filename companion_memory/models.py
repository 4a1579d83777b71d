from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal
from datetime import datetime, timezone
from uuid import UUID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Working memory
class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class RollingSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str
    emotionLabel: str
    summaryText: str


class SessionBuffer(BaseModel):
    sessionId: str
    userId: str
    turns: List[Turn] = []
    rollingSummaries: List[RollingSummary] = []
    emotionTrail: List[str] = []
    lastCompressedAt: datetime = Field(default_factory=_utcnow)


class CompressionOutcome(BaseModel):
    """Result of one compression attempt: ok, skipped (with reason) or failed (with error)."""
    status: Literal["ok", "skipped", "failed"]
    reason: Optional[str] = None
    error: Optional[str] = None
    summary: Optional[RollingSummary] = None

    @classmethod
    def ok(cls, summary: RollingSummary) -> "CompressionOutcome":
        return cls(status="ok", summary=summary)

    @classmethod
    def skipped(cls, reason: str) -> "CompressionOutcome":
        return cls(status="skipped", reason=reason)

    @classmethod
    def failed(cls, error: str) -> "CompressionOutcome":
        return cls(status="failed", error=error)


# Tagging
class TagResult(BaseModel):
    tags: List[str] = []
    primaryEmotion: str = "neutral"
    intensity: int = Field(default=5, ge=1, le=10)


class ConversationTag(BaseModel):
    id: UUID
    userId: str
    sessionId: str
    tags: List[str] = []
    primaryEmotion: Optional[str] = None
    intensity: Optional[int] = None
    createdAt: datetime


# Request Models
class SessionStartRequest(BaseModel):
    sessionId: str
    userId: str
    reset: bool = False


class SessionMessageRequest(BaseModel):
    sessionId: str
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class SessionEndRequest(BaseModel):
    sessionId: str
    userId: str
    transcript: Optional[str] = None


# Response Models
class SessionStartResponse(BaseModel):
    sessionId: str
    created: bool


class SessionMessageResponse(BaseModel):
    sessionId: str
    messageCount: int


class WorkingMemoryResponse(BaseModel):
    sessionId: str
    workingMemory: str
    messageCount: int


class SessionEndResponse(BaseModel):
    sessionId: str
    tags: List[str] = []
    primaryEmotion: str
    intensity: int
    saved: bool = False


class TaggedConversationsResponse(BaseModel):
    userId: str
    tag: str
    conversations: List[ConversationTag] = []
