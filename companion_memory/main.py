from fastapi import FastAPI, HTTPException, BackgroundTasks, Header
from contextlib import asynccontextmanager
import logging
from typing import Optional

from .models import (
    SessionStartRequest,
    SessionStartResponse,
    SessionMessageRequest,
    SessionMessageResponse,
    WorkingMemoryResponse,
    SessionEndRequest,
    SessionEndResponse,
    TaggedConversationsResponse,
    ConversationTag,
    SessionBuffer,
)
from .config import get_settings
from .db import Database
from .migrate import run_migrations
from .openrouter_client import get_llm_client
from .persistence import InMemoryTagStore, PostgresTagStore
from .conversation_tagger import ConversationTagger
from . import memory_buffer

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
db = Database()
tagger: Optional[ConversationTagger] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown"""
    global tagger
    logger.info("Starting Companion Memory API")
    settings = get_settings()
    try:
        if settings.persistence_backend == "memory":
            gateway = InMemoryTagStore()
            logger.info("Using in-memory tag store")
        else:
            await db.get_pool()
            await run_migrations(db)
            logger.info("Migrations completed")
            gateway = PostgresTagStore(db)

        llm_client = get_llm_client()
        memory_buffer.init_memory_buffer(llm_client)
        tagger = ConversationTagger(llm_client, gateway=gateway)
        logger.info("Memory buffer and conversation tagger initialized")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    yield

    logger.info("Shutting down Companion Memory API")
    await db.close()


app = FastAPI(
    title="Companion Memory API",
    version="1.0.0",
    lifespan=lifespan
)


def _require_internal_token(token: str | None) -> None:
    settings = get_settings()
    if not settings.internal_token or not token or token != settings.internal_token:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _get_tagger() -> ConversationTagger:
    if tagger is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return tagger


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "companion-memory",
        "version": "1.0.0"
    }


@app.post("/session/start", response_model=SessionStartResponse)
async def start_session(request: SessionStartRequest):
    buffer = memory_buffer.get_memory_buffer()
    if request.reset:
        buffer.reset(request.sessionId, request.userId)
        created = True
    else:
        created = buffer.initialize(request.sessionId, request.userId)
    return SessionStartResponse(sessionId=request.sessionId, created=created)


@app.post("/session/message", response_model=SessionMessageResponse)
async def add_session_message(request: SessionMessageRequest, background_tasks: BackgroundTasks):
    """
    Append a turn to the session's working memory.

    Compression (if due) runs as a background task after the response.
    """
    buffer = memory_buffer.get_memory_buffer()
    buffer.add_message(request.sessionId, request.role, request.content)
    background_tasks.add_task(buffer.update_memory_buffer, request.sessionId)
    return SessionMessageResponse(
        sessionId=request.sessionId,
        messageCount=buffer.get_message_count(request.sessionId)
    )


@app.get("/session/working-memory", response_model=WorkingMemoryResponse)
async def working_memory(sessionId: str):
    buffer = memory_buffer.get_memory_buffer()
    return WorkingMemoryResponse(
        sessionId=sessionId,
        workingMemory=buffer.get_working_memory(sessionId),
        messageCount=buffer.get_message_count(sessionId)
    )


@app.post("/session/end", response_model=SessionEndResponse)
async def end_session(request: SessionEndRequest):
    """
    Session end: tag the transcript, persist the tags, drop the buffer.

    Tagging never fails the request; a failed save is reported as saved=false.
    """
    buffer = memory_buffer.get_memory_buffer()
    conversation_tagger = _get_tagger()
    transcript = request.transcript
    if transcript is None:
        transcript = buffer.format_transcript(request.sessionId)

    try:
        if not transcript.strip():
            logger.info(f"Empty transcript for session {request.sessionId}; skipping tagging")
            return SessionEndResponse(
                sessionId=request.sessionId,
                tags=[],
                primaryEmotion="neutral",
                intensity=5,
                saved=False
            )

        result, saved = await conversation_tagger.tag_and_save(
            request.userId,
            request.sessionId,
            transcript
        )
        return SessionEndResponse(
            sessionId=request.sessionId,
            tags=result.tags,
            primaryEmotion=result.primaryEmotion,
            intensity=result.intensity,
            saved=saved
        )
    finally:
        buffer.clear_buffer(request.sessionId)


@app.get("/tags", response_model=TaggedConversationsResponse)
async def conversations_by_tag(userId: str, tag: str):
    try:
        conversations = await _get_tagger().get_conversations_by_tag(userId, tag)
        return TaggedConversationsResponse(userId=userId, tag=tag, conversations=conversations)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Tag query failed: {e}")
        raise HTTPException(status_code=500, detail="Tag query failed")


@app.get("/tags/session", response_model=Optional[ConversationTag])
async def session_tags(sessionId: str):
    try:
        return await _get_tagger().get_session_tags(sessionId)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Session tag lookup failed: {e}")
        raise HTTPException(status_code=500, detail="Session tag lookup failed")


@app.get("/internal/debug/buffer", response_model=Optional[SessionBuffer])
async def debug_buffer(
    sessionId: str,
    x_internal_token: str | None = Header(default=None)
):
    _require_internal_token(x_internal_token)
    return memory_buffer.get_memory_buffer().get_buffer(sessionId)
