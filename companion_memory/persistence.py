"""
Tag stores implementing the PersistenceGateway contract.

PostgresTagStore backs production (table created by
migrations/001_conversation_tags.sql); InMemoryTagStore is used by tests and
by the `memory` persistence backend.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .db import Database
from .models import ConversationTag


class InMemoryTagStore:
    def __init__(self):
        self._records: List[ConversationTag] = []

    async def save_tags(
        self,
        user_id: str,
        session_id: str,
        tags: List[str],
        emotion: str,
        intensity: int
    ) -> ConversationTag:
        record = ConversationTag(
            id=uuid4(),
            userId=user_id,
            sessionId=session_id,
            tags=list(tags),
            primaryEmotion=emotion,
            intensity=intensity,
            createdAt=datetime.now(timezone.utc)
        )
        self._records.append(record)
        return record

    async def query_by_session_tag(self, user_id: str, tag: str) -> List[ConversationTag]:
        # newest first, matching the postgres ordering
        return [r for r in reversed(self._records) if r.userId == user_id and tag in r.tags]

    async def get_session_tags(self, session_id: str) -> Optional[ConversationTag]:
        for record in reversed(self._records):
            if record.sessionId == session_id:
                return record
        return None


class PostgresTagStore:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> ConversationTag:
        return ConversationTag(
            id=row["id"],
            userId=row["user_id"],
            sessionId=row["session_id"],
            tags=list(row.get("tags") or []),
            primaryEmotion=row.get("primary_emotion"),
            intensity=row.get("intensity"),
            createdAt=row["created_at"]
        )

    async def save_tags(
        self,
        user_id: str,
        session_id: str,
        tags: List[str],
        emotion: str,
        intensity: int
    ) -> ConversationTag:
        row = await self.db.fetchone(
            """
            INSERT INTO conversation_tags (user_id, session_id, tags, primary_emotion, intensity)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, user_id, session_id, tags, primary_emotion, intensity, created_at
            """,
            user_id,
            session_id,
            list(tags),
            emotion,
            intensity
        )
        return self._to_record(row)

    async def query_by_session_tag(self, user_id: str, tag: str) -> List[ConversationTag]:
        rows = await self.db.fetch(
            """
            SELECT id, user_id, session_id, tags, primary_emotion, intensity, created_at
            FROM conversation_tags
            WHERE user_id = $1 AND tags @> ARRAY[$2]::text[]
            ORDER BY created_at DESC
            """,
            user_id,
            tag
        )
        return [self._to_record(row) for row in rows]

    async def get_session_tags(self, session_id: str) -> Optional[ConversationTag]:
        row = await self.db.fetchone(
            """
            SELECT id, user_id, session_id, tags, primary_emotion, intensity, created_at
            FROM conversation_tags
            WHERE session_id = $1
            ORDER BY created_at DESC
            LIMIT 1
            """,
            session_id
        )
        return self._to_record(row) if row else None
