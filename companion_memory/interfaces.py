"""
Collaborator contracts for the memory subsystem.

The buffer and the tagger depend on these protocols, not on concrete
services, so tests can pass simple fakes and deployments can swap the
text-generation provider or the tag store.

- TextGenerationClient.complete(prompt) -> completion text
- PersistenceGateway.save_tags(...) / query_by_session_tag(...)
"""

from typing import List, Optional, Protocol

from .models import ConversationTag


class TextGenerationClient(Protocol):
    async def complete(self, prompt: str, task: str = "generic") -> str: ...


class PersistenceGateway(Protocol):
    async def save_tags(
        self,
        user_id: str,
        session_id: str,
        tags: List[str],
        emotion: str,
        intensity: int,
    ) -> ConversationTag: ...

    async def query_by_session_tag(self, user_id: str, tag: str) -> List[ConversationTag]: ...

    async def get_session_tags(self, session_id: str) -> Optional[ConversationTag]: ...
