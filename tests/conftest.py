import os

import pytest

os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")

from companion_memory.config import get_settings
from companion_memory.openrouter_client import get_llm_client


@pytest.fixture(autouse=True)
def _stub_llm_calls(monkeypatch):
    get_settings.cache_clear()
    llm_client = get_llm_client()

    async def _stub_call_llm(*_args, **_kwargs):
        return "TOPIC: general\nEMOTION: calm\nSUMMARY: summary"

    monkeypatch.setattr(llm_client, "_call_llm", _stub_call_llm, raising=True)
