from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from flowsynth.agent.llm import ChatTextGenerator, call_generator
from flowsynth.schemas.records import REQUIREMENT
from flowsynth.services.errors import PersistenceError, UpstreamError
from flowsynth.storage.memory import InMemoryStore


def test_insert_many_is_atomic(store: InMemoryStore) -> None:
    existing = store.insert(REQUIREMENT, {"user_story": "a"})
    with pytest.raises(PersistenceError):
        store.insert_many(REQUIREMENT, [{"user_story": "b"}, {"id": existing["id"], "user_story": "dup"}])
    assert [r["user_story"] for r in store.select(REQUIREMENT)] == ["a"]


def test_contains_filter_and_ordering(store: InMemoryStore) -> None:
    later = datetime(2024, 1, 2, tzinfo=timezone.utc)
    earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.insert(REQUIREMENT, {"user_story": "late", "source_input_ids": ["i1"], "created_at": later})
    store.insert(REQUIREMENT, {"user_story": "early", "source_input_ids": ["i2", "i1"], "created_at": earlier})
    store.insert(REQUIREMENT, {"user_story": "other", "source_input_ids": ["i2"], "created_at": earlier})

    rows = store.select(REQUIREMENT, contains={"source_input_ids": "i1"}, order_by="created_at")
    assert [r["user_story"] for r in rows] == ["early", "late"]
    assert store.delete(REQUIREMENT, contains={"source_input_ids": "i1"}) == 2
    assert [r["user_story"] for r in store.select(REQUIREMENT)] == ["other"]


def test_unfiltered_delete_is_refused(store: InMemoryStore) -> None:
    with pytest.raises(PersistenceError):
        store.delete(REQUIREMENT)


def test_update_advances_updated_at(store: InMemoryStore) -> None:
    row = store.insert(REQUIREMENT, {"user_story": "a", "updated_at": datetime(2020, 1, 1, tzinfo=timezone.utc)})
    updated = store.update(REQUIREMENT, row["id"], {"user_story": "b", "id": "hijack"})
    assert updated["id"] == row["id"]
    assert updated["updated_at"] > row["updated_at"]
    assert store.update(REQUIREMENT, "missing", {"user_story": "c"}) is None


def test_chat_generator_flattens_content_parts() -> None:
    class FakeLLM:
        def __init__(self) -> None:
            self.calls = []

        def invoke(self, messages):
            self.calls.append(messages)
            return SimpleNamespace(content=[{"type": "text", "text": "[1"}, "]", {"type": "image"}])

    llm = FakeLLM()
    assert ChatTextGenerator(llm).generate("prompt") == "[1]"
    assert llm.calls[0][0].content == "prompt"


def test_chat_generator_wraps_client_failures() -> None:
    class BrokenLLM:
        def invoke(self, messages):
            raise TimeoutError("read timeout")

    with pytest.raises(UpstreamError):
        ChatTextGenerator(BrokenLLM()).generate("prompt")


def test_call_generator_rejects_non_text() -> None:
    class NoText:
        def generate(self, prompt):
            return None

    with pytest.raises(UpstreamError):
        call_generator(NoText(), "prompt")
