from __future__ import annotations

import json
from typing import Any, Callable

import pytest

from flowsynth.schemas.records import REQUIREMENT, RESEARCH_INPUT
from flowsynth.storage.memory import InMemoryStore


class ScriptedGenerator:
    """TextGenerator double that replays canned responses and records prompts."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (list, dict)):
            return json.dumps(item)
        return item


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def scripted() -> Callable[..., ScriptedGenerator]:
    return ScriptedGenerator


@pytest.fixture
def add_input(store: InMemoryStore) -> Callable[..., dict]:
    def _add(content: str = "Users want faster checkout.", flow_id: str = "flow-1", **extra: Any) -> dict:
        row = {"flow_id": flow_id, "type": "interview_notes", "content": content}
        row.update(extra)
        return store.insert(RESEARCH_INPUT, row)

    return _add


@pytest.fixture
def add_requirement(store: InMemoryStore) -> Callable[..., dict]:
    def _add(user_story: str = "As a shopper, I want X so that Y", flow_id: str = "flow-1", **extra: Any) -> dict:
        row = {
            "flow_id": flow_id,
            "source_input_ids": [],
            "business_opportunity": "More conversions",
            "user_story": user_story,
            "acceptance_criteria": ["works"],
            "dfv_tag": None,
            "status": "draft",
        }
        row.update(extra)
        return store.insert(REQUIREMENT, row)

    return _add
