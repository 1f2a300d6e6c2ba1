"""Test configuration hooks and shared fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from board_automation.automation.models import AutomationRule
from board_automation.providers import (
    CompletionMessage,
    CompletionOptions,
    DocumentIntelligenceResponse,
    InMemoryEntityStore,
)


# Configure anyio to only use asyncio backend (skip trio tests)
@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use only asyncio backend."""
    return "asyncio"


class FakeCompletion:
    """Completion provider returning canned replies and recording prompts."""

    def __init__(self, reply: str = "ok", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[list[CompletionMessage], CompletionOptions | None]] = []

    async def complete(
        self,
        messages: Sequence[CompletionMessage],
        options: CompletionOptions | None = None,
    ) -> str:
        self.calls.append((list(messages), options))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeDocumentIntelligence:
    """Document-intelligence service that answers every capability the same way."""

    def __init__(
        self,
        enabled: bool = True,
        response: DocumentIntelligenceResponse | None = None,
    ) -> None:
        self.enabled = enabled
        self.response = response or DocumentIntelligenceResponse(
            success=True, data={"answer": 42}, status_code=200
        )
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def is_enabled(self) -> bool:
        return self.enabled

    async def _answer(self, name: str, *args: Any) -> DocumentIntelligenceResponse:
        self.calls.append((name, args))
        return self.response

    async def analyze_document(self, document_id):
        return await self._answer("analyze_document", document_id)

    async def extract_entities(self, case_id):
        return await self._answer("extract_entities", case_id)

    async def rag_query(self, query, case_id=None):
        return await self._answer("rag_query", query, case_id)

    async def run_investigation(self, case_id):
        return await self._answer("run_investigation", case_id)

    async def detect_contradictions(self, case_id):
        return await self._answer("detect_contradictions", case_id)

    async def classify_document(self, document_id):
        return await self._answer("classify_document", document_id)

    async def run_agent(self, agent_name, case_id):
        return await self._answer("run_agent", agent_name, case_id)

    async def search_documents(self, query):
        return await self._answer("search_documents", query)

    async def get_timeline_events(self, case_id):
        return await self._answer("get_timeline_events", case_id)


@pytest.fixture
def board_data() -> dict[str, Any]:
    """Fixtures for one board with two groups and two tasks."""
    return {
        "groups": [
            {"id": "g-todo", "boardId": "b1", "title": "To Do", "position": 0},
            {"id": "g-done", "boardId": "b1", "title": "Done", "position": 1},
        ],
        "tasks": [
            {
                "id": "t1",
                "boardId": "b1",
                "groupId": "g-todo",
                "title": "Draft lease",
                "status": "not-started",
                "priority": "medium",
                "tags": ["contract"],
                "assignees": [{"id": "p1", "name": "Alice"}],
                "dueDate": "2030-01-10",
                "customFields": {"case_id": "case-9"},
            },
            {
                "id": "t2",
                "boardId": "b1",
                "groupId": "g-todo",
                "title": "File motion",
                "status": "working",
                "priority": "low",
            },
        ],
        "rules": [],
    }


@pytest.fixture
def store(board_data) -> InMemoryEntityStore:
    """In-memory store seeded with ``board_data``."""
    return InMemoryEntityStore.from_mapping(board_data)


@pytest.fixture
def make_rule():
    """Factory for rules on board ``b1``."""

    def _make(**overrides: Any) -> AutomationRule:
        data: dict[str, Any] = {
            "scope_id": "b1",
            "name": "rule",
            "trigger_type": "status_changed",
            "action_type": "change_priority",
            "action_config": {"priority": "high"},
        }
        data.update(overrides)
        return AutomationRule.model_validate(data)

    return _make


@pytest.fixture
def completion():
    """Fake completion provider."""
    return FakeCompletion()


@pytest.fixture
def document_intelligence():
    """Fake, enabled document-intelligence service."""
    return FakeDocumentIntelligence()
