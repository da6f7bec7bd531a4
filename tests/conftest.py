"""Shared pytest fixtures for the automation core test suite."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from crm_automation.automation.actions import ActionExecutor, CollaboratorResult
from crm_automation.automation.store import RuleStore
from crm_automation.domain.models import ActionSpec, DomainEvent, RuleDraft
from crm_automation.domain.types import ActionType, RuleStatus, TriggerType
from crm_automation.storage import close_database, open_database
from crm_automation.webhooks.delivery import WebhookDeliveryClient
from crm_automation.webhooks.registry import WebhookRegistry
from crm_automation.webhooks.secrets import SecretCipher


@pytest.fixture
def anyio_backend() -> str:
    """Async tests run on asyncio only."""
    return "asyncio"


class RecordingCollaborator:
    """Collaborator double that records configs and returns a canned result."""

    def __init__(self, result: CollaboratorResult | None = None, error: Exception | None = None) -> None:
        self.result = result or CollaboratorResult(success=True, detail={"ok": True})
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def execute(self, config: dict[str, Any]) -> CollaboratorResult:
        self.calls.append(config)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    """In-memory database with every table created."""
    connection = open_database(":memory:")
    yield connection
    close_database(connection)


@pytest.fixture
def rule_store(conn: sqlite3.Connection) -> RuleStore:
    return RuleStore(conn)


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher.ephemeral()


@pytest.fixture
def registry(conn: sqlite3.Connection, cipher: SecretCipher) -> WebhookRegistry:
    return WebhookRegistry(conn, cipher)


@pytest.fixture
def collaborators() -> dict[ActionType, RecordingCollaborator]:
    """One recording collaborator per non-webhook action type."""
    return {t: RecordingCollaborator() for t in ActionType if t != ActionType.WEBHOOK}


@pytest.fixture
def executor(collaborators: dict[ActionType, RecordingCollaborator]) -> ActionExecutor:
    return ActionExecutor(collaborators)


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client(sleeper: SleepRecorder) -> Callable[..., WebhookDeliveryClient]:
    """Factory for delivery clients whose HTTP calls go to a handler function."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> WebhookDeliveryClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WebhookDeliveryClient(http, sleep=sleeper, **kwargs)

    return _make


@pytest.fixture
def sample_draft() -> RuleDraft:
    """An active tag_added rule with a single add_tag action."""
    return RuleDraft(
        name="Tag VIPs",
        trigger_type=TriggerType.TAG_ADDED,
        actions=[ActionSpec(type="add_tag", config={"tagName": "vip"})],
        status=RuleStatus.ACTIVE,
    )


@pytest.fixture
def tag_event() -> DomainEvent:
    return DomainEvent(
        type="tag_added",
        payload={"tagName": "lead", "conversationId": "conv-1", "contactId": "contact-1"},
    )
