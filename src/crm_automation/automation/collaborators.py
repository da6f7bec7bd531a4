"""Default collaborators used when no real platform service is wired in.

The messaging, conversation, contact, flow and email services live outside
this package.  Until the host application registers its own implementations,
each action family is served by a collaborator that only logs the call.
"""

from __future__ import annotations

from typing import Any

import structlog

from crm_automation.automation.actions import Collaborator, CollaboratorResult
from crm_automation.domain.types import ActionType

logger = structlog.get_logger()


class LoggingCollaborator:
    """Accepts every call and records it in the log."""

    def __init__(self, action_type: ActionType) -> None:
        self.action_type = action_type

    async def execute(self, config: dict[str, Any]) -> CollaboratorResult:
        logger.info("collaborator_call", action_type=self.action_type.value, config_keys=sorted(config))
        return CollaboratorResult(success=True, detail={"logged": True})


def default_collaborators() -> dict[ActionType, Collaborator]:
    """Return a logging collaborator for every non-webhook action type."""
    return {t: LoggingCollaborator(t) for t in ActionType if t != ActionType.WEBHOOK}
