"""Domain-specific exception classes for the automation core."""

from crm_automation.domain.types import RuleStatus


class AutomationCoreError(Exception):
    """Base class for all domain errors in the automation core."""


class ConfigurationError(AutomationCoreError):
    """Raised when a rule, action, or webhook definition is missing required data.

    Configuration errors are rejected before execution and never retried.

    Attributes:
        reasons: Human-readable validation failures, one per problem found.
    """

    def __init__(self, reasons: list[str] | str) -> None:
        self.reasons = [reasons] if isinstance(reasons, str) else list(reasons)
        super().__init__("; ".join(self.reasons))


class CollaboratorError(AutomationCoreError):
    """Raised when a dependent service (messaging, contacts, flows, email) fails."""


class DeliveryError(AutomationCoreError):
    """Raised when a webhook attempt fails (network, timeout, or non-2xx).

    Attributes:
        status_code: HTTP status of the response, if one was received.
        response_body: Raw response text, if one was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class EngineFault(AutomationCoreError):
    """Raised for an unexpected internal error while evaluating one rule.

    Attributes:
        rule_id: The rule being processed when the fault occurred.
    """

    def __init__(self, rule_id: str, message: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} failed: {message}")


class InvalidTransitionError(AutomationCoreError):
    """Raised when a rule status change is not allowed.

    Attributes:
        current_status: The status the rule was in.
        target_status: The status that was requested.
    """

    def __init__(self, current_status: RuleStatus, target_status: RuleStatus, reason: str = "") -> None:
        self.current_status = current_status
        self.target_status = target_status
        message = f"Cannot move rule from '{current_status}' to '{target_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotFoundError(AutomationCoreError):
    """Raised when a stored entity does not exist."""


class RuleNotFoundError(NotFoundError):
    """Raised when an automation rule id is unknown."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Automation rule not found: {rule_id}")


class WebhookNotFoundError(NotFoundError):
    """Raised when a webhook subscription id is unknown."""

    def __init__(self, webhook_id: str) -> None:
        self.webhook_id = webhook_id
        super().__init__(f"Webhook not found: {webhook_id}")
