"""Custom exceptions for the automation engine."""

from __future__ import annotations

MAX_ERROR_LENGTH = 500


def truncate_error(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Clip provider error text to a length that is safe to store and display."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class AutomationError(Exception):
    """Base exception for automation errors."""

    pass


class InvalidEventError(AutomationError, ValueError):
    """Raised when an incoming event is malformed (e.g. missing scope id)."""

    pass


class InvalidRuleError(AutomationError, ValueError):
    """Raised when a candidate rule passed for simulation cannot be parsed."""

    pass


class ActionError(AutomationError):
    """Raised by an action handler when its action cannot be completed."""

    def __init__(self, message: str, action_type: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            action_type: Action type whose handler failed
        """
        self.action_type = action_type
        super().__init__(truncate_error(message))


class ServiceNotConnectedError(ActionError):
    """Raised when an action needs a provider that is missing or disabled."""

    def __init__(self, service: str, action_type: str | None = None) -> None:
        """Initialize the exception.

        Args:
            service: Human-readable name of the missing service
            action_type: Action type that required the service
        """
        self.service = service
        super().__init__(f"{service} not connected", action_type)


class ExternalServiceError(ActionError):
    """Raised when an AI or remote-intelligence provider call fails."""

    def __init__(
        self,
        message: str,
        service: str,
        action_type: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Provider error text
            service: Name of the failing service
            action_type: Action type whose provider call failed
            status_code: HTTP status code reported by the provider, if any
        """
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} error: {message}", action_type)


class LedgerError(AutomationError):
    """Raised by ledger stores when a write violates the append-only contract."""

    pass


class EntityNotFoundError(AutomationError):
    """Raised when an entity disappears between an action's read and its write."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Task {entity_id} no longer exists")
