"""Bundle of the providers handed to every action handler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..core.config import EngineConfig

if TYPE_CHECKING:
    from .completion import TextCompletionProvider
    from .document_intelligence import DocumentIntelligenceService
    from .notifications import NotificationSink


@dataclass
class ActionProviders:
    """External capabilities available to action handlers.

    Any provider may be ``None``; handlers that need a missing provider fail
    with a "not connected" outcome.
    """

    completion: TextCompletionProvider | None = None
    document_intelligence: DocumentIntelligenceService | None = None
    notifications: NotificationSink | None = None
    http_timeout: float = 10.0

    @classmethod
    def from_config(cls, config: EngineConfig, with_completion: bool = False) -> ActionProviders:
        """Build the default provider set for a configuration.

        The completion provider is only wired when ``with_completion`` is set,
        since it needs credentials for the configured model.
        """
        from .completion import PydanticAICompletionProvider
        from .document_intelligence import DocumentIntelligenceClient
        from .notifications import NotificationOutbox

        return cls(
            completion=PydanticAICompletionProvider(config.completion) if with_completion else None,
            document_intelligence=DocumentIntelligenceClient(config.document_intelligence),
            notifications=NotificationOutbox(),
            http_timeout=config.http.timeout,
        )
