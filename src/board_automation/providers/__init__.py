"""Collaborators the automation engine consumes.

The engine only reaches the outside world through the Entity Store and the
providers bundled in :class:`ActionProviders`.
"""

from .bundle import ActionProviders
from .completion import (
    CompletionMessage,
    CompletionOptions,
    PydanticAICompletionProvider,
    TextCompletionProvider,
)
from .document_intelligence import (
    DocumentIntelligenceClient,
    DocumentIntelligenceResponse,
    DocumentIntelligenceService,
)
from .notifications import Notification, NotificationOutbox, NotificationSink
from .store import Entity, EntityStore, Group, InMemoryEntityStore, Person, TimeLog

__all__ = [
    "ActionProviders",
    "CompletionMessage",
    "CompletionOptions",
    "DocumentIntelligenceClient",
    "DocumentIntelligenceResponse",
    "DocumentIntelligenceService",
    "Entity",
    "EntityStore",
    "Group",
    "InMemoryEntityStore",
    "Notification",
    "NotificationOutbox",
    "NotificationSink",
    "Person",
    "PydanticAICompletionProvider",
    "TextCompletionProvider",
    "TimeLog",
]
