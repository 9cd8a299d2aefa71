"""Models package for the agent bridge."""

from .api import Message, MessagesRequest
from .events import (
    AssistantEvent,
    ErrorEvent,
    PassthroughEvent,
    ResultEvent,
    SubprocessEvent,
    SystemEvent,
    UnknownEvent,
    UserEvent,
    extract_session_id,
    parse_event,
)

__all__ = [
    "AssistantEvent",
    "ErrorEvent",
    "Message",
    "MessagesRequest",
    "PassthroughEvent",
    "ResultEvent",
    "SubprocessEvent",
    "SystemEvent",
    "UnknownEvent",
    "UserEvent",
    "extract_session_id",
    "parse_event",
]
