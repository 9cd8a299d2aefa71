"""Request models for the Messages-style HTTP API."""

from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ConfigDict


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = Field(description="'user' or 'assistant'")
    # Kept as sent: a string or a list of content blocks
    content: Any = Field(default="", description="Message content")


class MessagesRequest(BaseModel):
    """Body of ``POST /v1/messages``.

    Unknown fields (temperature, tools, metadata, ...) are accepted and ignored
    so that stock Messages API clients can talk to the bridge unchanged.
    ``max_tokens`` is one of them: the CLI has no output cap to pass it to.
    """

    model_config = ConfigDict(extra="ignore")

    messages: List[Message] = Field(min_length=1, description="Conversation so far, oldest first")
    model: Optional[str] = None
    system: Optional[Union[str, List[Any]]] = None
    stream: bool = False
