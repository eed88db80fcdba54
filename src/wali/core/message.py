"""
Conversation and message types.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class Role(str, Enum):
    """Message role in a conversation."""
    USER = "user"
    ASSISTANT = "assistant"


class SourceRef(BaseModel):
    """A document chunk cited by an assistant answer."""
    document_id: str
    chunk_id: str
    document_name: str = ""


class Message(BaseModel):
    """A message in a conversation."""
    id: str = ""
    conversation_id: str = ""
    role: Role
    content: str
    created_at: datetime | None = None
    sources: list[SourceRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sources_only_on_answers(self) -> "Message":
        if self.sources and self.role is not Role.ASSISTANT:
            raise ValueError("Only assistant messages may carry sources")
        return self

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, sources: list[SourceRef] | None = None) -> "Message":
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content, sources=sources or [])

    def to_api_format(self) -> dict[str, Any]:
        """Convert to chat API format."""
        return {"role": self.role.value, "content": self.content}


class Conversation(BaseModel):
    """A conversation summary."""
    id: str
    title: str
    created_at: datetime
    updated_at: datetime


def derive_title(question: str, limit: int = 20) -> str:
    """Conversation title from its first question."""
    question = " ".join(question.split())
    if len(question) > limit:
        return f"{question[:limit]}..."
    return question
