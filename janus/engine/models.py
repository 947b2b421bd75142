"""Data models for voice conversation sessions."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ConversationMessage:
    """One turn of a voice conversation."""
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Session:
    """State for a single voice conversation.

    ``agent_conversation_handle`` is the agent CLI's own chat id. It is
    empty until the first question succeeds and is passed back to the
    CLI with ``--resume`` on every later question.
    """
    id: str
    created_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)
    agent_conversation_handle: str = ""
    conversation_log: list[ConversationMessage] = field(default_factory=list)

    def idle_seconds(self, now: datetime | None = None) -> float:
        return ((now or _utcnow()) - self.last_activity_at).total_seconds()

    def to_dict(self, include_log: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.id,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "has_agent_conversation": bool(self.agent_conversation_handle),
            "message_count": len(self.conversation_log),
        }
        if include_log:
            data["conversation_log"] = [
                msg.to_dict() for msg in self.conversation_log
            ]
        return data


@dataclass
class AgentReply:
    """Parsed answer from one agent CLI invocation."""
    answer: str
    conversation_handle: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
