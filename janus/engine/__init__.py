"""Janus session engine.

Session store, agent CLI invocation, question routing and idle-session
cleanup. The HTTP layer in ``janus.server`` is a thin wrapper around
``SessionOrchestrator``.
"""
from .cleanup import CleanupScheduler
from .config import JanusConfig
from .errors import (
    AgentInvocationError,
    AgentReportedError,
    AgentTimeoutError,
    ConfigError,
    InternalError,
    InvalidInputError,
    JanusError,
    MediaError,
    MediaProcessError,
    MediaTimeoutError,
    ProcessFailedError,
    SessionNotFoundError,
)
from .models import AgentReply, ConversationMessage, MessageRole, Session
from .orchestrator import SessionOrchestrator
from .retry import FailureKind, RetryPolicy, classify_failure, is_transient
from .session_store import SessionStore

__all__ = [
    "AgentInvocationError",
    "AgentReply",
    "AgentReportedError",
    "AgentTimeoutError",
    "CleanupScheduler",
    "ConfigError",
    "ConversationMessage",
    "FailureKind",
    "InternalError",
    "InvalidInputError",
    "JanusConfig",
    "JanusError",
    "MediaError",
    "MediaProcessError",
    "MediaTimeoutError",
    "MessageRole",
    "ProcessFailedError",
    "RetryPolicy",
    "Session",
    "SessionNotFoundError",
    "SessionOrchestrator",
    "SessionStore",
    "classify_failure",
    "is_transient",
]
