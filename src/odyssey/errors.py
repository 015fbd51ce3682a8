"""
Odyssey error types.

Specific exceptions for different failure modes, enabling callers
to handle each case appropriately (retry, surface, roll back, etc.).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class OdysseyError(Exception):
    """Base error for all Odyssey operations."""
    pass


class ValidationError(OdysseyError):
    """Malformed input or a response that fails its schema. Never retried."""
    def __init__(self, message: str, errors: Optional[list[Any]] = None):
        self.errors = errors or []
        super().__init__(message)


# Remote service errors
class RemoteServiceError(OdysseyError):
    """Authorization service answered with a non-2xx status."""
    def __init__(
        self,
        status_code: int,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details
        super().__init__(f"Remote service error ({status_code}): {message}")


class NetworkError(OdysseyError):
    """Network-level failures (DNS, connection refused, timeouts, etc.)."""
    pass


# Ledger errors
class LedgerReason(str, Enum):
    EXPIRED = "expired"
    NOT_ACTIVE = "not-active"
    NO_LIMIT_FOR_ASSET = "no-limit-for-asset"
    LIMIT_EXCEEDED = "limit-exceeded"


class LedgerRejection(OdysseyError):
    """Spend refused by the ledger. The condition will not change on retry."""
    def __init__(self, reason: LedgerReason, status: Optional[str] = None, detail: str = ""):
        self.reason = reason
        self.status = status
        message = f"Spend rejected: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# Session errors
class SessionError(OdysseyError):
    """Base error for session lifecycle issues."""
    pass


class SessionNotFoundError(SessionError):
    """Session ID not found in the local store."""
    pass


class InvalidTransitionError(SessionError):
    """Requested status change is not allowed from the current status."""
    def __init__(self, session_id: str, current: str, target: str):
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(f"Session {session_id} cannot move from {current} to {target}")


class DuplicateSessionError(SessionError):
    """A pending or active session already exists for this agent and session key."""
    pass


class UnauthorizedApprovalError(SessionError):
    """Approval signer is not the wallet holder of the session."""
    pass


# Agent errors
class AgentError(OdysseyError):
    """Base error for agent registry issues."""
    pass


class AgentNotFoundError(AgentError):
    pass


class DuplicateAgentError(AgentError):
    """Agent already paired."""
    pass


class AgentRevokedError(AgentError):
    """Agent has been revoked and can no longer act."""
    pass


class AgentHasLiveSessionsError(AgentError):
    """Agent still has pending or active sessions; revoke them first."""
    def __init__(self, agent_id: str, session_ids: list[str]):
        self.agent_id = agent_id
        self.session_ids = session_ids
        super().__init__(
            f"Agent {agent_id} has {len(session_ids)} live session(s): {', '.join(session_ids)}"
        )


# Storage errors
class StorageError(OdysseyError):
    """Base error for durable store failures."""
    pass


class StorageCorruptionError(StorageError):
    """A stored collection could not be parsed."""
    def __init__(self, collection: str, message: str):
        self.collection = collection
        super().__init__(f"Stored {collection} collection is corrupt: {message}")


class SigningError(OdysseyError):
    """Signature creation or verification failed."""
    pass
