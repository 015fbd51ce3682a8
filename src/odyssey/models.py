"""
Agent, session and spending limit records.

A Session is a time- and amount-bounded grant of spending authority from a
wallet to one paired agent. Records serialize to the camelCase layout used
both on disk and on the wire.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .errors import AgentRevokedError, InvalidTransitionError, ValidationError


NATIVE_MINT = "native"


def now_ms() -> int:
    return int(time.time() * 1000)


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REVOKED = "revoked"


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        return self in (SessionStatus.PENDING, SessionStatus.ACTIVE)


TERMINAL_STATUSES = frozenset(
    {SessionStatus.EXPIRED, SessionStatus.REVOKED, SessionStatus.EXHAUSTED}
)

_SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.REVOKED}),
    SessionStatus.ACTIVE: frozenset(
        {SessionStatus.EXPIRED, SessionStatus.REVOKED, SessionStatus.EXHAUSTED}
    ),
    SessionStatus.EXPIRED: frozenset(),
    SessionStatus.REVOKED: frozenset(),
    SessionStatus.EXHAUSTED: frozenset(),
}

_AGENT_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.ACTIVE: frozenset({AgentStatus.INACTIVE, AgentStatus.REVOKED}),
    AgentStatus.INACTIVE: frozenset({AgentStatus.ACTIVE, AgentStatus.REVOKED}),
    AgentStatus.REVOKED: frozenset(),
}


def _require_int(value: Any, name: str) -> int:
    # bool is an int subclass; a JSON true must not pass as an amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative, got {value}")
    return value


@dataclass(frozen=True)
class SpendingLimit:
    """Maximum cumulative amount of one asset, in base units."""

    mint: str
    amount: int
    decimals: int
    symbol: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.mint, str) or not self.mint:
            raise ValidationError("Spending limit mint must be a non-empty string")
        _require_int(self.amount, f"Limit amount for {self.mint}")
        _require_int(self.decimals, f"Limit decimals for {self.mint}")

    @property
    def is_native(self) -> bool:
        return self.mint == NATIVE_MINT

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"mint": self.mint, "amount": self.amount, "decimals": self.decimals}
        if self.symbol is not None:
            d["symbol"] = self.symbol
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> SpendingLimit:
        try:
            return cls(
                mint=d["mint"],
                amount=d["amount"],
                decimals=d["decimals"],
                symbol=d.get("symbol"),
            )
        except KeyError as e:
            raise ValidationError(f"Spending limit missing field {e}") from e


def validate_limits(limits: Iterable[SpendingLimit | Mapping[str, Any]]) -> list[SpendingLimit]:
    """Normalize limits and reject duplicates or malformed entries."""
    parsed: list[SpendingLimit] = []
    seen: set[str] = set()
    for item in limits:
        limit = item if isinstance(item, SpendingLimit) else SpendingLimit.from_dict(item)
        if limit.mint in seen:
            raise ValidationError(f"Duplicate spending limit for mint {limit.mint}")
        seen.add(limit.mint)
        parsed.append(limit)
    if not parsed:
        raise ValidationError("At least one spending limit is required")
    return parsed


@dataclass
class Agent:
    """A paired automated agent."""

    id: str
    name: str
    paired_at: int
    last_seen: Optional[int] = None
    status: AgentStatus = AgentStatus.ACTIVE
    wallet_key: Optional[str] = None

    def set_status(self, status: AgentStatus) -> None:
        if status == self.status:
            return
        if status not in _AGENT_TRANSITIONS[self.status]:
            raise AgentRevokedError(f"Agent {self.id} is revoked; cannot move to {status.value}")
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pairedAt": self.paired_at,
            "lastSeen": self.last_seen,
            "status": self.status.value,
            "walletKey": self.wallet_key,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Agent:
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            paired_at=int(d["pairedAt"]),
            last_seen=None if d.get("lastSeen") is None else int(d["lastSeen"]),
            status=AgentStatus(d["status"]),
            wallet_key=d.get("walletKey"),
        )


@dataclass
class Session:
    """A spending grant for one agent over specific assets."""

    id: str
    agent_id: str
    wallet_key: str
    session_key: str
    limits: list[SpendingLimit]
    duration_seconds: int
    created_at: int
    expires_at: int
    status: SessionStatus = SessionStatus.PENDING
    spent: dict[str, int] = field(default_factory=dict)

    @classmethod
    def new_pending(
        cls,
        session_id: str,
        agent_id: str,
        wallet_key: str,
        session_key: str,
        limits: list[SpendingLimit],
        duration_seconds: int,
        created_at: int,
    ) -> Session:
        return cls(
            id=session_id,
            agent_id=agent_id,
            wallet_key=wallet_key,
            session_key=session_key,
            limits=validate_limits(limits),
            duration_seconds=validate_duration(duration_seconds),
            created_at=created_at,
            expires_at=created_at + duration_seconds * 1000,
        )

    def limit_for(self, mint: str) -> Optional[SpendingLimit]:
        for limit in self.limits:
            if limit.mint == mint:
                return limit
        return None

    def spent_for(self, mint: str) -> int:
        return self.spent.get(mint, 0)

    def remaining_for(self, mint: str) -> int:
        limit = self.limit_for(mint)
        if limit is None:
            return 0
        return max(0, limit.amount - self.spent_for(mint))

    @property
    def is_fully_spent(self) -> bool:
        return all(self.spent_for(limit.mint) == limit.amount for limit in self.limits)

    def is_due(self, now: int) -> bool:
        return self.status == SessionStatus.ACTIVE and now >= self.expires_at

    def transition(self, target: SessionStatus) -> None:
        if target not in _SESSION_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        self.status = target

    def activate(self, now: int, expires_at: Optional[int] = None) -> None:
        self.transition(SessionStatus.ACTIVE)
        self.created_at = now
        self.expires_at = expires_at if expires_at is not None else now + self.duration_seconds * 1000
        self.spent = {limit.mint: 0 for limit in self.limits}

    def expire_if_due(self, now: int) -> bool:
        """Flip an active session past its deadline to expired."""
        if not self.is_due(now):
            return False
        self.transition(SessionStatus.EXPIRED)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "walletKey": self.wallet_key,
            "sessionKey": self.session_key,
            "limits": [limit.to_dict() for limit in self.limits],
            "durationSeconds": self.duration_seconds,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "status": self.status.value,
            "spent": dict(self.spent),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Session:
        spent = {str(mint): _require_int(v, f"Spent amount for {mint}") for mint, v in d.get("spent", {}).items()}
        return cls(
            id=str(d["id"]),
            agent_id=str(d["agentId"]),
            wallet_key=str(d["walletKey"]),
            session_key=str(d["sessionKey"]),
            limits=validate_limits(d["limits"]),
            duration_seconds=validate_duration(d["durationSeconds"]),
            created_at=int(d["createdAt"]),
            expires_at=int(d["expiresAt"]),
            status=SessionStatus(d["status"]),
            spent=spent,
        )


def validate_duration(duration_seconds: Any) -> int:
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise ValidationError(f"durationSeconds must be an integer, got {duration_seconds!r}")
    if duration_seconds <= 0:
        raise ValidationError("durationSeconds must be positive")
    return duration_seconds
