"""
Spending ledger for active sessions.

Tracks cumulative spend per mint against each session's limits. Every
authorize/release runs as one read-modify-write inside the store's
critical section, so concurrent callers cannot overshoot a limit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .audit import AuditTrail, EventType
from .errors import LedgerReason, LedgerRejection, ValidationError
from .models import Session, SessionStatus
from .money import format_base_units
from .session_store import SessionBook

logger = logging.getLogger(__name__)


@dataclass
class SpendDecision:
    """Result of an authorize attempt."""

    ok: bool
    reason: Optional[LedgerReason] = None
    status: Optional[SessionStatus] = None
    exhausted: bool = False

    def raise_for_rejection(self) -> None:
        if not self.ok and self.reason is not None:
            raise LedgerRejection(self.reason, status=self.status.value if self.status else None)


def _require_positive_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Spend amount must be an integer number of base units, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"Spend amount must be positive, got {amount}")
    return amount


class SpendingLedger:
    """Authorizes spends against session limits."""

    def __init__(self, book: SessionBook, audit: Optional[AuditTrail] = None, registry=None):
        self.book = book
        self.audit = audit
        self.registry = registry

    def authorize_spend(
        self,
        session_id: str,
        mint: str,
        amount: int,
        now: Optional[int] = None,
    ) -> SpendDecision:
        """
        Check and record a spend in one step.

        Rejections carry a reason and leave ``spent`` untouched. A spend that
        uses up every limited mint moves the session to ``exhausted``.
        """
        amount = _require_positive_amount(amount)

        def apply(session: Session) -> SpendDecision:
            if session.status != SessionStatus.ACTIVE:
                reason = (
                    LedgerReason.EXPIRED
                    if session.status == SessionStatus.EXPIRED
                    else LedgerReason.NOT_ACTIVE
                )
                return SpendDecision(ok=False, reason=reason, status=session.status)

            limit = session.limit_for(mint)
            if limit is None:
                return SpendDecision(ok=False, reason=LedgerReason.NO_LIMIT_FOR_ASSET, status=session.status)

            if session.spent_for(mint) + amount > limit.amount:
                return SpendDecision(ok=False, reason=LedgerReason.LIMIT_EXCEEDED, status=session.status)

            session.spent[mint] = session.spent_for(mint) + amount
            exhausted = session.is_fully_spent
            if exhausted:
                session.transition(SessionStatus.EXHAUSTED)
            return SpendDecision(ok=True, status=session.status, exhausted=exhausted)

        with self.book.store.transaction():
            session, decision = self.book.mutate(session_id, apply, now=now)
            if decision.ok and self.registry is not None and self.registry.get_agent(session.agent_id):
                self.registry.update_last_seen(session.agent_id, now)

        if decision.ok:
            logger.info(
                "Spend authorized: session=%s mint=%s amount=%d spent=%d",
                session_id, mint, amount, session.spent_for(mint),
            )
        else:
            logger.info(
                "Spend denied: session=%s mint=%s amount=%d reason=%s",
                session_id, mint, amount, decision.reason.value,
            )
        if self.audit:
            self.audit.log(
                EventType.SPEND_AUTHORIZED if decision.ok else EventType.SPEND_DENIED,
                session_id=session_id,
                agent_id=session.agent_id,
                mint=mint,
                amount=amount,
                success=decision.ok,
                reason=None if decision.ok else decision.reason.value,
            )
            if decision.exhausted:
                self.audit.log(EventType.SESSION_EXHAUSTED, session_id=session_id, agent_id=session.agent_id)
        return decision

    def release_spend(self, session_id: str, mint: str, amount: int) -> Session:
        """Give back a spend whose submission definitively failed.

        Spent never drops below zero and a terminal session stays terminal.
        """
        amount = _require_positive_amount(amount)

        def release(session: Session) -> None:
            session.spent[mint] = max(0, session.spent_for(mint) - amount)

        session, _ = self.book.mutate(session_id, release)
        logger.info("Spend rolled back: session=%s mint=%s amount=%d", session_id, mint, amount)
        if self.audit:
            self.audit.log(
                EventType.SPEND_ROLLED_BACK,
                session_id=session_id,
                agent_id=session.agent_id,
                mint=mint,
                amount=amount,
            )
        return session

    def get_summary(self, session_id: str) -> dict:
        """Get a human-readable spending summary."""
        session = self.book.get(session_id)
        assets = []
        for limit in session.limits:
            spent = session.spent_for(limit.mint)
            utilization = f"{(spent / limit.amount * 100):.1f}%" if limit.amount > 0 else "N/A"
            assets.append(
                {
                    "mint": limit.mint,
                    "symbol": limit.symbol,
                    "spent": format_base_units(spent, limit.decimals, limit.symbol),
                    "limit": format_base_units(limit.amount, limit.decimals, limit.symbol),
                    "remaining": format_base_units(session.remaining_for(limit.mint), limit.decimals, limit.symbol),
                    "utilization": utilization,
                }
            )
        return {
            "session_id": session.id,
            "agent_id": session.agent_id,
            "status": session.status.value,
            "expires_at": session.expires_at,
            "assets": assets,
        }
