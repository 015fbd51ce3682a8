"""
Session authority: the request/approval protocol and session lifecycle.

States run ``pending -> active -> expired | revoked | exhausted`` plus
``pending -> revoked``. Remote calls happen outside the store lock; the
local record is re-validated when the answer comes back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

from .agents import AgentRegistry
from .audit import AuditTrail, EventType
from .errors import (
    AgentRevokedError,
    DuplicateSessionError,
    InvalidTransitionError,
    NetworkError,
    RemoteServiceError,
    SessionNotFoundError,
    UnauthorizedApprovalError,
    ValidationError,
)
from .ledger import SpendingLedger
from .models import (
    NATIVE_MINT,
    AgentStatus,
    Session,
    SessionStatus,
    SpendingLimit,
    now_ms,
    validate_duration,
    validate_limits,
)
from .remote import RemoteAuthorizationClient
from .session_store import SessionBook
from .signing import Signer, approval_message, session_request_message
from .tasks import CancellableTask, CancelToken

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Outcome of a submitted transfer."""

    session_id: str
    mint: str
    amount: int
    destination: str
    signature: str
    status: str  # pending, confirmed, failed
    rolled_back: bool = False

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class SessionAuthority:
    """Creates, approves and retires sessions for paired agents."""

    def __init__(
        self,
        client: RemoteAuthorizationClient,
        book: SessionBook,
        registry: AgentRegistry,
        ledger: Optional[SpendingLedger] = None,
        audit: Optional[AuditTrail] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.client = client
        self.book = book
        self.registry = registry
        self.ledger = ledger or SpendingLedger(book, audit=audit, registry=registry)
        self.audit = audit
        self.clock = clock

    @property
    def store(self):
        return self.book.store

    def _audit(self, event_type: EventType, session: Session, **kwargs: Any) -> None:
        if self.audit:
            self.audit.log(
                event_type,
                session_id=session.id,
                agent_id=session.agent_id,
                wallet_key=session.wallet_key,
                **kwargs,
            )

    # ── Reads ────────────────────────────────────────────────────────

    def get_session(self, session_id: str, now: Optional[int] = None) -> Session:
        return self.book.get(session_id, now=now)

    def list_sessions(self, agent_id: Optional[str] = None, now: Optional[int] = None) -> list[Session]:
        return self.book.list_sessions(agent_id=agent_id, now=now)

    def check_expiry(self, session_id: str, now: Optional[int] = None) -> Session:
        """Expire the session if it is active and past its deadline.

        Idempotent; the expiry is persisted before this returns.
        """
        return self.book.get(session_id, now=now)

    def sweep_expired(self, now: Optional[int] = None) -> int:
        return self.book.sweep_expired(now=now)

    def start_expiry_sweeper(self, interval_seconds: float = 30.0) -> CancellableTask[int]:
        """Sweep expired sessions every ``interval_seconds`` until cancelled."""

        def sweep_loop(token: CancelToken) -> int:
            swept = 0
            while token.sleep(interval_seconds):
                swept += self.sweep_expired()
            return swept

        return CancellableTask(sweep_loop, name="odyssey-expiry-sweeper").start()

    # ── Request / approval protocol ──────────────────────────────────

    def request_session(
        self,
        agent_id: str,
        wallet_key: str,
        session_key: str,
        duration_seconds: int,
        limits: Iterable[SpendingLimit | Mapping[str, Any]],
        auth_secret: str,
        signer: Signer,
    ) -> Session:
        """
        Ask the wallet for a new spending session.

        The remote answer decides the local starting state: ``pending``
        is stored as pending under the request id, ``approved`` is stored
        active and ``rejected`` is stored revoked.
        """
        parsed_limits = validate_limits(limits)
        duration_seconds = validate_duration(duration_seconds)

        agent = self.registry.require_agent(agent_id)
        if agent.status == AgentStatus.REVOKED:
            raise AgentRevokedError(f"Agent {agent_id} is revoked")
        for existing in self.book.list_sessions(agent_id=agent_id):
            if existing.status.is_live and existing.session_key == session_key:
                raise DuplicateSessionError(
                    f"Agent {agent_id} already has a {existing.status.value} session "
                    f"for key {session_key}: {existing.id}"
                )

        timestamp = self.clock()
        signature = signer.sign(
            session_request_message(
                agent_id=agent_id,
                wallet_key=wallet_key,
                session_key=session_key,
                duration_seconds=duration_seconds,
                limits=parsed_limits,
                timestamp=timestamp,
            )
        )
        response = self.client.request_session(
            agent_id=agent_id,
            wallet_key=wallet_key,
            session_key=session_key,
            duration_seconds=duration_seconds,
            limits=parsed_limits,
            signature=signature,
            timestamp=timestamp,
            auth_secret=auth_secret,
        )

        session = Session.new_pending(
            response.request_id,
            agent_id=agent_id,
            wallet_key=wallet_key,
            session_key=session_key,
            limits=parsed_limits,
            duration_seconds=duration_seconds,
            created_at=timestamp,
        )
        if response.status == "approved":
            remote_expiry = response.session.expires_at if response.session else None
            session.activate(self.clock(), expires_at=remote_expiry)
        elif response.status == "rejected":
            session.transition(SessionStatus.REVOKED)

        with self.store.transaction():
            self.book.add(session)
            self.registry.update_last_seen(agent_id)

        logger.info(
            "Session requested: %s agent=%s status=%s", session.id, agent_id, session.status.value
        )
        self._audit(
            EventType.SESSION_REQUESTED,
            session,
            details={"remote_status": response.status, "duration_seconds": duration_seconds},
        )
        return session

    def load_request(self, request_id: str) -> Session:
        """Fetch a request for review and reconcile it with the local copy."""
        details = self.client.get_session_details(request_id)
        local = self.book.find(request_id)

        if local is None:
            if details.session is None:
                raise SessionNotFoundError(
                    f"Session request {request_id} is {details.status} remotely and has no details"
                )
            mirrored = details.session.to_session()
            mirrored.id = request_id
            if details.status != "pending":
                # only pending requests are worth keeping; the rest are shown as-is
                return mirrored
            mirrored.status = SessionStatus.PENDING
            self.book.add(mirrored)
            logger.info("Mirrored pending session request %s", request_id)
            self._audit(EventType.SESSION_REQUESTED, mirrored, details={"remote_status": "pending"})
            return mirrored

        if local.status != SessionStatus.PENDING or details.status == "pending":
            return local

        if details.status == "approved":
            remote_expiry = details.session.expires_at if details.session else None
            session, _ = self.book.mutate(
                request_id, lambda s: s.activate(self.clock(), expires_at=remote_expiry)
            )
            self._audit(EventType.SESSION_APPROVED, session, details={"source": "remote"})
        else:
            # a request rejected or expired before approval never became active
            session, _ = self.book.mutate(request_id, lambda s: s.transition(SessionStatus.REVOKED))
            self._audit(EventType.SESSION_REJECTED, session, reason=details.status)
        logger.info("Session %s reconciled with remote status %s", request_id, details.status)
        return session

    def approve(self, request_id: str, signer: Signer) -> Session:
        """Approve a pending request as the wallet holder."""
        session = self.book.get(request_id)
        if session.status != SessionStatus.PENDING:
            raise InvalidTransitionError(request_id, session.status.value, SessionStatus.ACTIVE.value)
        if signer.public_key != session.wallet_key:
            if self.audit:
                self.audit.log(
                    EventType.SESSION_APPROVED,
                    session_id=request_id,
                    agent_id=session.agent_id,
                    wallet_key=signer.public_key,
                    success=False,
                    reason="signer is not the wallet holder",
                )
            raise UnauthorizedApprovalError(
                f"Only the holder of wallet {session.wallet_key} can approve session {request_id}"
            )

        signature = signer.sign(approval_message(request_id=request_id, wallet_key=session.wallet_key))
        response = self.client.approve_session(request_id, session.wallet_key, signature)
        remote_expiry = response.session.expires_at if response.session else None

        # state may have moved while the remote call was in flight
        session, _ = self.book.mutate(
            request_id, lambda s: s.activate(self.clock(), expires_at=remote_expiry)
        )
        logger.info("Session approved: %s (expires %d)", request_id, session.expires_at)
        self._audit(EventType.SESSION_APPROVED, session, details={"expires_at": session.expires_at})
        return session

    def reject(self, request_id: str) -> Session:
        session = self.book.get(request_id)
        if session.status != SessionStatus.PENDING:
            raise InvalidTransitionError(request_id, session.status.value, SessionStatus.REVOKED.value)

        self.client.reject_session(request_id)
        session, _ = self.book.mutate(request_id, lambda s: s.transition(SessionStatus.REVOKED))
        logger.info("Session rejected: %s", request_id)
        self._audit(EventType.SESSION_REJECTED, session)
        return session

    def revoke(self, session_id: str) -> Session:
        """Revoke an active session locally. Pending requests go through ``reject``."""

        def revoke_active(session: Session) -> None:
            if session.status == SessionStatus.PENDING:
                raise InvalidTransitionError(session.id, session.status.value, SessionStatus.REVOKED.value)
            session.transition(SessionStatus.REVOKED)

        session, _ = self.book.mutate(session_id, revoke_active)
        logger.info("Session revoked: %s", session_id)
        self._audit(EventType.SESSION_REVOKED, session)
        return session

    def unpair(self, agent_id: str) -> list[Session]:
        """Revoke an agent, revoke its live sessions and remove it, atomically."""
        with self.store.transaction():
            self.registry.require_agent(agent_id)
            self.registry.update_status(agent_id, AgentStatus.REVOKED)
            revoked = self.book.mutate_many(
                lambda s: s.agent_id == agent_id and s.status.is_live,
                lambda s: s.transition(SessionStatus.REVOKED),
            )
            self.registry.remove_agent(agent_id)

        logger.info("Agent unpaired: %s (%d session(s) revoked)", agent_id, len(revoked))
        for session in revoked:
            self._audit(EventType.SESSION_REVOKED, session, reason="agent unpaired")
        return revoked

    # ── Transfers ────────────────────────────────────────────────────

    def transfer(
        self,
        session_id: str,
        session_secret: str,
        destination: str,
        mint: str,
        amount: int,
    ) -> TransferResult:
        """
        Spend from a session and submit the transfer.

        The ledger is charged before submission. A definitive failure
        (remote error or ``failed`` status) gives the amount back; a
        network or schema error leaves it charged since the outcome is
        unknown.
        """
        decision = self.ledger.authorize_spend(session_id, mint, amount)
        decision.raise_for_rejection()
        session = self.book.get(session_id)

        try:
            response = self.client.transfer(
                wallet_key=session.wallet_key,
                session_key=session.session_key,
                session_secret=session_secret,
                destination=destination,
                amount=amount,
                mint=None if mint == NATIVE_MINT else mint,
            )
        except RemoteServiceError as e:
            logger.warning("Transfer refused for session %s: %s", session_id, e)
            self.ledger.release_spend(session_id, mint, amount)
            self._audit(
                EventType.TRANSFER_FAILED, session, mint=mint, amount=amount, success=False, reason=str(e)
            )
            raise
        except (NetworkError, ValidationError) as e:
            logger.warning("Transfer outcome unknown for session %s, spend kept: %s", session_id, e)
            self._audit(
                EventType.TRANSFER_FAILED,
                session,
                mint=mint,
                amount=amount,
                success=False,
                reason=f"outcome unknown: {e}",
            )
            raise

        result = TransferResult(
            session_id=session_id,
            mint=mint,
            amount=amount,
            destination=destination,
            signature=response.signature,
            status=response.status,
        )
        if response.status == "failed":
            self.ledger.release_spend(session_id, mint, amount)
            result.rolled_back = True
            logger.warning("Transfer %s failed; spend rolled back", response.signature)
            self._audit(
                EventType.TRANSFER_FAILED,
                session,
                mint=mint,
                amount=amount,
                success=False,
                details={"signature": response.signature},
            )
        else:
            logger.info("Transfer submitted: %s (%s)", response.signature, response.status)
            self._audit(
                EventType.TRANSFER_SUBMITTED,
                session,
                mint=mint,
                amount=amount,
                details={"signature": response.signature, "status": response.status},
            )
        return result
