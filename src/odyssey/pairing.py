"""
Pairing handshake between an agent and a wallet.

The agent submits a short code that a human relays to the wallet, then
polls until the wallet approves, rejects, or the attempt expires. Polling
runs as one cancellable task with a wall-clock bound.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .agents import AgentRegistry
from .errors import AgentRevokedError, DuplicateAgentError, NetworkError, RemoteServiceError
from .models import Agent, AgentStatus, now_ms
from .remote import RemoteAuthorizationClient
from .schemas import PairingRequestResponse, PairingStatusResponse
from .tasks import CancellableTask, CancelToken

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_PAIRING_TIMEOUT_MS = 120_000

FINAL_STATUSES = frozenset({"approved", "rejected", "expired", "timeout", "cancelled"})


@dataclass
class PairingOutcome:
    """What a poll (or the whole polling loop) ended with.

    ``timeout`` means the local wall-clock bound ran out; ``expired`` means
    the remote service expired the attempt.
    """

    request_id: str
    status: str  # pending, approved, rejected, expired, timeout, cancelled
    agent: Optional[Agent] = None
    wallet_key: Optional[str] = None
    auth_secret: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    @property
    def agent_id(self) -> Optional[str]:
        return self.agent.id if self.agent else None

    @property
    def agent_name(self) -> Optional[str]:
        return self.agent.name if self.agent else None


class PairingCoordinator:
    """Runs pairing attempts and materializes approved agents exactly once."""

    def __init__(
        self,
        client: RemoteAuthorizationClient,
        registry: AgentRegistry,
        clock: Callable[[], int] = now_ms,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout_ms: int = DEFAULT_PAIRING_TIMEOUT_MS,
    ):
        self.client = client
        self.registry = registry
        self.clock = clock
        self.interval_ms = interval_ms
        self.timeout_ms = timeout_ms
        self._materialized: dict[str, str] = {}
        self._lock = threading.Lock()

    def begin_pairing(self, code: str, agent_id: str, agent_name: str) -> PairingRequestResponse:
        request = self.client.request_pairing(code, agent_id, agent_name)
        logger.info("Pairing requested: %s (code %s, agent %s)", request.request_id, request.code, agent_id)
        return request

    def poll_once(self, request_id: str) -> PairingOutcome:
        return self._resolve(request_id, self.client.get_pairing_status(request_id))

    def _resolve(self, request_id: str, status: PairingStatusResponse) -> PairingOutcome:
        outcome = PairingOutcome(
            request_id=request_id,
            status=status.status,
            wallet_key=status.wallet_key,
            auth_secret=status.auth_secret,
        )
        if status.status == "approved":
            outcome.agent = self._materialize(request_id, status)
        return outcome

    def _materialize(self, request_id: str, status: PairingStatusResponse) -> Agent:
        """Persist the approved agent, or return the one already persisted."""
        agent_id = status.agent_id
        with self._lock:
            existing = self.registry.get_agent(agent_id)
            if existing is not None:
                if request_id in self._materialized:
                    return existing
                if existing.status == AgentStatus.REVOKED:
                    raise AgentRevokedError(f"Agent {agent_id} is revoked; unpair it before pairing again")
                logger.debug("Agent %s already paired; reusing record", agent_id)
                self._materialized[request_id] = agent_id
                return existing

            agent = Agent(
                id=agent_id,
                name=status.agent_name,
                paired_at=self.clock(),
                last_seen=None,
                status=AgentStatus.ACTIVE,
                wallet_key=status.wallet_key,
            )
            try:
                self.registry.add_agent(agent)
            except DuplicateAgentError:
                # another process paired it between our read and write
                agent = self.registry.require_agent(agent_id)
            self._materialized[request_id] = agent_id
            return agent

    def _poll_loop(
        self,
        request_id: str,
        token: CancelToken,
        on_status: Optional[Callable[[PairingOutcome], None]],
    ) -> PairingOutcome:
        deadline = self.clock() + self.timeout_ms
        while True:
            if token.cancelled:
                break
            if self.clock() >= deadline:
                logger.info("Pairing %s timed out after %d ms", request_id, self.timeout_ms)
                return PairingOutcome(request_id=request_id, status="timeout")

            try:
                status = self.client.get_pairing_status(request_id)
            except (NetworkError, RemoteServiceError) as e:
                logger.debug("Pairing poll for %s failed, retrying: %s", request_id, e)
                status = None

            # an answer that arrives after cancel is dropped
            if token.cancelled:
                break
            if status is not None:
                outcome = self._resolve(request_id, status)
                if on_status:
                    on_status(outcome)
                if outcome.is_final:
                    logger.info("Pairing %s finished: %s", request_id, outcome.status)
                    return outcome

            if not token.sleep(self.interval_ms / 1000):
                break

        logger.info("Pairing %s cancelled", request_id)
        return PairingOutcome(request_id=request_id, status="cancelled")

    def polling_task(
        self,
        request_id: str,
        on_status: Optional[Callable[[PairingOutcome], None]] = None,
    ) -> CancellableTask[PairingOutcome]:
        return CancellableTask(
            lambda token: self._poll_loop(request_id, token, on_status),
            name=f"odyssey-pairing-{request_id}",
        )

    def start_polling(
        self,
        request_id: str,
        on_status: Optional[Callable[[PairingOutcome], None]] = None,
    ) -> CancellableTask[PairingOutcome]:
        """Poll in a background thread; ``cancel()`` stops it promptly."""
        return self.polling_task(request_id, on_status).start()

    def pair(
        self,
        code: str,
        agent_id: str,
        agent_name: str,
        on_status: Optional[Callable[[PairingOutcome], None]] = None,
    ) -> PairingOutcome:
        """Begin pairing and poll in the calling thread until it settles."""
        request = self.begin_pairing(code, agent_id, agent_name)
        return self.polling_task(request.request_id, on_status).run()
