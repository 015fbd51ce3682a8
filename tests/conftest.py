"""Shared fixtures: a fake authorization service, a settable clock, wired components."""

from __future__ import annotations

import pydantic
import pytest

from odyssey.agents import AgentRegistry
from odyssey.audit import AuditTrail
from odyssey.errors import ValidationError
from odyssey.ledger import SpendingLedger
from odyssey.models import Agent, SpendingLimit
from odyssey.schemas import (
    PairingRequestResponse,
    PairingStatusResponse,
    SessionApproveResponse,
    SessionDetailsResponse,
    SessionRejectResponse,
    SessionRequestResponse,
    TransferResponse,
)
from odyssey.session_store import SessionBook
from odyssey.sessions import SessionAuthority
from odyssey.signing import Ed25519Signer
from odyssey.store import DurableStore


T0 = 1_700_000_000_000

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL_LIMIT = SpendingLimit(mint="native", amount=1_000_000_000, decimals=9, symbol="SOL")
USDC_LIMIT = SpendingLimit(mint=USDC_MINT, amount=100_000_000, decimals=6, symbol="USDC")


def _parse(schema, body):
    try:
        return schema.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid response: {e}", errors=e.errors()) from e


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRemote:
    """In-memory stand-in for RemoteAuthorizationClient.

    Responses go through the real pydantic schemas so field aliases are
    exercised. Queued items that are exceptions are raised instead.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.pairing_statuses: list = [{"status": "pending"}]
        self.session_status = "pending"
        self.session_payload = None
        self.details: dict[str, dict] = {}
        self.approve_response = {"status": "approved"}
        self.transfer_responses: list = []
        self._request_count = 0

    @staticmethod
    def _next(queue: list):
        # the last entry repeats once the queue is drained
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def request_pairing(self, code, agent_id, agent_name):
        self.calls.append(("request_pairing", code, agent_id, agent_name))
        return _parse(
            PairingRequestResponse, {"requestId": "pair-1", "code": code, "expiresAt": T0 + 600_000}
        )

    def get_pairing_status(self, request_id):
        self.calls.append(("get_pairing_status", request_id))
        return _parse(PairingStatusResponse, self._next(self.pairing_statuses))

    def request_session(self, **kwargs):
        self.calls.append(("request_session", kwargs))
        self._request_count += 1
        body = {"requestId": f"req-{self._request_count}", "status": self.session_status}
        if self.session_payload is not None:
            body["session"] = self.session_payload
        return _parse(SessionRequestResponse, body)

    def get_session_details(self, request_id):
        self.calls.append(("get_session_details", request_id))
        return _parse(SessionDetailsResponse, self.details.get(request_id, {"status": "pending"}))

    def approve_session(self, request_id, wallet_key, signature):
        self.calls.append(("approve_session", request_id, wallet_key, signature))
        if isinstance(self.approve_response, Exception):
            raise self.approve_response
        return _parse(SessionApproveResponse, self.approve_response)

    def reject_session(self, request_id):
        self.calls.append(("reject_session", request_id))
        return _parse(SessionRejectResponse, {"status": "rejected"})

    def transfer(self, **kwargs):
        self.calls.append(("transfer", kwargs))
        if not self.transfer_responses:
            return _parse(TransferResponse, {"signature": "sig-1", "status": "confirmed"})
        item = self.transfer_responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return _parse(TransferResponse, item)

    def close(self):
        pass

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def store(tmp_path):
    return DurableStore(tmp_path / "store")


@pytest.fixture
def audit(tmp_path):
    return AuditTrail(path=tmp_path / "audit.jsonl", key_path=tmp_path / "secret" / "audit_hmac.key")


@pytest.fixture
def registry(store, audit, clock):
    return AgentRegistry(store, audit=audit, clock=clock)


@pytest.fixture
def book(store, audit, clock):
    return SessionBook(store, audit=audit, clock=clock)


@pytest.fixture
def ledger(book, audit, registry):
    return SpendingLedger(book, audit=audit, registry=registry)


@pytest.fixture
def authority(remote, book, registry, ledger, audit, clock):
    return SessionAuthority(remote, book, registry, ledger=ledger, audit=audit, clock=clock)


@pytest.fixture
def wallet():
    return Ed25519Signer.generate()


@pytest.fixture
def agent_signer():
    return Ed25519Signer.generate()


@pytest.fixture
def agent(registry, wallet, clock):
    return registry.add_agent(Agent(id="a1", name="Bot", paired_at=clock(), wallet_key=wallet.public_key))


@pytest.fixture
def make_session(authority, agent, wallet, agent_signer):
    """Request a session for agent a1 and, unless told otherwise, approve it."""
    counter = iter(range(1, 1000))

    def _make(limits=(SOL_LIMIT,), duration_seconds=3600, approve=True, agent_id="a1"):
        session = authority.request_session(
            agent_id=agent_id,
            wallet_key=wallet.public_key,
            session_key=f"session-key-{next(counter)}",
            duration_seconds=duration_seconds,
            limits=list(limits),
            auth_secret="auth-secret",
            signer=agent_signer,
        )
        if approve:
            session = authority.approve(session.id, wallet)
        return session

    return _make
