"""
Odyssey: bounded spending sessions for automated agents.

Pair an agent with a wallet → wallet approves a time- and amount-bounded
session → every spend is checked against its limits, with a full audit trail.
"""

__version__ = "0.1.0"

from .models import Agent, AgentStatus, Session, SessionStatus, SpendingLimit, NATIVE_MINT
from .store import DurableStore
from .agents import AgentRegistry
from .session_store import SessionBook
from .ledger import SpendingLedger, SpendDecision
from .sessions import SessionAuthority, TransferResult
from .pairing import PairingCoordinator, PairingOutcome
from .remote import RemoteAuthorizationClient
from .signing import Ed25519Signer, Signer
from .tasks import CancellableTask
from .config import Settings
from .audit import AuditChainError, AuditTrail, EventType

__all__ = [
    "Agent", "AgentStatus", "Session", "SessionStatus", "SpendingLimit", "NATIVE_MINT",
    "DurableStore", "AgentRegistry", "SessionBook",
    "SpendingLedger", "SpendDecision", "SessionAuthority", "TransferResult",
    "PairingCoordinator", "PairingOutcome", "RemoteAuthorizationClient",
    "Ed25519Signer", "Signer", "CancellableTask", "Settings",
    "AuditTrail", "AuditChainError", "EventType",
]
