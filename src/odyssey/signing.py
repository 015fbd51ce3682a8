"""
Signers for session requests and wallet approvals.

The core only depends on the ``Signer`` protocol. ``Ed25519Signer`` is the
bundled integration; keys and signatures are hex-encoded.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .errors import SigningError
from .models import SpendingLimit
from .store import ensure_private_file


class Signer(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign(self, message: bytes) -> str: ...


class Ed25519Signer:
    """Holds an Ed25519 private key and signs canonical messages."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self._private_key = private_key
        raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._public_key = raw.hex()

    @classmethod
    def generate(cls) -> Ed25519Signer:
        return cls(ed25519.Ed25519PrivateKey.generate())

    @classmethod
    def from_pem_file(cls, path: Path) -> Ed25519Signer:
        try:
            key = serialization.load_pem_private_key(path.read_bytes(), password=None)
        except (OSError, ValueError, TypeError) as e:
            raise SigningError(f"Cannot load signing key from {path}: {e}") from e
        if not isinstance(key, ed25519.Ed25519PrivateKey):
            raise SigningError(f"Key in {path} is not an Ed25519 private key")
        return cls(key)

    def write_pem(self, path: Path) -> None:
        pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        path.write_bytes(pem)
        ensure_private_file(path)

    @property
    def public_key(self) -> str:
        return self._public_key

    def sign(self, message: bytes) -> str:
        return self._private_key.sign(message).hex()


def verify_signature(public_key: str, message: bytes, signature: str) -> bool:
    try:
        key = ed25519.Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key))
        key.verify(bytes.fromhex(signature), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def _canonical(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def session_request_message(
    *,
    agent_id: str,
    wallet_key: str,
    session_key: str,
    duration_seconds: int,
    limits: Iterable[SpendingLimit],
    timestamp: int,
) -> bytes:
    return _canonical(
        {
            "action": "session_request",
            "agentId": agent_id,
            "walletKey": wallet_key,
            "sessionKey": session_key,
            "durationSeconds": duration_seconds,
            "limits": [limit.to_dict() for limit in limits],
            "timestamp": timestamp,
        }
    )


def approval_message(*, request_id: str, wallet_key: str) -> bytes:
    return _canonical(
        {
            "action": "session_approve",
            "requestId": request_id,
            "walletKey": wallet_key,
        }
    )
