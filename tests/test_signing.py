"""Tests for the Ed25519 signer and canonical messages."""

import pytest

from odyssey.errors import SigningError
from odyssey.models import SpendingLimit
from odyssey.signing import (
    Ed25519Signer,
    approval_message,
    session_request_message,
    verify_signature,
)


def test_sign_and_verify():
    signer = Ed25519Signer.generate()
    message = approval_message(request_id="req-1", wallet_key=signer.public_key)
    signature = signer.sign(message)

    assert verify_signature(signer.public_key, message, signature)
    assert not verify_signature(signer.public_key, message + b"x", signature)
    assert not verify_signature(Ed25519Signer.generate().public_key, message, signature)


def test_garbage_signature_does_not_verify():
    signer = Ed25519Signer.generate()
    assert not verify_signature(signer.public_key, b"m", "not-hex")


def test_pem_round_trip(tmp_path):
    signer = Ed25519Signer.generate()
    path = tmp_path / "wallet.pem"
    signer.write_pem(path)

    loaded = Ed25519Signer.from_pem_file(path)
    assert loaded.public_key == signer.public_key
    assert oct(path.stat().st_mode & 0o777) == "0o600"


def test_bad_key_file(tmp_path):
    path = tmp_path / "broken.pem"
    path.write_text("not a key")
    with pytest.raises(SigningError):
        Ed25519Signer.from_pem_file(path)


def test_missing_key_file(tmp_path):
    with pytest.raises(SigningError):
        Ed25519Signer.from_pem_file(tmp_path / "missing.pem")


def test_request_message_is_canonical():
    limits = [SpendingLimit(mint="native", amount=5, decimals=9)]
    kwargs = dict(
        agent_id="a1", wallet_key="w1", session_key="sk", duration_seconds=60, limits=limits, timestamp=1
    )
    first = session_request_message(**kwargs)
    assert first == session_request_message(**kwargs)
    assert b" " not in first
    assert first != session_request_message(**{**kwargs, "timestamp": 2})
