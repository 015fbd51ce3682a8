"""
HTTP client for the remote authorization service.

Every response is validated against its schema before use. Transport
failures, non-2xx answers and malformed bodies surface as three distinct
error kinds: NetworkError, RemoteServiceError and ValidationError.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, TypeVar

import httpx
import pydantic

from .errors import NetworkError, RemoteServiceError, ValidationError
from .models import SpendingLimit
from .schemas import (
    ApiErrorBody,
    PairingRequestResponse,
    PairingStatusResponse,
    SessionApproveResponse,
    SessionDetailsResponse,
    SessionRejectResponse,
    SessionRequestResponse,
    TransferResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3001"

M = TypeVar("M", bound=pydantic.BaseModel)


class RemoteAuthorizationClient:
    """Typed client for pairing, session approval and transfer endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def _request(
        self,
        method: str,
        path: str,
        schema: type[M],
        body: Optional[dict[str, Any]] = None,
    ) -> M:
        try:
            response = self._http.request(method, f"/api/{path}", json=body)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timeout: {method} {path}: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network request failed: {method} {path}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            try:
                api_error = ApiErrorBody.model_validate(payload)
            except pydantic.ValidationError:
                raise RemoteServiceError(response.status_code, f"HTTP {response.status_code}: {response.reason_phrase}")
            raise RemoteServiceError(
                response.status_code,
                api_error.error,
                code=api_error.code,
                details=api_error.details,
            )

        try:
            return schema.model_validate(payload)
        except pydantic.ValidationError as e:
            logger.warning("Invalid response from %s: %s", path, e)
            raise ValidationError(f"Invalid response from {path}: {e}", errors=e.errors()) from e

    # ── Pairing ──────────────────────────────────────────────────────

    def request_pairing(self, code: str, agent_id: str, agent_name: str) -> PairingRequestResponse:
        return self._request(
            "POST",
            "pairing/request",
            PairingRequestResponse,
            {"code": code, "agentId": agent_id, "agentName": agent_name},
        )

    def get_pairing_status(self, request_id: str) -> PairingStatusResponse:
        return self._request("GET", f"pairing/status/{request_id}", PairingStatusResponse)

    # ── Sessions ─────────────────────────────────────────────────────

    def request_session(
        self,
        *,
        agent_id: str,
        wallet_key: str,
        session_key: str,
        duration_seconds: int,
        limits: list[SpendingLimit],
        signature: str,
        timestamp: int,
        auth_secret: str,
    ) -> SessionRequestResponse:
        return self._request(
            "POST",
            "session/request",
            SessionRequestResponse,
            {
                "agentId": agent_id,
                "walletKey": wallet_key,
                "sessionKey": session_key,
                "durationSeconds": duration_seconds,
                "limits": [limit.to_dict() for limit in limits],
                "signature": signature,
                "timestamp": timestamp,
                "authSecret": auth_secret,
            },
        )

    def get_session_details(self, request_id: str) -> SessionDetailsResponse:
        return self._request("GET", f"session/details/{request_id}", SessionDetailsResponse)

    def approve_session(self, request_id: str, wallet_key: str, signature: str) -> SessionApproveResponse:
        return self._request(
            "POST",
            "session/approve",
            SessionApproveResponse,
            {"requestId": request_id, "walletKey": wallet_key, "signature": signature},
        )

    def reject_session(self, request_id: str) -> SessionRejectResponse:
        return self._request("POST", "session/reject", SessionRejectResponse, {"requestId": request_id})

    def transfer(
        self,
        *,
        wallet_key: str,
        session_key: str,
        session_secret: str,
        destination: str,
        amount: int,
        mint: Optional[str] = None,
    ) -> TransferResponse:
        """Submit a native transfer, or a token transfer when ``mint`` is given."""
        body: dict[str, Any] = {
            "walletKey": wallet_key,
            "sessionKey": session_key,
            "sessionSecret": session_secret,
            "destination": destination,
            "amount": amount,
        }
        if mint is None:
            return self._request("POST", "session/transfer", TransferResponse, body)
        body["mint"] = mint
        return self._request("POST", "session/transfer-token", TransferResponse, body)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
