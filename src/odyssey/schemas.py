"""Response models for the remote authorization service."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Session, SessionStatus, SpendingLimit


BaseUnits = Annotated[int, Field(ge=0, strict=True)]


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ApiErrorBody(WireModel):
    error: str
    code: Optional[str] = None
    details: Any = None


class SpendingLimitPayload(WireModel):
    mint: str = Field(min_length=1)
    amount: BaseUnits
    decimals: BaseUnits
    symbol: Optional[str] = None

    def to_limit(self) -> SpendingLimit:
        return SpendingLimit(mint=self.mint, amount=self.amount, decimals=self.decimals, symbol=self.symbol)


class SessionPayload(WireModel):
    id: str
    agent_id: str = Field(alias="agentId")
    wallet_key: str = Field(alias="walletKey")
    session_key: str = Field(alias="sessionKey")
    limits: list[SpendingLimitPayload]
    duration_seconds: int = Field(alias="durationSeconds", gt=0, strict=True)
    created_at: int = Field(alias="createdAt")
    expires_at: int = Field(alias="expiresAt")
    status: SessionStatus
    spent: dict[str, BaseUnits] = Field(default_factory=dict)

    @field_validator("limits")
    @classmethod
    def unique_mints(cls, v: list[SpendingLimitPayload]) -> list[SpendingLimitPayload]:
        mints = [limit.mint for limit in v]
        if len(mints) != len(set(mints)):
            raise ValueError("limits must contain at most one entry per mint")
        return v

    def to_session(self) -> Session:
        return Session(
            id=self.id,
            agent_id=self.agent_id,
            wallet_key=self.wallet_key,
            session_key=self.session_key,
            limits=[limit.to_limit() for limit in self.limits],
            duration_seconds=self.duration_seconds,
            created_at=self.created_at,
            expires_at=self.expires_at,
            status=self.status,
            spent=dict(self.spent),
        )


class PairingRequestResponse(WireModel):
    request_id: str = Field(alias="requestId")
    code: str
    expires_at: int = Field(alias="expiresAt")


class PairingStatusResponse(WireModel):
    status: Literal["pending", "approved", "rejected", "expired"]
    wallet_key: Optional[str] = Field(default=None, alias="walletKey")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    agent_name: Optional[str] = Field(default=None, alias="agentName")
    auth_secret: Optional[str] = Field(default=None, alias="authSecret")

    @model_validator(mode="after")
    def approved_names_agent(self) -> PairingStatusResponse:
        if self.status == "approved" and (not self.agent_id or not self.agent_name):
            raise ValueError("approved pairing must carry agentId and agentName")
        return self


class SessionRequestResponse(WireModel):
    request_id: str = Field(alias="requestId")
    status: Literal["pending", "approved", "rejected"]
    session: Optional[SessionPayload] = None


class SessionDetailsResponse(WireModel):
    status: Literal["pending", "approved", "rejected", "expired"]
    session: Optional[SessionPayload] = None


class SessionApproveResponse(WireModel):
    status: Literal["approved"]
    session: Optional[SessionPayload] = None


class SessionRejectResponse(WireModel):
    status: Literal["rejected"]


class TransferResponse(WireModel):
    signature: str
    status: Literal["pending", "confirmed", "failed"]
