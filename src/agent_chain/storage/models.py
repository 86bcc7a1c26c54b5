"""Pydantic models mapping to the Agent Chain database tables."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SignatureUnavailable(str, Enum):
    """Why a wallet has no stored permit signature.

    The values match the placeholder strings older rows carry.
    """

    NO_CHAIN = "development-mode-no-signature"
    SIGNING_FAILED = "error-generating-signature"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

class PermitSignature(BaseModel):
    """Either a signature hex string or the reason there is none."""

    model_config = {"frozen": True}

    value: Optional[str] = None
    reason: Optional[SignatureUnavailable] = None

    @classmethod
    def present(cls, value: str) -> PermitSignature:
        return cls(value=value)

    @classmethod
    def unavailable(cls, reason: SignatureUnavailable) -> PermitSignature:
        return cls(reason=reason)

    @classmethod
    def from_legacy_string(cls, raw: str | None) -> PermitSignature:
        """Parse a stored string, recognising the old placeholder values."""
        if not raw:
            return cls.unavailable(SignatureUnavailable.NO_CHAIN)
        for reason in SignatureUnavailable:
            if raw == reason.value:
                return cls.unavailable(reason)
        return cls.present(raw)

    @property
    def is_present(self) -> bool:
        return self.value is not None

    def as_legacy_string(self) -> str:
        if self.value is not None:
            return self.value
        assert self.reason is not None
        return self.reason.value


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class AgentWalletRecord(BaseModel):
    """Maps to the ``agent_wallets`` table.

    ``address`` and ``private_key`` are fixed at creation; only the permit
    signature is ever rewritten.
    """

    handle: str
    address: str
    private_key: str = Field(repr=False)
    permit_signature: PermitSignature = Field(
        default_factory=lambda: PermitSignature.unavailable(SignatureUnavailable.NO_CHAIN)
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        body = value[2:] if value.startswith("0x") else ""
        if len(body) != 40:
            raise ValueError(f"Invalid wallet address '{value}'.")
        int(body, 16)
        return value

    def to_row(self) -> tuple:
        return (
            self.handle,
            self.address,
            self.private_key,
            self.permit_signature.value,
            self.permit_signature.reason.value if self.permit_signature.reason else None,
            self.created_at.isoformat(),
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AgentWalletRecord:
        reason = row.get("permit_signature_reason")
        if row.get("permit_signature"):
            signature = PermitSignature.from_legacy_string(row["permit_signature"])
        elif reason:
            signature = PermitSignature.unavailable(SignatureUnavailable(reason))
        else:
            signature = PermitSignature.unavailable(SignatureUnavailable.NO_CHAIN)
        return cls(
            handle=row["handle"],
            address=row["address"],
            private_key=row["private_key"],
            permit_signature=signature,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
