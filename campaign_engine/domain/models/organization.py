"""
Organization Policy and Billing Models
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class OrganizationControls(BaseModel):
    """
    Per-tenant governance settings.

    Owned by the admin surface; the engine only reads them.
    """
    organization_id: str
    is_suspended: bool = False
    shadow_mode: bool = False
    max_concurrency_override: Optional[int] = Field(default=None, ge=0)
    daily_spend_limit_usd: Optional[float] = Field(default=None, ge=0)

    @classmethod
    def from_row(cls, organization_id: str, row: Optional[dict]) -> "OrganizationControls":
        """Missing row or null columns fall back to permissive defaults."""
        row = row or {}
        return cls(
            organization_id=organization_id,
            is_suspended=bool(row.get("is_suspended")),
            shadow_mode=bool(row.get("shadow_mode")),
            max_concurrency_override=row.get("max_concurrency_override"),
            daily_spend_limit_usd=row.get("daily_spend_limit_usd"),
        )


class LedgerResult(BaseModel):
    """Result of applying a ledger entry"""
    applied: bool
    # True when the charge drew on prepaid balance rather than plan allowance
    from_balance: bool = True
    entry_id: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Any) -> "LedgerResult":
        if isinstance(data, list):
            data = data[0] if data else {}
        data = data or {}
        return cls(
            applied=bool(data.get("applied", False)),
            from_balance=bool(data.get("from_balance", True)),
            entry_id=data.get("entry_id"),
        )


class CreditUsage(BaseModel):
    """Tiered credit usage for one call"""
    tier: str
    credits_per_minute: int
    credits: int
    duration_seconds: float
    cost: float

    @property
    def action_type(self) -> str:
        return f"voice_{self.tier}"

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "action_type": self.action_type,
            "credits": self.credits,
            "credits_per_minute": self.credits_per_minute,
            "duration_seconds": self.duration_seconds,
        }
