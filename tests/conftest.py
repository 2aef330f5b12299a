"""
Shared test fixtures

- make_mock_supabase: chainable supabase-py client mock
- InMemoryStore: one object implementing the campaign, call and
  organization repositories against dicts, for service-level tests
"""
import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Set test environment variables before importing the package
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from campaign_engine.core.config import Settings
from campaign_engine.domain.models.call import Call
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.domain.models.campaign_item import ACTIVE_STATUSES, CampaignItem, truncate_error
from campaign_engine.domain.models.organization import LedgerResult

CHAIN_METHODS = (
    "table", "select", "insert", "update", "upsert", "delete",
    "eq", "neq", "gt", "gte", "lt", "lte", "is_", "in_", "filter",
    "order", "limit", "range", "single", "rpc",
)


def make_mock_supabase(data: Optional[List[Dict[str, Any]]] = None, count: Optional[int] = None) -> MagicMock:
    """
    Supabase client mock with the query chain configured.

    Every builder method returns the mock itself, so
    ``mock.table("x").select("*").eq(...).execute().data`` yields ``data``.
    """
    mock = MagicMock()
    for method in CHAIN_METHODS:
        getattr(mock, method).return_value = mock

    response = MagicMock()
    response.data = data if data is not None else []
    response.count = count
    mock.execute.return_value = response
    return mock


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """
    Dict-backed stand-in for the three Supabase repositories.

    Reservation runs under an asyncio.Lock, standing in for the row locks
    the reserve_campaign_items RPC takes.
    """

    def __init__(self):
        self.campaigns: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.calls: Dict[str, Dict[str, Any]] = {}
        self.private: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.controls: Dict[str, Dict[str, Any]] = {}
        self.balances: Dict[str, float] = {}
        self.ledger: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []
        self.outcome_rules: Dict[str, List[Dict[str, Any]]] = {}

        self.status_writes: List[Dict[str, Any]] = []
        self._reserve_lock = asyncio.Lock()

    # =========================================================================
    # Seeding helpers
    # =========================================================================

    def add_campaign(self, organization_id: str = "org-1", status: str = "running", **fields) -> str:
        campaign_id = fields.pop("id", None) or str(uuid.uuid4())
        self.campaigns[campaign_id] = {
            "id": campaign_id,
            "organization_id": organization_id,
            "name": fields.pop("name", "Spring outreach"),
            "type": fields.pop("type", "sales"),
            "status": status,
            "script_config": fields.pop("script_config", {"assistant_id": "asst-1"}),
            **fields,
        }
        return campaign_id

    def add_contact(self, organization_id: str = "org-1", phone: Optional[str] = "+15551234567", **fields) -> str:
        contact_id = fields.pop("id", None) or str(uuid.uuid4())
        self.contacts[contact_id] = {
            "id": contact_id,
            "organization_id": organization_id,
            "phone_e164": phone,
            "name": fields.pop("name", "Ada Lovelace"),
            "first_name": None,
            "last_name": None,
            "metadata": fields.pop("metadata", {"company": "Analytical Engines"}),
            **fields,
        }
        return contact_id

    def add_item(self, campaign_id: str, contact_id: Optional[str] = None, **fields) -> str:
        item_id = fields.pop("id", None) or str(uuid.uuid4())
        self.items[item_id] = {
            "id": item_id,
            "campaign_id": campaign_id,
            "organization_id": self.campaigns[campaign_id]["organization_id"],
            "contact_id": contact_id,
            "status": "pending",
            "attempt_count": 0,
            "last_error": None,
            "reserved_at": None,
            "reserved_by": None,
            "next_try_at": None,
            "voice_call_id": None,
            **fields,
        }
        return item_id

    def item(self, item_id: str) -> CampaignItem:
        return CampaignItem.from_row(self.items[item_id])

    # =========================================================================
    # CampaignRepository
    # =========================================================================

    async def reserve_items(self, batch_size: int, worker_id: str) -> List[CampaignItem]:
        async with self._reserve_lock:
            now = _now()
            reserved = []
            # Oldest eligible first: never-tried items, then earliest retry;
            # sorted() is stable so ties keep creation order
            candidates = sorted(
                self.items.values(),
                key=lambda r: (r["next_try_at"] is not None, r["next_try_at"] or now),
            )
            for row in candidates:
                if len(reserved) >= batch_size:
                    break
                campaign = self.campaigns.get(row["campaign_id"], {})
                if campaign.get("status") != "running" or row["status"] != "pending":
                    continue
                if row["next_try_at"] is not None and row["next_try_at"] > now:
                    continue
                # Yield mid-reservation so concurrent callers interleave
                await asyncio.sleep(0)
                row.update({"status": "queued", "reserved_at": now, "reserved_by": worker_id})
                reserved.append(CampaignItem.from_row(row))
            return reserved

    async def count_active_items(self, organization_id: str, exclude_item_id: Optional[str] = None) -> int:
        return sum(
            1 for row in self.items.values()
            if row["organization_id"] == organization_id
            and row["status"] in ACTIVE_STATUSES
            and row["id"] != exclude_item_id
        )

    async def release_item(self, item_id: str, next_try_at: datetime) -> None:
        self.items[item_id].update({
            "status": "pending", "next_try_at": next_try_at, "reserved_at": None, "reserved_by": None,
        })

    async def record_failure(self, item_id, status, attempt_count, error, next_try_at) -> None:
        self.items[item_id].update({
            "status": getattr(status, "value", status),
            "attempt_count": attempt_count,
            "last_error": truncate_error(error),
            "next_try_at": next_try_at,
            "voice_call_id": None,
            "reserved_at": None,
            "reserved_by": None,
        })

    async def link_call(self, item_id: str, voice_call_id: str) -> None:
        self.items[item_id]["voice_call_id"] = voice_call_id

    async def mark_in_progress(self, item_id: str, voice_call_id: str) -> None:
        self.items[item_id].update({
            "status": "in_progress", "voice_call_id": voice_call_id, "last_error": None,
            "reserved_at": None, "reserved_by": None,
        })

    def _abandoned(self, reserved_before: datetime, linked: bool) -> List[Dict[str, Any]]:
        return [
            row for row in self.items.values()
            if row["status"] == "queued"
            and row["reserved_at"] is not None
            and row["reserved_at"] < reserved_before
            and bool(row.get("voice_call_id")) == linked
        ]

    async def release_abandoned_reservations(self, reserved_before: datetime) -> int:
        rows = self._abandoned(reserved_before, linked=False)
        for row in rows:
            row.update({"status": "pending", "reserved_at": None, "reserved_by": None})
        return len(rows)

    async def adopt_abandoned_dispatches(self, reserved_before: datetime) -> int:
        rows = self._abandoned(reserved_before, linked=True)
        for row in rows:
            row.update({"status": "in_progress", "reserved_at": None, "reserved_by": None})
        return len(rows)

    async def find_stale_in_progress(self, limit: int = 100) -> List[Dict[str, Any]]:
        rows = []
        for row in self.items.values():
            call = self.calls.get(row.get("voice_call_id") or "")
            if row["status"] == "in_progress" and call and call["status"] == "ended":
                rows.append({
                    "id": row["id"],
                    "voice_call_id": row["voice_call_id"],
                    "voice_calls": {
                        "status": call["status"],
                        "outcome": call.get("outcome"),
                        "ended_reason": call.get("ended_reason"),
                    },
                })
        return rows[:limit]

    async def finish_item(self, item_id: str, status) -> bool:
        row = self.items.get(item_id)
        if row is None or row["status"] != "in_progress":
            return False
        row["status"] = getattr(status, "value", status)
        return True

    async def finish_items_for_call(self, voice_call_id: str, status) -> int:
        closed = 0
        for row in self.items.values():
            if row.get("voice_call_id") == voice_call_id and row["status"] == "in_progress":
                row["status"] = getattr(status, "value", status)
                closed += 1
        return closed

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        row = self.campaigns.get(campaign_id)
        return Campaign.model_validate(row) if row else None

    async def list_running_campaigns(self) -> List[Campaign]:
        return [Campaign.model_validate(row) for row in self.campaigns.values() if row["status"] == "running"]

    async def count_items(self, campaign_id: str, statuses=None) -> int:
        wanted = set(statuses) if statuses is not None else None
        return sum(
            1 for row in self.items.values()
            if row["campaign_id"] == campaign_id and (wanted is None or row["status"] in wanted)
        )

    async def complete_campaign(self, campaign_id, summary, completed_at) -> bool:
        row = self.campaigns[campaign_id]
        if row["status"] != "running":
            return False
        row.update({"status": "completed", "completed_at": completed_at, "results_summary": summary.model_dump()})
        return True

    async def get_contact(self, contact_id: str, organization_id: str) -> Optional[Dict[str, Any]]:
        row = self.contacts.get(contact_id)
        if row is None or row["organization_id"] != organization_id:
            return None
        return dict(row)

    # =========================================================================
    # CallRepository
    # =========================================================================

    async def create_outbound_call(self, organization_id, campaign_id, contact_id, provider="voice_engine") -> str:
        call_id = str(uuid.uuid4())
        self.calls[call_id] = {
            "id": call_id,
            "organization_id": organization_id,
            "campaign_id": campaign_id,
            "contact_id": contact_id,
            "direction": "outbound",
            "status": "queued",
            "provider": provider,
            "provider_call_id": None,
            "ended_at": None,
        }
        return call_id

    async def set_provider_call_id(self, call_id: str, provider_call_id: str, provider: str) -> None:
        self.calls[call_id].update({"provider_call_id": provider_call_id, "provider": provider})

    async def get_call(self, call_id: str, organization_id: str) -> Optional[Call]:
        row = self.calls.get(call_id)
        if row is None or row["organization_id"] != organization_id:
            return None
        return Call.model_validate(row)

    async def find_by_provider_call_id(self, provider_call_id: str, organization_id: Optional[str] = None):
        for row in self.calls.values():
            if row.get("provider_call_id") != provider_call_id:
                continue
            if organization_id and row["organization_id"] != organization_id:
                continue
            return Call.model_validate(row)
        return None

    async def insert_call(self, row: Dict[str, Any]) -> Call:
        existing = await self.find_by_provider_call_id(row["provider_call_id"], row["organization_id"])
        if existing is not None:
            return existing
        call_id = str(uuid.uuid4())
        self.calls[call_id] = {"id": call_id, "ended_at": None, **row}
        return Call.model_validate(self.calls[call_id])

    async def update_status(self, call_id: str, status: str) -> bool:
        row = self.calls[call_id]
        if row["status"] == "ended":
            return False
        row["status"] = status
        self.status_writes.append({"call_id": call_id, "status": status})
        return True

    async def finalize_call(self, call_id: str, fields: Dict[str, Any]) -> bool:
        row = self.calls[call_id]
        if row.get("ended_at") is not None:
            return False
        row.update({**fields, "status": "ended", "ended_at": _now()})
        self.status_writes.append({"call_id": call_id, "status": "ended"})
        return True

    async def save_private_artifacts(self, organization_id, call_id, transcript, summary, recording_ref) -> None:
        self.private[call_id] = {
            "organization_id": organization_id,
            "transcript_full": transcript,
            "transcript_summary": summary,
            "provider_recording_ref": recording_ref,
        }

    async def record_event(self, organization_id, call_id, event_type, payload) -> None:
        self.events.append({
            "organization_id": organization_id, "call_id": call_id, "type": event_type, "payload": payload,
        })

    async def get_outcome_rules(self, organization_id: str) -> List[Dict[str, Any]]:
        rules = [r for r in self.outcome_rules.get(organization_id, []) if r.get("is_active", True)]
        return sorted(rules, key=lambda r: r.get("priority", 0), reverse=True)

    async def claim_event_receipt(self, dedup_key, event_type, provider_call_id) -> bool:
        if dedup_key in self.receipts:
            return False
        self.receipts[dedup_key] = {"event_type": event_type, "provider_call_id": provider_call_id}
        return True

    async def release_event_receipt(self, dedup_key: str) -> None:
        self.receipts.pop(dedup_key, None)

    # =========================================================================
    # OrganizationRepository
    # =========================================================================

    async def get_controls(self, organization_id: str) -> Optional[Dict[str, Any]]:
        row = self.controls.get(organization_id)
        return dict(row) if row is not None else None

    async def get_balance(self, organization_id: str) -> float:
        return self.balances.get(organization_id, 100.0)

    async def get_rolling_spend(self, organization_id: str, since: datetime) -> float:
        return sum(
            abs(entry["amount"]) for entry in self.ledger
            if entry["organization_id"] == organization_id
            and entry["amount"] < 0
            and entry["created_at"] >= since
        )

    async def apply_ledger_entry(self, organization_id, amount, entry_type, description, reference_id, metadata):
        for entry in self.ledger:
            if (entry["organization_id"], entry["reference_id"], entry["type"]) == (
                organization_id, reference_id, entry_type
            ):
                return LedgerResult(applied=False)

        entry_id = str(uuid.uuid4())
        self.ledger.append({
            "id": entry_id,
            "organization_id": organization_id,
            "amount": amount,
            "type": entry_type,
            "description": description,
            "reference_id": reference_id,
            "metadata": metadata,
            "created_at": _now(),
        })
        self.balances[organization_id] = self.balances.get(organization_id, 100.0) + amount
        return LedgerResult(applied=True, from_balance=True, entry_id=entry_id)

    async def create_notification(self, organization_id, notification_type, title, message,
                                  category="general", priority="normal", metadata=None) -> None:
        self.notifications.append({
            "organization_id": organization_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "category": category,
            "priority": priority,
            "metadata": metadata or {},
        })


@pytest.fixture
def mock_supabase_factory():
    """
    Factory for supabase mocks with custom data.

    Usage:
        def test_query(mock_supabase_factory):
            supabase = mock_supabase_factory([{"id": "123"}])
    """
    return make_mock_supabase


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        webhook_secret="whsec_test",
        webhook_tolerance_seconds=300,
        provider_api_key="test-provider-key",
        webhook_dispatch_url=None,
        _env_file=None,
    )
