"""
Voice Provider Event Model
Normalized view of an inbound telephony webhook
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from enum import Enum


class VoiceEventType(str, Enum):
    """Event types understood by the ingestion pipeline"""
    END_OF_CALL_REPORT = "end-of-call-report"
    STATUS_UPDATE = "status-update"
    TRANSCRIPT = "transcript"
    SPEECH_UPDATE = "speech-update"
    HANG = "hang"
    TOOL_CALLS = "tool-calls"
    FUNCTION_CALL = "function-call"


AUDIT_EVENT_TYPES = {
    VoiceEventType.STATUS_UPDATE.value,
    VoiceEventType.TRANSCRIPT.value,
    VoiceEventType.SPEECH_UPDATE.value,
    VoiceEventType.HANG.value,
}

TOOL_EVENT_TYPES = {
    VoiceEventType.TOOL_CALLS.value,
    VoiceEventType.FUNCTION_CALL.value,
}

# Provider call types mapped to call direction
DIRECTION_BY_CALL_TYPE = {
    "inboundPhoneCall": "inbound",
    "outboundPhoneCall": "outbound",
    "webCall": "inbound",
}


def _dig(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning None at the first gap."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class VoiceEvent(BaseModel):
    """Provider webhook flattened to the fields the engine uses"""

    event_type: str
    provider_call_id: Optional[str] = None
    timestamp: Optional[int] = None  # epoch milliseconds
    status: Optional[str] = None
    direction: Optional[str] = None
    customer_number: Optional[str] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)

    duration_seconds: Optional[float] = None
    cost: Optional[float] = None
    ended_reason: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    recording_url: Optional[str] = None

    model_name: Optional[str] = None
    voice_provider: Optional[str] = None

    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VoiceEvent":
        """
        Parse a provider envelope.

        Accepts both ``{"message": {...}}`` and a bare message object.

        Raises:
            ValueError: If the envelope has no event type
        """
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")

        message = payload.get("message") if isinstance(payload.get("message"), dict) else payload
        event_type = message.get("type")
        if not event_type:
            raise ValueError("Webhook body has no event type")

        call = _as_dict(message.get("call"))
        assistant = _as_dict(message.get("assistant")) or _as_dict(call.get("assistant"))
        artifact = _as_dict(message.get("artifact"))

        metadata: Dict[str, Any] = {}
        for source in (
            _dig(call, "assistant", "metadata"),
            _dig(call, "assistantOverrides", "metadata"),
            call.get("metadata"),
        ):
            if isinstance(source, dict):
                metadata.update(source)

        timestamp = message.get("timestamp")
        try:
            timestamp = int(timestamp) if timestamp is not None else None
        except (TypeError, ValueError):
            timestamp = None

        return cls(
            event_type=event_type,
            provider_call_id=call.get("id"),
            timestamp=timestamp,
            status=message.get("status") or call.get("status"),
            direction=DIRECTION_BY_CALL_TYPE.get(call.get("type")),
            customer_number=_dig(call, "customer", "number"),
            metadata=metadata,
            duration_seconds=_as_float(message.get("durationSeconds")),
            cost=_as_float(message.get("cost") if message.get("cost") is not None else call.get("cost")),
            ended_reason=message.get("endedReason") or call.get("endedReason"),
            transcript=artifact.get("transcript") or message.get("transcript"),
            summary=_dig(message, "analysis", "summary") or message.get("summary"),
            recording_url=artifact.get("recordingUrl") or message.get("recordingUrl"),
            model_name=_dig(assistant, "model", "model"),
            voice_provider=_dig(assistant, "voice", "provider"),
            raw=payload,
        )

    @property
    def is_terminal_report(self) -> bool:
        return self.event_type == VoiceEventType.END_OF_CALL_REPORT.value

    @property
    def organization_id(self) -> Optional[str]:
        return self.metadata.get("organizationId")

    @property
    def internal_call_id(self) -> Optional[str]:
        return self.metadata.get("internalCallId")

    @property
    def campaign_id(self) -> Optional[str]:
        return self.metadata.get("campaignId")

    def dedup_key(self, fallback_timestamp: Optional[int] = None) -> str:
        """Key identifying one delivery of this event"""
        timestamp = self.timestamp if self.timestamp is not None else fallback_timestamp
        return f"{self.event_type}:{self.provider_call_id}:{timestamp}"
