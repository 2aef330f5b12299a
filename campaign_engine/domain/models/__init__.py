"""Domain models"""

# Campaign models
from .campaign import (
    CampaignStatus,
    ResultsSummary,
    Campaign,
    CampaignCompletion,
)

from .campaign_item import (
    ItemStatus,
    CampaignItem,
    item_status_for_call,
)

# Call models
from .call import (
    CallStatus,
    CallDirection,
    Call,
)

from .organization import (
    OrganizationControls,
    LedgerResult,
    CreditUsage,
)

from .dispatch import (
    DispatchRequest,
    DispatchResult,
)

from .voice_event import (
    VoiceEventType,
    VoiceEvent,
)

__all__ = [
    # Campaign models
    "CampaignStatus",
    "ResultsSummary",
    "Campaign",
    "CampaignCompletion",
    "ItemStatus",
    "CampaignItem",
    "item_status_for_call",
    # Call models
    "CallStatus",
    "CallDirection",
    "Call",
    # Organization models
    "OrganizationControls",
    "LedgerResult",
    "CreditUsage",
    # Dispatch models
    "DispatchRequest",
    "DispatchResult",
    # Webhook models
    "VoiceEventType",
    "VoiceEvent",
]
