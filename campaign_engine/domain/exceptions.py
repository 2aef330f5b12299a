"""
Campaign Engine Exceptions

Messages are part of the contract: the error classifier derives the retry
category from the message text alone, so each exception carries the phrase
its category is keyed on.
"""
from typing import Optional


class CampaignEngineError(Exception):
    """Base class for engine errors"""


class BudgetError(CampaignEngineError):
    """Tenant balance or spend limit blocks a new call"""


class TerminalError(CampaignEngineError):
    """Bad data or policy; the item must not be retried"""


class GovernanceError(TerminalError):
    """Tenant is administratively blocked"""


class ProviderError(CampaignEngineError):
    """Telephony provider rejected or failed a dispatch"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_response(cls, status_code: int, body: str) -> "ProviderError":
        return cls(f"Provider API Error: {status_code} - {body}", status_code=status_code, body=body)


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the dispatch timeout"""


class ReservationError(CampaignEngineError):
    """The store could not reserve a batch; the tick is abandoned"""


class WebhookRejected(CampaignEngineError):
    """Inbound webhook refused with a specific HTTP status"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
