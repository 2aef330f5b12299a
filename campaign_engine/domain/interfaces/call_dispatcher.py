"""
Call Dispatcher Interface
Abstract base class for placing outbound calls with a telephony provider
"""
from abc import ABC, abstractmethod

from campaign_engine.domain.models.dispatch import DispatchRequest, DispatchResult


class CallDispatcher(ABC):
    """Abstract base class for call dispatchers"""

    @abstractmethod
    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """
        Place an outbound call.

        Args:
            request: Destination, assistant config, variables and correlation ids

        Returns:
            DispatchResult with the provider-assigned call id

        Raises:
            ProviderError: If the provider rejects the call or cannot be reached
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Dispatcher name, stored as the call's provider"""
        pass
