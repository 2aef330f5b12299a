"""
Call Dispatcher Factory
"""
from typing import Callable, Dict, Optional

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.domain.interfaces.call_dispatcher import CallDispatcher
from campaign_engine.infrastructure.telephony.live_dispatcher import LiveCallDispatcher
from campaign_engine.infrastructure.telephony.shadow_dispatcher import ShadowCallDispatcher


def _create_live(settings: Settings) -> CallDispatcher:
    return LiveCallDispatcher(
        api_url=settings.provider_api_url,
        api_key=settings.provider_api_key,
        phone_number_id=settings.provider_phone_number_id,
        timeout=settings.dispatch_timeout_seconds,
    )


def _create_shadow(settings: Settings) -> CallDispatcher:
    return ShadowCallDispatcher()


class DispatcherFactory:
    """
    Factory for call dispatchers.

    Instances are created once per factory and reused across items.
    """

    _providers: Dict[str, Callable[[Settings], CallDispatcher]] = {
        "live": _create_live,
        "shadow": _create_shadow,
    }

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._instances: Dict[str, CallDispatcher] = {}

    def create(self, provider_name: str) -> CallDispatcher:
        """Get (or build) the dispatcher registered under provider_name."""
        if provider_name not in self._providers:
            available = ", ".join(self._providers.keys()) if self._providers else "None"
            raise ValueError(f"Unknown dispatcher: {provider_name}. Available: {available}")

        if provider_name not in self._instances:
            self._instances[provider_name] = self._providers[provider_name](self.settings)
        return self._instances[provider_name]

    def for_mode(self, shadow_mode: bool) -> CallDispatcher:
        return self.create("shadow" if shadow_mode else "live")

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], CallDispatcher]) -> None:
        """Register a dispatcher builder"""
        cls._providers[name] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available dispatchers"""
        return list(cls._providers.keys())
