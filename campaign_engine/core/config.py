"""
Configuration Management
Loads settings from environment variables and YAML files
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = False

    # Persistent store
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Batch scheduler
    batch_size: int = 10
    max_retries: int = 5
    max_parallel_items: int = 10
    tick_interval_seconds: float = 60.0
    item_timeout_seconds: float = 45.0
    reservation_timeout_seconds: float = 120.0

    # Admission gates
    default_concurrency_cap: int = 20
    concurrency_release_seconds: int = 30
    min_balance_threshold: float = 1.00
    estimated_call_cost: float = 0.10

    # Telephony provider
    provider_api_url: str = "https://api.vapi.ai"
    provider_api_key: Optional[str] = None
    provider_phone_number_id: Optional[str] = None
    dispatch_timeout_seconds: float = 15.0

    # Inbound webhooks
    webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300

    # Outbound tenant webhooks
    webhook_dispatch_url: Optional[str] = None
    internal_webhook_secret: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance shared by the API and the worker."""
    return Settings()


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: Optional[str] = None, config_dir: Optional[Path] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("billing.voice_tiers.premium") -> 35
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value
