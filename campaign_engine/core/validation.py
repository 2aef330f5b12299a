"""
Configuration Validation Module
Checks required environment configuration on startup
"""
import os
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    component: str
    setting: str
    is_valid: bool
    message: str


class ConfigurationValidator:
    """
    Validates engine configuration at startup.

    Store credentials are always required. The inbound webhook secret is
    required in strict mode only; without it, development accepts
    unsigned webhooks.
    """

    REQUIRED_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "database": [
            ("SUPABASE_URL", "Supabase database"),
            ("SUPABASE_SERVICE_KEY", "Supabase database"),
        ],
    }

    # Missing values are warnings, errors in strict mode
    RECOMMENDED_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "webhooks": [("WEBHOOK_SECRET", "Inbound webhook signing secret")],
        "provider": [("PROVIDER_API_KEY", "Telephony provider API key")],
    }

    OPTIONAL_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "provider": [("PROVIDER_PHONE_NUMBER_ID", "Provider caller number")],
        "notifications": [
            ("WEBHOOK_DISPATCH_URL", "Tenant webhook dispatcher"),
            ("INTERNAL_WEBHOOK_SECRET", "Tenant webhook dispatcher secret"),
        ],
    }

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        self.results = []

        for component, vars_list in self.REQUIRED_ENV_VARS.items():
            for env_var, description in vars_list:
                if os.getenv(env_var):
                    self._add(component, env_var, True, f"{description} configured")
                else:
                    self._add(component, env_var, False, f"{description} requires {env_var} to be set")

        for component, vars_list in self.RECOMMENDED_ENV_VARS.items():
            for env_var, description in vars_list:
                if os.getenv(env_var):
                    self._add(component, env_var, True, f"{description} configured")
                else:
                    self._add(component, env_var, not self.strict, f"WARNING: {description} not configured")

        for component, vars_list in self.OPTIONAL_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add(component, env_var, True, f"WARNING: {description} not configured (optional)")

        all_valid = all(r.is_valid for r in self.results)
        return all_valid, self.results

    def _add(self, component: str, setting: str, is_valid: bool, message: str):
        self.results.append(ValidationResult(
            component=component,
            setting=setting,
            is_valid=is_valid,
            message=message
        ))

    def log_results(self):
        """Log all validation results."""
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  [{r.component}] {r.message}")
            elif r.message.startswith("WARNING"):
                logger.warning(f"  [{r.component}] {r.message}")
            else:
                logger.info(f"  [{r.component}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_configuration_on_startup(strict: bool = False) -> None:
    """
    Validate configuration at startup.

    Args:
        strict: If True, fail on warnings too

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ConfigurationValidator(strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("Configuration validated successfully")
