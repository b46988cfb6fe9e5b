"""
Configuration Validation Module
Validates required settings on startup
"""
import os
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

from videokyc.core.config import ConfigManager

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    component: str
    setting: str
    is_valid: bool
    message: str


class ConfigValidator:
    """
    Validates configuration at startup.

    Supabase credentials are required whenever a Supabase-backed
    provider is selected; the in-memory providers need nothing.
    """

    SUPABASE_ENV_VARS = [
        ("SUPABASE_URL", "Supabase project URL"),
        ("SUPABASE_SERVICE_KEY", "Supabase service key"),
    ]

    KNOWN_PROVIDERS = ("supabase", "memory")

    def __init__(self, config: Optional[ConfigManager] = None, strict: bool = False):
        self.config = config or ConfigManager()
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        self.results = []
        video_kyc = self.config.video_kyc()

        providers = {
            "signaling": video_kyc.signaling_provider,
            "store": video_kyc.store_provider,
        }
        for component, provider in providers.items():
            if provider not in self.KNOWN_PROVIDERS:
                self._add_error(component, "provider", f"Unknown {component} provider: {provider}")
            elif provider == "memory":
                self._add_warning(component, "provider", f"{component} uses the in-memory provider (single process only)")
            else:
                self._add_success(component, "provider", f"{component} uses Supabase")

        if "supabase" in providers.values():
            for env_var, description in self.SUPABASE_ENV_VARS:
                if os.getenv(env_var):
                    self._add_success("supabase", env_var, f"{description} configured")
                else:
                    self._add_error("supabase", env_var, f"{description} requires {env_var} to be set")

        if video_kyc.negotiation_timeout_seconds <= 0:
            self._add_error("video_kyc", "negotiation_timeout_seconds", "Negotiation timeout must be positive")

        if not video_kyc.ice_servers:
            self._add_warning("video_kyc", "ice_servers", "No ICE servers configured")

        all_valid = not any(not r.is_valid for r in self.results)
        return all_valid, self.results

    def _add_success(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(component, setting, True, message))

    def _add_error(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(component, setting, False, message))

    def _add_warning(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(
            component,
            setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}",
        ))

    def log_results(self):
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.component}] {r.message}")
            elif r.message.startswith("WARNING"):
                logger.warning(f"  ⚠ [{r.component}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.component}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None
        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_config_on_startup(config: Optional[ConfigManager] = None, strict: bool = False) -> None:
    """
    Validate configuration at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ConfigValidator(config=config, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("Configuration validated successfully")
