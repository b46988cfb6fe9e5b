"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ICE_SERVERS: List[Dict[str, Any]] = [
    {"urls": "stun:stun.l.google.com:19302"},
]


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Supabase
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


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
            self._deep_merge(self._config, self._load_yaml(env_path))

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            config[key] = self._substitute_value(value)

    def _substitute_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            self._substitute_env_vars(value)
        elif isinstance(value, list):
            return [self._substitute_value(item) for item in value]
        elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
            return os.getenv(value[2:-1], value)
        return value

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
        Example: config.get("video_kyc.signaling.provider") -> "supabase"
        """
        value = self._config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def video_kyc(self) -> "VideoKycConfig":
        """Typed view of the video_kyc section"""
        return VideoKycConfig.from_manager(self)


class VideoKycConfig:
    """Call protocol settings read from the video_kyc section"""

    def __init__(
        self,
        ice_servers: Optional[List[Dict[str, Any]]] = None,
        negotiation_timeout_seconds: float = 30.0,
        stale_call_timeout_seconds: float = 900.0,
        expiry_scan_interval_seconds: float = 60.0,
        signaling_provider: str = "supabase",
        store_provider: str = "supabase",
        documents_bucket: str = "kyc-documents",
        document_url_ttl_seconds: int = 60,
        media_device: Optional[str] = None,
        media_format: Optional[str] = None,
    ):
        self.ice_servers = DEFAULT_ICE_SERVERS if ice_servers is None else ice_servers
        self.negotiation_timeout_seconds = float(negotiation_timeout_seconds)
        self.stale_call_timeout_seconds = float(stale_call_timeout_seconds)
        self.expiry_scan_interval_seconds = float(expiry_scan_interval_seconds)
        self.signaling_provider = signaling_provider
        self.store_provider = store_provider
        self.documents_bucket = documents_bucket
        self.document_url_ttl_seconds = int(document_url_ttl_seconds)
        self.media_device = media_device
        self.media_format = media_format

    @classmethod
    def from_manager(cls, config: ConfigManager) -> "VideoKycConfig":
        section = "video_kyc"
        return cls(
            ice_servers=config.get(f"{section}.ice_servers"),
            negotiation_timeout_seconds=config.get(f"{section}.negotiation_timeout_seconds", 30.0),
            stale_call_timeout_seconds=config.get(f"{section}.stale_call_timeout_seconds", 900.0),
            expiry_scan_interval_seconds=config.get(f"{section}.expiry_scan_interval_seconds", 60.0),
            signaling_provider=config.get(f"{section}.signaling.provider", "supabase"),
            store_provider=config.get(f"{section}.store.provider", "supabase"),
            documents_bucket=config.get(f"{section}.documents.bucket", "kyc-documents"),
            document_url_ttl_seconds=config.get(f"{section}.documents.url_ttl_seconds", 60),
            media_device=config.get(f"{section}.media.device"),
            media_format=config.get(f"{section}.media.format"),
        )
