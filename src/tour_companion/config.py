"""Configuration for the sync and notification system."""

import os
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List
from pathlib import Path


DEFAULT_ADMIN_SENDER_PREFIXES = ["admin_", "hq_"]


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class CompanionConfig:
    """Configuration settings for sync status, offline login and notification fan-out."""

    # Rate limit budgets
    chat_rate_limit_max: int = 20
    chat_rate_limit_window_ms: int = 60000
    itinerary_rate_limit_max: int = 5
    itinerary_rate_limit_window_ms: int = 300000  # 5 minutes
    login_rate_limit_max: int = 12
    login_rate_limit_window_ms: int = 60000
    rate_limit_sweep_interval_seconds: int = 300

    # Push settings
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    push_chunk_size: int = 100
    push_timeout_seconds: float = 10.0
    notification_body_limit: int = 200
    max_message_length: int = 10000
    admin_sender_prefixes: List[str] = field(
        default_factory=lambda: list(DEFAULT_ADMIN_SENDER_PREFIXES))

    # Login settings
    require_app_check: bool = True
    app_check_tokens: List[str] = field(default_factory=list)

    # Offline cache settings
    offline_cache_ttl_days: int = 30
    cache_db_path: Optional[str] = None
    cache_namespace: str = "LLT_OFFLINE"

    # Backend store
    backend_snapshot_path: Optional[str] = None

    # Logging settings
    log_level: str = "INFO"

    def validate(self) -> None:
        """Validate configuration parameters."""
        errors = []

        budgets = [
            ("chat_rate_limit_max", self.chat_rate_limit_max),
            ("chat_rate_limit_window_ms", self.chat_rate_limit_window_ms),
            ("itinerary_rate_limit_max", self.itinerary_rate_limit_max),
            ("itinerary_rate_limit_window_ms", self.itinerary_rate_limit_window_ms),
            ("login_rate_limit_max", self.login_rate_limit_max),
            ("login_rate_limit_window_ms", self.login_rate_limit_window_ms),
            ("rate_limit_sweep_interval_seconds", self.rate_limit_sweep_interval_seconds),
        ]
        for name, value in budgets:
            if value <= 0:
                errors.append(f"{name} must be positive, got {value}")

        # Expo accepts at most 100 messages per request
        if not (1 <= self.push_chunk_size <= 100):
            errors.append(f"Push chunk size must be between 1-100, got {self.push_chunk_size}")

        if self.push_timeout_seconds <= 0:
            errors.append(f"Push timeout must be positive, got {self.push_timeout_seconds}")

        if self.notification_body_limit < 4:
            errors.append(f"Notification body limit must be at least 4, got {self.notification_body_limit}")

        if self.max_message_length <= 0:
            errors.append(f"Max message length must be positive, got {self.max_message_length}")

        if not self.expo_push_url.startswith(("http://", "https://")):
            errors.append(f"Expo push URL must be http(s), got {self.expo_push_url}")

        if self.offline_cache_ttl_days <= 0:
            errors.append(f"Offline cache TTL must be positive, got {self.offline_cache_ttl_days}")

        if not self.admin_sender_prefixes:
            errors.append("At least one admin sender prefix is required")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Log level must be one of {valid_log_levels}, got {self.log_level}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        # Never expose the App Check allow-list in dumps
        data["app_check_tokens"] = f"<{len(self.app_check_tokens)} tokens>"
        return data

    @classmethod
    def from_env(cls) -> "CompanionConfig":
        """Create configuration from environment variables with validation."""
        try:
            config = cls(
                chat_rate_limit_max=int(os.getenv("COMPANION_CHAT_RATE_LIMIT_MAX", "20")),
                chat_rate_limit_window_ms=int(os.getenv("COMPANION_CHAT_RATE_LIMIT_WINDOW_MS", "60000")),
                itinerary_rate_limit_max=int(os.getenv("COMPANION_ITINERARY_RATE_LIMIT_MAX", "5")),
                itinerary_rate_limit_window_ms=int(os.getenv("COMPANION_ITINERARY_RATE_LIMIT_WINDOW_MS", "300000")),
                login_rate_limit_max=int(os.getenv("COMPANION_LOGIN_RATE_LIMIT_MAX", "12")),
                login_rate_limit_window_ms=int(os.getenv("COMPANION_LOGIN_RATE_LIMIT_WINDOW_MS", "60000")),
                rate_limit_sweep_interval_seconds=int(os.getenv("COMPANION_RATE_LIMIT_SWEEP_INTERVAL", "300")),

                expo_push_url=os.getenv("COMPANION_EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
                push_chunk_size=int(os.getenv("COMPANION_PUSH_CHUNK_SIZE", "100")),
                push_timeout_seconds=float(os.getenv("COMPANION_PUSH_TIMEOUT", "10.0")),
                notification_body_limit=int(os.getenv("COMPANION_NOTIFICATION_BODY_LIMIT", "200")),
                max_message_length=int(os.getenv("COMPANION_MAX_MESSAGE_LENGTH", "10000")),
                admin_sender_prefixes=_env_list("COMPANION_ADMIN_SENDER_PREFIXES", "admin_,hq_"),

                # Mirrors the deployed default: App Check is on unless explicitly disabled
                require_app_check=os.getenv("REQUIRE_APP_CHECK_FOR_LOGIN", "true").lower() != "false",
                app_check_tokens=_env_list("COMPANION_APP_CHECK_TOKENS"),

                offline_cache_ttl_days=int(os.getenv("COMPANION_OFFLINE_CACHE_TTL_DAYS", "30")),
                cache_db_path=os.getenv("COMPANION_CACHE_DB_PATH"),
                cache_namespace=os.getenv("COMPANION_CACHE_NAMESPACE", "LLT_OFFLINE"),

                backend_snapshot_path=os.getenv("COMPANION_BACKEND_SNAPSHOT_PATH"),

                log_level=os.getenv("COMPANION_LOG_LEVEL", "INFO"),
            )

            config.validate()
            return config

        except ValueError as e:
            if "invalid literal" in str(e) or "could not convert" in str(e):
                raise ValueError(f"Invalid environment variable format: {e}")
            raise
        except Exception as e:
            raise ValueError(f"Failed to load configuration from environment: {e}")

    @classmethod
    def from_file(cls, config_path: str) -> "CompanionConfig":
        """Load configuration from a .env file."""
        from dotenv import load_dotenv

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        load_dotenv(config_file, override=True)

        return cls.from_env()

    def get_production_overrides(self) -> Dict[str, Any]:
        """Get recommended production configuration overrides."""
        return {
            "log_level": "WARNING",
            "require_app_check": True,
            "push_timeout_seconds": 15.0,
        }

    def apply_production_settings(self) -> "CompanionConfig":
        """Apply production-ready configuration settings."""
        config_dict = asdict(self)
        config_dict.update(self.get_production_overrides())

        new_config = CompanionConfig(**config_dict)
        new_config.validate()

        return new_config
