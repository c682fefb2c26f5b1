"""
Centralized configuration with environment variable overrides.

OTP policy, SMS gateway credentials and templates, and notification
timing are all configurable here. Nothing is hardcoded in the OTP,
booking, or scheduler logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from slotbook.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class OtpConfig:
    """One-time code policy: secret, lifetime, attempts and rate limits."""

    secret: str = os.getenv("OTP_SECRET", "")
    length: int = _safe_int("OTP_LENGTH", "6")
    expiry_minutes: int = _safe_int("OTP_EXPIRY_MINUTES", "5")
    max_attempts: int = _safe_int("OTP_MAX_ATTEMPTS", "3")
    resend_cooldown_seconds: int = _safe_int("OTP_RESEND_COOLDOWN_SECONDS", "60")
    rate_window_minutes: int = _safe_int("OTP_RATE_WINDOW_MINUTES", "15")
    max_per_window: int = _safe_int("OTP_MAX_PER_WINDOW", "3")
    verified_grace_minutes: int = _safe_int("OTP_VERIFIED_GRACE_MINUTES", "15")


@dataclass(frozen=True)
class GatewayConfig:
    """MSG91 credentials, template ids and the outbound request timeout."""

    auth_key: str = os.getenv("MSG91_AUTH_KEY", "")
    base_url: str = os.getenv("MSG91_BASE_URL", "https://control.msg91.com/api/v5")
    otp_template_id: str = os.getenv("MSG91_TEMPLATE_ID", "")
    confirmation_template_id: str = os.getenv("MSG91_SLOT_CONFIRMATION_TEMPLATE_ID", "")
    reminder_template_id: str = os.getenv("MSG91_REMINDER_TEMPLATE_ID", "")
    meet_link_template_id: str = os.getenv("MSG91_MEETLINK_TEMPLATE_ID", "")
    reminder_30min_template_id: str = os.getenv("MSG91_REMINDER_30MIN_TEMPLATE_ID", "")
    timeout_seconds: float = _safe_float("SMS_TIMEOUT_SECONDS", "15")


@dataclass(frozen=True)
class NotificationConfig:
    """Reminder sweep settings and the link sent in meeting reminders."""

    meeting_link: str = os.getenv("DEMO_MEETING_LINK", "https://guidexpert.co.in/demo")
    cron_secret: str = os.getenv("CRON_SECRET", "")
    sweep_interval_minutes: int = _safe_int("SWEEP_INTERVAL_MINUTES", "5")
    claim_lease_seconds: int = _safe_int("NOTIFICATION_CLAIM_LEASE_SECONDS", "120")


@dataclass(frozen=True)
class StorageConfig:
    """Database backing the repositories; empty means in-memory only."""

    database_url: str = os.getenv("DATABASE_URL", "")
    pool_size: int = _safe_int("DB_POOL_SIZE", "5")
    pool_recycle_seconds: int = _safe_int("DB_POOL_RECYCLE", "300")


@dataclass(frozen=True)
class WorkerConfig:
    """arq worker connection and job limits."""

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    job_timeout_seconds: int = _safe_int("ARQ_JOB_TIMEOUT", "300")


@dataclass(frozen=True)
class AdminConfig:
    """Shared secret guarding the admin operations."""

    secret: str = os.getenv("ADMIN_SECRET", "")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    otp: OtpConfig = field(default_factory=OtpConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "slotbook")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 4 <= config.otp.length <= 10:
        raise ValueError(f"OTP_LENGTH must be between 4 and 10, got {config.otp.length}")
    if config.otp.expiry_minutes < 1:
        raise ValueError(
            f"OTP_EXPIRY_MINUTES must be >= 1, got {config.otp.expiry_minutes}"
        )
    if config.otp.max_attempts < 1:
        raise ValueError(f"OTP_MAX_ATTEMPTS must be >= 1, got {config.otp.max_attempts}")
    if config.otp.resend_cooldown_seconds < 0:
        raise ValueError(
            "OTP_RESEND_COOLDOWN_SECONDS must be >= 0, "
            f"got {config.otp.resend_cooldown_seconds}"
        )
    if config.otp.rate_window_minutes < 1:
        raise ValueError(
            f"OTP_RATE_WINDOW_MINUTES must be >= 1, got {config.otp.rate_window_minutes}"
        )
    if config.otp.max_per_window < 1:
        raise ValueError(f"OTP_MAX_PER_WINDOW must be >= 1, got {config.otp.max_per_window}")
    if config.otp.verified_grace_minutes < 1:
        raise ValueError(
            "OTP_VERIFIED_GRACE_MINUTES must be >= 1, "
            f"got {config.otp.verified_grace_minutes}"
        )
    if not 0 < config.gateway.timeout_seconds <= 60:
        raise ValueError(
            f"SMS_TIMEOUT_SECONDS must be in (0, 60], got {config.gateway.timeout_seconds}"
        )
    if not 1 <= config.notifications.sweep_interval_minutes <= 60:
        raise ValueError(
            "SWEEP_INTERVAL_MINUTES must be between 1 and 60, "
            f"got {config.notifications.sweep_interval_minutes}"
        )
    if config.notifications.claim_lease_seconds <= config.gateway.timeout_seconds:
        raise ValueError(
            "NOTIFICATION_CLAIM_LEASE_SECONDS must exceed SMS_TIMEOUT_SECONDS, "
            f"got {config.notifications.claim_lease_seconds}"
        )


def require_secrets(config: AppConfig) -> None:
    """Refuse to run OTP-critical flows without their credentials.

    Raises:
        ConfigurationError: listing every missing variable.
    """
    required = {
        "OTP_SECRET": config.otp.secret,
        "MSG91_AUTH_KEY": config.gateway.auth_key,
        "MSG91_TEMPLATE_ID": config.gateway.otp_template_id,
    }
    missing = [name for name, value in required.items() if not value.strip()]
    if missing:
        raise ConfigurationError(f"Missing required env for OTP: {', '.join(missing)}")
    if not config.notifications.cron_secret:
        logger.warning("CRON_SECRET is not set; the reminder sweep trigger will refuse calls")
    if not config.admin.secret:
        logger.warning("ADMIN_SECRET is not set; admin operations will refuse calls")


def require_database(config: AppConfig) -> None:
    """Long-running and scheduled processes need state shared across restarts.

    Raises:
        ConfigurationError: DATABASE_URL is not set.
    """
    if not config.storage.database_url.strip():
        raise ConfigurationError("Missing required env: DATABASE_URL")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
