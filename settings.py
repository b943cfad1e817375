from __future__ import annotations

import os
from dataclasses import dataclass


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    tracker_store_path: str = os.getenv("TRACKER_STORE_PATH", "./data/tracker_store.json")
    audit_log_path: str = os.getenv("AUDIT_LOG_PATH", "./data/gdpr_audit.log.jsonl")

    resend_api_key: str = os.getenv("RESEND_API_KEY", "")
    resend_base_url: str = os.getenv("RESEND_BASE_URL", "https://api.resend.com")
    from_email: str = os.getenv("FROM_EMAIL", "Delay Claims <notifications@delayclaims.example>")
    app_url: str = os.getenv("APP_URL", "http://localhost:8000")
    cron_secret: str = os.getenv("CRON_SECRET", "")

    aviationstack_api_key: str = os.getenv("AVIATIONSTACK_API_KEY", "")
    aviationstack_base_url: str = os.getenv("AVIATIONSTACK_BASE_URL", "http://api.aviationstack.com/v1")
    flight_api_timeout_seconds: int = _int("FLIGHT_API_TIMEOUT_SECONDS", 10)

    email_send_timeout_seconds: float = _float("EMAIL_SEND_TIMEOUT_SECONDS", 15.0)
    dispatch_batch_size: int = _int("DISPATCH_BATCH_SIZE", 50)
    dispatch_claim_ttl_seconds: int = _int("DISPATCH_CLAIM_TTL_SECONDS", 15 * 60)
    dispatch_interval_seconds: float = _float("DISPATCH_INTERVAL_SECONDS", 60.0 * 60.0)

    followup_first_days: int = _int("FOLLOWUP_FIRST_DAYS", 15)
    followup_final_days: int = _int("FOLLOWUP_FINAL_DAYS", 30)
    donation_suggestion_rate: float = _float("DONATION_SUGGESTION_RATE", 0.05)
    donation_fallback_amount: str = os.getenv("DONATION_FALLBACK_AMOUNT", "12.50")

    retention_user_grace_days: int = _int("RETENTION_USER_GRACE_DAYS", 30)
    retention_notification_max_age_days: int = _int("RETENTION_NOTIFICATION_MAX_AGE_DAYS", 2 * 365)

    redis_url: str = os.getenv("REDIS_URL", "")


SETTINGS = Settings()
