from __future__ import annotations

from compliance.audit_logger import AuditLogger
from compliance.eu261_rules import EU261Calculator
from notifications.dispatcher import NotificationDispatcher
from notifications.lifecycle import NotificationLifecycle
from settings import SETTINGS
from stores.tracker_store import TrackerStore
from tools.email_tools import EmailProvider, build_email_provider
from tools.flight_status_tools import FlightStatusTools


class ServiceContainer:
    """Builds the store, providers, lifecycle and dispatcher once per process."""

    def __init__(
        self,
        store: TrackerStore | None = None,
        email_provider: EmailProvider | None = None,
        flight_status_tools: FlightStatusTools | None = None,
        audit_logger: AuditLogger | None = None,
        calculator: EU261Calculator | None = None,
        cron_secret: str | None = None,
        app_url: str | None = None,
    ) -> None:
        self.store = store or TrackerStore()
        self.email_provider = email_provider or build_email_provider()
        self.flight_status_tools = flight_status_tools or FlightStatusTools()
        self.audit_logger = audit_logger or AuditLogger()
        self.calculator = calculator or EU261Calculator()
        self.cron_secret = SETTINGS.cron_secret if cron_secret is None else cron_secret
        self.app_url = (app_url or SETTINGS.app_url).rstrip("/")
        self.lifecycle = NotificationLifecycle(
            store=self.store,
            calculator=self.calculator,
            audit_logger=self.audit_logger,
        )
        self.dispatcher = NotificationDispatcher(
            store=self.store, email_provider=self.email_provider, app_url=self.app_url
        )

    def health(self) -> dict:
        return {
            "store_ok": self.store.ping(),
            "email_provider": getattr(self.email_provider, "name", type(self.email_provider).__name__),
            "flight_api_configured": self.flight_status_tools.available(),
            "cron_secret_configured": bool(self.cron_secret),
        }
