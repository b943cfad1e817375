from __future__ import annotations

from api.service_container import ServiceContainer
from compliance.audit_logger import AuditLogger
from stores.tracker_store import TrackerStore
from tasks import notification_dispatch
from tools.email_tools import OutboxEmailTools


def test_beat_schedule_points_at_dispatch_task():
    entry = notification_dispatch.celery_app.conf.beat_schedule["send-due-notifications-hourly"]
    assert entry["task"] == "tasks.notification_dispatch.dispatch_notifications"
    assert entry["schedule"] > 0


def test_dispatch_task_returns_summary(tmp_path, monkeypatch):
    services = ServiceContainer(
        store=TrackerStore(persist=False),
        email_provider=OutboxEmailTools(),
        audit_logger=AuditLogger(path=str(tmp_path / "audit.jsonl")),
        cron_secret="",
    )
    monkeypatch.setattr(notification_dispatch, "_services", services)
    services.lifecycle.register_user("kim@example.com", consent=True)

    summary = notification_dispatch.dispatch_notifications()
    assert summary == {"processed": 1, "sent": 1, "failed": 0, "skipped": 0}
    assert notification_dispatch.dispatch_notifications()["processed"] == 0


def test_purge_task_runs_daily_and_returns_counts(tmp_path, monkeypatch):
    entry = notification_dispatch.celery_app.conf.beat_schedule["purge-expired-data-daily"]
    assert entry["task"] == "tasks.notification_dispatch.purge_expired_data"
    assert entry["schedule"] == 86400.0

    services = ServiceContainer(
        store=TrackerStore(persist=False),
        email_provider=OutboxEmailTools(),
        audit_logger=AuditLogger(path=str(tmp_path / "audit.jsonl")),
        cron_secret="",
    )
    monkeypatch.setattr(notification_dispatch, "_services", services)
    assert notification_dispatch.purge_expired_data() == {"users": 0, "flights": 0, "notifications": 0}
