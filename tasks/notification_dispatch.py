from __future__ import annotations

import asyncio
import logging

from celery import Celery

from api.service_container import ServiceContainer
from notifications.errors import SelectionFailure
from settings import SETTINGS


logger = logging.getLogger(__name__)

celery_app = Celery("delay_claim_notifier")
if SETTINGS.redis_url:
    celery_app.conf.broker_url = SETTINGS.redis_url
    celery_app.conf.result_backend = SETTINGS.redis_url
celery_app.conf.beat_schedule = {
    "send-due-notifications-hourly": {
        "task": "tasks.notification_dispatch.dispatch_notifications",
        "schedule": SETTINGS.dispatch_interval_seconds,
    },
    "purge-expired-data-daily": {
        "task": "tasks.notification_dispatch.purge_expired_data",
        "schedule": 24 * 60 * 60.0,
    },
}

_services: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    global _services
    if _services is None:
        _services = ServiceContainer()
    return _services


@celery_app.task(name="tasks.notification_dispatch.dispatch_notifications")
def dispatch_notifications() -> dict:
    dispatcher = get_services().dispatcher
    try:
        summary = asyncio.run(dispatcher.run_once())
    except SelectionFailure:
        logger.exception("scheduled_dispatch_aborted")
        raise
    return summary.model_dump()


@celery_app.task(name="tasks.notification_dispatch.purge_expired_data")
def purge_expired_data() -> dict:
    return get_services().lifecycle.purge_expired()
