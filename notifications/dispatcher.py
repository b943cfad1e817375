from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from models.schemas import DispatchSummary, NotificationRecord, NotificationStatus
from notifications.errors import DeliveryFailure, SelectionFailure
from notifications.templates import TemplateContextError, build_context, render, resolve_template
from settings import SETTINGS
from stores.tracker_store import StoreError, TrackerStore
from tools.email_tools import EmailProvider

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


class NotificationDispatcher:
    """Sends due notifications, each at most once.

    Records are claimed in one atomic store call before anything is sent,
    so overlapping runs cannot pick up the same record. Every record then
    succeeds, fails or is skipped on its own; a failed send is terminal.
    Records that cannot be rendered stay pending but are put on hold, so
    they are not selected again until an operator releases them.
    """

    def __init__(
        self,
        store: TrackerStore,
        email_provider: EmailProvider,
        batch_size: int | None = None,
        claim_ttl_seconds: int | None = None,
        send_timeout_seconds: float | None = None,
        app_url: str | None = None,
    ) -> None:
        self.store = store
        self.email_provider = email_provider
        self.batch_size = SETTINGS.dispatch_batch_size if batch_size is None else batch_size
        self.claim_ttl_seconds = (
            SETTINGS.dispatch_claim_ttl_seconds if claim_ttl_seconds is None else claim_ttl_seconds
        )
        self.send_timeout_seconds = (
            SETTINGS.email_send_timeout_seconds if send_timeout_seconds is None else send_timeout_seconds
        )
        self.app_url = app_url or SETTINGS.app_url

    async def run_once(self, now: datetime | None = None) -> DispatchSummary:
        now = now or datetime.utcnow()
        try:
            token, due = self.store.claim_due(now, self.batch_size, self.claim_ttl_seconds)
        except (StoreError, OSError) as exc:
            logger.error("notification_selection_failed", extra={"error": repr(exc)})
            raise SelectionFailure(str(exc)) from exc

        summary = DispatchSummary(processed=len(due))
        for record in due:
            try:
                outcome = await self._dispatch_one(record, token, now)
            except StoreError as exc:
                # The record keeps its claim and is retried once the claim goes stale.
                logger.error(
                    "notification_state_write_failed",
                    extra={"notification_id": record.id, "kind": record.kind, "error": repr(exc)},
                )
                outcome = FAILED
            if outcome == SENT:
                summary.sent += 1
            elif outcome == FAILED:
                summary.failed += 1
            else:
                summary.skipped += 1
        logger.info("notification_dispatch_run", extra=summary.model_dump())
        return summary

    async def _dispatch_one(self, record: NotificationRecord, token: str, now: datetime) -> str:
        template = resolve_template(record.kind)
        if template is None:
            logger.warning("notification_unknown_template", extra={"notification_id": record.id, "kind": record.kind})
            self.store.hold_claim(record.id, token, f"unknown_kind: {record.kind}", now)
            return SKIPPED

        user = self.store.get_user(record.user_id)
        flight = self.store.get_flight(record.flight_id) if record.flight_id else None
        if user is None:
            self.store.hold_claim(record.id, token, "user_missing", now)
            return SKIPPED
        try:
            context = build_context(template, user, flight, app_url=self.app_url)
        except TemplateContextError as exc:
            logger.warning("notification_context_invalid", extra={"notification_id": record.id, "error": str(exc)})
            self.store.hold_claim(record.id, token, f"invalid_context: {exc}", now)
            return SKIPPED
        email = render(template, context)

        # Cancelled (unsubscribe/erasure) after the claim was taken.
        if self.store.get_claimed(record.id, token) is None:
            logger.info("notification_cancelled_before_send", extra={"notification_id": record.id})
            return SKIPPED

        error: Optional[str] = None
        receipt = None
        try:
            receipt = await asyncio.wait_for(
                self.email_provider.send(user.email, email.subject, email.html),
                timeout=self.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"delivery_timeout after {self.send_timeout_seconds}s"
        except DeliveryFailure as exc:
            error = str(exc)
        except Exception as exc:  # provider bugs must not abort the batch
            logger.exception("notification_provider_error", extra={"notification_id": record.id})
            error = f"provider_error: {exc!r}"

        if receipt is None:
            logger.warning(
                "notification_delivery_failed",
                extra={"notification_id": record.id, "kind": record.kind, "error": error},
            )
            self.store.finish_claim(record.id, token, NotificationStatus.FAILED, error_text=error, subject=email.subject)
            return FAILED

        self.store.finish_claim(
            record.id,
            token,
            NotificationStatus.SENT,
            sent_at=datetime.utcnow(),
            external_id=receipt.id,
            subject=email.subject,
        )
        logger.info(
            "notification_sent",
            extra={"notification_id": record.id, "kind": record.kind, "external_id": receipt.id},
        )
        return SENT
