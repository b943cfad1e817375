from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from compliance.airports import resolve_route
from compliance.audit_logger import AuditLogger, hash_for_gdpr
from compliance.eu261_rules import EU261Calculator
from models.schemas import (
    FlightRecord,
    FlightStatus,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    UserRecord,
)
from notifications.errors import LifecycleError
from settings import SETTINGS
from stores.tracker_store import TrackerStore
from tools.flight_status_tools import clean_flight_number

logger = logging.getLogger(__name__)


EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
ANNOTATION_STATUSES = {FlightStatus.CLAIMED, FlightStatus.EXPIRED}


def next_flight_status(current: FlightStatus | None, incoming: FlightStatus) -> FlightStatus:
    """tracking -> completed only moves forward; claimed/expired are never left."""
    if current is None or current == FlightStatus.TRACKING:
        return incoming
    return current


class NotificationLifecycle:
    """Turns user and flight events into scheduled notification records.

    Completing an eligible flight schedules the whole post-eligibility chain
    at once (result now, follow-ups at fixed offsets), so no step depends on
    an earlier send having happened.
    """

    def __init__(
        self,
        store: TrackerStore,
        calculator: EU261Calculator | None = None,
        audit_logger: AuditLogger | None = None,
        followup_first_days: int | None = None,
        followup_final_days: int | None = None,
    ) -> None:
        self.store = store
        self.calculator = calculator or EU261Calculator()
        self.audit_logger = audit_logger or AuditLogger()
        self.followup_first_days = SETTINGS.followup_first_days if followup_first_days is None else followup_first_days
        self.followup_final_days = SETTINGS.followup_final_days if followup_final_days is None else followup_final_days

    # ----------------------------------------------------------- registration

    def register_user(
        self,
        email: str,
        consent: bool,
        marketing_consent: bool = False,
        ip: str | None = None,
        now: datetime | None = None,
    ) -> Tuple[UserRecord, bool]:
        now = now or datetime.utcnow()
        email = (email or "").strip().lower()
        if consent is not True:
            raise LifecycleError("explicit_consent_required")
        if not EMAIL_RE.match(email):
            raise LifecycleError("invalid_email")
        ip_hash = self._ip_hash(ip)
        existing = self.store.find_user_by_email(email)
        created = existing is None
        if existing is not None:
            user = self.store.update_user(
                existing.id,
                consent_given=True,
                consent_timestamp=now,
                consent_ip_hash=ip_hash,
                marketing_consent=bool(marketing_consent),
            )
        else:
            user = self.store.add_user(
                UserRecord(
                    id=uuid.uuid4().hex,
                    email=email,
                    consent_given=True,
                    consent_timestamp=now,
                    consent_ip_hash=ip_hash,
                    marketing_consent=bool(marketing_consent),
                    verification_token=uuid.uuid4().hex,
                    created_at=now,
                    updated_at=now,
                )
            )
            self.store.insert_notification(
                NotificationRecord(
                    id=uuid.uuid4().hex,
                    user_id=user.id,
                    kind=NotificationKind.VERIFICATION.value,
                    subject="Verify your email to track flight delays",
                    scheduled_for=now,
                    created_at=now,
                )
            )
            logger.info("user_registered", extra={"user_id": user.id})
        self.audit_logger.log_action(
            "consent_given",
            user.id,
            email=email,
            ip=ip,
            details={"marketing_consent": bool(marketing_consent), "new_user": created},
        )
        return user, created

    def verify_email(self, token: str) -> UserRecord:
        user = self.store.find_user_by_token(token)
        if user is None:
            raise LifecycleError("invalid_token", status_code=404)
        user = self.store.update_user(user.id, email_verified=True, verification_token=None)
        for record in self.store.list_notifications(user_id=user.id, statuses=[NotificationStatus.PENDING]):
            if record.kind == NotificationKind.VERIFICATION.value:
                self.store.cancel_notification(record.id)
        self.audit_logger.log_action("email_verified", user.id)
        return user

    # ---------------------------------------------------------------- flights

    def track_flight(
        self,
        user_id: str,
        flight_number: str,
        flight_date: date,
        departure: str | None = None,
        arrival: str | None = None,
        delay_minutes: int = 0,
        status: FlightStatus | str = FlightStatus.TRACKING,
        distance_km: float | None = None,
        departure_country: str | None = None,
        arrival_country: str | None = None,
        now: datetime | None = None,
    ) -> FlightRecord:
        now = now or datetime.utcnow()
        incoming = FlightStatus(status)
        if incoming in ANNOTATION_STATUSES:
            raise LifecycleError("status_set_by_annotation_only")
        user = self.store.get_user(user_id)
        if user is None or user.is_deleted:
            raise LifecycleError("user_not_found", status_code=404)
        number = clean_flight_number(flight_number)
        if not number:
            raise LifecycleError("flight_number_required")

        route = resolve_route(departure, arrival)
        distance = route.distance_km if distance_km is None else distance_km
        dep_country = (departure_country or route.departure_country).upper()
        arr_country = (arrival_country or route.arrival_country).upper()
        # InvalidInput propagates before anything is written.
        verdict = self.calculator.evaluate(distance, delay_minutes, dep_country, arr_country)
        if route.estimated and distance_km is None:
            logger.info(
                "flight_route_estimated",
                extra={"flight_number": number, "departure": route.departure_airport, "arrival": route.arrival_airport},
            )

        def build(existing: Optional[FlightRecord]) -> FlightRecord:
            current = existing.status if existing is not None else None
            resolved = next_flight_status(current, incoming)
            if current == FlightStatus.COMPLETED and incoming == FlightStatus.TRACKING:
                logger.info("flight_status_regression_ignored", extra={"flight_id": existing.id})
            return FlightRecord(
                id=existing.id if existing is not None else uuid.uuid4().hex,
                user_id=user_id,
                flight_number=number,
                flight_date=flight_date,
                departure_airport=route.departure_airport,
                arrival_airport=route.arrival_airport,
                departure_country=dep_country,
                arrival_country=arr_country,
                distance_km=float(distance),
                delay_minutes=delay_minutes,
                verdict=verdict,
                status=resolved,
                created_at=now,
                updated_at=now,
            )

        flight = self.store.upsert_flight(user_id, number, flight_date, build)
        if incoming == FlightStatus.COMPLETED and flight.status == FlightStatus.COMPLETED and verdict.eligible:
            self.schedule_post_eligibility(flight, now=now)
        elif not verdict.eligible:
            cancelled = self.store.cancel_pending_for_flight(flight.id)
            if cancelled:
                logger.info("flight_no_longer_eligible", extra={"flight_id": flight.id, "cancelled": cancelled})
        return flight

    def schedule_post_eligibility(self, flight: FlightRecord, now: datetime | None = None) -> List[NotificationRecord]:
        now = now or datetime.utcnow()
        user = self.store.get_user(flight.user_id)
        if user is None or user.is_deleted or not user.consent_given:
            logger.info("schedule_skipped_no_consent", extra={"flight_id": flight.id, "user_id": flight.user_id})
            return []
        plan = [
            (NotificationKind.ELIGIBILITY_RESULT, now, f"{flight.flight_number}: compensation result"),
            (
                NotificationKind.FOLLOWUP_FIRST,
                now + timedelta(days=self.followup_first_days),
                f"{flight.flight_number}: claim follow-up",
            ),
            (
                NotificationKind.FOLLOWUP_FINAL,
                now + timedelta(days=self.followup_final_days),
                f"{flight.flight_number}: final follow-up",
            ),
        ]
        records = [
            NotificationRecord(
                id=uuid.uuid4().hex,
                user_id=flight.user_id,
                flight_id=flight.id,
                kind=kind.value,
                subject=subject,
                scheduled_for=when,
                created_at=now,
            )
            for kind, when, subject in plan
        ]
        created, duplicates = self.store.insert_notifications(records)
        for dup in duplicates:
            logger.debug("notification_already_scheduled", extra={"flight_id": dup.flight_id, "kind": dup.kind})
        if created:
            logger.info(
                "post_eligibility_scheduled",
                extra={"flight_id": flight.id, "kinds": [r.kind for r in created]},
            )
        return created

    def annotate_flight(self, flight_id: str, status: FlightStatus | str) -> FlightRecord:
        target = FlightStatus(status)
        if target not in ANNOTATION_STATUSES:
            raise LifecycleError("annotation_must_be_claimed_or_expired")
        flight = self.store.get_flight(flight_id)
        if flight is None:
            raise LifecycleError("flight_not_found", status_code=404)
        return self.store.update_flight(flight_id, status=target)

    # ---------------------------------------------------------- data subject

    def cancel_pending_for_user(self, user_id: str) -> int:
        cancelled = self.store.cancel_pending_for_user(user_id)
        logger.info("pending_notifications_cancelled", extra={"user_id": user_id, "cancelled": cancelled})
        return cancelled

    def unsubscribe(self, email: str, ip: str | None = None) -> int:
        user = self._require_user(email)
        self.store.update_user(user.id, consent_given=False, marketing_consent=False)
        cancelled = self.cancel_pending_for_user(user.id)
        self.audit_logger.log_action(
            "consent_withdrawn",
            user.id,
            email=email,
            ip=ip,
            details={"method": "unsubscribe_link", "cancelled_notifications": cancelled},
        )
        return cancelled

    def erase_user(self, email: str, ip: str | None = None) -> int:
        user = self._require_user(email)
        self.audit_logger.log_action(
            "data_deleted",
            user.id,
            email=email,
            ip=ip,
            details={"reason": "User requested deletion under GDPR Article 17"},
        )
        self.store.update_user(
            user.id,
            deleted_at=datetime.utcnow(),
            email=f"deleted_{user.id}@deleted.local",
            consent_given=False,
            marketing_consent=False,
            verification_token=None,
        )
        return self.cancel_pending_for_user(user.id)

    def export_user_data(self, email: str, ip: str | None = None) -> Dict[str, Any]:
        user = self._require_user(email)
        flights = self.store.list_flights_for_user(user.id)
        notifications = self.store.list_notifications(user_id=user.id)
        self.audit_logger.log_action("data_exported", user.id, email=email, ip=ip)
        return {
            "export_date": datetime.utcnow().isoformat(),
            "data_subject": {"email": user.email, "account_created": user.created_at.isoformat()},
            "consent": {
                "given": user.consent_given,
                "timestamp": user.consent_timestamp.isoformat() if user.consent_timestamp else None,
                "marketing_consent": user.marketing_consent,
            },
            "tracked_flights": [
                {
                    "flight_number": f.flight_number,
                    "date": f.flight_date.isoformat(),
                    "route": f"{f.departure_airport} -> {f.arrival_airport}",
                    "delay_minutes": f.delay_minutes,
                    "status": f.status.value,
                    "compensation_eligible": f.verdict.eligible,
                    "compensation_amount": f"{f.verdict.currency.value}{f.verdict.amount}" if f.verdict.eligible else None,
                    "tracked_at": f.created_at.isoformat(),
                }
                for f in flights
            ],
            "emails": [
                {
                    "kind": n.kind,
                    "subject": n.subject,
                    "status": n.status.value,
                    "sent_at": n.sent_at.isoformat() if n.sent_at else None,
                }
                for n in notifications
            ],
        }

    def requeue_failed(self, notification_id: str, now: datetime | None = None) -> NotificationRecord:
        record = self.store.requeue_failed(notification_id, now or datetime.utcnow())
        if record is None:
            raise LifecycleError("notification_not_failed", status_code=409)
        logger.info("notification_requeued", extra={"notification_id": notification_id})
        return record

    def release_hold(self, notification_id: str) -> NotificationRecord:
        record = self.store.release_hold(notification_id)
        if record is None:
            raise LifecycleError("notification_not_held", status_code=409)
        logger.info("notification_hold_released", extra={"notification_id": notification_id})
        return record

    def purge_expired(
        self,
        now: datetime | None = None,
        user_grace_days: int | None = None,
        notification_max_age_days: int | None = None,
    ) -> Dict[str, int]:
        """Hard-delete erased accounts after the grace period and old notification history."""
        counts = self.store.purge_expired(
            now or datetime.utcnow(),
            user_grace_days=SETTINGS.retention_user_grace_days if user_grace_days is None else user_grace_days,
            notification_max_age_days=(
                SETTINGS.retention_notification_max_age_days
                if notification_max_age_days is None
                else notification_max_age_days
            ),
        )
        logger.info("retention_purge", extra=counts)
        self.audit_logger.log_action("data_purged", None, details=counts)
        return counts

    def _require_user(self, email: str) -> UserRecord:
        user = self.store.find_user_by_email(email)
        if user is None:
            raise LifecycleError("user_not_found", status_code=404)
        return user

    def _ip_hash(self, ip: str | None) -> str | None:
        if not ip:
            return None
        return hash_for_gdpr(ip)
