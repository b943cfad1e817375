from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from models.schemas import (
    FlightRecord,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    UserRecord,
)
from notifications.errors import DuplicateSchedule
from settings import SETTINGS

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    pass


def _flight_key(user_id: str, flight_number: str, flight_date: date) -> str:
    return f"{user_id}:{flight_number.upper()}:{flight_date.isoformat()}"


class TrackerStore:
    """Users, tracked flights and scheduled notifications behind one lock.

    Uniqueness: (user, flight number, flight date) for flights and
    (flight, kind) for non-cancelled notifications. Every mutating call
    persists before releasing the lock, so each record transition commits
    on its own; a failed write leaves memory as it was before the call.
    """

    def __init__(self, path: str | None = None, persist: bool = True) -> None:
        self.path = (path or SETTINGS.tracker_store_path) if persist else ""
        self._users: Dict[str, UserRecord] = {}
        self._flights: Dict[str, FlightRecord] = {}
        self._notifications: Dict[str, NotificationRecord] = {}
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreError(f"tracker store unreadable: {self.path}") from exc
        for raw in payload.get("users", []):
            user = UserRecord.model_validate(raw)
            self._users[user.id] = user
        for raw in payload.get("flights", []):
            flight = FlightRecord.model_validate(raw)
            self._flights[flight.id] = flight
        for raw in payload.get("notifications", []):
            record = NotificationRecord.model_validate(raw)
            self._notifications[record.id] = record

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {
            "users": [u.model_dump(mode="json") for u in self._users.values()],
            "flights": [f.model_dump(mode="json") for f in self._flights.values()],
            "notifications": [n.model_dump(mode="json") for n in self._notifications.values()],
        }
        tmp = f"{self.path}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.remove(tmp)
            logger.error("tracker_store_persist_failed", extra={"path": self.path, "error": repr(exc)})
            raise StoreError(f"tracker store unwritable: {self.path}") from exc

    @contextmanager
    def _write(self) -> Iterator[None]:
        """Hold the lock for one mutation; persist it or roll memory back."""
        with self._lock:
            snapshot = (dict(self._users), dict(self._flights), dict(self._notifications))
            try:
                yield
                self._persist()
            except Exception:
                self._users, self._flights, self._notifications = snapshot
                raise

    # ------------------------------------------------------------------ users

    def add_user(self, user: UserRecord) -> UserRecord:
        with self._write():
            email = user.email.lower()
            if any(u.email == email and not u.is_deleted for u in self._users.values()):
                raise StoreError("user with email already exists")
            user = user.model_copy(update={"email": email})
            self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(user_id)

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = (email or "").strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email == email and not user.is_deleted:
                    return user
        return None

    def find_user_by_token(self, token: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self._users.values():
                if token and user.verification_token == token and not user.is_deleted:
                    return user
        return None

    def update_user(self, user_id: str, **changes: object) -> UserRecord:
        with self._write():
            user = self._users.get(user_id)
            if user is None:
                raise StoreError(f"unknown user {user_id}")
            updated = user.model_copy(update={**changes, "updated_at": datetime.utcnow()})
            self._users[user_id] = updated
        return updated

    # ---------------------------------------------------------------- flights

    def upsert_flight(
        self,
        user_id: str,
        flight_number: str,
        flight_date: date,
        build: Callable[[Optional[FlightRecord]], FlightRecord],
    ) -> FlightRecord:
        """Insert or replace the flight for the unique triple.

        ``build`` receives the existing record (or None) while the lock is held
        and returns the record to store, so read-modify-write is atomic.
        """
        key = _flight_key(user_id, flight_number, flight_date)
        with self._write():
            existing = next(
                (f for f in self._flights.values() if _flight_key(f.user_id, f.flight_number, f.flight_date) == key),
                None,
            )
            record = build(existing)
            if existing is not None:
                record = record.model_copy(update={"id": existing.id, "created_at": existing.created_at})
            self._flights[record.id] = record
        return record

    def get_flight(self, flight_id: str) -> Optional[FlightRecord]:
        with self._lock:
            return self._flights.get(flight_id)

    def update_flight(self, flight_id: str, **changes: object) -> FlightRecord:
        with self._write():
            flight = self._flights.get(flight_id)
            if flight is None:
                raise StoreError(f"unknown flight {flight_id}")
            updated = flight.model_copy(update={**changes, "updated_at": datetime.utcnow()})
            self._flights[flight_id] = updated
        return updated

    def list_flights_for_user(self, user_id: str) -> List[FlightRecord]:
        with self._lock:
            items = [f for f in self._flights.values() if f.user_id == user_id]
        items.sort(key=lambda f: (f.flight_date, f.created_at))
        return items

    # ---------------------------------------------------------- notifications

    def _check_unique(self, record: NotificationRecord) -> None:
        if record.flight_id is None:
            return
        for other in self._notifications.values():
            if (
                other.flight_id == record.flight_id
                and other.kind == record.kind
                and other.status != NotificationStatus.CANCELLED
            ):
                raise DuplicateSchedule(record.flight_id, record.kind)

    def _replace(self, record: NotificationRecord, **changes: object) -> NotificationRecord:
        updated = record.model_copy(update=changes)
        self._notifications[record.id] = updated
        return updated

    def insert_notification(self, record: NotificationRecord) -> NotificationRecord:
        with self._write():
            self._check_unique(record)
            self._notifications[record.id] = record
        return record

    def insert_notifications(
        self, records: Iterable[NotificationRecord]
    ) -> tuple[List[NotificationRecord], List[DuplicateSchedule]]:
        """Insert a group of records in one commit, skipping (flight, kind) conflicts."""
        created: List[NotificationRecord] = []
        duplicates: List[DuplicateSchedule] = []
        with self._write():
            for record in records:
                try:
                    self._check_unique(record)
                except DuplicateSchedule as exc:
                    duplicates.append(exc)
                    continue
                self._notifications[record.id] = record
                created.append(record)
        return created, duplicates

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            return self._notifications.get(notification_id)

    def list_notifications(
        self,
        user_id: str | None = None,
        flight_id: str | None = None,
        statuses: Iterable[NotificationStatus] | None = None,
    ) -> List[NotificationRecord]:
        wanted = set(statuses or [])
        with self._lock:
            items = [
                n
                for n in self._notifications.values()
                if (user_id is None or n.user_id == user_id)
                and (flight_id is None or n.flight_id == flight_id)
                and (not wanted or n.status in wanted)
            ]
        items.sort(key=lambda n: (n.scheduled_for, n.created_at))
        return items

    def claim_due(self, now: datetime, limit: int, claim_ttl_seconds: int) -> tuple[str, List[NotificationRecord]]:
        """Select due pending records and mark them in-flight in one step.

        A record is due when it is pending, not on hold, scheduled at or
        before ``now``, not held by a live claim, its user is not deleted
        and, for every kind but verification, the user's email is verified.
        """
        token = uuid.uuid4().hex
        stale_before = now - timedelta(seconds=claim_ttl_seconds)
        due: List[NotificationRecord] = []
        with self._write():
            for record in sorted(self._notifications.values(), key=lambda n: (n.scheduled_for, n.created_at)):
                if len(due) >= limit:
                    break
                if record.status != NotificationStatus.PENDING or record.scheduled_for > now:
                    continue
                if record.held_at is not None:
                    continue
                if record.claim_token and record.claimed_at and record.claimed_at > stale_before:
                    continue
                user = self._users.get(record.user_id)
                if user is None or user.is_deleted:
                    continue
                if record.kind != NotificationKind.VERIFICATION.value and not user.email_verified:
                    continue
                due.append(self._replace(record, claim_token=token, claimed_at=now))
        return token, due

    def get_claimed(self, notification_id: str, token: str) -> Optional[NotificationRecord]:
        with self._lock:
            record = self._notifications.get(notification_id)
            if record is None or record.status != NotificationStatus.PENDING or record.claim_token != token:
                return None
            return record

    def hold_claim(self, notification_id: str, token: str, reason: str, now: datetime) -> Optional[NotificationRecord]:
        """Keep a claimed record pending but out of dispatch until released."""
        with self._write():
            record = self._notifications.get(notification_id)
            if record is None or record.claim_token != token:
                return record
            return self._replace(record, claim_token=None, claimed_at=None, held_at=now, hold_reason=reason)

    def release_hold(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._write():
            record = self._notifications.get(notification_id)
            if record is None or record.status != NotificationStatus.PENDING or record.held_at is None:
                return None
            return self._replace(record, held_at=None, hold_reason=None)

    def finish_claim(
        self,
        notification_id: str,
        token: str,
        status: NotificationStatus,
        **changes: object,
    ) -> Optional[NotificationRecord]:
        """Write the terminal state of a claimed record.

        Only the holder of the claim may finish it; repeating the same
        transition is harmless.
        """
        with self._write():
            record = self._notifications.get(notification_id)
            if record is None:
                return None
            if record.claim_token != token:
                logger.warning(
                    "notification_claim_lost",
                    extra={"notification_id": notification_id, "status": record.status.value},
                )
                return record
            return self._replace(record, **changes, status=status, claim_token=None, claimed_at=None)

    def cancel_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._write():
            record = self._notifications.get(notification_id)
            if record is None or record.status != NotificationStatus.PENDING:
                return None
            return self._replace(record, status=NotificationStatus.CANCELLED, claim_token=None, claimed_at=None)

    def _cancel_pending_where(self, match: Callable[[NotificationRecord], bool]) -> int:
        cancelled = 0
        with self._write():
            for record in list(self._notifications.values()):
                if record.status == NotificationStatus.PENDING and match(record):
                    self._replace(record, status=NotificationStatus.CANCELLED, claim_token=None, claimed_at=None)
                    cancelled += 1
        return cancelled

    def cancel_pending_for_user(self, user_id: str) -> int:
        return self._cancel_pending_where(lambda record: record.user_id == user_id)

    def cancel_pending_for_flight(self, flight_id: str) -> int:
        return self._cancel_pending_where(lambda record: record.flight_id == flight_id)

    def requeue_failed(self, notification_id: str, now: datetime) -> Optional[NotificationRecord]:
        with self._write():
            record = self._notifications.get(notification_id)
            if record is None or record.status != NotificationStatus.FAILED:
                return None
            return self._replace(
                record,
                status=NotificationStatus.PENDING,
                scheduled_for=now,
                error_text=None,
                held_at=None,
                hold_reason=None,
            )

    # -------------------------------------------------------------- retention

    def purge_expired(
        self,
        now: datetime,
        user_grace_days: int = 30,
        notification_max_age_days: int = 730,
    ) -> Dict[str, int]:
        """Hard-delete erased users past the grace period, with their flights
        and notifications, and any notification older than the max age."""
        user_cutoff = now - timedelta(days=user_grace_days)
        notification_cutoff = now - timedelta(days=notification_max_age_days)
        with self._write():
            expired_users = {
                u.id for u in self._users.values() if u.deleted_at is not None and u.deleted_at < user_cutoff
            }
            flights = [f.id for f in self._flights.values() if f.user_id in expired_users]
            notifications = [
                n.id
                for n in self._notifications.values()
                if n.user_id in expired_users or n.created_at < notification_cutoff
            ]
            for user_id in expired_users:
                del self._users[user_id]
            for flight_id in flights:
                del self._flights[flight_id]
            for notification_id in notifications:
                del self._notifications[notification_id]
        return {"users": len(expired_users), "flights": len(flights), "notifications": len(notifications)}

    def ping(self) -> bool:
        with self._lock:
            if self.path and os.path.exists(self.path):
                return os.access(self.path, os.R_OK | os.W_OK)
            return True
