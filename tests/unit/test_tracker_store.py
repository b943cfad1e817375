from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from models.schemas import (
    Currency,
    EligibilityVerdict,
    FlightRecord,
    NotificationRecord,
    NotificationStatus,
    UserRecord,
)
from notifications.errors import DuplicateSchedule
from stores.tracker_store import StoreError, TrackerStore


NOW = datetime(2026, 3, 1, 12, 0, 0)


def _user(store: TrackerStore, uid: str = "u1", verified: bool = True) -> UserRecord:
    return store.add_user(UserRecord(id=uid, email=f"{uid}@Example.com", consent_given=True, email_verified=verified))


def _flight(store: TrackerStore, user_id: str = "u1") -> FlightRecord:
    verdict = EligibilityVerdict(eligible=True, amount=Decimal(250), currency=Currency.EUR, reason="3h 20m delay on 470km flight")
    return store.upsert_flight(
        user_id,
        "FR123",
        date(2026, 2, 27),
        lambda existing: FlightRecord(id="f1", user_id=user_id, flight_number="FR123", flight_date=date(2026, 2, 27), verdict=verdict),
    )


def _note(nid: str, kind: str = "eligibility_result", flight_id: str | None = "f1", when: datetime = NOW) -> NotificationRecord:
    return NotificationRecord(id=nid, user_id="u1", flight_id=flight_id, kind=kind, scheduled_for=when, created_at=when)


def test_store_persists_and_reloads(tmp_path):
    path = str(tmp_path / "store.json")
    store = TrackerStore(path=path)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))

    reloaded = TrackerStore(path=path)
    assert reloaded.find_user_by_email("U1@example.com").id == "u1"
    assert reloaded.get_flight("f1").verdict.amount == Decimal(250)
    assert reloaded.get_notification("n1").status == NotificationStatus.PENDING


def test_unreadable_store_file_raises_store_error(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        TrackerStore(path=str(path))


def test_duplicate_email_rejected():
    store = TrackerStore(persist=False)
    _user(store)
    with pytest.raises(StoreError):
        store.add_user(UserRecord(id="u2", email="U1@example.com"))


def test_upsert_keeps_one_flight_per_user_number_date():
    store = TrackerStore(persist=False)
    _user(store)
    first = _flight(store)
    second = store.upsert_flight(
        "u1",
        "fr123",
        date(2026, 2, 27),
        lambda existing: existing.model_copy(update={"id": "other", "delay_minutes": 200}),
    )
    assert second.id == first.id
    assert len(store.list_flights_for_user("u1")) == 1
    assert store.get_flight("f1").delay_minutes == 200


def test_notification_unique_per_flight_and_kind():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    with pytest.raises(DuplicateSchedule):
        store.insert_notification(_note("n2"))

    created, duplicates = store.insert_notifications([_note("n3"), _note("n4", kind="followup_first")])
    assert [r.id for r in created] == ["n4"]
    assert len(duplicates) == 1 and duplicates[0].kind == "eligibility_result"

    # A cancelled record no longer blocks rescheduling.
    store.cancel_notification("n1")
    store.insert_notification(_note("n5"))


def test_claim_due_is_exclusive_until_ttl_expires():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    store.insert_notification(_note("later", kind="followup_first", when=NOW + timedelta(days=15)))

    token, claimed = store.claim_due(NOW, limit=10, claim_ttl_seconds=600)
    assert [r.id for r in claimed] == ["n1"]
    _, again = store.claim_due(NOW, limit=10, claim_ttl_seconds=600)
    assert again == []

    # A crashed run's claim can be taken over once stale.
    token2, stale = store.claim_due(NOW + timedelta(seconds=601), limit=10, claim_ttl_seconds=600)
    assert [r.id for r in stale] == ["n1"]
    assert store.get_claimed("n1", token) is None
    assert store.get_claimed("n1", token2) is not None

    # The old holder can no longer finish it.
    store.finish_claim("n1", token, NotificationStatus.SENT)
    assert store.get_notification("n1").status == NotificationStatus.PENDING
    store.finish_claim("n1", token2, NotificationStatus.SENT, external_id="msg-1")
    done = store.get_notification("n1")
    assert done.status == NotificationStatus.SENT
    assert done.claim_token is None


def test_claim_due_respects_verification_and_deletion():
    store = TrackerStore(persist=False)
    _user(store, "u1", verified=False)
    _flight(store)
    store.insert_notification(_note("result"))
    store.insert_notification(_note("verify", kind="verification", flight_id=None))

    _, claimed = store.claim_due(NOW, limit=10, claim_ttl_seconds=600)
    assert [r.id for r in claimed] == ["verify"]

    store.update_user("u1", email_verified=True, deleted_at=NOW)
    _, claimed = store.claim_due(NOW + timedelta(hours=1), limit=10, claim_ttl_seconds=600)
    assert claimed == []


def test_claim_due_honours_limit_and_order():
    store = TrackerStore(persist=False)
    _user(store)
    for i in range(5):
        store.insert_notification(_note(f"n{i}", kind="verification", flight_id=None, when=NOW - timedelta(minutes=i)))
    _, claimed = store.claim_due(NOW, limit=2, claim_ttl_seconds=600)
    assert [r.id for r in claimed] == ["n4", "n3"]


def test_cancel_pending_leaves_sent_records_alone():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    store.insert_notification(_note("n2", kind="followup_first"))
    token, _ = store.claim_due(NOW, limit=1, claim_ttl_seconds=600)
    store.finish_claim("n1", token, NotificationStatus.SENT)

    assert store.cancel_pending_for_user("u1") == 1
    assert store.get_notification("n1").status == NotificationStatus.SENT
    assert store.get_notification("n2").status == NotificationStatus.CANCELLED
    assert store.cancel_notification("n1") is None


def test_requeue_only_moves_failed_records():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    assert store.requeue_failed("n1", NOW) is None
    token, _ = store.claim_due(NOW, limit=1, claim_ttl_seconds=600)
    store.finish_claim("n1", token, NotificationStatus.FAILED, error_text="boom")

    later = NOW + timedelta(hours=2)
    requeued = store.requeue_failed("n1", later)
    assert requeued.status == NotificationStatus.PENDING
    assert requeued.scheduled_for == later
    assert requeued.error_text is None


class FailingWriteStore(TrackerStore):
    fail_writes = False

    def _persist(self) -> None:
        if self.fail_writes:
            raise StoreError("disk full")
        super()._persist()


def test_held_record_is_excluded_until_released():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))

    token, [claimed] = store.claim_due(NOW, limit=10, claim_ttl_seconds=900)
    held = store.hold_claim(claimed.id, token, "invalid_context: reason", NOW)
    assert held.status == NotificationStatus.PENDING
    assert (held.claim_token, held.held_at, held.hold_reason) == (None, NOW, "invalid_context: reason")
    assert store.claim_due(NOW + timedelta(days=1), limit=10, claim_ttl_seconds=900)[1] == []

    assert store.release_hold("n1").held_at is None
    assert store.release_hold("n1") is None
    assert [n.id for n in store.claim_due(NOW, limit=10, claim_ttl_seconds=900)[1]] == ["n1"]


def test_hold_requires_the_claim_token():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    store.claim_due(NOW, limit=10, claim_ttl_seconds=900)

    assert store.hold_claim("n1", "someone-else", "unknown_kind: x", NOW).held_at is None


def test_requeue_clears_hold():
    store = TrackerStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))
    token, _ = store.claim_due(NOW, limit=10, claim_ttl_seconds=900)
    store.finish_claim("n1", token, NotificationStatus.FAILED, error_text="bounced", held_at=NOW, hold_reason="x")

    requeued = store.requeue_failed("n1", NOW)
    assert requeued.status == NotificationStatus.PENDING
    assert (requeued.held_at, requeued.hold_reason) == (None, None)


def test_failed_write_rolls_memory_back():
    store = FailingWriteStore(persist=False)
    _user(store)
    _flight(store)
    store.insert_notification(_note("n1"))

    store.fail_writes = True
    with pytest.raises(StoreError):
        store.claim_due(NOW, limit=10, claim_ttl_seconds=900)
    assert store.get_notification("n1").claim_token is None
    with pytest.raises(StoreError):
        store.update_user("u1", email_verified=False)
    assert store.get_user("u1").email_verified is True

    store.fail_writes = False
    token, [claimed] = store.claim_due(NOW, limit=10, claim_ttl_seconds=900)
    assert claimed.claim_token == token


def test_purge_expired_removes_erased_users_and_old_history():
    store = TrackerStore(persist=False)
    _user(store, "u1")
    _user(store, "u2")
    _flight(store, "u1")
    store.insert_notification(_note("u1-result"))
    store.insert_notification(
        NotificationRecord(id="u2-old", user_id="u2", kind="verification", scheduled_for=NOW, created_at=NOW - timedelta(days=800))
    )
    store.insert_notification(
        NotificationRecord(id="u2-new", user_id="u2", kind="verification", scheduled_for=NOW, created_at=NOW - timedelta(days=10))
    )
    store.update_user("u1", deleted_at=NOW - timedelta(days=31))

    counts = store.purge_expired(NOW, user_grace_days=30, notification_max_age_days=730)
    assert counts == {"users": 1, "flights": 1, "notifications": 2}
    assert store.get_user("u1") is None
    assert store.get_flight("f1") is None
    assert [n.id for n in store.list_notifications()] == ["u2-new"]


def test_purge_keeps_recently_erased_users():
    store = TrackerStore(persist=False)
    _user(store, "u1")
    store.update_user("u1", deleted_at=NOW - timedelta(days=5))

    assert store.purge_expired(NOW) == {"users": 0, "flights": 0, "notifications": 0}
    assert store.get_user("u1").is_deleted
