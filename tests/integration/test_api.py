from __future__ import annotations

from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from api.main import create_app
from api.service_container import ServiceContainer
from compliance.audit_logger import AuditLogger
from models.schemas import NotificationRecord
from stores.tracker_store import TrackerStore
from tools.email_tools import OutboxEmailTools
from tools.flight_status_tools import FlightStatusTools


AUTH = {"Authorization": "Bearer s3cret"}


def _client(tmp_path, cron_secret: str = "s3cret") -> TestClient:
    services = ServiceContainer(
        store=TrackerStore(persist=False),
        email_provider=OutboxEmailTools(),
        flight_status_tools=FlightStatusTools(api_key=""),
        audit_logger=AuditLogger(path=str(tmp_path / "audit.jsonl")),
        cron_secret=cron_secret,
        app_url="https://claims.example",
    )
    return TestClient(create_app(services))


def _subscribe_and_verify(client: TestClient, email: str = "ana@example.com") -> str:
    resp = client.post("/api/v1/subscribe", json={"email": email, "consent": True})
    assert resp.status_code == 200
    user_id = resp.json()["user_id"]
    token = client.app.state.services.store.get_user(user_id).verification_token
    verify = client.get(f"/api/v1/verify?token={token}", follow_redirects=False)
    assert verify.status_code == 307
    assert verify.headers["location"] == "https://claims.example/?verified=success"
    return user_id


def test_health_reports_configuration(tmp_path):
    client = _client(tmp_path)
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["store_ok"] is True
    assert data["email_provider"] == "outbox"
    assert data["cron_secret_configured"] is True
    assert "X-Process-Time-Ms" in resp.headers


def test_subscribe_requires_consent(tmp_path):
    client = _client(tmp_path)
    resp = client.post("/api/v1/subscribe", json={"email": "ana@example.com", "consent": False})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "explicit_consent_required"


def test_verify_with_bad_token_redirects_with_error(tmp_path):
    client = _client(tmp_path)
    resp = client.get("/api/v1/verify?token=nope", follow_redirects=False)
    assert resp.headers["location"] == "https://claims.example/?error=invalid_token"
    missing = client.get("/api/v1/verify", follow_redirects=False)
    assert missing.headers["location"] == "https://claims.example/?error=missing_token"


def test_track_complete_and_cron_dispatch(tmp_path):
    client = _client(tmp_path)
    _subscribe_and_verify(client)
    payload = {
        "email": "ana@example.com",
        "flight_number": "FR8342",
        "date": "2026-02-14",
        "departure": "BCN",
        "arrival": "DUB",
        "delay_minutes": 215,
        "status": "completed",
    }
    resp = client.post("/api/v1/flights/track", json=payload)
    assert resp.status_code == 200
    flight = resp.json()["flight"]
    assert flight["verdict"]["eligible"] is True
    assert flight["verdict"]["currency"] == "EUR"

    assert client.post("/api/v1/cron/send-notifications").status_code == 401
    assert client.post("/api/v1/cron/send-notifications", headers={"Authorization": "Bearer wrong"}).status_code == 401

    run = client.post("/api/v1/cron/send-notifications", headers=AUTH)
    assert run.status_code == 200
    assert run.json() == {"ok": True, "processed": 1, "sent": 1, "failed": 0, "skipped": 0}
    again = client.post("/api/v1/cron/send-notifications", headers=AUTH)
    assert again.json()["processed"] == 0

    outbox = client.app.state.services.email_provider
    assert outbox.sent_to("ana@example.com")[0]["subject"].startswith("FR8342: You're owed")


def test_track_rejects_invalid_delay_and_unknown_user(tmp_path):
    client = _client(tmp_path)
    _subscribe_and_verify(client)
    bad = client.post(
        "/api/v1/flights/track",
        json={"email": "ana@example.com", "flight_number": "FR1", "date": "2026-02-14", "delay_minutes": -3},
    )
    assert bad.status_code == 422
    unknown = client.post(
        "/api/v1/flights/track",
        json={"email": "who@example.com", "flight_number": "FR1", "date": "2026-02-14"},
    )
    assert unknown.status_code == 404
    anonymous = client.post("/api/v1/flights/track", json={"flight_number": "FR1", "date": "2026-02-14"})
    assert anonymous.status_code == 400


def test_flight_status_lookup_includes_verdict(tmp_path):
    client = _client(tmp_path)
    resp = client.get("/api/v1/flights/status?flight=fr123&date=2026-02-14")
    assert resp.status_code == 200
    data = resp.json()
    assert data["flight"]["flight_number"] == "FR123"
    assert data["flight"]["estimated"] is True
    assert data["route_estimated"] is True
    assert "eligible" in data["compensation"]


def test_cron_without_secret_configured_is_server_error(tmp_path):
    client = _client(tmp_path, cron_secret="")
    assert client.post("/api/v1/cron/send-notifications", headers=AUTH).status_code == 500


def test_unsubscribe_and_user_data_endpoints(tmp_path):
    client = _client(tmp_path)
    _subscribe_and_verify(client)

    exported = client.get("/api/v1/user/data?email=ana@example.com")
    assert exported.status_code == 200
    assert exported.json()["data"]["data_subject"]["email"] == "ana@example.com"

    page = client.get("/api/v1/unsubscribe?email=ana@example.com")
    assert page.status_code == 200
    assert "unsubscribed" in page.text
    assert client.get("/api/v1/unsubscribe?email=nobody@example.com").status_code == 404

    deleted = client.delete("/api/v1/user/data?email=ana@example.com")
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True
    assert client.get("/api/v1/user/data?email=ana@example.com").status_code == 404


def test_admin_routes_require_secret_and_requeue(tmp_path):
    client = _client(tmp_path)
    assert client.post("/api/v1/admin/test-email", json={"to": "ops@example.com"}).status_code == 401
    sent = client.post("/api/v1/admin/test-email", json={"to": "ops@example.com"}, headers=AUTH)
    assert sent.status_code == 200
    assert sent.json()["provider"] == "outbox"

    missing = client.post("/api/v1/admin/notifications/nope/requeue", headers=AUTH)
    assert missing.status_code == 409


def test_subscribe_can_track_a_first_flight(tmp_path):
    client = _client(tmp_path)
    payload = {
        "email": "ana@example.com",
        "consent": True,
        "flight": {
            "flight_number": "fr 8342",
            "date": "2026-02-14",
            "departure": "BCN",
            "arrival": "DUB",
            "delay_minutes": 215,
            "status": "completed",
        },
    }
    resp = client.post("/api/v1/subscribe", json=payload)
    assert resp.status_code == 200
    body = resp.json()
    flight = client.app.state.services.store.get_flight(body["flight_id"])
    assert flight.flight_number == "FR8342"
    assert flight.verdict.eligible is True
    kinds = sorted(n.kind for n in client.app.state.services.store.list_notifications(flight_id=flight.id))
    assert kinds == ["eligibility_result", "followup_final", "followup_first"]

    plain = client.post("/api/v1/subscribe", json={"email": "kim@example.com", "consent": True})
    assert plain.json()["flight_id"] is None

    bad = dict(payload, email="lee@example.com", flight=dict(payload["flight"], delay_minutes=-5))
    assert client.post("/api/v1/subscribe", json=bad).status_code == 422


def test_admin_release_returns_held_record_to_dispatch(tmp_path):
    client = _client(tmp_path)
    user_id = _subscribe_and_verify(client)
    store = client.app.state.services.store
    store.insert_notification(
        NotificationRecord(id="odd", user_id=user_id, kind="sms_blast", scheduled_for=datetime.utcnow() - timedelta(hours=1))
    )
    run = client.post("/api/v1/cron/send-notifications", headers=AUTH)
    assert run.json()["skipped"] == 1
    assert store.get_notification("odd").held_at is not None

    assert client.post("/api/v1/admin/notifications/odd/release").status_code == 401
    released = client.post("/api/v1/admin/notifications/odd/release", headers=AUTH)
    assert released.status_code == 200
    assert released.json()["notification"]["held_at"] is None
    assert client.post("/api/v1/admin/notifications/odd/release", headers=AUTH).status_code == 409
