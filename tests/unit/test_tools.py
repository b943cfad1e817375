from __future__ import annotations

import asyncio
import json
from datetime import date

import httpx
import pytest

from models.schemas import FlightStatus
from notifications.errors import DeliveryFailure
from tools.email_tools import OutboxEmailTools, ResendEmailClient
from tools.flight_status_tools import FlightStatusTools, clean_flight_number


AVIATIONSTACK_ROWS = {
    "data": [
        {
            "flight_date": "2026-02-27",
            "flight_status": "landed",
            "departure": {"iata": "STN", "delay": 20},
            "arrival": {"iata": "DUB", "delay": 5},
            "airline": {"name": "Ryanair"},
            "flight": {"iata": "FR123"},
        },
        {
            "flight_date": "2026-02-28",
            "flight_status": "landed",
            "departure": {"iata": "STN", "delay": 190},
            "arrival": {"iata": "DUB", "delay": 212},
            "airline": {"name": "Ryanair"},
            "flight": {"iata": "FR123"},
        },
    ]
}


def test_flight_status_parses_provider_row_for_requested_date():
    async def _run():
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(dict(request.url.params))
            return httpx.Response(200, json=AVIATIONSTACK_ROWS)

        tools = FlightStatusTools(api_key="k", base_url="https://flights.test/v1", transport=httpx.MockTransport(handler))
        report = await tools.get_flight_status("fr 123", date(2026, 2, 28))
        assert seen == {"access_key": "k", "flight_iata": "FR123"}
        assert report.delay_minutes == 212
        assert report.status == FlightStatus.COMPLETED
        assert (report.departure_airport, report.arrival_airport) == ("STN", "DUB")
        assert report.estimated is False

    asyncio.run(_run())


def test_flight_status_falls_back_to_deterministic_estimate():
    async def _run():
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream down")

        broken = FlightStatusTools(api_key="k", base_url="https://flights.test/v1", transport=httpx.MockTransport(handler))
        offline = FlightStatusTools(api_key="")
        a = await broken.get_flight_status("FR123", date(2026, 2, 28), today=date(2026, 3, 1))
        b = await offline.get_flight_status("FR123", date(2026, 2, 28), today=date(2026, 3, 1))
        assert a.estimated and b.estimated
        assert a.delay_minutes == b.delay_minutes
        assert a.status == FlightStatus.COMPLETED

        upcoming = offline.synthetic_estimate("FR123", date(2026, 3, 5), today=date(2026, 3, 1))
        assert (upcoming.status, upcoming.provider_status) == (FlightStatus.TRACKING, "scheduled")

    asyncio.run(_run())


def test_clean_flight_number():
    assert clean_flight_number(" fr 12 3 ") == "FR123"
    assert clean_flight_number(None) == ""


def test_resend_client_posts_and_returns_message_id():
    async def _run():
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            captured["url"] = str(request.url)
            return httpx.Response(200, json={"id": "re_123"})

        client = ResendEmailClient(
            api_key="re_key",
            base_url="https://mail.test",
            from_email="Claims <hi@claims.example>",
            transport=httpx.MockTransport(handler),
        )
        receipt = await client.send("ana@example.com", "Hello", "<p>hi</p>")
        assert receipt.id == "re_123"
        assert captured["url"] == "https://mail.test/emails"
        assert captured["auth"] == "Bearer re_key"
        assert captured["body"]["to"] == ["ana@example.com"]

    asyncio.run(_run())


def test_resend_client_raises_delivery_failure():
    async def _run():
        def rejected(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "invalid to"})

        def no_id(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        def down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        for handler in (rejected, no_id, down):
            client = ResendEmailClient(api_key="re_key", base_url="https://mail.test", transport=httpx.MockTransport(handler))
            with pytest.raises(DeliveryFailure):
                await client.send("ana@example.com", "Hello", "<p>hi</p>")

        with pytest.raises(DeliveryFailure):
            await ResendEmailClient(api_key="").send("ana@example.com", "Hello", "<p>hi</p>")

    asyncio.run(_run())


def test_outbox_records_messages():
    async def _run():
        outbox = OutboxEmailTools()
        receipt = await outbox.send("Ana@Example.com", "Hello", "<p>hi</p>")
        assert receipt.id.startswith("outbox-")
        assert outbox.sent_to("ana@example.com")[0]["subject"] == "Hello"

    asyncio.run(_run())
