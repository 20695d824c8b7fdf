"""Tests for the webhook adapter — FastAPI routes end to end."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock
from xml.etree.ElementTree import fromstring

import httpx
import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from clinic_booking.app import create_app
from clinic_booking.config import Settings
from clinic_booking.providers import CollaboratorError
from clinic_booking.session import InMemorySessionStore

CLINIC_PHONE = "+15550100"
CALLER_PHONE = "+15557654321"
TODAY = date(2026, 10, 18)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _settings(**overrides):
    fields = dict(
        _env_file=None,
        public_base_url="https://clinic.example",
        clinic_transfer_number="+15559990000",
    )
    fields.update(overrides)
    return Settings(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def client(store, backend):
    app = create_app(store=store, backend=backend, config=_settings(), today=lambda: TODAY)
    return TestClient(app)


def _turn(client, speech=None, call_sid="CA100", to=CLINIC_PHONE, **extra):
    data = {"CallSid": call_sid, "From": CALLER_PHONE, "To": to}
    if speech is not None:
        data["SpeechResult"] = speech
        data["Confidence"] = "0.92"
    data.update(extra)
    return client.post("/twilio/voice", data=data)


def _active(store):
    return asyncio.run(store.active_sessions())


def _tags(resp):
    return [child.tag for child in fromstring(resp.text)]


async def _lock_contended(store, call_sid):
    while store._lock_users.get(call_sid, 0) < 2:
        await asyncio.sleep(0)


class TestHealth:
    def test_ok(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestVoiceWebhook:
    def test_first_turn_greets(self, client, store):
        resp = _turn(client)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert "Riverside Clinic" in resp.text
        assert "Gather" in _tags(resp)

        [session] = _active(store)
        assert session.call_sid == "CA100"
        assert session.step == "name"

    def test_books_over_http(self, client, backend):
        for speech in [None, "John Smith", "Cardiology", "next Monday", "2pm"]:
            assert _turn(client, speech).status_code == 200
        resp = _turn(client, "yes")

        assert "successfully booked" in resp.text
        assert len(backend.appointments) == 1
        assert [e.conversation_step for e in backend.conversation_logs] == [
            "greeting", "name", "department", "date", "time", "confirmation",
        ]
        assert backend.conversation_logs[1].user_input == "John Smith"

    def test_calls_are_independent(self, client, store):
        _turn(client, call_sid="CA-a")
        _turn(client, "Jane Doe", call_sid="CA-a")
        _turn(client, call_sid="CA-b")

        steps = {s.call_sid: s.step for s in _active(store)}
        assert steps == {"CA-a": "department", "CA-b": "name"}

    def test_missing_call_sid_is_rejected(self, client, store):
        resp = client.post("/twilio/voice", data={"From": CALLER_PHONE, "To": CLINIC_PHONE})
        assert resp.status_code == 400
        assert _tags(resp) == []
        assert _active(store) == []

    def test_unknown_clinic_hangs_up(self, client, store):
        resp = _turn(client, to="+19999999999")
        assert resp.status_code == 200
        assert _tags(resp) == ["Say", "Hangup"]
        assert _active(store) == []

    def test_transfer_request_dials_staff(self, client):
        _turn(client)
        resp = _turn(client, "let me speak to a human")
        assert "Dial" in _tags(resp)
        assert "+15559990000" in resp.text

    def test_conversation_log_failure_transfers(self, client, backend, store):
        backend.append_conversation_log = AsyncMock(side_effect=CollaboratorError("down"))
        resp = _turn(client)
        assert "Dial" in _tags(resp)
        assert "technical difficulties" in resp.text
        [session] = _active(store)
        assert session.step == "transfer"

    def test_log_failure_on_booking_turn_keeps_appointment_id(self, client, backend, store):
        for speech in [None, "John Smith", "Cardiology", "next Monday", "2pm"]:
            _turn(client, speech)
        backend.append_conversation_log = AsyncMock(side_effect=CollaboratorError("down"))

        resp = _turn(client, "yes")

        [appointment] = backend.appointments
        assert "Dial" in _tags(resp)
        assert f"Your appointment ID is {appointment.id}" in resp.text
        [session] = _active(store)
        assert session.step == "transfer"

    def test_clinic_lookup_failure_transfers(self, client, backend):
        backend.get_clinic_by_phone = AsyncMock(side_effect=CollaboratorError("down"))
        resp = _turn(client)
        assert resp.status_code == 200
        assert "Dial" in _tags(resp)

    def test_unexpected_error_returns_apology(self, client, backend):
        backend.list_departments = AsyncMock(side_effect=ValueError("bug"))
        _turn(client)
        resp = _turn(client, "Jane Doe")
        assert resp.status_code == 500
        assert _tags(resp) == ["Say", "Hangup"]


class TestCallCompletion:
    def test_completed_on_voice_webhook_drops_session(self, client, store):
        _turn(client)
        resp = _turn(client, CallStatus="completed")
        assert resp.status_code == 200
        assert _tags(resp) == []
        assert _active(store) == []

    def test_status_callback_patches_call_duration(self, client, store, backend, clock):
        for speech in [None, "John Smith", "Cardiology", "next Monday", "2pm", "yes"]:
            _turn(client, speech)
        clock.now += 95

        resp = client.post("/twilio/status", data={"CallSid": "CA100", "CallStatus": "completed"})

        assert resp.status_code == 200
        assert _active(store) == []
        assert backend.call_logs[0].call_duration == 95

    def test_in_progress_status_keeps_session(self, client, store):
        _turn(client)
        client.post("/twilio/status", data={"CallSid": "CA100", "CallStatus": "in-progress"})
        assert len(_active(store)) == 1

    def test_status_for_unknown_call(self, client):
        resp = client.post("/twilio/status", data={"CallSid": "CA-gone", "CallStatus": "completed"})
        assert resp.status_code == 200

    def test_status_without_call_sid(self, client):
        resp = client.post("/twilio/status", data={"CallStatus": "completed"})
        assert resp.status_code == 400

    async def test_status_during_turn_waits_for_it(self, store, backend, clock):
        app = create_app(store=store, backend=backend, config=_settings(), today=lambda: TODAY)
        call = {"CallSid": "CA100", "From": CALLER_PHONE, "To": CLINIC_PHONE}
        in_turn = asyncio.Event()
        release = asyncio.Event()
        list_departments = backend.list_departments

        async def slow_departments(clinic_id):
            in_turn.set()
            await release.wait()
            return await list_departments(clinic_id)

        backend.list_departments = slow_departments
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            await http.post("/twilio/voice", data=call)
            turn = asyncio.create_task(
                http.post("/twilio/voice", data={**call, "SpeechResult": "Jane Doe"})
            )
            await in_turn.wait()
            clock.now += 60
            hang_up = asyncio.create_task(
                http.post("/twilio/status", data={"CallSid": "CA100", "CallStatus": "completed"})
            )
            await asyncio.wait_for(_lock_contended(store, "CA100"), timeout=1.0)
            release.set()
            turn_resp, status_resp = await asyncio.gather(turn, hang_up)

        assert turn_resp.status_code == 200
        assert status_resp.status_code == 200
        assert await store.active_sessions() == []


class TestSignatureValidation:
    @pytest.fixture
    def signed_client(self, store, backend):
        config = _settings(validate_twilio_signature=True, twilio_auth_token="tok")
        app = create_app(store=store, backend=backend, config=config, today=lambda: TODAY)
        return TestClient(app)

    def test_valid_signature_accepted(self, signed_client):
        params = {"CallSid": "CA100", "From": CALLER_PHONE, "To": CLINIC_PHONE}
        signature = RequestValidator("tok").compute_signature(
            "https://clinic.example/twilio/voice", params
        )
        resp = signed_client.post(
            "/twilio/voice", data=params, headers={"X-Twilio-Signature": signature}
        )
        assert resp.status_code == 200
        assert "Gather" in _tags(resp)

    def test_bad_signature_rejected(self, signed_client):
        resp = signed_client.post(
            "/twilio/voice",
            data={"CallSid": "CA100", "From": CALLER_PHONE, "To": CLINIC_PHONE},
            headers={"X-Twilio-Signature": "forged"},
        )
        assert resp.status_code == 403
        assert _tags(resp) == []


class TestAdminSessions:
    @pytest.fixture
    def client(self, store, backend):
        config = _settings(admin_api_key="secret")
        app = create_app(store=store, backend=backend, config=config, today=lambda: TODAY)
        return TestClient(app)

    AUTH = {"Authorization": "Bearer secret"}

    def test_requires_token(self, client):
        assert client.get("/api/sessions").status_code == 401

    def test_lists_sessions(self, client):
        _turn(client)
        resp = client.get("/api/sessions", headers=self.AUTH)
        assert resp.status_code == 200
        [row] = resp.json()
        assert row["call_sid"] == "CA100"
        assert row["step"] == "name"

    def test_session_detail(self, client):
        _turn(client)
        _turn(client, "Jane Doe")
        resp = client.get("/api/sessions/CA100", headers=self.AUTH)
        assert resp.status_code == 200
        assert resp.json()["state"] == {
            "step": "department", "attempts": 0, "patient_name": "Jane Doe",
        }

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/CA404", headers=self.AUTH).status_code == 404

    def test_invalid_id(self, client):
        assert client.get("/api/sessions/bad.id!", headers=self.AUTH).status_code == 400
