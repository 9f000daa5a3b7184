import pytest
from fastapi.testclient import TestClient

from main import app, get_engine, twiml
from middleware import rate_limiter
from middleware.security import RateLimiter, sender_from_body

from tests.conftest import PHONE_A


@pytest.fixture
def client(engine):
    rate_limiter.reset()
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    rate_limiter.reset()


def test_root_reports_service(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Resale Listing SMS Backend"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_liveness(client):
    assert client.get("/health/live").json()["status"] == "alive"


def test_json_webhook_runs_the_conversation(client, seller):
    response = client.post("/sms/inbound", json={"phone": PHONE_A, "text": "hi", "message_id": "SM-100"})

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "authorized"
    assert "authorized" in body["side_effects"]

    replay = client.post("/sms/inbound", json={"phone": PHONE_A, "text": "hi", "message_id": "SM-100"})
    assert replay.json()["duplicate"] is True


def test_json_webhook_validates_payload(client):
    response = client.post("/sms/inbound", json={"text": "hi"})
    assert response.status_code == 422


def test_gateway_webhook_answers_with_twiml(client, seller):
    response = client.post(
        "/sms/twilio",
        data={"From": PHONE_A, "Body": "hi", "NumMedia": "0", "MessageSid": "SM-200"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Message>Hey, welcome back!" in response.text


def test_gateway_webhook_without_sender(client):
    response = client.post("/sms/twilio", data={"Body": "hi"})
    assert response.text.endswith("<Response></Response>")


def test_twiml_escapes_reply():
    assert "<Message>1 &lt; 2 &amp; more</Message>" in twiml("1 < 2 & more")


def test_sender_from_body_reads_json_and_form():
    assert sender_from_body(b'{"phone": "555-123-0001"}', "application/json") == PHONE_A
    assert sender_from_body(b"From=%2B15551230001&Body=hi", "application/x-www-form-urlencoded") == PHONE_A
    assert sender_from_body(b"not json", "application/json") is None


def test_rate_limiter_blocks_after_limit():
    limiter = RateLimiter(block_seconds=60)
    assert limiter.is_allowed("phone:1", max_requests=2)[0]
    assert limiter.is_allowed("phone:1", max_requests=2)[0]
    allowed, error = limiter.is_allowed("phone:1", max_requests=2)
    assert not allowed
    assert "Rate limit exceeded" in error
    assert limiter.is_allowed("phone:2", max_requests=2)[0]


def test_gateway_webhook_sends_voice_notes_to_transcription(client, seller, transcriber):
    client.post("/sms/twilio", data={"From": PHONE_A, "Body": "hi", "NumMedia": "0", "MessageSid": "SM-300"})
    transcriber.transcripts["https://media.test/ME-voice"] = "sell"

    response = client.post(
        "/sms/twilio",
        data={
            "From": PHONE_A,
            "Body": "",
            "NumMedia": "1",
            "MediaUrl0": "https://media.test/ME-voice",
            "MediaContentType0": "audio/ogg",
            "MessageSid": "SM-301",
        },
    )

    assert response.status_code == 200
    assert transcriber.calls == ["https://media.test/ME-voice"]
    assert "Let's list your item!" in response.text


def test_gateway_webhook_unreadable_voice_note_asks_to_type(client, seller, transcriber):
    response = client.post(
        "/sms/twilio",
        data={
            "From": PHONE_A,
            "NumMedia": "2",
            "MediaUrl0": "https://media.test/ME-photo",
            "MediaContentType0": "image/jpeg",
            "MediaUrl1": "https://media.test/ME-static",
            "MediaContentType1": "audio/amr",
            "MessageSid": "SM-302",
        },
    )

    assert transcriber.calls == ["https://media.test/ME-static"]
    assert "Couldn't catch that voice note." in response.text
