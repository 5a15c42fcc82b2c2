from datetime import timedelta

import pytest

import config
from auth import decode_token
from conftest import PHONE
from database import db
from main import app
from sms import SmsError, get_sms_sender
from utils import now_utc


class FakeSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send_code(self, isd_code, phone_number, code):
        if self.error:
            raise self.error
        self.sent.append((isd_code, phone_number, code))


@pytest.fixture
def sender():
    fake = FakeSender()
    app.dependency_overrides[get_sms_sender] = lambda: fake
    return fake


def generate(client, isd="91", phone=PHONE):
    return client.post("/api/v1/otp/generate", json={"isdCode": isd, "phoneNumber": phone})


def verify(client, code, isd="91", phone=PHONE):
    return client.post("/api/v1/otp/verify", json={"isdCode": isd, "phoneNumber": phone, "otp": code})


def test_generate_sends_and_stores_code(client, sender):
    res = generate(client, isd="+91")

    assert res.status_code == 200
    assert res.json()["data"]["phoneNumber"] == f"+91-{PHONE}"
    record = db["otp"].find_one({"phoneNumber": PHONE})
    assert len(record["otp"]) == 6
    assert sender.sent == [("91", PHONE, record["otp"])]


def test_generate_replaces_earlier_codes(client, sender):
    generate(client)
    generate(client)
    assert db["otp"].count_documents({"phoneNumber": PHONE}) == 1


def test_only_indian_numbers(client, sender):
    res = generate(client, isd="1")
    assert res.status_code == 400
    assert "outside India" in res.json()["error"]

    res = generate(client, phone="12345")
    assert res.status_code == 400
    assert sender.sent == []


def test_send_failure_removes_record(client):
    app.dependency_overrides[get_sms_sender] = lambda: FakeSender(error=SmsError("gateway down"))

    res = generate(client)

    assert res.status_code == 500
    assert res.json()["error"] == "Failed to send OTP via SMS. Please try again later."
    assert db["otp"].count_documents({}) == 0


def test_unconfigured_sender(client):
    app.dependency_overrides[get_sms_sender] = lambda: None
    res = generate(client)
    assert res.status_code == 500
    assert db["otp"].count_documents({}) == 0


def test_wrong_code_is_rejected(client, sender):
    generate(client)
    code = db["otp"].find_one({"phoneNumber": PHONE})["otp"]
    wrong = "000000" if code != "000000" else "111111"

    res = verify(client, wrong)

    assert res.status_code == 400
    assert res.json()["error"] == "Invalid OTP. Please check and try again"
    record = db["otp"].find_one({"phoneNumber": PHONE})
    assert record["isVerified"] is False
    assert record["failedAttempts"] == 1


def test_too_many_attempts_invalidate_code(client, sender, monkeypatch):
    monkeypatch.setattr(config, "OTP_MAX_ATTEMPTS", 2)
    generate(client)
    code = db["otp"].find_one({"phoneNumber": PHONE})["otp"]
    wrong = "000000" if code != "000000" else "111111"

    verify(client, wrong)
    res = verify(client, wrong)

    assert res.json()["error"] == "Too many incorrect attempts. Please request a new OTP"
    assert verify(client, code).status_code == 400


def test_correct_code_returns_token(client, sender):
    generate(client)
    code = db["otp"].find_one({"phoneNumber": PHONE})["otp"]

    res = verify(client, code)

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["verified"] is True
    assert "profile" not in data
    assert decode_token(data["token"])["phoneNumber"] == PHONE
    assert db["otp"].find_one({"phoneNumber": PHONE})["isVerified"] is True

    # a verified code cannot be replayed
    assert verify(client, code).status_code == 400


def test_expired_code(client):
    db["otp"].insert_one({
        "isdCode": "91",
        "phoneNumber": PHONE,
        "otp": "123456",
        "isVerified": False,
        "failedAttempts": 0,
        "expiresAt": now_utc() - timedelta(minutes=1),
        "createdAt": now_utc() - timedelta(minutes=6),
    })

    res = verify(client, "123456")

    assert res.status_code == 400
    assert res.json()["error"] == "No OTP found or OTP has expired. Please request a new OTP"


def test_verify_returns_existing_profile(client, sender):
    db["profile"].insert_one({"firstName": "Asha", "lastName": "Rao", "isdCode": "91", "phoneNumber": PHONE})
    generate(client)
    code = db["otp"].find_one({"phoneNumber": PHONE})["otp"]

    data = verify(client, code).json()["data"]
    assert data["profile"]["firstName"] == "Asha"


def test_sender_follows_configured_provider(monkeypatch):
    from sms import ConsoleSender, Fast2SmsSender, TwilioSender

    monkeypatch.setattr(config, "SMS_PROVIDER", "console")
    assert isinstance(get_sms_sender(), ConsoleSender)

    monkeypatch.setattr(config, "SMS_PROVIDER", "twilio")
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", "")
    assert get_sms_sender() is None
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(config, "TWILIO_AUTH_TOKEN", "token")
    monkeypatch.setattr(config, "TWILIO_PHONE_NUMBER", "+15550001111")
    assert isinstance(get_sms_sender(), TwilioSender)

    monkeypatch.setattr(config, "SMS_PROVIDER", "fast2sms")
    monkeypatch.setattr(config, "FAST2SMS_API_KEY", "key")
    assert isinstance(get_sms_sender(), Fast2SmsSender)
