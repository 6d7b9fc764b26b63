import pytest
import requests

from prepx.app.db.base import Base
from prepx.app.db.session import SessionLocal, engine
from prepx.app.services import sms_providers
from prepx.app.services.sms_providers import (
    ConsoleAdapter,
    Fast2SMSAdapter,
    MSG91Adapter,
    SMSConfig,
    SMSService,
    TextLocalAdapter,
    TwilioAdapter,
    describe_sms_config,
    load_sms_config,
    save_sms_config,
)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


@pytest.fixture
def captured(monkeypatch):
    calls = []

    def install(response):
        def fake_post(url, **kwargs):
            calls.append({"url": url, **kwargs})
            if isinstance(response, Exception):
                raise response
            return response

        monkeypatch.setattr(sms_providers.requests, "post", fake_post)
        return calls

    return install


def test_msg91_success(captured):
    calls = captured(FakeResponse(payload={"type": "success", "message": "3763646c3058"}))
    config = SMSConfig(provider="msg91", api_key="key-1", sender_id="PREPXQ")
    response = MSG91Adapter(timeout=5).send("98765 43210", "Hello", config)
    assert response.success
    assert response.message_id == "3763646c3058"
    call = calls[0]
    assert call["headers"]["authkey"] == "key-1"
    assert call["json"]["sms"] == [{"message": "Hello", "to": ["9876543210"]}]
    assert call["json"]["sender"] == "PREPXQ"
    assert call["timeout"] == 5


def test_msg91_error_payload(captured):
    captured(FakeResponse(status_code=401, payload={"type": "error", "message": "Authentication failure"}))
    response = MSG91Adapter(timeout=5).send("9876543210", "Hello", SMSConfig(provider="msg91", api_key="bad"))
    assert not response.success
    assert response.error == "Authentication failure"


def test_twilio_requires_sid_and_token(captured):
    calls = captured(FakeResponse(payload={"sid": "SM1"}))
    config = SMSConfig(provider="twilio", api_key="no-colon")
    response = TwilioAdapter(timeout=5).send("9876543210", "Hi", config)
    assert not response.success
    assert "AccountSID:AuthToken" in response.error
    assert calls == []


def test_twilio_adds_country_code(captured):
    calls = captured(FakeResponse(status_code=201, payload={"sid": "SM123", "status": "queued"}))
    config = SMSConfig(provider="twilio", api_key="AC1:tok", sender_id="+15550001111", country_code="91")
    response = TwilioAdapter(timeout=5).send("9876543210", "Hi", config)
    assert response.success
    assert response.message_id == "SM123"
    assert calls[0]["auth"] == ("AC1", "tok")
    assert calls[0]["data"]["To"] == "+919876543210"
    assert "AC1" in calls[0]["url"]


def test_textlocal_failure_reports_first_error(captured):
    captured(FakeResponse(payload={"status": "failure", "errors": [{"code": 7, "message": "Invalid login details"}]}))
    response = TextLocalAdapter(timeout=5).send("9876543210", "Hi", SMSConfig(provider="textlocal", api_key="k"))
    assert not response.success
    assert response.error == "Invalid login details"


def test_fast2sms_success(captured):
    captured(FakeResponse(payload={"return": True, "request_id": "r-1", "message": ["SMS sent successfully."]}))
    response = Fast2SMSAdapter(timeout=5).send("9876543210", "Hi", SMSConfig(provider="fast2sms", api_key="k"))
    assert response.success
    assert response.message_id == "r-1"


def test_transport_errors_become_failures(captured):
    captured(requests.Timeout("read timed out"))
    response = MSG91Adapter(timeout=5).send("9876543210", "Hi", SMSConfig(provider="msg91", api_key="k"))
    assert not response.success
    assert "timed out" in response.error


def test_non_json_body_is_kept_raw(captured):
    captured(FakeResponse(status_code=502, text="Bad Gateway"))
    response = Fast2SMSAdapter(timeout=5).send("9876543210", "Hi", SMSConfig(provider="fast2sms", api_key="k"))
    assert not response.success
    assert response.error == "HTTP 502"
    assert response.data == {"raw": "Bad Gateway"}


def test_console_adapter_never_calls_network(captured):
    calls = captured(FakeResponse(payload={}))
    response = ConsoleAdapter(timeout=5).send("9876543210", "Hi", SMSConfig(provider="console", api_key=""))
    assert response.success
    assert response.message_id.startswith("console_")
    assert calls == []


def test_service_without_config_fails_softly():
    service = SMSService(None)
    response = service.send("9876543210", "Hi")
    assert not response.success
    assert "SMS not configured" in response.error
    assert service.test_config("9876543210") == (False, "SMS not configured. Please set SMS_API_KEY in settings.")


def test_service_rejects_short_numbers_and_unknown_providers():
    service = SMSService(SMSConfig(provider="console", api_key=""))
    assert service.send("12345", "Hi").error == "Invalid phone number"
    assert service.send(None, "Hi").error == "Invalid phone number"
    unknown = SMSService(SMSConfig(provider="carrier-pigeon", api_key="k"))
    assert unknown.send("9876543210", "Hi").error == "Unknown SMS provider: carrier-pigeon"


def test_send_bulk_and_test_config_with_console():
    service = SMSService(SMSConfig(provider="console", api_key=""))
    results = service.send_bulk([("9876543210", "a"), ("123", "b")])
    assert [result.success for result in results] == [True, False]
    assert service.test_config("9876543210") == (True, "Test SMS sent successfully!")


def test_config_persists_in_org_settings():
    db = SessionLocal()
    assert load_sms_config(db) is None
    assert describe_sms_config(db).configured is False

    config = save_sms_config(db, provider="textlocal", api_key="  secret  ", sender_id="PREPX")
    assert config == SMSConfig(provider="textlocal", api_key="secret", sender_id="PREPX", country_code="91")

    # None leaves existing values alone
    save_sms_config(db, provider=None, country_code="1")
    described = describe_sms_config(db)
    assert described.provider == "textlocal"
    assert described.configured is True
    assert described.country_code == "1"

    with pytest.raises(ValueError):
        save_sms_config(db, password="x")
    db.close()


def test_console_provider_needs_no_api_key():
    db = SessionLocal()
    save_sms_config(db, provider="console")
    config = load_sms_config(db)
    assert config is not None
    assert config.provider == "console"
    db.close()
