"""SMS provider adapters behind one send() contract.

Supported providers: MSG91, Twilio, TextLocal, Fast2SMS, plus a console
adapter that only logs, for development. Provider choice and credentials come
from the org_settings keys ``sms_provider``, ``sms_api_key``,
``sms_sender_id`` and ``sms_country_code``.

Adapters never raise: transport problems, non-2xx responses and provider
failure flags all come back as ``SMSResponse(success=False, error=...)``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from sqlalchemy.orm import Session

from prepx.app.core.settings import get_settings
from prepx.app.models.org_setting import OrgSetting
from prepx.app.schemas.notification import SmsConfigRead
from prepx.app.services.notification_templates import normalize_phone

logger = logging.getLogger(__name__)

SMS_SETTING_KEYS = ("sms_provider", "sms_api_key", "sms_sender_id", "sms_country_code")
DEFAULT_PROVIDER = "msg91"
DEFAULT_COUNTRY_CODE = "91"
TEST_MESSAGE = "This is a test message from PrepX IQ. Your SMS configuration is working correctly."


@dataclass
class SMSConfig:
    provider: str
    api_key: str
    sender_id: Optional[str] = None
    country_code: str = DEFAULT_COUNTRY_CODE


@dataclass
class SMSResponse:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = field(default=None)


def _payload(response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text[:500]}
    return data if isinstance(data, dict) else {"data": data}


class SMSProviderAdapter:
    name = "base"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else get_settings().sms_timeout_seconds

    def send(self, phone: str, message: str, config: SMSConfig) -> SMSResponse:
        try:
            return self._send(normalize_phone(phone), message, config)
        except requests.RequestException as exc:
            logger.warning("%s request failed: %s", self.name, exc)
            return SMSResponse(success=False, error=str(exc) or exc.__class__.__name__)

    def _send(self, phone: str, message: str, config: SMSConfig) -> SMSResponse:
        raise NotImplementedError


class MSG91Adapter(SMSProviderAdapter):
    name = "msg91"
    url = "https://api.msg91.com/api/v2/sendsms"

    def _send(self, phone, message, config):
        response = requests.post(
            self.url,
            headers={"Content-Type": "application/json", "authkey": config.api_key},
            json={
                "route": "4",  # transactional
                "country": config.country_code or DEFAULT_COUNTRY_CODE,
                "sender": config.sender_id or "PREPXIQ",
                "sms": [{"message": message, "to": [phone]}],
            },
            timeout=self.timeout,
        )
        data = _payload(response)
        if response.ok and data.get("type") == "success":
            return SMSResponse(success=True, message_id=data.get("messageId") or data.get("message"), data=data)
        return SMSResponse(success=False, error=data.get("message") or f"HTTP {response.status_code}", data=data)


class TwilioAdapter(SMSProviderAdapter):
    name = "twilio"
    url = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def _send(self, phone, message, config):
        account_sid, _, auth_token = config.api_key.partition(":")
        if not account_sid or not auth_token:
            return SMSResponse(success=False, error="Invalid Twilio API key format. Expected: AccountSID:AuthToken")
        to = phone if phone.startswith("+") else f"+{config.country_code or DEFAULT_COUNTRY_CODE}{phone}"
        response = requests.post(
            self.url.format(sid=account_sid),
            auth=(account_sid, auth_token),
            data={"From": config.sender_id or "", "To": to, "Body": message},
            timeout=self.timeout,
        )
        data = _payload(response)
        if response.ok and data.get("status") != "failed":
            return SMSResponse(success=True, message_id=data.get("sid"), data=data)
        error = data.get("message") or data.get("error_message") or f"HTTP {response.status_code}"
        return SMSResponse(success=False, error=error, data=data)


class TextLocalAdapter(SMSProviderAdapter):
    name = "textlocal"
    url = "https://api.textlocal.in/send/"

    def _send(self, phone, message, config):
        response = requests.post(
            self.url,
            data={
                "apikey": config.api_key,
                "numbers": phone,
                "message": message,
                "sender": config.sender_id or "TXTLCL",
            },
            timeout=self.timeout,
        )
        data = _payload(response)
        if response.ok and data.get("status") == "success":
            messages = data.get("messages") or [{}]
            return SMSResponse(success=True, message_id=messages[0].get("id") or messages[0].get("messageid"), data=data)
        errors = data.get("errors") or [{}]
        error = errors[0].get("message") or data.get("message") or f"HTTP {response.status_code}"
        return SMSResponse(success=False, error=error, data=data)


class Fast2SMSAdapter(SMSProviderAdapter):
    name = "fast2sms"
    url = "https://www.fast2sms.com/dev/bulkV2"

    def _send(self, phone, message, config):
        response = requests.post(
            self.url,
            headers={"authorization": config.api_key, "Content-Type": "application/json"},
            json={"route": "q", "message": message, "language": "english", "flash": 0, "numbers": phone},
            timeout=self.timeout,
        )
        data = _payload(response)
        if response.ok and data.get("return") is True:
            return SMSResponse(success=True, message_id=data.get("request_id"), data=data)
        message_text = data.get("message")
        if isinstance(message_text, list):
            message_text = "; ".join(str(item) for item in message_text)
        return SMSResponse(success=False, error=message_text or f"HTTP {response.status_code}", data=data)


class ConsoleAdapter(SMSProviderAdapter):
    """Logs the message instead of sending it."""

    name = "console"

    def _send(self, phone, message, config):
        logger.info("[SMS] to=%s chars=%s", phone, len(message))
        return SMSResponse(
            success=True,
            message_id=f"console_{int(time.time() * 1000)}",
            data={"phone": phone, "simulated": True},
        )


PROVIDERS = {
    "msg91": MSG91Adapter,
    "twilio": TwilioAdapter,
    "textlocal": TextLocalAdapter,
    "fast2sms": Fast2SMSAdapter,
    "console": ConsoleAdapter,
}


def load_sms_config(db: Session) -> Optional[SMSConfig]:
    rows = db.query(OrgSetting).filter(OrgSetting.key.in_(SMS_SETTING_KEYS)).all()
    values = {row.key: row.value for row in rows}
    provider = values.get("sms_provider") or DEFAULT_PROVIDER
    api_key = values.get("sms_api_key")
    if not api_key and provider != "console":
        return None
    return SMSConfig(
        provider=provider,
        api_key=api_key or "",
        sender_id=values.get("sms_sender_id") or None,
        country_code=values.get("sms_country_code") or DEFAULT_COUNTRY_CODE,
    )


def describe_sms_config(db: Session) -> SmsConfigRead:
    """What the settings screen shows; the API key itself is never returned."""
    rows = db.query(OrgSetting).filter(OrgSetting.key.in_(SMS_SETTING_KEYS)).all()
    values = {row.key: row.value for row in rows}
    return SmsConfigRead(
        provider=values.get("sms_provider") or DEFAULT_PROVIDER,
        configured=load_sms_config(db) is not None,
        sender_id=values.get("sms_sender_id") or None,
        country_code=values.get("sms_country_code") or DEFAULT_COUNTRY_CODE,
    )


def save_sms_config(db: Session, **values: Optional[str]) -> Optional[SMSConfig]:
    """Upsert the provided sms_* keys; None leaves a key untouched."""
    for short_key, value in values.items():
        if value is None:
            continue
        key = f"sms_{short_key}"
        if key not in SMS_SETTING_KEYS:
            raise ValueError(f"Unknown SMS setting: {short_key}")
        row = db.query(OrgSetting).filter(OrgSetting.key == key).first()
        if row is None:
            row = OrgSetting(key=key)
            db.add(row)
        row.value = value.strip() or None
    db.commit()
    return load_sms_config(db)


class SMSService:
    """Sends through whichever adapter the stored configuration selects.

    Holds only the configuration, so one instance can be shared by threads.
    """

    def __init__(self, config: Optional[SMSConfig], adapters: Optional[Dict[str, SMSProviderAdapter]] = None):
        self.config = config
        self.adapters = adapters or {name: adapter_cls() for name, adapter_cls in PROVIDERS.items()}

    @classmethod
    def from_db(cls, db: Session) -> "SMSService":
        return cls(load_sms_config(db))

    def send(self, phone: Optional[str], message: str) -> SMSResponse:
        if self.config is None:
            return SMSResponse(success=False, error="SMS not configured. Please set SMS_API_KEY in settings.")
        if not phone or len(phone.strip()) < 10:
            return SMSResponse(success=False, error="Invalid phone number")
        adapter = self.adapters.get(self.config.provider)
        if adapter is None:
            return SMSResponse(success=False, error=f"Unknown SMS provider: {self.config.provider}")
        response = adapter.send(phone, message, self.config)
        if not response.success:
            logger.warning("SMS via %s failed: %s", self.config.provider, response.error)
        return response

    def send_bulk(self, recipients: list[tuple[str, str]]) -> list[SMSResponse]:
        return [self.send(phone, message) for phone, message in recipients]

    def test_config(self, test_phone: str) -> tuple[bool, str]:
        if self.config is None:
            return False, "SMS not configured. Please set SMS_API_KEY in settings."
        result = self.send(test_phone, TEST_MESSAGE)
        if result.success:
            return True, "Test SMS sent successfully!"
        return False, f"Failed to send test SMS: {result.error}"
