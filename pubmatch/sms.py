"""Twilio SMS gateway over its REST API."""

from __future__ import annotations

from typing import Optional, Protocol

import httpx

from .config import Settings
from .exceptions import DispatchFailure, GatewayNotConfigured


TWILIO_API = "https://api.twilio.com/2010-04-01"
REQUEST_TIMEOUT = 10.0


class SmsGateway(Protocol):
    def send(self, to: str, body: str) -> None:
        """Deliver one message or raise ``DispatchFailure``."""


def to_e164(phone: str, country_code: str = "1") -> str:
    if phone.startswith("+"):
        return phone
    return f"+{country_code}{phone}"


class TwilioGateway:
    def __init__(self, account_sid: str, auth_token: str, from_number: str, client: Optional[httpx.Client] = None):
        self.account_sid = account_sid
        self.from_number = from_number
        self._client = client or httpx.Client(auth=(account_sid, auth_token), timeout=REQUEST_TIMEOUT)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioGateway":
        if not settings.sms_configured:
            raise GatewayNotConfigured(
                "Twilio credentials not configured; set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER"
            )
        return cls(settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_from_number)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API}/Accounts/{self.account_sid}/Messages.json"

    def send(self, to: str, body: str) -> None:
        data = {"From": self.from_number, "To": to_e164(to), "Body": body}
        try:
            response = self._client.post(self.messages_url, data=data)
        except httpx.HTTPError as exc:
            raise DispatchFailure(f"{type(exc).__name__}: {exc}") from exc
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise DispatchFailure(f"HTTP {response.status_code}: {detail}")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "TwilioGateway":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
