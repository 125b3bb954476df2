# Overview: Stateless client for the mobile-payment push API (credential exchange + payment prompt).

"""
Mobile Payment Gateway Adapter

Contract: initiate(phone, amount_cents, reference, description) -> provider response dict.

FLOW:
1. Exchange consumer key/secret (HTTP basic auth) for a short-lived bearer
   token. Tokens are cached per consumer key until shortly before expiry.
2. Build the provider password: base64(shortcode + passkey + timestamp),
   timestamp as YYYYMMDDHHMMSS in the provider's timezone.
3. POST the push request with a bounded timeout.

ERRORS:
- Any timeout, transport failure or non-2xx response raises GatewayError,
  carrying the provider's errorMessage when one was returned.
- No retries here. The caller decides what a failure means for its
  transaction.
"""

from __future__ import annotations

import base64
import math
import threading
import time
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
from flask import current_app

from ..validation import TransactionError, digits_only


DEFAULT_DESCRIPTION = "Payment for goods"
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class GatewayError(TransactionError):
    """Payment adapter failure or timeout."""
    code = "gateway_error"
    http_status = 502

    def __init__(self, message: str, details: dict | None = None, transaction_id: int | None = None):
        super().__init__(message, details)
        self.transaction_id = transaction_id


def normalize_phone(phone: str, country_code: str = "254") -> str:
    """
    Canonical international format expected by the provider.

    - non-digits are stripped ('+254 712-345678' -> '254712345678')
    - local format with a leading zero gets the country code ('0712...' -> '254712...')
    - numbers already carrying the country code pass through
    """
    digits = digits_only(phone)
    if digits.startswith("0"):
        return country_code + digits[1:]
    return digits


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    data = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(data.encode("utf-8")).decode("ascii")


def provider_timestamp(tz_name: str = "Africa/Nairobi", now: datetime | None = None) -> str:
    moment = now or datetime.now(ZoneInfo(tz_name))
    return moment.strftime("%Y%m%d%H%M%S")


def amount_to_units(amount_cents: int) -> int:
    """Provider accepts whole currency units; fractions are rounded up."""
    return math.ceil(amount_cents / 100)


class _TokenCache:
    """Thread-safe bearer token cache keyed by consumer key."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._tokens.get(key)
            if entry and entry[1] > time.monotonic():
                return entry[0]
            self._tokens.pop(key, None)
            return None

    def put(self, key: str, token: str, expires_in: int) -> None:
        ttl = max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        with self._lock:
            self._tokens[key] = (token, time.monotonic() + ttl)


class MobilePaymentGateway:
    """
    Client for the payment push API.

    transport is passed through to httpx.Client (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout: float = 30.0,
        country_code: str = "254",
        timezone_name: str = "Africa/Nairobi",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self.shortcode = shortcode
        self._passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout
        self.country_code = country_code
        self.timezone_name = timezone_name
        self._transport = transport
        self._tokens = _TokenCache()

    @classmethod
    def from_config(cls, config) -> "MobilePaymentGateway":
        return cls(
            base_url=config["GATEWAY_BASE_URL"],
            consumer_key=config["GATEWAY_CONSUMER_KEY"],
            consumer_secret=config["GATEWAY_CONSUMER_SECRET"],
            shortcode=config["GATEWAY_SHORTCODE"],
            passkey=config["GATEWAY_PASSKEY"],
            callback_url=config["GATEWAY_CALLBACK_URL"],
            timeout=config["GATEWAY_TIMEOUT_SECONDS"],
            country_code=config["GATEWAY_COUNTRY_CODE"],
            timezone_name=config["GATEWAY_TIMEZONE"],
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def get_access_token(self) -> str:
        cached = self._tokens.get(self._consumer_key)
        if cached:
            return cached

        url = f"{self._base_url}/oauth/v1/generate"
        try:
            with self._client() as client:
                response = client.get(
                    url,
                    params={"grant_type": "client_credentials"},
                    auth=(self._consumer_key, self._consumer_secret),
                )
        except httpx.TimeoutException:
            current_app.logger.warning("Gateway token request timed out")
            raise GatewayError("Payment gateway timed out while authenticating")
        except httpx.RequestError as exc:
            current_app.logger.warning("Gateway token request failed: %s", exc)
            raise GatewayError("Failed to get payment gateway access token")

        if not response.is_success:
            current_app.logger.warning("Gateway token request rejected with HTTP %s", response.status_code)
            raise GatewayError("Failed to get payment gateway access token")

        try:
            body = response.json()
            token = body["access_token"]
        except (ValueError, KeyError):
            raise GatewayError("Payment gateway returned an invalid token response")

        try:
            expires_in = int(body.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0
        if expires_in > 0:
            self._tokens.put(self._consumer_key, token, expires_in)

        return token

    # -------------------------------------------------------------------------
    # Payment prompt
    # -------------------------------------------------------------------------

    def build_push_request(
        self,
        phone: str,
        amount_cents: int,
        reference: str,
        description: str | None,
        timestamp: str,
    ) -> dict:
        formatted_phone = normalize_phone(phone, self.country_code)
        return {
            "BusinessShortCode": self.shortcode,
            "Password": build_password(self.shortcode, self._passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount_to_units(amount_cents),
            "PartyA": formatted_phone,
            "PartyB": self.shortcode,
            "PhoneNumber": formatted_phone,
            "CallBackURL": self.callback_url,
            "AccountReference": reference,
            "TransactionDesc": description or DEFAULT_DESCRIPTION,
        }

    def initiate(self, phone: str, amount_cents: int, reference: str, description: str | None = None) -> dict:
        """Send a payment prompt to the customer's phone. Returns the provider acknowledgment."""
        token = self.get_access_token()
        timestamp = provider_timestamp(self.timezone_name)
        body = self.build_push_request(phone, amount_cents, reference, description, timestamp)

        current_app.logger.info(
            "Sending payment prompt reference=%s amount=%s", reference, body["Amount"]
        )

        url = f"{self._base_url}/mpesa/stkpush/v1/processrequest"
        try:
            with self._client() as client:
                response = client.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException:
            current_app.logger.warning("Payment prompt timed out reference=%s", reference)
            raise GatewayError("Payment gateway request timed out")
        except httpx.RequestError as exc:
            current_app.logger.warning("Payment prompt failed reference=%s: %s", reference, exc)
            raise GatewayError("Failed to initiate mobile payment")

        if not response.is_success:
            message = _provider_error_message(response) or "Failed to initiate mobile payment"
            current_app.logger.warning(
                "Payment prompt rejected reference=%s status=%s", reference, response.status_code
            )
            raise GatewayError(message, details={"provider_status": response.status_code})

        try:
            return response.json()
        except ValueError:
            raise GatewayError("Payment gateway returned an invalid response")


def _provider_error_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("errorMessage")
    return None


def checkout_id_from_response(response: dict | None) -> str | None:
    """Provider's request id for a payment prompt, if the acknowledgment carries one."""
    if not isinstance(response, dict):
        return None
    return response.get("CheckoutRequestID")


def init_gateway(app) -> None:
    app.extensions["payment_gateway"] = MobilePaymentGateway.from_config(app.config)


def get_gateway():
    return current_app.extensions["payment_gateway"]
