# Overview: Pytest coverage for the mobile payment gateway adapter (HTTP mocked with httpx.MockTransport).

import base64
import json
from datetime import datetime

import httpx
import pytest

from posledger.services.gateway_service import (
    MobilePaymentGateway,
    GatewayError,
    normalize_phone,
    build_password,
    provider_timestamp,
    amount_to_units,
    checkout_id_from_response,
)


TOKEN_PATH = "/oauth/v1/generate"
PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


class ProviderStub:
    """Scripted provider: records requests, answers per path."""

    def __init__(self, push_status=200, push_body=None, token_body=None, push_exc=None):
        self.requests = []
        self.push_status = push_status
        self.push_body = push_body if push_body is not None else {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
        }
        self.token_body = token_body if token_body is not None else {
            "access_token": "tok-123",
            "expires_in": "3599",
        }
        self.push_exc = push_exc

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            return httpx.Response(200, json=self.token_body)
        if request.url.path == PUSH_PATH:
            if self.push_exc is not None:
                raise self.push_exc(f"simulated {self.push_exc.__name__}", request=request)
            return httpx.Response(self.push_status, json=self.push_body)
        return httpx.Response(404)

    def paths(self):
        return [r.url.path for r in self.requests]


def make_gateway(stub: ProviderStub) -> MobilePaymentGateway:
    return MobilePaymentGateway(
        base_url="https://gateway.test/",
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://pos.test/callback",
        timeout=5,
        transport=httpx.MockTransport(stub),
    )


class TestHelpers:

    @pytest.mark.parametrize("raw,expected", [
        ("0712345678", "254712345678"),
        ("+254 712-345-678", "254712345678"),
        ("254712345678", "254712345678"),
        ("(0712) 345 678", "254712345678"),
    ])
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_normalize_phone_custom_country_code(self):
        assert normalize_phone("0201234567", country_code="255") == "255201234567"

    def test_build_password(self):
        expected = base64.b64encode(b"174379passkey20261018093000").decode("ascii")
        assert build_password("174379", "passkey", "20261018093000") == expected

    def test_provider_timestamp_format(self):
        assert provider_timestamp(now=datetime(2026, 10, 18, 9, 3, 7)) == "20261018090307"

    def test_provider_timestamp_default_is_fourteen_digits(self):
        stamp = provider_timestamp("Africa/Nairobi")
        assert len(stamp) == 14 and stamp.isdigit()

    @pytest.mark.parametrize("cents,units", [(5000, 50), (5001, 51), (5099, 51), (1, 1)])
    def test_amount_rounds_up_to_whole_units(self, cents, units):
        assert amount_to_units(cents) == units

    def test_checkout_id_from_response(self):
        assert checkout_id_from_response({"CheckoutRequestID": "ws_1"}) == "ws_1"
        assert checkout_id_from_response({}) is None
        assert checkout_id_from_response(None) is None


class TestInitiate:

    def test_sends_token_exchange_then_push(self, app):
        stub = ProviderStub()
        gateway = make_gateway(stub)

        response = gateway.initiate("0712345678", 5050, "TXN123", "Payment for purchase")

        assert response["CheckoutRequestID"] == "ws_CO_191220191020363925"
        assert stub.paths() == [TOKEN_PATH, PUSH_PATH]

        token_request, push_request = stub.requests
        assert token_request.url.params["grant_type"] == "client_credentials"
        expected_basic = base64.b64encode(b"key:secret").decode("ascii")
        assert token_request.headers["Authorization"] == f"Basic {expected_basic}"
        assert push_request.headers["Authorization"] == "Bearer tok-123"

    def test_push_body_shape(self, app):
        stub = ProviderStub()
        gateway = make_gateway(stub)

        gateway.initiate("+254 712 345 678", 5050, "TXN123")

        body = json.loads(stub.requests[1].content)
        assert body["BusinessShortCode"] == "174379"
        assert body["PartyB"] == "174379"
        assert body["TransactionType"] == "CustomerPayBillOnline"
        assert body["Amount"] == 51
        assert body["PartyA"] == "254712345678"
        assert body["PhoneNumber"] == "254712345678"
        assert body["AccountReference"] == "TXN123"
        assert body["CallBackURL"] == "https://pos.test/callback"
        assert body["TransactionDesc"]
        expected_password = build_password("174379", "passkey", body["Timestamp"])
        assert body["Password"] == expected_password

    def test_token_is_cached_for_its_lifetime(self, app):
        stub = ProviderStub()
        gateway = make_gateway(stub)

        gateway.initiate("0712345678", 100, "TXN1")
        gateway.initiate("0712345678", 100, "TXN2")

        assert stub.paths() == [TOKEN_PATH, PUSH_PATH, PUSH_PATH]

    def test_token_without_lifetime_is_not_cached(self, app):
        stub = ProviderStub(token_body={"access_token": "tok-once"})
        gateway = make_gateway(stub)

        gateway.initiate("0712345678", 100, "TXN1")
        gateway.initiate("0712345678", 100, "TXN2")

        assert stub.paths().count(TOKEN_PATH) == 2

    def test_provider_error_message_is_surfaced(self, app):
        stub = ProviderStub(
            push_status=400,
            push_body={"requestId": "1", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"},
        )
        gateway = make_gateway(stub)

        with pytest.raises(GatewayError) as exc_info:
            gateway.initiate("0712345678", 100, "TXN1")

        assert str(exc_info.value) == "Bad Request - Invalid PhoneNumber"
        assert exc_info.value.http_status == 502
        assert exc_info.value.details["provider_status"] == 400

    def test_generic_message_without_provider_error(self, app):
        stub = ProviderStub(push_status=500, push_body={})
        gateway = make_gateway(stub)

        with pytest.raises(GatewayError) as exc_info:
            gateway.initiate("0712345678", 100, "TXN1")

        assert str(exc_info.value) == "Failed to initiate mobile payment"

    def test_timeout_raises_gateway_error(self, app):
        stub = ProviderStub(push_exc=httpx.ReadTimeout)
        gateway = make_gateway(stub)

        with pytest.raises(GatewayError) as exc_info:
            gateway.initiate("0712345678", 100, "TXN1")

        assert "timed out" in str(exc_info.value)

    def test_transport_error_raises_gateway_error(self, app):
        stub = ProviderStub(push_exc=httpx.ConnectError)
        gateway = make_gateway(stub)

        with pytest.raises(GatewayError):
            gateway.initiate("0712345678", 100, "TXN1")

    def test_rejected_token_exchange(self, app):
        def handler(request):
            return httpx.Response(401, json={"errorMessage": "Invalid credentials"})

        gateway = MobilePaymentGateway(
            base_url="https://gateway.test",
            consumer_key="key",
            consumer_secret="wrong",
            shortcode="174379",
            passkey="passkey",
            callback_url="https://pos.test/callback",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(GatewayError) as exc_info:
            gateway.initiate("0712345678", 100, "TXN1")

        assert "access token" in str(exc_info.value)


def test_from_config_reads_app_settings(app):
    gateway = MobilePaymentGateway.from_config(app.config)

    assert gateway.shortcode == app.config["GATEWAY_SHORTCODE"]
    assert gateway.callback_url == app.config["GATEWAY_CALLBACK_URL"]
    assert gateway.country_code == "254"
