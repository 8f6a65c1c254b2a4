import hashlib
import hmac
import json

import httpx
import pytest

from outlet_orders.errors import ProviderError
from outlet_orders.payment_gateway import PaymentGateway, sign_body


def _gateway(settings, handler):
    return PaymentGateway(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_create_payment_sends_signed_request(settings):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(
            200,
            json={
                "Status": 200,
                "Success": True,
                "Message": "success",
                "Data": {"TransactionId": 4521, "Url": "https://sandbox.ipaymu.test/pay/4521"},
            },
        )

    handle = _gateway(settings, handler).create_payment(7, 65000, "6281100000002", "Ani")

    assert handle.transaction_id == "4521"
    assert handle.payment_url == "https://sandbox.ipaymu.test/pay/4521"

    request = seen["request"]
    assert str(request.url) == "https://sandbox.ipaymu.test/api/v2/payment/direct"
    assert request.headers["va"] == settings.ipaymu_va
    body = request.content.decode()
    assert request.headers["signature"] == sign_body(settings.ipaymu_va, settings.ipaymu_api_key, body)
    assert len(request.headers["timestamp"]) == 14

    payload = json.loads(body)
    assert payload["amount"] == 65000
    assert payload["phone"] == "6281100000002"
    assert payload["referenceId"] == "7"
    assert payload["notifyUrl"] == "https://orders.example.com/v1/payments/callback"
    assert payload["expired"] == 15


def test_sign_body_matches_hmac_of_string_to_sign():
    body = '{"amount":1000}'
    body_hash = hashlib.sha256(body.encode()).hexdigest()
    expected = hmac.new(
        b"secret", f"POST:va-1:{body_hash}:secret".encode(), hashlib.sha256
    ).hexdigest()
    assert sign_body("va-1", "secret", body) == expected


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"Status": 401, "Success": False, "Message": "unauthorized"}),
        httpx.Response(500, json={"Success": True, "Data": {"TransactionId": 1}}),
        httpx.Response(200, json={"Status": 200, "Success": True, "Data": {}}),
        httpx.Response(502, text="Bad Gateway"),
    ],
)
def test_provider_failures_raise_provider_error(settings, response):
    with pytest.raises(ProviderError):
        _gateway(settings, lambda request: response).create_payment(1, 1000, "6281100000001")


def test_provider_timeout_raises_provider_error(settings):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProviderError):
        _gateway(settings, handler).create_payment(1, 1000, "6281100000001")


def test_provider_error_message_is_surfaced(settings):
    def handler(request):
        return httpx.Response(200, json={"Success": False, "Message": "Invalid VA"})

    with pytest.raises(ProviderError) as excinfo:
        _gateway(settings, handler).create_payment(1, 1000, "6281100000001")
    assert "Invalid VA" in excinfo.value.message


def test_list_channels_groups_channels_by_method(settings):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(
            200,
            json={
                "Status": 200,
                "Success": True,
                "Data": [
                    {
                        "Code": "va",
                        "Name": "Virtual Account",
                        "Description": "Bank transfer",
                        "Channels": [
                            {
                                "Code": "bca",
                                "Name": "BCA",
                                "Logo": "https://cdn.ipaymu.test/bca.png",
                                "TransactionFee": {"ActualFee": 4000},
                            },
                            {"Code": "bni", "Name": "BNI"},
                        ],
                    },
                    {"Code": "qris", "Name": "QRIS"},
                ],
            },
        )

    methods = _gateway(settings, handler).list_channels()

    request = seen["request"]
    assert request.method == "GET"
    assert str(request.url) == "https://sandbox.ipaymu.test/api/v2/payment-channels"
    assert request.headers["authorization"] == f"Bearer {settings.ipaymu_api_key}"
    assert request.headers["va"] == settings.ipaymu_va

    assert [m.code for m in methods] == ["va", "qris"]
    assert [c.code for c in methods[0].channels] == ["bca", "bni"]
    assert methods[0].channels[0].fee == {"ActualFee": 4000}
    assert methods[0].channels[1].logo == ""
    assert methods[1].channels == ()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"Success": False, "Message": "unauthorized"}),
        httpx.Response(503, json={"Message": "maintenance"}),
        httpx.Response(200, text="<html></html>"),
    ],
)
def test_list_channels_failures_raise_provider_error(settings, response):
    with pytest.raises(ProviderError):
        _gateway(settings, lambda request: response).list_channels()
