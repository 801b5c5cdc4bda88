import asyncio
import base64
import json
from decimal import Decimal

import httpx
import pytest

from duka.main import app
from duka.services.mpesa import (
    CallbackResult, MpesaClient, MpesaError, get_mpesa_client, normalize_phone, parse_callback, stk_password,
)
from duka.services.payment_notifier import CANCELLED, CONFIRMED, TIMEOUT, PaymentNotifier

from conftest import receive, dec


def callback_payload(checkout_request_id="ws_CO_1", code=0, desc="The service request is processed successfully.",
                     amount=278):
    callback = {
        "MerchantRequestID": "m-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": code,
        "ResultDesc": desc,
    }
    if code == 0:
        callback["CallbackMetadata"] = {"Item": [
            {"Name": "Amount", "Value": amount},
            {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
            {"Name": "TransactionDate", "Value": 20191219102115},
            {"Name": "PhoneNumber", "Value": 254708374149},
        ]}
    return {"Body": {"stkCallback": callback}}


# ===== 纯函数 =====

@pytest.mark.parametrize("raw", ["0708374149", "+254708374149", "254708374149", "708374149", "0708 374 149"])
def test_normalize_phone(raw):
    assert normalize_phone(raw) == "254708374149"


@pytest.mark.parametrize("raw", ["", "12345", "0808"])
def test_normalize_phone_rejects_garbage(raw):
    with pytest.raises(MpesaError):
        normalize_phone(raw)


def test_password():
    password = stk_password("174379", "passkey", "20240101120000")
    assert base64.b64decode(password).decode() == "174379passkey20240101120000"


def test_parse_success_callback():
    result = parse_callback(callback_payload())
    assert result.success
    assert result.receipt == "NLJ7RT61SV"
    assert result.amount == Decimal("278")
    assert result.phone == "254708374149"


def test_parse_failed_callback():
    result = parse_callback(callback_payload(code=1032, desc="Request cancelled by user"))
    assert not result.success
    assert result.receipt is None


def test_parse_garbage_callback():
    with pytest.raises(MpesaError):
        parse_callback({"Body": {}})


# ===== 通知 =====

def _result(code=0):
    return CallbackResult(checkout_request_id="abc", merchant_request_id="m", result_code=code, result_desc="")


def test_notifier_delivers_result():
    async def scenario():
        notifier = PaymentNotifier()
        future = notifier.subscribe("abc")
        asyncio.get_running_loop().call_later(0.01, notifier.publish, _result())
        outcome = await notifier.wait("abc", 1, future=future)
        return outcome, notifier.waiting("abc")

    outcome, left = asyncio.run(scenario())
    assert outcome.status == CONFIRMED
    assert outcome.result.success
    assert left == 0


def test_notifier_timeout_and_cancel():
    async def scenario():
        notifier = PaymentNotifier()
        timed_out = await notifier.wait("abc", 0.01)
        future = notifier.subscribe("abc")
        asyncio.get_running_loop().call_later(0.01, notifier.cancel, "abc")
        cancelled = await notifier.wait("abc", 1, future=future)
        return timed_out, cancelled

    timed_out, cancelled = asyncio.run(scenario())
    assert timed_out.status == TIMEOUT
    assert cancelled.status == CANCELLED


# ===== 客户端 =====

class FakeDaraja:
    def __init__(self, push_code="0", query=None):
        self.push_code = push_code
        self.query = query or {"ResponseCode": "0", "ResultCode": "1032", "ResultDesc": "Request cancelled by user"}
        self.pushes = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "token-1", "expires_in": "3599"})
        assert request.headers["Authorization"] == "Bearer token-1"
        if path == "/mpesa/stkpush/v1/processrequest":
            self.pushes.append(json.loads(request.content))
            return httpx.Response(200, json={
                "MerchantRequestID": "m-1",
                "CheckoutRequestID": "ws_CO_1",
                "ResponseCode": self.push_code,
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            })
        if path == "/mpesa/stkpushquery/v1/query":
            return httpx.Response(200, json=self.query)
        return httpx.Response(404, json={"errorMessage": "not found"})


def make_client(daraja):
    return MpesaClient(
        consumer_key="key", consumer_secret="secret", passkey="passkey", shortcode="174379",
        callback_url="https://example.com/api/payments/mpesa/callback",
        base_url="https://daraja.test", transport=httpx.MockTransport(daraja),
    )


def test_stk_push_request():
    daraja = FakeDaraja()
    push = asyncio.run(make_client(daraja).stk_push("0708374149", Decimal("277.50"), "SL20250101-001"))
    assert push.checkout_request_id == "ws_CO_1"
    body = daraja.pushes[0]
    assert body["Amount"] == 278
    assert body["PhoneNumber"] == "254708374149"
    assert body["PartyB"] == "174379"
    assert len(body["AccountReference"]) <= 12


def test_stk_push_rejected():
    with pytest.raises(MpesaError):
        asyncio.run(make_client(FakeDaraja(push_code="1")).stk_push("0708374149", Decimal("10"), "X"))


# ===== 收银流程 =====

@pytest.fixture
def daraja(client):
    fake = FakeDaraja()
    app.dependency_overrides[get_mpesa_client] = lambda: make_client(fake)
    return fake


@pytest.fixture
def batch(client, headers, warehouse, product):
    return receive(client, headers, product["id"], warehouse["location"]["id"], 10,
                   position_id=warehouse["positions"]["A1"]).json()


def mpesa_sale(client, headers, product_id, quantity=3):
    return client.post("/api/pos/checkout", json={
        "items": [{"product_id": product_id, "quantity": quantity}],
        "payment_method": "MPESA",
        "phone_number": "0708374149",
    }, headers=headers)


def stock_of(client, headers, batch_id):
    return client.get(f"/api/batches/{batch_id}", headers=headers).json()["current_quantity"]


def test_mpesa_checkout_and_success_callback(client, cashier_headers, daraja, batch, product):
    resp = mpesa_sale(client, cashier_headers, product["id"])
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["state"] == "processing"
    assert body["checkout_request_id"] == "ws_CO_1"
    assert stock_of(client, cashier_headers, batch["id"]) == 7

    ack = client.post("/api/payments/mpesa/callback", json=callback_payload())
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "success"
    assert sale["mpesa_receipt"] == "NLJ7RT61SV"
    assert stock_of(client, cashier_headers, batch["id"]) == 7

    # 重复回调不改变结果
    client.post("/api/payments/mpesa/callback", json=callback_payload(code=1, desc="late failure"))
    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "success"


def test_underpaid_callback_fails_sale(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    assert dec(body["sale"]["total"]) == Decimal("277.50")
    client.post("/api/payments/mpesa/callback", json=callback_payload(amount=1))

    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "failed"
    assert "金额不符" in sale["failure_reason"]
    assert dec(sale["amount_paid"]) == Decimal("277.50")
    assert sale["mpesa_receipt"] == "NLJ7RT61SV"
    assert sale["refund_due"] is True
    assert stock_of(client, cashier_headers, batch["id"]) == 10


def test_rounded_up_amount_settles_sale(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    assert daraja.pushes[0]["Amount"] == 278
    client.post("/api/payments/mpesa/callback", json=callback_payload(amount=278))

    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "success"
    assert dec(sale["amount_paid"]) == Decimal("278")
    assert sale["refund_due"] is False


def test_failed_callback_restores_stock(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    client.post("/api/payments/mpesa/callback", json=callback_payload(code=1032, desc="Request cancelled by user"))

    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "failed"
    assert sale["failure_reason"] == "Request cancelled by user"
    assert stock_of(client, cashier_headers, batch["id"]) == 10


def test_cancel_checkout(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    resp = client.post(f"/api/pos/checkout/{body['sale']['id']}/cancel", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.json()["state"] == "failed"
    assert stock_of(client, cashier_headers, batch["id"]) == 10

    again = client.post(f"/api/pos/checkout/{body['sale']['id']}/cancel", headers=cashier_headers)
    assert again.status_code == 409


def test_payment_after_cancel_is_flagged_for_refund(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    client.post(f"/api/pos/checkout/{body['sale']['id']}/cancel", headers=cashier_headers)

    ack = client.post("/api/payments/mpesa/callback", json=callback_payload())
    assert ack.json()["ResultCode"] == 0

    sale = client.get(f"/api/sales/{body['sale']['id']}", headers=cashier_headers).json()
    assert sale["status"] == "failed"
    assert sale["mpesa_receipt"] == "NLJ7RT61SV"
    assert sale["refund_due"] is True
    # 取消时已冲回的库存不再扣减
    assert stock_of(client, cashier_headers, batch["id"]) == 10

    flagged = client.get("/api/sales/", params={"refund_due": True}, headers=cashier_headers).json()
    assert [s["id"] for s in flagged["data"]] == [body["sale"]["id"]]

    logs = client.get("/api/audit-logs/", params={"resource_type": "sale"}, headers=cashier_headers).json()
    assert any("待退款" in (log["description"] or "") for log in logs["data"])


def test_wait_timeout_queries_gateway(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    resp = client.get(f"/api/pos/checkout/{body['sale']['id']}/wait", params={"timeout": 0},
                      headers=cashier_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["state"] == "failed"
    assert stock_of(client, cashier_headers, batch["id"]) == 10


def test_wait_returns_immediately_when_settled(client, cashier_headers, daraja, batch, product):
    body = mpesa_sale(client, cashier_headers, product["id"]).json()
    client.post("/api/payments/mpesa/callback", json=callback_payload())
    resp = client.get(f"/api/pos/checkout/{body['sale']['id']}/wait", params={"timeout": 5},
                      headers=cashier_headers)
    assert resp.json()["state"] == "success"


def test_push_failure_marks_sale_failed(client, cashier_headers, batch, product):
    app.dependency_overrides[get_mpesa_client] = lambda: make_client(FakeDaraja(push_code="1"))
    resp = mpesa_sale(client, cashier_headers, product["id"])
    assert resp.status_code == 502
    sales = client.get("/api/sales/", params={"status": "failed"}, headers=cashier_headers).json()
    assert sales["total"] == 1
    assert stock_of(client, cashier_headers, batch["id"]) == 10


def test_unknown_callback_is_acknowledged(client):
    ack = client.post("/api/payments/mpesa/callback", json=callback_payload(checkout_request_id="nope"))
    assert ack.status_code == 200
    assert ack.json()["ResultCode"] == 0
