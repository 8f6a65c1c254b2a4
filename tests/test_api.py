from outlet_orders.models import Order

from .conftest import MALILI, point_km_south


def _order_payload(catalog, **extra):
    lat, lon = point_km_south(8)
    payload = {
        "outlet_id": catalog.outlet_id,
        "customer_id": catalog.customer_id,
        "items": [
            {"product_id": catalog.kopi_id, "quantity": 2, "unit_price": 1},
            {"product_id": catalog.nasi_id, "quantity": 1, "unit_price": 1},
        ],
        "delivery": {"latitude": lat, "longitude": lon, "address": "Jl. Poros Malili No. 8"},
    }
    payload.update(extra)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "service": "outlet-orders"}


def test_metrics_endpoint(client):
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_nearest_outlet(client, catalog):
    response = client.get("/v1/outlets/nearest", params={"lat": MALILI[0], "lon": MALILI[1]})
    assert response.status_code == 200
    body = response.json()
    assert body["outlet_id"] == catalog.outlet_id
    assert body["distance_km"] == 0.0
    assert body["can_deliver"] is True


def test_nearest_outlet_none_available(client):
    response = client.get(
        "/v1/outlets/nearest",
        params={"lat": 0, "lon": 0},
        headers={"X-Correlation-Id": "cid-123"},
    )
    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["code"] == "NO_OUTLET_AVAILABLE"
    assert detail["correlationId"] == "cid-123"


def test_available_outlets(client, catalog):
    lat, lon = point_km_south(8)
    response = client.get("/v1/outlets/available", params={"lat": lat, "lon": lon})
    outlets = response.json()["outlets"]
    assert [o["outlet_id"] for o in outlets] == [catalog.outlet_id, catalog.far_outlet_id]
    assert [o["can_deliver"] for o in outlets] == [True, False]


def test_order_payment_callback_end_to_end(client, catalog):
    response = client.post("/v1/orders", json=_order_payload(catalog, total=1))
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "pending"
    assert order["items_total"] == 55000
    assert order["delivery"]["distance_km"] == 8.0
    assert order["delivery_fee"] == 10000
    assert order["total"] == 65000
    assert [i["unit_price"] for i in order["items"]] == [15000, 25000]

    payment = client.post(f"/v1/orders/{order['order_id']}/payment")
    assert payment.status_code == 200
    transaction_id = payment.json()["transaction_id"]

    callback = {"TransactionId": transaction_id, "Status": "1", "Amount": "65000"}
    ack = client.post("/v1/payments/callback", json=callback)
    assert ack.status_code == 200
    assert ack.json() == {"success": True, "message": "marked_paid"}

    paid = client.get(f"/v1/orders/{order['order_id']}").json()
    assert paid["status"] == "paid"
    assert paid["referral_rewarded"] is True
    assert paid["payment_reference"] == transaction_id

    replay = client.post("/v1/payments/callback", json=callback)
    assert replay.json() == {"success": True, "message": "already_processed"}

    referrer = client.get("/v1/customers/by-phone/6281100000001").json()
    assert referrer["total_referrals"] == 1

    again = client.post(f"/v1/orders/{order['order_id']}/payment")
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "INVALID_STATE"


def test_form_encoded_callback(client, catalog):
    order = client.post("/v1/orders", json=_order_payload(catalog)).json()
    transaction_id = client.post(f"/v1/orders/{order['order_id']}/payment").json()["transaction_id"]

    ack = client.post(
        "/v1/payments/callback",
        content=f"trx_id={transaction_id}&status=gagal&status_code=-2",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert ack.json()["message"] == "marked_cancelled"
    assert client.get(f"/v1/orders/{order['order_id']}").json()["status"] == "cancelled"


def test_inactive_product_rejected(client, catalog):
    payload = _order_payload(catalog)
    payload["items"].append({"product_id": catalog.inactive_product_id, "quantity": 1})
    response = client.post("/v1/orders", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_PRODUCT"


def test_order_request_validation(client, catalog):
    payload = _order_payload(catalog)
    payload["items"] = []
    assert client.post("/v1/orders", json=payload).status_code == 422

    payload = _order_payload(catalog)
    payload["items"][0]["quantity"] = 0
    assert client.post("/v1/orders", json=payload).status_code == 422


def test_payment_for_unknown_order(client, catalog):
    response = client.post("/v1/orders/404/payment")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "ORDER_NOT_FOUND"


def test_second_payment_request_conflicts(client, catalog):
    order = client.post("/v1/orders", json=_order_payload(catalog)).json()
    assert client.post(f"/v1/orders/{order['order_id']}/payment").status_code == 200
    response = client.post(f"/v1/orders/{order['order_id']}/payment")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ALREADY_INITIATED"


def test_provider_failure_maps_to_bad_gateway(client, catalog, gateway):
    gateway.fail_with = "Invalid VA"
    order = client.post("/v1/orders", json=_order_payload(catalog)).json()
    response = client.post(f"/v1/orders/{order['order_id']}/payment")
    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "PROVIDER_ERROR"


def test_staff_status_updates(client, catalog):
    order = client.post("/v1/orders", json=_order_payload(catalog)).json()
    url = f"/v1/orders/{order['order_id']}/status"

    assert client.post(url, json={"status": "paid"}).status_code == 400
    assert client.post(url, json={"status": "processing"}).json()["status"] == "processing"
    completed = client.post(url, json={"status": "completed"}).json()
    assert completed["status"] == "completed"
    assert completed["referral_rewarded"] is True
    # terminal: accepted as a no-op
    assert client.post(url, json={"status": "processing"}).json()["status"] == "completed"


def test_callback_without_transaction_id(client):
    response = client.post("/v1/payments/callback", json={"Status": "1"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MISSING_TRANSACTION_ID"


def test_callback_for_unknown_transaction_is_acknowledged(client):
    response = client.post("/v1/payments/callback", json={"TransactionId": "X", "Status": "1"})
    assert response.json() == {"success": True, "message": "unknown_transaction"}


def test_callback_acknowledged_when_storage_fails(client, session_factory):
    Order.__table__.drop(session_factory.kw["bind"])
    response = client.post("/v1/payments/callback", json={"TransactionId": "TRX-1", "Status": "1"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "processing_error"}


def test_customer_registration_and_referrals(client, catalog):
    response = client.post(
        "/v1/customers",
        json={"name": "Hadi", "phone": "+62 813 0000 1111", "referral_code": "BUDI0001"},
    )
    assert response.status_code == 201
    hadi = response.json()
    assert hadi["phone"] == "6281300001111"
    assert hadi["referred_by"] == catalog.referrer_id

    duplicate = client.post("/v1/customers", json={"name": "Hadi", "phone": "6281300001111"})
    assert duplicate.status_code == 400

    assigned = client.post(
        f"/v1/customers/{catalog.loner_id}/referrer", json={"referral_code": hadi["referral_code"]}
    )
    assert assigned.json()["referred_by"] == hadi["customer_id"]

    assert client.get("/v1/customers/by-phone/6280000000000").status_code == 404
    assert client.get("/v1/referrals/top").json() == {"referrers": []}


def test_outlet_catalog_and_contact(client, catalog):
    products = client.get(f"/v1/outlets/{catalog.outlet_id}/products").json()
    assert products["outlet_id"] == catalog.outlet_id
    assert [(p["name"], p["price"]) for p in products["products"]] == [
        ("Kopi Hitam", 15000),
        ("Nasi Goreng", 25000),
    ]
    assert client.get("/v1/outlets/3/products").status_code == 404

    contact = client.get(f"/v1/outlets/{catalog.outlet_id}/contact").json()
    assert contact["phone_number"] == "6281200000099"
    missing = client.get(f"/v1/outlets/{catalog.far_outlet_id}/contact")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "CONTACT_NOT_FOUND"


def test_customer_saved_locations(client, catalog):
    url = f"/v1/customers/{catalog.customer_id}/locations"
    assert client.get(f"{url}/default").status_code == 404

    saved = client.post(
        url,
        json={"latitude": -2.60, "longitude": 120.37, "address": "Rumah", "is_default": True},
    )
    assert saved.status_code == 201
    assert saved.json()["is_default"] is True

    client.post(url, json={"latitude": -2.55, "longitude": 120.36, "label": "Kantor"})
    assert client.post(url, json={"latitude": 95, "longitude": 0}).status_code == 422

    locations = client.get(url).json()["locations"]
    assert [loc["is_default"] for loc in locations] == [True, False]
    assert client.get(f"{url}/default").json()["location_id"] == saved.json()["location_id"]


def test_payment_channels(client, gateway):
    body = client.get("/v1/payments/channels").json()
    assert body["methods"][0]["code"] == "va"
    assert body["methods"][0]["channels"][0]["fee"] == {"ActualFee": 4000}

    gateway.fail_with = "unauthorized"
    assert client.get("/v1/payments/channels").status_code == 502
