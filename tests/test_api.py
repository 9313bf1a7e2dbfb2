# tests/test_api.py
from datetime import timedelta

from conftest import NOW


def create(client, cycle_id, pickup_in=timedelta(days=1), **extra):
    body = {
        "user_id": 7,
        "cycle_id": cycle_id,
        "duration_tier": "one_day",
        "pickup_at": (NOW + pickup_in).isoformat(),
        **extra,
    }
    return client.post("/v1/bookings", json=body)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_quote_without_catalog(client):
    r = client.post("/v1/quotes", json={
        "duration_tier": "one_day",
        "price_per_day": 499,
        "deposit_day": 2000,
        "accessories": [{"accessory_id": 1, "price_per_day": 200, "days": 1}],
    })
    assert r.status_code == 200
    data = r.json()
    assert data["tier"] == "one_day"
    assert data["gst_amount"] == 126
    assert data["total_amount"] == 2825
    assert len(data["lines"]) == 1


def test_quote_for_catalog_cycle(client, cycle):
    r = client.post("/v1/quotes", json={"duration_tier": "one_week", "cycle_id": cycle.id})
    assert r.status_code == 200
    assert r.json()["cycle_rental_cost"] == 1999


def test_quote_needs_rates(client):
    r = client.post("/v1/quotes", json={"duration_tier": "one_day"})
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"


def test_coupon_preview(client, coupon):
    r = client.post("/v1/coupons/validate", json={"code": "ride10", "subtotal": 500})
    assert r.status_code == 200
    assert r.json()["discount_amount"] == 50

    r = client.post("/v1/coupons/validate", json={"code": "ride10", "subtotal": 400})
    assert r.status_code == 400
    assert r.json()["error"] == "minimum_order_not_met"


def test_full_rental_lifecycle(client, cycle, helmet, clock, publisher):
    r = create(client, cycle.id, accessories=[{"accessory_id": helmet.id, "days": 1}])
    assert r.status_code == 201
    booking = r.json()
    bid = booking["id"]
    assert booking["total_amount"] == 2825
    assert booking["booking_status"] == "confirmed"
    assert len(booking["accessories"]) == 1

    assert client.get(f"/v1/bookings/{bid}").json()["booking_code"] == booking["booking_code"]

    r = client.post(f"/v1/bookings/{bid}/transitions", json={"event": "payment_captured"})
    assert r.json()["payment_status"] == "completed"
    r = client.post(f"/v1/bookings/{bid}/transitions", json={"event": "activate"})
    assert r.json()["booking_status"] == "active"

    # due back 48h after NOW, returned 2h30m late
    clock.set(NOW + timedelta(days=2, hours=2, minutes=30))
    r = client.post(f"/v1/bookings/{bid}/return", json={"condition": "good", "evidence_refs": ["front.jpg"]})
    assert r.status_code == 200
    assert r.json()["late_fee"] == 150
    assert r.json()["booking_status"] == "active"

    r = client.post(f"/v1/bookings/{bid}/deposit-return")
    assert r.json()["deposit_refund_amount"] == 1850
    assert r.json()["booking_status"] == "completed"

    assert publisher.types() == ["BookingConfirmed", "BookingActivated", "CycleReturned", "BookingCompleted"]


def test_cancellation_workflow(client, cycle):
    bid = create(client, cycle.id, pickup_in=timedelta(days=3)).json()["id"]

    quote = client.get(f"/v1/bookings/{bid}/cancellation").json()
    assert quote["eligible"] is True
    assert quote["cancellation_fee"] == 100

    r = client.post(f"/v1/bookings/{bid}/cancellation", json={"reason": "rain"})
    assert r.json()["cancellation_status"] == "requested"

    r = client.post(f"/v1/bookings/{bid}/cancellation/reject", json={})
    assert r.status_code == 422

    r = client.post(f"/v1/bookings/{bid}/cancellation/reject", json={"reason": "non refundable"})
    assert r.json()["cancellation_status"] == "rejected"

    r = client.post(f"/v1/bookings/{bid}/cancellation/reopen")
    assert r.json()["cancellation_status"] == "none"

    client.post(f"/v1/bookings/{bid}/cancellation", json={})
    r = client.post(f"/v1/bookings/{bid}/cancellation/approve")
    assert r.json()["booking_status"] == "cancelled"
    assert r.json()["cancellation_fee"] == 100


def test_same_day_cancellation_refused(client, cycle):
    bid = create(client, cycle.id, pickup_in=timedelta(hours=6)).json()["id"]
    r = client.post(f"/v1/bookings/{bid}/cancellation", json={})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "cancellation_not_allowed"
    assert body["detail"]["hours_until_pickup"] == 6.0


def test_accessory_edit(client, cycle, helmet):
    bid = create(client, cycle.id, pickup_in=timedelta(days=2)).json()["id"]
    r = client.put(f"/v1/bookings/{bid}/accessories", json={"accessories": [{"accessory_id": helmet.id}]})
    assert r.status_code == 200
    assert r.json()["price_delta"] == 236
    assert len(r.json()["accessories"]) == 1


def test_return_date_edit(client, cycle):
    bid = create(client, cycle.id).json()["id"]
    r = client.put(f"/v1/bookings/{bid}/return-date", json={"return_at": (NOW + timedelta(days=4)).isoformat()})
    assert r.status_code == 200


def test_not_found(client):
    r = client.get("/v1/bookings/999")
    assert r.status_code == 404
    assert r.json() == {"error": "not_found", "message": "booking 999 not found", "detail": {"booking_id": 999}}


def test_out_of_stock(client, cycle):
    assert create(client, cycle.id).status_code == 201
    assert create(client, cycle.id).status_code == 201
    r = create(client, cycle.id)
    assert r.status_code == 409
    assert r.json()["error"] == "out_of_stock"
    assert r.json()["detail"]["available"] == 0


def test_activate_before_payment(client, cycle):
    bid = create(client, cycle.id).json()["id"]
    r = client.post(f"/v1/bookings/{bid}/transitions", json={"event": "activate"})
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_transition"
    assert r.json()["detail"]["payment_status"] == "pending"


def test_return_without_photos(client, cycle):
    bid = create(client, cycle.id).json()["id"]
    client.post(f"/v1/bookings/{bid}/transitions", json={"event": "payment_captured"})
    client.post(f"/v1/bookings/{bid}/transitions", json={"event": "activate"})
    r = client.post(f"/v1/bookings/{bid}/return", json={"condition": "good"})
    assert r.status_code == 422
    assert r.json()["error"] == "evidence_required"


def test_deposit_before_return(client, cycle):
    bid = create(client, cycle.id).json()["id"]
    r = client.post(f"/v1/bookings/{bid}/deposit-return")
    assert r.status_code == 409
    assert r.json()["error"] == "return_not_recorded"


def test_maintenance(client, cycle):
    r = client.post("/v1/maintenance", json={"cycle_id": cycle.id, "description": "brakes"})
    assert r.status_code == 201
    record = r.json()
    assert record["status"] == "pending"

    r = client.post(f"/v1/maintenance/{record['id']}/complete", json={"cost": 250})
    assert r.json()["status"] == "completed"
    assert r.json()["cost"] == 250
