from datetime import timedelta

import coupons
from conftest import make_coupon
from database import db
from utils import now_utc


def test_percentage_discount_is_capped():
    coupon = {"type": "Percentage", "discount": 20, "maxDiscount": 500}
    assert coupons.calculate_discount(coupon, 3000) == 500
    assert coupons.calculate_discount(coupon, 1000) == 200


def test_flat_discount_is_exact():
    coupon = {"type": "Flat", "discount": 100}
    assert coupons.calculate_discount(coupon, 250) == 100
    assert coupons.calculate_discount(coupon, 99999) == 100


def test_discount_rounds_half_up():
    coupon = {"type": "Percentage", "discount": 5, "maxDiscount": None}
    assert coupons.calculate_discount(coupon, 1010) == 51


def test_minimum_cart_amount_boundary():
    coupon = {"type": "Flat", "discount": 100, "minCartAmount": 1000, "isActive": True}

    is_valid, reason = coupons.validate_eligibility(coupon, "9876543210", 999)
    assert is_valid is False
    assert reason == "Minimum cart amount of ₹1000 required"

    assert coupons.validate_eligibility(coupon, "9876543210", 1000) == (True, None)


def test_inactive_and_expired_coupons():
    inactive = {"type": "Flat", "discount": 100, "isActive": False}
    assert coupons.validate_eligibility(inactive, None, 5000) == (False, "Coupon is not active")

    expired = {"type": "Flat", "discount": 100, "expiresAt": now_utc() - timedelta(days=1)}
    assert coupons.validate_eligibility(expired, None, 5000) == (False, "Coupon has expired")


def test_usage_limits():
    coupon = {
        "type": "Flat",
        "discount": 100,
        "usageLimit": 2,
        "usedCount": 1,
        "usedBy": [{"phoneNumber": "1111111111", "usageCount": 2}],
    }
    assert coupons.validate_eligibility(coupon, "1111111111", 500)[1] == "Coupon usage limit exceeded for this user"
    assert coupons.validate_eligibility(coupon, "2222222222", 500) == (True, None)

    coupon["usedCount"] = 2
    assert coupons.validate_eligibility(coupon, "2222222222", 500)[1] == "Coupon has reached maximum usage"


def test_record_usage_stops_at_limit():
    coupon_id = make_coupon("ONCE", "Flat", 50, usageLimit=1)

    assert coupons.record_usage(coupon_id, "1111111111") is True
    assert coupons.record_usage(coupon_id, "2222222222") is False

    coupon = db["coupon"].find_one({"_id": coupon_id})
    assert coupon["usedCount"] == 1
    assert [u["phoneNumber"] for u in coupon["usedBy"]] == ["1111111111"]

    coupons.release_usage(coupon_id, None)
    assert db["coupon"].find_one({"_id": coupon_id})["usedCount"] == 0


def test_create_coupon(client):
    res = client.post("/api/v1/coupon/", json={"code": "monsoon", "type": "Flat", "discount": 150})
    assert res.status_code == 201
    assert res.json()["data"]["code"] == "MONSOON"
    assert res.json()["data"]["usedCount"] == 0

    dup = client.post("/api/v1/coupon/", json={"code": "MONSOON", "type": "Flat", "discount": 10})
    assert dup.status_code == 400
    assert dup.json()["error"] == "Coupon code already exists"


def test_create_coupon_rejects_bad_input(client):
    res = client.post("/api/v1/coupon/", json={"code": "HUGE", "type": "Percentage", "discount": 60})
    assert res.status_code == 400
    assert res.json()["error"] == "High percentage coupons should have a maxDiscount limit"

    res = client.post("/api/v1/coupon/", json={"code": "ODD", "type": "Bogus", "discount": 10})
    assert res.status_code == 400
    assert res.json()["error"].startswith("type")


def test_list_update_toggle_delete(client):
    coupon_id = str(make_coupon("SAVE20"))
    make_coupon("FLAT100", "Flat", 100, isActive=False)

    res = client.get("/api/v1/coupon/", params={"isActive": True})
    assert [c["code"] for c in res.json()["data"]] == ["SAVE20"]
    assert res.json()["pagination"]["total"] == 1

    res = client.post("/api/v1/coupon/update", json={"id": coupon_id, "discount": 25})
    assert res.json()["data"]["discount"] == 25

    res = client.post("/api/v1/coupon/toggle-status", json={"id": coupon_id})
    assert res.json()["data"]["isActive"] is False

    res = client.post("/api/v1/coupon/delete", json={"id": coupon_id})
    assert res.status_code == 200
    assert db["coupon"].count_documents({}) == 1


def test_used_coupon_cannot_be_deleted(client):
    coupon_id = str(make_coupon("USED", usedCount=3))
    res = client.post("/api/v1/coupon/delete", json={"id": coupon_id})
    assert res.status_code == 400


def test_validate_endpoint(client):
    make_coupon("SAVE20", "Percentage", 20, maxDiscount=500, minCartAmount=1000)

    data = client.post("/api/v1/coupon/validate", json={"couponCode": "save20", "cartAmount": 3000}).json()["data"]
    assert data["isValid"] is True
    assert data["discountAmount"] == 500
    assert data["coupon"]["code"] == "SAVE20"

    data = client.post("/api/v1/coupon/validate", json={"couponCode": "SAVE20", "cartAmount": 999}).json()["data"]
    assert data["isValid"] is False
    assert data["errors"] == ["Minimum cart amount of ₹1000 required"]

    res = client.post("/api/v1/coupon/validate", json={"couponCode": "NONE"})
    assert res.status_code == 404
