from bson import ObjectId

from auth import phone_token
from conftest import PHONE, make_product
from database import db

PROFILE = {"firstName": "Asha", "lastName": "Rao", "isdCode": "91", "phoneNumber": PHONE, "emailId": "asha@example.com"}


def bearer(phone=PHONE):
    return {"Authorization": f"Bearer {phone_token('91', phone)}"}


def test_profile_requires_verified_phone(client):
    assert client.post("/api/v1/profile/", json=PROFILE).status_code in (401, 403)

    res = client.post("/api/v1/profile/", json=PROFILE, headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401

    res = client.post("/api/v1/profile/", json=PROFILE, headers=bearer("9000000000"))
    assert res.status_code == 403
    assert db["profile"].count_documents({}) == 0


def test_create_and_fetch_profile(client):
    res = client.post("/api/v1/profile/", json=PROFILE, headers=bearer())
    assert res.status_code == 201
    profile_id = res.json()["data"]["_id"]

    dup = client.post("/api/v1/profile/", json=PROFILE, headers=bearer())
    assert dup.status_code == 400

    by_phone = client.get("/api/v1/profile/phone", params={"isdCode": "+91", "phoneNumber": PHONE}).json()["data"]
    assert by_phone["_id"] == profile_id
    assert client.get(f"/api/v1/profile/{profile_id}").json()["data"]["emailId"] == "asha@example.com"


def test_profile_rejects_bad_email(client):
    res = client.post("/api/v1/profile/", json={**PROFILE, "emailId": "not-an-email"}, headers=bearer())
    assert res.status_code == 400
    assert res.json()["error"].startswith("emailId")


def test_update_profile_keeps_phone(client):
    profile_id = client.post("/api/v1/profile/", json=PROFILE, headers=bearer()).json()["data"]["_id"]

    res = client.post(f"/api/v1/profile/update/{profile_id}", json={"firstName": "Ashwini", "phoneNumber": "1"})

    data = res.json()["data"]
    assert data["firstName"] == "Ashwini"
    assert data["phoneNumber"] == PHONE


def test_wishlist_add_is_deduplicated(client):
    product_id = make_product()

    client.post("/api/v1/wishlist/add", json={"phoneNumber": PHONE, "productId": product_id})
    res = client.post("/api/v1/wishlist/add", json={"phoneNumber": PHONE, "productId": product_id})

    assert res.json()["message"] == "Product already in wishlist"
    data = client.get(f"/api/v1/wishlist/{PHONE}").json()["data"]
    assert [p["_id"] for p in data["products"]] == [product_id]


def test_wishlist_add_unknown_product(client):
    res = client.post("/api/v1/wishlist/add", json={"phoneNumber": PHONE, "productId": str(ObjectId())})
    assert res.status_code == 404


def test_empty_wishlist_is_virtual(client):
    data = client.get(f"/api/v1/wishlist/{PHONE}").json()["data"]
    assert data == {"_id": None, "phoneNumber": PHONE, "products": []}


def test_wishlist_remove(client):
    first = make_product("Gloves")
    second = make_product("Helmet Lock")
    for product_id in (first, second):
        client.post("/api/v1/wishlist/add", json={"phoneNumber": PHONE, "productId": product_id})

    data = client.post("/api/v1/wishlist/remove", json={"phoneNumber": PHONE, "productId": first}).json()["data"]
    assert [p["name"] for p in data["products"]] == ["Helmet Lock"]

    res = client.post("/api/v1/wishlist/remove", json={"phoneNumber": PHONE, "productId": first})
    assert res.status_code == 404

    client.post("/api/v1/wishlist/remove", json={"phoneNumber": PHONE, "productId": second})
    assert db["wishlist"].count_documents({}) == 0


def test_country_lists(client):
    countries = client.get("/api/v1/country/isd-codes").json()["data"]
    assert {"name": "India", "code": "IN", "isdCode": "91", "currency": "INR", "flag": "🇮🇳"} in countries
    codes = [c["code"] for c in client.get("/api/v1/country/currencies").json()["data"]]
    assert codes[0] == "INR"


def test_health(client):
    data = client.get("/api/v1/health").json()
    assert data["success"] is True
    assert data["data"]["status"] == "OK"


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.json() == {"success": False, "error": "Not Found"}


def test_seed_loads_demo_catalog(client):
    assert client.post("/seed").json()["seeded"] is True
    assert db["bike_brand"].count_documents({}) == 2
    assert db["coupon"].count_documents({"code": "WELCOME10"}) == 1
    assert client.post("/seed").json()["seeded"] is False
