"""
HTTP API tests against a seeded in-memory store
"""

import pytest
from fastapi.testclient import TestClient

from winzo.errors import StorageFailure
from winzo.main import create_app
from winzo.repositories import Database


@pytest.fixture
def client(store):
    app = create_app(Database(store))
    with TestClient(app) as client:
        yield client


def login(client, email, password):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin(client):
    return login(client, "admin@winzo.com", "admin123")


@pytest.fixture
def user(client):
    return login(client, "user@winzo.com", "user123")


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "WinZO Auction API running"}

    def test_storage_check(self, client):
        body = client.get("/test").json()
        assert body["storage"] == "✅ Connected & Working"
        assert body["initialized"] is True


class TestAuth:
    def test_register_and_me(self, client):
        response = client.post(
            "/auth/register",
            json={"name": "Sam", "email": "sam@example.com", "password": "secret123"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["coins"] == 1000

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.json()["email"] == "sam@example.com"
        assert me.json()["initialCoins"] == 1000
        assert "password" not in me.json()

    def test_register_duplicate(self, client):
        response = client.post(
            "/auth/register",
            json={"name": "Admin", "email": "admin@winzo.com", "password": "secret123"},
        )
        assert response.status_code == 409

    def test_register_validation(self, client):
        bad_email = {"name": "Sam", "email": "not-an-email", "password": "secret123"}
        short_password = {"name": "Sam", "email": "sam@example.com", "password": "123"}
        assert client.post("/auth/register", json=bad_email).status_code == 422
        assert client.post("/auth/register", json=short_password).status_code == 400

    def test_bad_login(self, client):
        response = client.post("/auth/login", json={"email": "admin@winzo.com", "password": "nope"})
        assert response.status_code == 401

    def test_quick_login_account(self, client):
        login(client, "1", "1")

    def test_bad_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_missing_token(self, client):
        assert client.get("/auth/me").status_code in (401, 403)

    def test_admin_routes_need_admin(self, client, user):
        assert client.get("/admin/users", headers=user).status_code == 403


class TestCatalogue:
    def test_products_have_status(self, client):
        products = client.get("/products").json()
        assert len(products) == 10
        statuses = {p["id"]: p["status"] for p in products}
        assert statuses[9] == "ended"
        assert statuses[3] == "ending_soon"
        assert "endTime" in products[0]

    def test_unknown_product(self, client):
        assert client.get("/products/999").status_code == 404

    def test_admin_adds_product(self, client, admin):
        response = client.post(
            "/admin/products",
            json={"name": "Kindle", "endTime": "2030-01-01T00:00:00Z", "lowestBid": 5},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["id"] == 11
        assert client.get("/products/11").json()["status"] == "live"

    def test_coin_package_admin(self, client, admin):
        created = client.post(
            "/admin/coin-packages",
            json={"name": "Mega", "coins": 5000, "price": 300, "isActive": False},
            headers=admin,
        ).json()
        assert created["id"] == 4
        assert [p["name"] for p in client.get("/coin-packages").json()] == [
            "Starter Pack", "Popular Pack", "Premium Pack",
        ]
        assert len(client.get("/admin/coin-packages", headers=admin).json()) == 4

        updated = client.put("/admin/coin-packages/4", json={"isActive": True}, headers=admin)
        assert updated.json()["isActive"] is True
        assert updated.json()["coins"] == 5000

        assert client.delete("/admin/coin-packages/4", headers=admin).status_code == 200
        assert client.delete("/admin/coin-packages/4", headers=admin).status_code == 404

    def test_null_fields_leave_package_unchanged(self, client, admin):
        response = client.put(
            "/admin/coin-packages/1", json={"name": None, "price": None, "coins": 150}, headers=admin
        )
        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Starter Pack"
        assert body["price"] == 10
        assert body["coins"] == 150

    def test_payment_settings(self, client, admin):
        assert client.get("/payment-methods").json()[0]["type"] == "vodafone_cash"
        response = client.put(
            "/admin/settings/vodafone-numbers", json={"numbers": ["01000000001"]}, headers=admin
        )
        assert response.json() == {"numbers": ["01000000001"]}
        assert client.get("/settings/vodafone-numbers").json() == {"numbers": ["01000000001"]}
        assert client.get("/payment-methods").json()[0]["accountNumbers"] == ["01000000001"]


class TestPurchaseFlow:
    def test_purchase_proof_and_approval(self, client, admin, user):
        txn = client.post("/transactions", json={"packageId": 2}, headers=user).json()
        assert txn["status"] == "pending"
        assert txn["coins"] == 550

        proof = client.post(
            f"/transactions/{txn['id']}/payment-proof",
            json={"senderNumber": "01000000000", "reference": "VC42"},
            headers=user,
        )
        assert proof.json()["vodafoneNumber"] == "01000000000"

        pending = client.get("/admin/transactions/pending", headers=admin).json()
        assert [t["id"] for t in pending] == [txn["id"]]

        verified = client.patch(
            f"/admin/transactions/{txn['id']}/verify",
            json={"approved": True, "notes": "  paid  "},
            headers=admin,
        ).json()
        assert verified["status"] == "completed"
        assert verified["adminNotes"] == "paid"
        assert verified["verifiedBy"] == 1
        assert client.get("/auth/me", headers=user).json()["coins"] == 6050

        again = client.patch(
            f"/admin/transactions/{txn['id']}/verify", json={"approved": True}, headers=admin
        )
        assert again.status_code == 409
        assert client.get("/auth/me", headers=user).json()["coins"] == 6050

    def test_rejection(self, client, admin, user):
        txn = client.post("/transactions", json={"packageId": 1}, headers=user).json()
        verified = client.patch(
            f"/admin/transactions/{txn['id']}/verify", json={"approved": False}, headers=admin
        ).json()
        assert verified["status"] == "failed"
        assert client.get("/auth/me", headers=user).json()["coins"] == 5500
        failed = client.get("/admin/transactions?status=failed", headers=admin).json()
        assert [t["id"] for t in failed] == [txn["id"]]

    def test_proof_on_someone_elses_transaction(self, client, user):
        other = login(client, "1", "1")
        txn = client.post("/transactions", json={"packageId": 1}, headers=other).json()
        response = client.post(
            f"/transactions/{txn['id']}/payment-proof",
            json={"senderNumber": "01000000000", "reference": "VC42"},
            headers=user,
        )
        assert response.status_code == 404

    def test_unknown_package(self, client, user):
        assert client.post("/transactions", json={"packageId": 99}, headers=user).status_code == 404


class TestBids:
    def test_place_bid(self, client, user):
        response = client.post("/auctions/1/bids", json={"amount": 12}, headers=user)
        assert response.status_code == 200
        receipt = response.json()
        assert receipt["balance"] == 5470
        assert receipt["displayedLowestBid"] == 12
        assert receipt["transaction"]["paymentMethod"] == "bid_placement"

        history = client.get("/auctions/1/bids", headers=user).json()
        assert len(history) == 1
        assert client.get("/transactions/me", headers=user).json()[0]["amount"] == -30

    def test_rejected_bids(self, client, user):
        assert client.post("/auctions/9/bids", json={"amount": 12}, headers=user).status_code == 400
        assert client.post("/auctions/1/bids", json={"amount": "abc"}, headers=user).status_code == 400
        assert client.post("/auctions/1/bids", json={"amount": -4}, headers=user).status_code == 400
        assert client.post("/auctions/77/bids", json={"amount": 4}, headers=user).status_code == 404
        assert client.get("/auth/me", headers=user).json()["coins"] == 5500


class TestAdmin:
    def test_grant_and_audit(self, client, admin, user):
        granted = client.post("/admin/users/2/grant", json={"coins": 200}, headers=admin)
        assert granted.json()["coins"] == 5700
        client.post("/auctions/1/bids", json={"amount": 3}, headers=user)

        audit = client.get("/admin/users/2/audit", headers=admin).json()
        assert audit["grantedCoins"] == 200
        assert audit["bidDebits"] == 30
        assert audit["discrepancy"] == 0

    def test_zero_grant(self, client, admin):
        assert client.post("/admin/users/2/grant", json={"coins": 0}, headers=admin).status_code == 400

    def test_stats(self, client, admin):
        stats = client.get("/admin/stats", headers=admin).json()
        assert stats["users"] == 3
        assert stats["products"] == 10
        assert stats["liveAuctions"] == 8

    def test_reset(self, client, admin, user):
        client.post("/auctions/1/bids", json={"amount": 3}, headers=user)
        assert client.post("/admin/reset", headers=admin).json() == {"reset": True}
        assert client.get("/admin/transactions", headers=admin).json() == []

    def test_storage_failure(self, client, store, monkeypatch):
        async def broken_multi_get(keys):
            raise StorageFailure("read", list(keys))

        monkeypatch.setattr(store, "multi_get", broken_multi_get)
        response = client.get("/products")
        assert response.status_code == 503
