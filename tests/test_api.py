"""Tests for the FastAPI API."""

import pytest

from conftest import FRACTIONAL_CARTS, checkout_body, fractional_cart_body, insert_user


@pytest.fixture
def placed_order(client, customer_headers):
    response = client.post("/checkout", json=checkout_body(), headers=customer_headers)
    assert response.status_code == 200
    return response.json()["order"]


class TestHealthCheck:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "running" in response.json()["message"]


class TestAuth:
    def test_register_then_me(self, client):
        response = client.post(
            "/auth/register",
            json={"name": "Ravi", "email": "Ravi@Example.com", "password": "s3cret-pass"},
        )
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        data = me.json()
        assert data["email"] == "ravi@example.com"
        assert "password_hash" not in data
        assert data["is_admin"] is False

    def test_register_duplicate_email(self, client, customer):
        response = client.post("/auth/register", json={"name": "A", "email": customer["email"], "password": "x"})
        assert response.status_code == 400

    def test_login(self, client, mongo_db):
        from main import hash_password

        insert_user(mongo_db, "Meera", "meera@example.com", password_hash=hash_password("open-sesame"))

        ok = client.post("/auth/login", json={"email": "meera@example.com", "password": "open-sesame"})
        assert ok.status_code == 200
        bad = client.post("/auth/login", json={"email": "meera@example.com", "password": "nope"})
        assert bad.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestCheckout:
    def test_success(self, client, customer_headers, notifier):
        response = client.post("/checkout", json=checkout_body(), headers=customer_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert set(data["order"]) == {"orderId", "_id", "totalAmount"}
        assert data["order"]["totalAmount"] == 1950
        assert data["order"]["orderId"].startswith("ORD-")
        assert len(notifier.confirmations) == 1

    def test_unauthenticated(self, client, mongo_db):
        response = client.post("/checkout", json=checkout_body())
        assert response.status_code == 401
        assert "error" in response.json()
        assert mongo_db["order"].count_documents({}) == 0

    def test_invalid_token_is_unauthenticated(self, client):
        response = client.post("/checkout", json=checkout_body(), headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401

    def test_empty_cart(self, client, customer_headers, mongo_db):
        response = client.post("/checkout", json=checkout_body(cartItems=[]), headers=customer_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Cart items are required"
        assert mongo_db["order"].count_documents({}) == 0

    def test_missing_shipping_field(self, client, customer_headers, mongo_db):
        body = checkout_body()
        del body["shippingDetails"]["zipCode"]
        response = client.post("/checkout", json=body, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required shipping field: zipCode"
        assert response.json()["error_type"] == "MissingShippingField"
        assert mongo_db["order"].count_documents({}) == 0

    @pytest.mark.parametrize("amounts", FRACTIONAL_CARTS)
    def test_fractional_discount_totals(self, client, customer_headers, amounts):
        body = checkout_body(**fractional_cart_body(*amounts))
        response = client.post("/checkout", json=body, headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["order"]["totalAmount"] == body["totalPrice"]

    def test_invalid_total(self, client, customer_headers):
        response = client.post("/checkout", json=checkout_body(totalPrice=0), headers=customer_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid total price"

    def test_deleted_user(self, client, customer, customer_headers, mongo_db):
        mongo_db["user"].delete_one({"_id": customer["_id"]})
        response = client.post("/checkout", json=checkout_body(), headers=customer_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "User not found"


class TestCustomerOrders:
    def test_list_own_orders(self, client, customer_headers, placed_order):
        response = client.get("/orders", headers=customer_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [o["orderId"] for o in data["orders"]] == [placed_order["orderId"]]

    def test_get_own_order(self, client, customer_headers, placed_order):
        response = client.get(f"/orders/{placed_order['orderId']}", headers=customer_headers)
        assert response.status_code == 200
        order = response.json()
        assert order["_id"] == placed_order["_id"]
        assert order["customer"]["zipCode"] == "411001"
        assert order["items"][0]["finalPrice"] == 900
        assert order["pricing"]["totalAmount"] == 1950
        assert order["timeline"][0]["status"] == "Order Placed"

    def test_cannot_read_someone_elses_order(self, client, mongo_db, placed_order):
        from main import token_for

        other = insert_user(mongo_db, "Ravi", "ravi@example.com")
        headers = {"Authorization": f"Bearer {token_for(other)}"}
        response = client.get(f"/orders/{placed_order['orderId']}", headers=headers)
        assert response.status_code == 404


class TestAdminOrders:
    def test_requires_admin(self, client, customer_headers):
        assert client.get("/admin/orders", headers=customer_headers).status_code == 403
        assert client.get("/admin/orders").status_code == 401

    def test_list(self, client, admin_headers, placed_order):
        response = client.get("/admin/orders", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 1
        assert data["orders"][0]["orderId"] == placed_order["orderId"]
        assert data["orders"][0]["paymentStatus"] == "pending"

    def test_single(self, client, admin_headers, placed_order):
        response = client.get(f"/admin/orders/{placed_order['orderId']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["orderId"] == placed_order["orderId"]

    def test_single_not_found(self, client, admin_headers):
        response = client.get("/admin/orders/ORD-20260101-0000000000", headers=admin_headers)
        assert response.status_code == 404

    def test_statuses(self, client, admin_headers, monkeypatch):
        monkeypatch.setenv("ORDER_STATUSES", "pending,processing,shipped,delivered,cancelled")
        response = client.get("/admin/orders/statuses", headers=admin_headers)
        assert response.json()["statuses"] == ["pending", "processing", "shipped", "delivered", "cancelled"]


class TestUpdateStatus:
    def test_delivered_cod(self, client, admin_headers, placed_order, notifier):
        response = client.patch(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "delivered", "description": "Left at door"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "delivered"
        assert data["paymentStatus"] == "paid"
        assert data["paymentStatusChanged"] is True
        assert data["version"] == 1
        assert "updatedAt" in data
        assert notifier.status_updates[-1][2:] == ("delivered", "Left at door")

    def test_put_is_accepted(self, client, admin_headers, placed_order):
        response = client.put(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "processing"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["paymentStatus"] == "pending"

    def test_invalid_status(self, client, admin_headers, placed_order):
        response = client.patch(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "lost"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

        order = client.get(f"/admin/orders/{placed_order['orderId']}", headers=admin_headers).json()
        assert len(order["timeline"]) == 1

    def test_unknown_order(self, client, admin_headers):
        response = client.patch(
            "/admin/orders/update-status",
            json={"orderId": "ORD-20260101-0000000000", "status": "shipped"},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "OrderNotFound"

    def test_stale_version(self, client, admin_headers, placed_order):
        first = client.patch(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "processing", "expectedVersion": 0},
            headers=admin_headers,
        )
        assert first.status_code == 200

        stale = client.patch(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "cancelled", "expectedVersion": 0},
            headers=admin_headers,
        )
        assert stale.status_code == 409
        assert stale.json()["error_type"] == "StaleOrder"

    def test_customer_cannot_update(self, client, customer_headers, placed_order):
        response = client.patch(
            "/admin/orders/update-status",
            json={"orderId": placed_order["orderId"], "status": "delivered"},
            headers=customer_headers,
        )
        assert response.status_code == 403


class TestSeed:
    def test_seed_data_is_idempotent(self):
        import mongomock
        from main import ADMIN_EMAIL, seed_data

        db = mongomock.MongoClient()["seed_test"]
        assert seed_data(db) is True
        assert seed_data(db) is False
        admin = db["user"].find_one({"email": ADMIN_EMAIL.lower()})
        assert admin["is_admin"] is True
        assert db["user"].count_documents({}) == 1

    def test_seed_endpoint_requires_admin(self, client, customer_headers, admin_headers):
        assert client.post("/admin/seed", headers=customer_headers).status_code == 403
        assert client.post("/admin/seed", headers=admin_headers).json() == {"seeded": False}
