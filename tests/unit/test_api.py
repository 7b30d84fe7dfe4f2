"""
Unit Tests - HTTP API
"""
import uuid

import pytest

from marketplace.database.models import ShopStatus, UserRole
from marketplace.principal import Principal


class TestHealth:
    """Tests for health endpoints"""

    async def test_liveness(self, api_client):
        """Test liveness always answers"""
        response = await api_client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_health_reports_cache_disabled(self, api_client):
        """Test the health report lists the cache as disabled without Redis"""
        response = await api_client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["checks"]["redis"] == {"status": "disabled"}

    async def test_security_headers(self, api_client):
        """Test responses carry the security headers"""
        response = await api_client.get("/api/v1/health/live")

        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAuthBoundary:
    """Tests for bearer token handling and error envelopes"""

    async def test_missing_token(self, api_client):
        """Test protected routes need a bearer token"""
        response = await api_client.get("/api/v1/me/cart")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    async def test_garbage_token(self, api_client):
        """Test unreadable tokens are rejected"""
        response = await api_client.get("/api/v1/me/cart", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    async def test_role_guard(self, api_client, auth_headers, factory):
        """Test a plain user cannot use admin routes"""
        user = await factory.buyer()

        response = await api_client.get("/api/v1/shops/admin/all", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN_ROLE"

    async def test_not_found_envelope(self, api_client):
        """Test service errors become the error envelope"""
        product_id = uuid.uuid4()

        response = await api_client.get(f"/api/v1/products/{product_id}")

        assert response.status_code == 404
        assert response.json() == {
            "error": {
                "code": "PRODUCT_NOT_FOUND",
                "message": "Product not found",
                "details": {"product_id": str(product_id)},
            }
        }


class TestMarketplaceFlow:
    """End to end: register, approve, list, buy"""

    async def test_register_approve_list_and_buy(self, api_client, auth_headers, factory):
        """Test a shop goes live and a buyer can order its product"""
        admin = await factory.admin()
        applicant = await factory.buyer(name="Vera")
        buyer = await factory.buyer(name="Ben")
        category = await factory.category("Audio")

        response = await api_client.post(
            "/api/v1/shops", json={"name": "Vera Audio"}, headers=auth_headers(applicant)
        )
        assert response.status_code == 201
        shop = response.json()
        assert (shop["status"], shop["is_active"]) == ("pending", False)

        response = await api_client.post(
            f"/api/v1/shops/{shop['id']}/approve",
            json={"commission_rate": 8},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["commission_rate"] == 8.0

        vendor = Principal(id=applicant.id, role=UserRole.VENDOR, name="Vera")
        response = await api_client.post(
            "/api/v1/products",
            json={"name": "Studio Headphones", "price": "80.00", "stock": 3, "category_id": str(category.id)},
            headers=auth_headers(vendor),
        )
        assert response.status_code == 201
        product = response.json()
        assert product["vendor_id"] == shop["id"]

        response = await api_client.post(
            "/api/v1/orders",
            json={"items": [{"product_id": product["id"], "quantity": 2}]},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 201
        order = response.json()
        assert order["status"] == "pending"
        assert order["total_price"] == 160.0
        assert order["items"][0]["vendor_id"] == shop["id"]

        response = await api_client.get(f"/api/v1/products/{product['id']}")
        assert response.json()["stock"] == 1

        response = await api_client.post(
            "/api/v1/orders",
            json={"items": [{"product_id": product["id"], "quantity": 2}]},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INSUFFICIENT_STOCK"

    async def test_unapproved_shop_cannot_list(self, api_client, auth_headers, factory):
        """Test products need an approved shop"""
        owner = await factory.user(role=UserRole.VENDOR)
        await factory.shop(owner=owner, status=ShopStatus.SUSPENDED)
        category = await factory.category()
        vendor = Principal(id=owner.id, role=UserRole.VENDOR)

        response = await api_client.post(
            "/api/v1/products",
            json={"name": "Ghost", "price": "5.00", "category_id": str(category.id)},
            headers=auth_headers(vendor),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "SHOP_NOT_APPROVED"


class TestEngagementRoutes:
    """Tests for cart and wishlist endpoints"""

    @pytest.fixture
    async def product_id(self, factory):
        vendor, _ = await factory.vendor()
        product = await factory.product(vendor, await factory.category())
        return str(product.id)

    async def test_cart_round(self, api_client, auth_headers, factory, product_id):
        """Test add, list and clear through the API"""
        headers = auth_headers(await factory.buyer())

        response = await api_client.post("/api/v1/me/cart", json={"product_id": product_id, "quantity": 2}, headers=headers)
        assert response.status_code == 201

        response = await api_client.get("/api/v1/me/cart", headers=headers)
        assert response.json() == [{"product_id": product_id, "quantity": 2}]

        response = await api_client.delete("/api/v1/me/cart", headers=headers)
        assert response.status_code == 204
        assert (await api_client.get("/api/v1/me/cart", headers=headers)).json() == []

    async def test_wishlist(self, api_client, auth_headers, factory, product_id):
        """Test wishlisting returns product cards"""
        headers = auth_headers(await factory.buyer())

        response = await api_client.post(f"/api/v1/me/wishlist/{product_id}", headers=headers)
        assert response.status_code == 204

        response = await api_client.get("/api/v1/me/wishlist", headers=headers)
        assert [card["id"] for card in response.json()] == [product_id]

    async def test_notifications_inbox(self, api_client, auth_headers, factory, product_id):
        """Test the inbox lists order notifications for the buyer"""
        buyer = await factory.buyer()
        headers = auth_headers(buyer)

        await api_client.post(
            "/api/v1/orders", json={"items": [{"product_id": product_id, "quantity": 1}]}, headers=headers
        )
        response = await api_client.get("/api/v1/notifications/unread-count", headers=headers)

        assert response.status_code == 200
        assert response.json()["unread_count"] == 1


class TestManagementRoutes:
    """Tests for product patching, admin tools and shop closure"""

    async def test_patch_null_required_field(self, api_client, auth_headers, factory):
        """Test clearing stock is a 400 with the field named"""
        vendor, _ = await factory.vendor()
        product = await factory.product(vendor, await factory.category(), stock=6)

        response = await api_client.patch(
            f"/api/v1/products/{product.id}", json={"stock": None}, headers=auth_headers(vendor)
        )

        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": "FIELD_REQUIRED",
            "message": "Required fields cannot be cleared",
            "details": {"fields": ["stock"]},
        }
        assert (await api_client.get(f"/api/v1/products/{product.id}")).json()["stock"] == 6

    async def test_admin_dashboard_and_bulk(self, api_client, auth_headers, factory):
        """Test admins read the dashboard and feature products in bulk"""
        vendor, _ = await factory.vendor()
        category = await factory.category()
        product_ids = [str((await factory.product(vendor, category)).id) for _ in range(2)]
        admin_headers = auth_headers(await factory.admin())

        response = await api_client.get("/api/v1/admin/dashboard", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["total_products"] == 2

        response = await api_client.post(
            "/api/v1/admin/products/bulk-update",
            json={"product_ids": product_ids, "is_featured": True},
            headers=admin_headers,
        )
        assert response.json() == {"count": 2}

        response = await api_client.get("/api/v1/admin/dashboard", headers=auth_headers(vendor))
        assert response.status_code == 403

    async def test_owner_closes_shop(self, api_client, auth_headers, factory):
        """Test DELETE /shops/me needs the shop name and reports removed products"""
        vendor, shop = await factory.vendor()
        await factory.product(vendor, await factory.category())
        headers = auth_headers(vendor)

        response = await api_client.request(
            "DELETE", "/api/v1/shops/me", json={"confirm_name": "wrong"}, headers=headers
        )
        assert response.status_code == 400

        response = await api_client.request(
            "DELETE", "/api/v1/shops/me", json={"confirm_name": shop.name}, headers=headers
        )
        assert response.status_code == 200
        assert response.json() == {"deleted_products": 1}
        assert (await api_client.get(f"/api/v1/shops/{shop.id}")).status_code == 404
