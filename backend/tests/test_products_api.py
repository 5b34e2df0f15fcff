"""
Product API tests.

Covers the public catalogue, owner-only writes, stock edits and the
delete guard for products with open orders.
"""

from decimal import Decimal

import pytest
from conftest import auth_headers_for

from farmmarket.extensions import db
from farmmarket.models import OrderItem, Product
from farmmarket.services import product_service


class TestCatalogue:
    def test_list_is_public(self, client, product):
        response = client.get("/api/products")

        assert response.status_code == 200
        body = response.get_json()
        assert body["pagination"]["total"] == 1
        item = body["data"][0]
        assert item["name"] == "Tomatoes"
        assert item["quantity"] == "10"
        assert item["price"] == "1000.00"
        assert item["farmer_name"] is not None

    def test_filters_and_sorting(self, client, farmer, make_product):
        make_product(farmer, name="Carrots", price="500")
        make_product(farmer, name="Chillies", price="2500")
        make_product(farmer, name="Cabbage", price="800", quantity="0", status="sold")

        response = client.get("/api/products?status=available&sort_by=price&ascending=true")
        assert [p["name"] for p in response.get_json()["data"]] == ["Carrots", "Chillies"]

        response = client.get("/api/products?search=chil")
        assert [p["name"] for p in response.get_json()["data"]] == ["Chillies"]

        response = client.get("/api/products?min_price=600&max_price=1000")
        assert [p["name"] for p in response.get_json()["data"]] == ["Cabbage"]

    @pytest.mark.parametrize("query", ["status=rotten", "sort_by=colour", "min_price=cheap", "limit=0", "farmer_id=x"])
    def test_bad_query(self, client, query):
        assert client.get(f"/api/products?{query}").status_code == 400

    def test_mine(self, client, farmer, farmer_headers, make_user, make_product):
        make_product(farmer, name="Mine")
        make_product(make_user("farmer"), name="Theirs")

        response = client.get("/api/products/mine", headers=farmer_headers)
        assert [p["name"] for p in response.get_json()["data"]] == ["Mine"]

    def test_get_missing(self, client):
        assert client.get("/api/products/9999").status_code == 404


class TestWrites:
    def test_create(self, client, farmer, farmer_headers):
        response = client.post(
            "/api/products",
            json={"name": "Shallots", "quantity": "12.5", "price": 4500, "harvest_date": "2026-10-01"},
            headers=farmer_headers,
        )

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["farmer_id"] == farmer.id
        assert data["status"] == "available"
        assert data["quantity"] == "12.5"
        assert data["unit"] == "kg"
        assert data["harvest_date"] == "2026-10-01"

    def test_create_without_stock_is_sold(self, client, farmer_headers):
        response = client.post(
            "/api/products",
            json={"name": "Garlic", "quantity": 0, "price": "100"},
            headers=farmer_headers,
        )
        assert response.get_json()["data"]["status"] == "sold"

    @pytest.mark.parametrize("payload", [
        {"name": "Garlic", "price": "100"},
        {"name": "Garlic", "quantity": 5, "price": "-1"},
        {"name": "Garlic", "quantity": 5, "price": "1.005"},
        {"name": "Garlic", "quantity": "-5", "price": "100"},
        {"name": "Garlic", "quantity": 0, "price": "100", "status": "available"},
        {"name": "Garlic", "quantity": 5, "price": "100", "farmer_id": 99},
        {"name": "Garlic", "quantity": 5, "price": "100", "image_url": "not-a-url"},
    ])
    def test_create_rejects(self, client, farmer_headers, payload):
        response = client.post("/api/products", json=payload, headers=farmer_headers)
        assert response.status_code == 400

    def test_retailer_cannot_create(self, client, retailer_headers):
        response = client.post(
            "/api/products",
            json={"name": "Garlic", "quantity": 5, "price": "100"},
            headers=retailer_headers,
        )
        assert response.status_code == 403

    def test_anonymous_cannot_create(self, client):
        response = client.post("/api/products", json={"name": "Garlic", "quantity": 5, "price": "100"})
        assert response.status_code == 401

    def test_update_by_owner(self, client, product, farmer_headers):
        response = client.put(f"/api/products/{product.id}", json={"price": "1200", "quantity": "4"}, headers=farmer_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["price"] == "1200.00"
        assert data["quantity"] == "4"

    def test_update_by_other_farmer(self, client, product, make_user):
        headers = auth_headers_for(make_user("farmer"))
        response = client.put(f"/api/products/{product.id}", json={"price": "1200"}, headers=headers)
        assert response.status_code == 403

    def test_admin_may_update(self, client, product, admin_headers):
        response = client.put(f"/api/products/{product.id}", json={"name": "Cherry tomatoes"}, headers=admin_headers)
        assert response.status_code == 200

    def test_rejected_stock_edit_saves_nothing(self, client, product, farmer_headers):
        product_id = product.id
        response = client.put(
            f"/api/products/{product_id}",
            json={"name": "Renamed Tomatoes", "price": "1500", "quantity": 0, "status": "available"},
            headers=farmer_headers,
        )

        assert response.status_code == 400
        db.session.expire_all()
        stored = db.session.get(Product, product_id)
        assert stored.name == "Tomatoes"
        assert stored.price == Decimal("1000.00")
        assert stored.quantity == Decimal("10")

    def test_stock_conflict_saves_nothing(self, client, product, farmer_headers, monkeypatch):
        product_id = product.id
        # A reservation got in between the read and the guarded write
        monkeypatch.setattr(product_service, "conditional_update", lambda query, values: 0)

        response = client.put(
            f"/api/products/{product_id}",
            json={"name": "Renamed Tomatoes", "quantity": "4"},
            headers=farmer_headers,
        )

        assert response.status_code == 409
        db.session.expire_all()
        assert db.session.get(Product, product_id).name == "Tomatoes"


class TestStock:
    def test_set_stock(self, client, product, farmer_headers):
        response = client.patch(f"/api/products/{product.id}/stock", json={"quantity": 0}, headers=farmer_headers)

        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "sold"

    def test_restock_reopens(self, client, farmer, farmer_headers, make_product):
        empty = make_product(farmer, quantity="0", status="sold")
        response = client.patch(f"/api/products/{empty.id}/stock", json={"quantity": "8"}, headers=farmer_headers)
        assert response.get_json()["data"]["status"] == "available"

    def test_explicit_status(self, client, product, farmer_headers):
        response = client.patch(f"/api/products/{product.id}/stock", json={"status": "sold"}, headers=farmer_headers)
        assert response.get_json()["data"]["status"] == "sold"

    def test_requires_a_field(self, client, product, farmer_headers):
        response = client.patch(f"/api/products/{product.id}/stock", json={}, headers=farmer_headers)
        assert response.status_code == 400


class TestDelete:
    def test_delete(self, client, product, farmer_headers):
        product_id = product.id
        response = client.delete(f"/api/products/{product_id}", headers=farmer_headers)

        assert response.status_code == 200
        assert response.get_json() == {"ok": True}
        db.session.expire_all()
        assert db.session.get(Product, product_id) is None

    def test_refused_with_open_order(self, client, product, retailer, make_order, farmer_headers):
        make_order(retailer, product)
        response = client.delete(f"/api/products/{product.id}", headers=farmer_headers)

        assert response.status_code == 409
        assert db.session.get(Product, product.id) is not None

    def test_closed_orders_keep_item_name(self, client, product, retailer, make_order, retailer_headers, farmer_headers):
        order = make_order(retailer, product)
        client.patch(f"/api/orders/{order.id}/status", json={"status": "cancelled"}, headers=retailer_headers)

        response = client.delete(f"/api/products/{product.id}", headers=farmer_headers)

        assert response.status_code == 200
        db.session.expire_all()
        item = db.session.query(OrderItem).filter_by(order_id=order.id).one()
        assert item.product_id is None
        assert item.product_name == "Tomatoes"
        assert item.unit_price == Decimal("1000.00")
