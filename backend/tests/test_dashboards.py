"""
Dashboard, statistics and public profile tests.

Verifies:
- The farmer dashboard only shows the caller's listings and the orders on them
- Farmer stats count per status; revenue leaves cancelled orders out
- Admin dashboard and user stats totals
- Public profiles hide contact details until the account is verified
"""

from datetime import timedelta

import pytest

from farmmarket.extensions import db
from farmmarket.services import order_service, transaction_service
from farmmarket.time_utils import utcnow


@pytest.fixture
def paid_order(retailer, product, make_order):
    order = make_order(retailer, product, quantity=3)
    txn = transaction_service.get_or_create(order.id, order.total_amount, "midtrans")
    transaction_service.mark_paid(txn.id, "gw-1")
    return order


# =============================================================================
# FARMER
# =============================================================================


class TestFarmerDashboard:
    def test_own_listings_orders_and_payments(self, client, farmer, retailer, paid_order, make_user, make_product, make_order, farmer_headers):
        other = make_user("farmer")
        make_order(retailer, make_product(other, name="Theirs"), quantity=1)

        response = client.get("/api/farmer/dashboard", headers=farmer_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["farmer"]["id"] == farmer.id
        assert [p["name"] for p in data["products"]] == ["Tomatoes"]
        assert [o["id"] for o in data["orders"]] == [paid_order.id]
        assert data["orders"][0]["status"] == "confirmed"
        assert data["orders"][0]["retailer"]["business_name"] == retailer.business_name
        assert data["orders"][0]["retailer"]["phone"] == retailer.phone
        assert len(data["transactions"]) == 1
        assert data["transactions"][0]["amount"] == "3000.00"
        assert data["transactions"][0]["payment_status"] == "paid"

    def test_empty(self, client, farmer_headers):
        data = client.get("/api/farmer/dashboard", headers=farmer_headers).get_json()["data"]
        assert data["products"] == []
        assert data["orders"] == []
        assert data["transactions"] == []


class TestFarmerStats:
    def test_counts_and_revenue(self, client, farmer, retailer, product, paid_order, make_user, make_product, make_order, farmer_headers):
        make_product(farmer, name="Cabbage", quantity="0", status="sold")
        cancelled = make_order(retailer, product, quantity=2)
        order_service.update_status(cancelled.id, "cancelled", retailer.id, "retailer")
        # Someone else's sale does not count
        make_order(retailer, make_product(make_user("farmer")), quantity=1)

        response = client.get("/api/farmer/stats", headers=farmer_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["products"] == {"total": 2, "available": 1, "ordered": 0, "sold": 1}
        assert data["orders"]["total"] == 2
        assert data["orders"]["confirmed"] == 1
        assert data["orders"]["cancelled"] == 1
        assert data["orders"]["pending"] == 0
        assert data["orders"]["total_revenue"] == "3000.00"
        assert data["transactions"]["total"] == 1
        assert data["transactions"]["paid"] == 1
        assert data["transactions"]["total_commission"] == "150.00"

    def test_no_activity(self, client, farmer_headers):
        data = client.get("/api/farmer/stats", headers=farmer_headers).get_json()["data"]
        assert data["products"]["total"] == 0
        assert data["orders"]["total_revenue"] == "0.00"
        assert data["transactions"] == {"total": 0, "pending": 0, "paid": 0, "failed": 0, "total_commission": "0.00"}


# =============================================================================
# ADMIN
# =============================================================================


class TestAdminDashboard:
    def test_totals(self, client, admin_headers, paid_order, make_user):
        make_user("retailer", is_active=False)

        response = client.get("/api/admin/dashboard", headers=admin_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["users"] == {"farmer": 1, "retailer": 1, "admin": 1, "total": 3}
        assert data["products"]["total"] == 1
        assert data["products"]["available"] == 1
        assert data["orders"]["total"] == 1
        assert data["orders"]["confirmed"] == 1
        assert data["transactions"]["paid_transactions"] == 1
        assert data["revenue"] == {"gross": "3000.00", "commission": "150.00"}


class TestUserStats:
    def test_breakdown(self, client, admin, farmer, retailer, admin_headers, make_user):
        make_user("retailer", is_verified=False, is_active=False)
        veteran = make_user("farmer")
        veteran.created_at = utcnow() - timedelta(days=10)
        db.session.commit()

        response = client.get("/api/admin/users/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["total"] == 5
        assert data["by_role"] == {"farmer": 2, "retailer": 2, "admin": 1}
        assert data["by_status"] == {"verified": 4, "unverified": 1, "active": 4, "inactive": 1}
        assert data["recent"] == {"last_7_days": 4, "last_30_days": 5}

    def test_stats_path_is_not_a_user_id(self, client, admin_headers):
        response = client.get("/api/admin/users/stats", headers=admin_headers)
        assert "by_role" in response.get_json()["data"]


# =============================================================================
# PUBLIC PROFILES
# =============================================================================


class TestPublicProfile:
    def test_verified_shows_contact(self, client, farmer, retailer_headers):
        response = client.get(f"/api/users/{farmer.id}", headers=retailer_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["full_name"] == farmer.full_name
        assert data["role"] == "farmer"
        assert data["phone"] == farmer.phone
        assert "email" not in data

    def test_unverified_hides_contact(self, client, make_user, retailer_headers):
        user = make_user("farmer", is_verified=False, phone="+6281200000099", address="Jl. Sawah 3, Garut")

        data = client.get(f"/api/users/{user.id}", headers=retailer_headers).get_json()["data"]

        assert data["is_verified"] is False
        assert data["phone"] is None
        assert data["address"] is None

    def test_deactivated_is_not_found(self, client, make_user, farmer_headers):
        user = make_user("retailer", is_active=False)
        assert client.get(f"/api/users/{user.id}", headers=farmer_headers).status_code == 404

    def test_missing(self, client, farmer_headers):
        assert client.get("/api/users/9999", headers=farmer_headers).status_code == 404
