"""Endpoint tests for /listings (catalog, availability, host create, admin approval)."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from travel_bookings.deps import get_current_user

from .factories import (
    HOST_ID,
    LISTING_ID,
    listing_create_payload,
    listing_model,
    listing_response,
    make_customer,
)

CRUD_PATH = "travel_bookings.routers.listings.listing_crud"
BOOKING_CRUD_PATH = "travel_bookings.routers.listings.booking_crud"


class TestCatalog:
    def test_list_forwards_filters(self, customer_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_listings = AsyncMock(return_value=[listing_response()])
            resp = customer_client.get(
                "/listings", params={"listing_type": "hotel", "location": "Naivasha"}
            )
        assert resp.status_code == 200
        assert resp.json()[0]["id"] == str(LISTING_ID)
        _, kwargs = mock_crud.list_listings.call_args
        assert kwargs["filters"].listing_type == "hotel"
        assert kwargs["filters"].location == "Naivasha"

    def test_catalog_needs_no_identity(self, anon_app):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_listing = AsyncMock(return_value=listing_model())
            with TestClient(anon_app) as c:
                resp = c.get(f"/listings/{LISTING_ID}")
        assert resp.status_code == 200

    def test_hidden_listing_returns_404(self, customer_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_listing = AsyncMock(return_value=listing_model(is_hidden=True))
            resp = customer_client.get(f"/listings/{LISTING_ID}")
        assert resp.status_code == 404

    def test_pending_listing_returns_404(self, customer_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_listing = AsyncMock(
                return_value=listing_model(approval_status="pending")
            )
            resp = customer_client.get(f"/listings/{LISTING_ID}")
        assert resp.status_code == 404


class TestAvailability:
    def test_computed_and_cached_on_miss(self, customer_client, availability_cache):
        with (
            patch(CRUD_PATH) as mock_crud,
            patch(BOOKING_CRUD_PATH) as mock_bookings,
        ):
            mock_crud.get_listing = AsyncMock(return_value=listing_model())
            mock_bookings.booked_slots_by_date = AsyncMock(
                return_value={date(2026, 6, 11): 9, date(2026, 6, 10): 4}
            )
            resp = customer_client.get(f"/listings/{LISTING_ID}/availability")
        assert resp.status_code == 200
        body = resp.json()
        assert body["capacity"] == 10
        assert body["booked_slots"] == {"2026-06-10": 4, "2026-06-11": 9}
        availability_cache["set"].assert_awaited_once_with(
            LISTING_ID, {"2026-06-10": 4, "2026-06-11": 9}
        )

    def test_served_from_cache_on_hit(self, customer_client, availability_cache):
        availability_cache["get"].return_value = {"2026-06-10": 2}
        with (
            patch(CRUD_PATH) as mock_crud,
            patch(BOOKING_CRUD_PATH) as mock_bookings,
        ):
            mock_crud.get_listing = AsyncMock(return_value=listing_model())
            mock_bookings.booked_slots_by_date = AsyncMock()
            resp = customer_client.get(f"/listings/{LISTING_ID}/availability")
        assert resp.json()["booked_slots"] == {"2026-06-10": 2}
        mock_bookings.booked_slots_by_date.assert_not_awaited()
        availability_cache["set"].assert_not_awaited()

    def test_unlimited_capacity_is_null(self, customer_client):
        with (
            patch(CRUD_PATH) as mock_crud,
            patch(BOOKING_CRUD_PATH) as mock_bookings,
        ):
            mock_crud.get_listing = AsyncMock(return_value=listing_model(capacity=None))
            mock_bookings.booked_slots_by_date = AsyncMock(return_value={})
            resp = customer_client.get(f"/listings/{LISTING_ID}/availability")
        assert resp.json()["capacity"] is None


class TestCreateListing:
    def test_host_creates_listing(self, host_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.create_listing = AsyncMock(
                return_value=listing_response(approval_status="pending")
            )
            resp = host_client.post("/listings", json=listing_create_payload())
        assert resp.status_code == 201
        assert resp.json()["approval_status"] == "pending"
        args, _ = mock_crud.create_listing.call_args
        assert args[0] == HOST_ID
        assert args[1].days_opened == ["Monday", "Tuesday"]

    def test_unknown_weekday_returns_422(self, host_client):
        resp = host_client.post(
            "/listings", json=listing_create_payload(days_opened=["Funday"])
        )
        assert resp.status_code == 422

    def test_event_without_date_returns_422(self, host_client):
        resp = host_client.post(
            "/listings", json=listing_create_payload(listing_type="event")
        )
        assert resp.status_code == 422

    def test_customer_cannot_create(self, anon_app):
        async def _customer():
            return make_customer()

        anon_app.dependency_overrides[get_current_user] = _customer
        with TestClient(anon_app) as c:
            resp = c.post("/listings", json=listing_create_payload())
        assert resp.status_code == 403


class TestApproval:
    def test_admin_approves(self, admin_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.set_approval = AsyncMock(return_value=listing_response())
            resp = admin_client.patch(
                f"/listings/{LISTING_ID}/approval", json={"approval_status": "approved"}
            )
        assert resp.status_code == 200
        mock_crud.set_approval.assert_awaited_once_with(LISTING_ID, "approved")

    def test_not_found(self, admin_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.set_approval = AsyncMock(return_value=None)
            resp = admin_client.patch(
                f"/listings/{LISTING_ID}/approval", json={"approval_status": "rejected"}
            )
        assert resp.status_code == 404
