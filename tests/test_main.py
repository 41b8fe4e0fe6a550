"""Smoke tests for the application factory."""

from fastapi.testclient import TestClient

from travel_bookings.main import create_app
from travel_bookings.scopes import BOOKING_SCOPE_DESCRIPTIONS


class TestCreateApp:
    def test_health(self):
        # no context manager: the Tortoise lifespan is not started
        resp = TestClient(create_app()).get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_all_routers_mounted(self):
        paths = {route.path for route in create_app().routes}
        for path in (
            "/listings/",
            "/listings/{listing_id}/availability",
            "/bookings/",
            "/bookings/{booking_id}/reschedule",
            "/bookings/{booking_id}/ticket",
            "/mpesa-callback",
            "/payments/{payment_id}/retry",
            "/send-host-booking-notification",
            "/send-payment-initiation",
            "/notifications",
            "/saved/",
        ):
            assert path in paths

    def test_openapi_documents_gateway_scopes(self):
        resp = TestClient(create_app()).get("/openapi.json")
        assert resp.status_code == 200
        scheme = resp.json()["components"]["securitySchemes"]["gateway"]
        scopes = scheme["flows"]["password"]["scopes"]
        assert scopes == {str(k): v for k, v in BOOKING_SCOPE_DESCRIPTIONS.items()}
        assert "bookings:reschedule" in scopes
