"""HTTP surface tests using FastAPI's TestClient."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from captain_dispatch.api.app import create_app, status_for
from captain_dispatch.core.exceptions import (
    AlreadyResolved,
    DispatchError,
    InvalidLength,
    NetworkError,
    OfferLimitReached,
)

HEADERS = {"X-API-Key": "test-api-key"}

RIDE_BODY = {
    "rider_id": "rider-1",
    "pickup_lat": 12.9716,
    "pickup_lng": 77.5946,
    "drop_lat": 13.0050,
    "drop_lng": 77.6200,
    "vehicle_class": "bike",
}


@pytest.fixture
def test_client(service, settings):
    app = create_app(service, settings, run_maintenance=False)
    return TestClient(app)


@pytest.fixture
def online_captain(test_client):
    response = test_client.put(
        "/captains/c1",
        json={
            "vehicle_class": "bike",
            "vehicle_id": "KA-01-1234",
            "lat": 12.9761,
            "lng": 77.5946,
            "status": "online",
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def accepted_ride(test_client, online_captain):
    created = test_client.post("/rides", json=RIDE_BODY, headers=HEADERS).json()
    test_client.post(
        f"/offers/{created['offer']['id']}/respond",
        json={"captain_id": "c1", "response": "accept"},
        headers=HEADERS,
    )
    return created


@pytest.mark.unit
class TestAuthentication:
    def test_missing_api_key(self, test_client):
        response = test_client.post("/rides", json=RIDE_BODY)
        assert response.status_code == 422

    def test_invalid_api_key(self, test_client):
        response = test_client.post("/rides", json=RIDE_BODY, headers={"X-API-Key": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_health_endpoint_no_auth(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
        assert body["schema_version"] is not None

    def test_metrics_endpoint_no_auth(self, test_client):
        response = test_client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "dispatch_offers_total" in response.text


@pytest.mark.unit
class TestRideEndpoints:
    def test_create_ride_returns_otp_and_offer(self, test_client, online_captain):
        response = test_client.post("/rides", json=RIDE_BODY, headers=HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert len(body["otp"]) == 4
        assert "otp" not in body["ride"]
        assert body["offer"]["captain_id"] == "c1"
        assert body["ride"]["status"] == "pending"
        assert Decimal(body["fare"]["final_fare"]) >= Decimal("25")

    def test_get_ride_hides_otp(self, test_client, accepted_ride):
        response = test_client.get(f"/rides/{accepted_ride['ride']['id']}", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "captain_arriving"
        assert body["captain_id"] == "c1"
        assert "otp" not in body

    def test_invalid_coordinates_rejected(self, test_client):
        response = test_client.post(
            "/rides", json={**RIDE_BODY, "pickup_lat": 123.0}, headers=HEADERS
        )
        assert response.status_code == 422

    def test_unknown_ride_is_404(self, test_client):
        response = test_client.get("/rides/missing", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_pickup_flow(self, test_client, accepted_ride):
        ride_id = accepted_ride["ride"]["id"]

        arrived = test_client.post(
            f"/rides/{ride_id}/arrive", json={"captain_id": "c1"}, headers=HEADERS
        )
        assert arrived.json()["status"] == "waiting_for_rider"

        verified = test_client.post(
            f"/rides/{ride_id}/verify-otp", json={"code": accepted_ride["otp"]}, headers=HEADERS
        )
        assert verified.json()["verified"] is True
        assert verified.json()["ride"]["status"] == "in_progress"

        completed = test_client.post(
            f"/rides/{ride_id}/complete", json={"captain_id": "c1"}, headers=HEADERS
        )
        assert completed.json()["status"] == "completed"

    def test_malformed_otp_is_422(self, test_client, accepted_ride):
        ride_id = accepted_ride["ride"]["id"]
        test_client.post(f"/rides/{ride_id}/arrive", json={"captain_id": "c1"}, headers=HEADERS)

        response = test_client.post(
            f"/rides/{ride_id}/verify-otp", json={"code": "12"}, headers=HEADERS
        )
        assert response.status_code == 422

    def test_otp_lockout_is_423_until_reset(self, test_client, accepted_ride):
        ride_id = accepted_ride["ride"]["id"]
        wrong = "1000" if accepted_ride["otp"] != "1000" else "1001"
        test_client.post(f"/rides/{ride_id}/arrive", json={"captain_id": "c1"}, headers=HEADERS)
        for _ in range(3):
            test_client.post(f"/rides/{ride_id}/verify-otp", json={"code": wrong}, headers=HEADERS)

        locked = test_client.post(
            f"/rides/{ride_id}/verify-otp", json={"code": accepted_ride["otp"]}, headers=HEADERS
        )
        assert locked.status_code == 423

        reset = test_client.post(f"/rides/{ride_id}/reset-otp", headers=HEADERS)
        assert reset.status_code == 200
        assert reset.json()["otp"] is None

    def test_rider_cancel_reports_fee(self, test_client, accepted_ride):
        ride_id = accepted_ride["ride"]["id"]

        response = test_client.post(
            f"/rides/{ride_id}/cancel",
            json={"cancelled_by": "rider", "actor_id": "rider-1"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["fee"]) == Decimal("25")
        assert body["ride"]["status"] == "cancelled"

    def test_cancel_by_stranger_is_403(self, test_client, accepted_ride):
        response = test_client.post(
            f"/rides/{accepted_ride['ride']['id']}/cancel",
            json={"cancelled_by": "rider", "actor_id": "rider-2"},
            headers=HEADERS,
        )
        assert response.status_code == 403

    def test_captain_cancel_reassigns(self, test_client, accepted_ride):
        response = test_client.post(
            f"/rides/{accepted_ride['ride']['id']}/cancel",
            json={"cancelled_by": "captain", "actor_id": "c1"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["reassignment_outcome"] == "awaiting_captains"
        assert body["ride"]["status"] == "pending"
        assert body["ride"]["match"]["excluded_captain_ids"] == ["c1"]

    def test_reassign_endpoint(self, test_client, accepted_ride):
        response = test_client.post(
            f"/rides/{accepted_ride['ride']['id']}/reassign",
            json={"reason": "captain_delay"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["reassignment_count"] == 1


@pytest.mark.unit
class TestOfferEndpoints:
    def test_second_response_is_409(self, test_client, online_captain):
        created = test_client.post("/rides", json=RIDE_BODY, headers=HEADERS).json()
        url = f"/offers/{created['offer']['id']}/respond"
        first = test_client.post(
            url, json={"captain_id": "c1", "response": "accept"}, headers=HEADERS
        )
        second = test_client.post(
            url, json={"captain_id": "c1", "response": "accept"}, headers=HEADERS
        )

        assert first.status_code == 200
        assert first.json()["ride"]["status"] == "captain_arriving"
        assert second.status_code == 409
        assert second.json()["error"] == "AlreadyResolved"

    def test_decline_reports_reassignment(self, test_client, online_captain):
        created = test_client.post("/rides", json=RIDE_BODY, headers=HEADERS).json()

        response = test_client.post(
            f"/offers/{created['offer']['id']}/respond",
            json={"captain_id": "c1", "response": "decline", "reason": "too far"},
            headers=HEADERS,
        )

        assert response.json()["offer"]["response_status"] == "declined"
        assert response.json()["reassignment_outcome"] == "deferred"


@pytest.mark.unit
class TestCaptainAndFareEndpoints:
    def test_get_captain_includes_metrics(self, test_client, accepted_ride):
        response = test_client.get("/captains/c1", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "on_ride"
        assert body["metrics"]["offers_accepted"] == 1

    def test_status_toggle(self, test_client, online_captain):
        response = test_client.put(
            "/captains/c1/status", json={"status": "offline"}, headers=HEADERS
        )
        assert response.json()["status"] == "offline"

    def test_location_for_unknown_captain_is_404(self, test_client):
        response = test_client.post(
            "/captains/ghost/location", json={"lat": 12.9, "lng": 77.5}, headers=HEADERS
        )
        assert response.status_code == 404

    def test_fare_estimate_rounds_to_minor_units(self, test_client):
        response = test_client.post(
            "/fares/estimate",
            json={k: v for k, v in RIDE_BODY.items() if k != "rider_id"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["final_fare"]).as_tuple().exponent == -2
        assert body["is_fallback"] is True

    def test_maintenance_sweep(self, test_client):
        response = test_client.post("/maintenance/sweep", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["expired_offers"] == 0


@pytest.mark.unit
class TestCorrelation:
    def test_request_id_is_echoed(self, test_client):
        response = test_client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated_when_missing(self, test_client):
        response = test_client.get("/health")
        assert response.headers["X-Request-ID"]


@pytest.mark.unit
class TestErrorMapping:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (AlreadyResolved("x"), 409),
            (InvalidLength("x"), 422),
            (OfferLimitReached("x"), 409),
            (NetworkError("x"), 503),
            (DispatchError("x"), 400),
        ],
    )
    def test_status_for(self, error, expected):
        assert status_for(error) == expected
