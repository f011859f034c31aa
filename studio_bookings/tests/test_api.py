"""
Test API endpoints.
"""
from datetime import timedelta, timezone

from fastapi.testclient import TestClient

from studio_bookings.core.timeutil import utcnow
from studio_bookings.models import MembershipKind


def session_payload(starts_in: timedelta = timedelta(minutes=10), **overrides) -> dict:
    start = utcnow() + starts_in
    payload = {
        "class_type": "Reformer Pilates",
        "location": "Studio A",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "capacity": 2,
    }
    payload.update(overrides)
    return payload


def create_session(client: TestClient, **overrides) -> dict:
    response = client.post("/sessions", json=session_payload(**overrides))
    assert response.status_code == 200, response.text
    return response.json()


def book(client: TestClient, member_id: int, session_id: int):
    return client.post("/bookings", json={"member_id": member_id, "session_id": session_id})


class TestSessionEndpoints:
    def test_create_session(self, client: TestClient):
        data = create_session(client, capacity=20, instructor_id=3)

        assert data["capacity"] == 20
        assert data["booked_count"] == 0
        assert data["waitlist_count"] == 0
        assert data["status"] == "SCHEDULED"
        assert data["waitlist_enabled"] is True
        assert "id" in data

    def test_create_session_validation(self, client: TestClient):
        response = client.post("/sessions", json={"class_type": "Spin"})
        assert response.status_code == 422

        start = utcnow() + timedelta(hours=1)
        response = client.post(
            "/sessions",
            json=session_payload(start_time=start.isoformat(), end_time=(start - timedelta(hours=1)).isoformat()),
        )
        assert response.status_code == 422

    def test_instructor_conflict(self, client: TestClient):
        create_session(client, instructor_id=9)

        response = client.post("/sessions", json=session_payload(instructor_id=9))

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INSTRUCTOR_CONFLICT"

    def test_get_unknown_session(self, client: TestClient):
        response = client.get("/sessions/9999")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SESSION_NOT_FOUND"

    def test_lifecycle(self, client: TestClient):
        session = create_session(client)

        assert client.post(f"/sessions/{session['id']}/start").json()["status"] == "IN_PROGRESS"
        assert client.post(f"/sessions/{session['id']}/complete").json()["status"] == "COMPLETED"

        response = client.post(f"/sessions/{session['id']}/start")
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    def test_cancel_session(self, client: TestClient, grant_membership, notifier):
        session = create_session(client, capacity=1)
        grant_membership(1)
        grant_membership(2)
        book(client, 1, session["id"])
        book(client, 2, session["id"])

        response = client.post(f"/sessions/{session['id']}/cancel", json={"reason": "Power cut"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "CANCELLED"
        assert data["cancellation_reason"] == "Power cut"
        assert (data["booked_count"], data["waitlist_count"]) == (0, 0)
        assert notifier.kinds().count("SESSION_CANCELLED") == 2

    def test_capacity_update(self, client: TestClient, grant_membership):
        session = create_session(client, capacity=1)
        grant_membership(1)
        grant_membership(2)
        book(client, 1, session["id"])
        book(client, 2, session["id"])

        response = client.patch(f"/sessions/{session['id']}/capacity", json={"capacity": 2})
        assert response.status_code == 200
        assert response.json()["booked_count"] == 2
        assert response.json()["waitlist_count"] == 0

        response = client.patch(f"/sessions/{session['id']}/capacity", json={"capacity": 1})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "CAPACITY_BELOW_BOOKED"

    def test_roster_and_waitlist(self, client: TestClient, grant_membership):
        session = create_session(client, capacity=1)
        for member_id in (1, 2, 3):
            grant_membership(member_id)
            book(client, member_id, session["id"])

        roster = client.get(f"/sessions/{session['id']}/roster").json()
        waitlist = client.get(f"/sessions/{session['id']}/waitlist").json()

        assert [entry["member_id"] for entry in roster] == [1]
        assert [(entry["member_id"], entry["position"]) for entry in waitlist] == [(2, 1), (3, 2)]
        assert all("booking_id" in entry for entry in roster + waitlist)

    def test_stats_unknown_session(self, client: TestClient):
        assert client.get("/sessions/9999/stats").status_code == 404

    def test_list_sessions_for_studio(self, client: TestClient):
        first = create_session(client, starts_in=timedelta(days=1))
        second = create_session(client, starts_in=timedelta(days=1, hours=2), location="Studio B")
        create_session(client, starts_in=timedelta(days=1), studio_id=2)

        response = client.get("/sessions", params={"studio_id": 1})

        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [first["id"], second["id"]]
        filtered = client.get("/sessions", params={"studio_id": 1, "location": "Studio B"}).json()
        assert [s["id"] for s in filtered] == [second["id"]]
        assert client.get("/sessions").status_code == 422

    def test_weekly_schedule(self, client: TestClient):
        week_start = (utcnow() + timedelta(weeks=3)).replace(hour=0, minute=0, second=0, microsecond=0)
        inside = create_session(
            client,
            start_time=(week_start + timedelta(days=2, hours=9)).isoformat(),
            end_time=(week_start + timedelta(days=2, hours=10)).isoformat(),
        )
        create_session(
            client,
            start_time=(week_start + timedelta(days=7, hours=9)).isoformat(),
            end_time=(week_start + timedelta(days=7, hours=10)).isoformat(),
        )

        response = client.get("/sessions/weekly", params={"studio_id": 1, "week_start": week_start.isoformat()})

        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [inside["id"]]


class TestBookingEndpoints:
    def test_book_class(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)

        response = book(client, 1, session["id"])

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "BOOKED"
        assert data["member_id"] == 1
        assert data["waitlist_position"] is None

    def test_book_without_membership(self, client: TestClient):
        session = create_session(client)

        response = book(client, 1, session["id"])

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "NO_VALID_MEMBERSHIP"
        assert detail["retryable"] is False

    def test_book_twice(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)
        book(client, 1, session["id"])

        response = book(client, 1, session["id"])

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ALREADY_BOOKED"

    def test_book_session_created_with_utc_offset(self, client: TestClient, grant_membership):
        karachi = timezone(timedelta(hours=5))
        start = (utcnow() - timedelta(minutes=90)).astimezone(karachi)
        session = create_session(
            client,
            start_time=start.isoformat(),
            end_time=(start + timedelta(hours=2)).isoformat(),
        )
        grant_membership(1)

        response = book(client, 1, session["id"])

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "SESSION_CLOSED"

    def test_book_invalid_payload(self, client: TestClient):
        response = client.post("/bookings", json={"member_id": 0, "session_id": 1})
        assert response.status_code == 422

    def test_book_unknown_session(self, client: TestClient):
        response = book(client, 1, 4242)
        assert response.status_code == 404

    def test_eligibility(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1, kind=MembershipKind.CLASS_PACK, credits=0)

        response = client.get("/bookings/eligibility", params={"member_id": 1, "session_id": session["id"]})

        assert response.status_code == 200
        assert response.json() == {"eligible": False, "reason": "NO_CREDITS_REMAINING"}

    def test_get_and_cancel_booking(self, client: TestClient, grant_membership):
        session = create_session(client, capacity=1)
        grant_membership(1)
        grant_membership(2)
        first = book(client, 1, session["id"]).json()
        second = book(client, 2, session["id"]).json()

        assert client.get(f"/bookings/{first['id']}").json()["status"] == "BOOKED"

        forbidden = client.post(f"/bookings/{first['id']}/cancel", json={"member_id": 2})
        assert forbidden.status_code == 403

        response = client.post(f"/bookings/{first['id']}/cancel", json={"member_id": 1})
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert client.get(f"/bookings/{second['id']}").json()["status"] == "BOOKED"

    def test_get_unknown_booking(self, client: TestClient):
        response = client.get("/bookings/777")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "BOOKING_NOT_FOUND"

    def test_member_bookings(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)
        book(client, 1, session["id"])

        response = client.get("/bookings", params={"member_id": 1})

        assert response.status_code == 200
        assert [b["session_id"] for b in response.json()] == [session["id"]]


class TestCheckInEndpoints:
    def test_manual_check_in_twice(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)
        booking = book(client, 1, session["id"]).json()

        first = client.post(f"/check-in/{booking['id']}")
        second = client.post(f"/check-in/{booking['id']}")

        assert first.status_code == second.status_code == 200
        assert first.json()["status"] == second.json()["status"] == "CHECKED_IN"
        assert first.json()["checked_in_at"] == second.json()["checked_in_at"]

    def test_qr_flow(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)
        book(client, 1, session["id"])

        token = client.post("/check-in/tokens", json={"member_id": 1, "session_id": session["id"]}).json()["token"]
        response = client.post("/check-in/qr", json={"token": token})

        assert response.status_code == 200
        assert response.json()["check_in_method"] == "QR_SCAN"

    def test_qr_invalid(self, client: TestClient):
        response = client.post("/check-in/qr", json={"token": "garbage"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_QR_CODE"

    def test_qr_without_booking(self, client: TestClient):
        session = create_session(client)
        token = client.post("/check-in/tokens", json={"member_id": 5, "session_id": session["id"]}).json()["token"]

        response = client.post("/check-in/qr", json={"token": token})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NO_BOOKING_FOUND"

    def test_no_show(self, client: TestClient, grant_membership):
        session = create_session(client)
        grant_membership(1)
        booking = book(client, 1, session["id"]).json()

        client.post(f"/sessions/{session['id']}/start")
        response = client.post(f"/check-in/{booking['id']}/no-show")

        assert response.status_code == 200
        assert response.json()["status"] == "NO_SHOW"
        assert client.post(f"/check-in/{booking['id']}").status_code == 409

    def test_no_show_before_class_starts(self, client: TestClient, grant_membership):
        session = create_session(client, starts_in=timedelta(days=3))
        grant_membership(1)
        booking = book(client, 1, session["id"]).json()

        response = client.post(f"/check-in/{booking['id']}/no-show")

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NO_SHOW_NOT_ALLOWED"
        assert client.get(f"/bookings/{booking['id']}").json()["status"] == "BOOKED"


class TestReportEndpoints:
    def test_overall_report(self, client: TestClient, grant_membership):
        session = create_session(client, capacity=3)
        grant_membership(1)
        booking = book(client, 1, session["id"]).json()
        client.post(f"/check-in/{booking['id']}")

        data = client.get("/report").json()

        assert data["total_sessions"] == 1
        assert data["total_capacity"] == 3
        assert data["total_booked"] == 1
        assert data["total_checked_in"] == 1

    def test_session_stats(self, client: TestClient):
        session = create_session(client)

        assert client.get(f"/sessions/{session['id']}/stats").json()["capacity"] == 2
        assert client.get("/sessions/9999/stats").status_code == 404
        assert client.get(f"/report/session/{session['id']}").status_code == 404
