"""
API integration tests
Round trips through TestClient with bearer tokens
"""

from datetime import datetime, timedelta


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Canteen API (Test)"


class TestAuth:

    def test_missing_token(self, client):
        response = client.get("/api/v1/users/me")
        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_REQUIRED"

    def test_bad_token(self, client):
        response = client.get("/api/v1/users/me", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401

    def test_role_gate(self, client, auth_headers, student):
        response = client.post("/api/v1/payments/deposits", headers=auth_headers(student),
                               json={"cin": student.cin, "amount": 100})
        assert response.status_code == 403
        assert response.json()["error_code"] == "PERMISSION_DENIED"


class TestMealsAPI:

    def test_schedule_and_cancel(self, client, auth_headers, student, tomorrow):
        headers = auth_headers(student)
        response = client.post("/api/v1/meals/schedule", headers=headers, json={
            "meal_time": "lunch", "meal_date": tomorrow.isoformat(),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        meal_id = data["data"]["id"]
        assert data["data"]["status"] == "scheduled"

        duplicate = client.post("/api/v1/meals/schedule", headers=headers, json={
            "meal_time": "lunch", "meal_date": tomorrow.isoformat(),
        })
        assert duplicate.status_code == 409
        assert duplicate.json()["error_code"] == "DUPLICATE_SCHEDULE"

        cancelled = client.post(f"/api/v1/meals/{meal_id}/cancel", headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["status"] == "refunded"

        profile = client.get("/api/v1/users/me", headers=headers).json()
        assert profile["data"]["balance"] == 1000

    def test_batch_and_views(self, client, auth_headers, student, tomorrow):
        headers = auth_headers(student)
        meals = [{"meal_date": (tomorrow + timedelta(days=i)).isoformat(), "meal_time": "dinner"}
                 for i in range(2)]
        response = client.post("/api/v1/meals/schedule/batch", headers=headers, json={"meals": meals})
        assert response.status_code == 200
        assert len(response.json()["data"]) == 2

        mine = client.get("/api/v1/meals/me", headers=headers, params={"meal_time": "dinner"})
        assert len(mine.json()["data"]) == 2

        calendar = client.get("/api/v1/meals/calendar", headers=headers).json()["data"]
        assert len(calendar) == 6
        assert calendar[1]["dinner"]["status"] == "scheduled"
        assert calendar[1]["lunch"]["status"] == "not_created"

        stats = client.get("/api/v1/meals/stats", headers=headers).json()["data"]
        assert stats["scheduled"] == 2

        cancelled = client.post("/api/v1/meals/cancel/batch", headers=headers, json={"meals": meals[:1]})
        assert len(cancelled.json()["data"]) == 1

    def test_insufficient_balance(self, client, auth_headers, make_user, tomorrow):
        user = make_user(balance=-900)
        response = client.post("/api/v1/meals/schedule", headers=auth_headers(user), json={
            "meal_time": "dinner", "meal_date": tomorrow.isoformat(),
        })
        assert response.status_code == 400
        assert response.json()["error_code"] == "INSUFFICIENT_BALANCE"

    def test_invalid_body(self, client, auth_headers, student):
        response = client.post("/api/v1/meals/schedule", headers=auth_headers(student),
                               json={"meal_time": "breakfast", "meal_date": "2026-03-03"})
        assert response.status_code == 422

    def test_other_users_meal_is_hidden(self, client, auth_headers, student, make_user, tomorrow):
        created = client.post("/api/v1/meals/schedule", headers=auth_headers(student), json={
            "meal_time": "lunch", "meal_date": tomorrow.isoformat(),
        }).json()["data"]
        other = make_user(balance=500)
        response = client.get(f"/api/v1/meals/{created['id']}", headers=auth_headers(other))
        assert response.status_code == 404

    def test_self_redeem(self, client, auth_headers, student, tomorrow, clock):
        headers = auth_headers(student)
        client.post("/api/v1/meals/schedule", headers=headers, json={
            "meal_time": "lunch", "meal_date": tomorrow.isoformat(),
        })
        clock.set(datetime.combine(tomorrow, datetime.min.time()).replace(hour=11, minute=30))
        response = client.post("/api/v1/meals/redeem", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "redeemed"


class TestCounterAPI:

    def test_deposit_and_lookup(self, client, auth_headers, student, cashier):
        headers = auth_headers(cashier)
        response = client.post("/api/v1/payments/deposits", headers=headers,
                               json={"cin": student.cin, "amount": 2500})
        assert response.status_code == 200
        assert response.json()["data"]["new_balance"] == 3500

        info = client.get(f"/api/v1/payments/students/{student.cin}", headers=headers)
        assert info.json()["data"]["current_balance"] == 3500

    def test_verify(self, client, auth_headers, student, verifier, tomorrow, clock):
        client.post("/api/v1/meals/schedule", headers=auth_headers(student), json={
            "meal_time": "dinner", "meal_date": tomorrow.isoformat(),
        })
        headers = auth_headers(verifier)

        clock.set(datetime.combine(tomorrow, datetime.min.time()).replace(hour=17))
        early = client.post("/api/v1/verification/verify", headers=headers,
                            json={"cin": student.cin, "meal_time": "dinner"})
        assert early.status_code == 400
        assert early.json()["error_code"] == "OUTSIDE_TIME_WINDOW"

        clock.set(datetime.combine(tomorrow, datetime.min.time()).replace(hour=18, minute=5))
        period = client.get("/api/v1/verification/period", headers=headers).json()["data"]
        assert period["current_meal_time"] == "dinner"

        response = client.post("/api/v1/verification/verify", headers=headers,
                               json={"cin": student.cin, "meal_time": "dinner"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["schedule"]["status"] == "redeemed"
        assert data["transaction"]["amount"] == 0
        assert data["student_info"]["current_balance"] == 800

    def test_forced_manual_verify(self, client, auth_headers, student, verifier):
        response = client.post("/api/v1/verification/manual", headers=auth_headers(verifier), json={
            "cin": student.cin, "meal_time": "lunch", "force": True, "notes": "scanner down",
        })
        assert response.status_code == 200
        assert response.json()["data"]["schedule"] is None

    def test_student_meal_status(self, client, auth_headers, student, verifier, tomorrow):
        client.post("/api/v1/meals/schedule", headers=auth_headers(student), json={
            "meal_time": "dinner", "meal_date": tomorrow.isoformat(),
        })

        response = client.get(f"/api/v1/verification/students/{student.cin}",
                              headers=auth_headers(verifier), params={"day": tomorrow.isoformat()})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["student_info"]["cin"] == student.cin
        assert data["meals"]["lunch"]["status"] == "not_created"
        assert data["meals"]["dinner"]["status"] == "scheduled"

        denied = client.get(f"/api/v1/verification/students/{student.cin}", headers=auth_headers(student))
        assert denied.status_code == 403


class TestAdminAPI:

    def test_adjust_and_set_balance(self, client, auth_headers, student, admin):
        headers = auth_headers(admin)
        adjusted = client.post("/api/v1/transactions/adjust", headers=headers,
                               json={"user_id": student.id, "amount": -300})
        assert adjusted.json()["data"]["new_balance"] == 700

        target = client.post("/api/v1/transactions/set-balance", headers=headers,
                             json={"user_id": student.id, "target_balance": 2000})
        assert target.json()["data"]["transaction"]["amount"] == 1300

        history = client.get("/api/v1/transactions/me", headers=auth_headers(student),
                             params={"type": "balance_adjustment"}).json()["data"]
        assert history["total_count"] == 2

        check = client.get("/api/v1/users/consistency", headers=headers).json()["data"]
        assert check["summary"]["status"] == "healthy"

    def test_create_and_deactivate_user(self, client, auth_headers, admin):
        headers = auth_headers(admin)
        created = client.post("/api/v1/users", headers=headers, json={
            "cin": "NEW001", "first_name": "Sami", "last_name": "K", "role": "teacher",
        })
        assert created.status_code == 200
        user_id = created.json()["data"]["user_id"]

        duplicate = client.post("/api/v1/users", headers=headers, json={
            "cin": "NEW001", "first_name": "Sami", "last_name": "K",
        })
        assert duplicate.status_code == 409

        status = client.post(f"/api/v1/users/{user_id}/status", headers=headers, json={"is_active": False})
        assert status.json()["data"]["is_active"] is False

    def test_adjust_requires_admin(self, client, auth_headers, cashier, student):
        response = client.post("/api/v1/transactions/adjust", headers=auth_headers(cashier),
                               json={"user_id": student.id, "amount": 100})
        assert response.status_code == 403
