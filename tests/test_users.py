"""
Tests for routes/users.py: admin user management and the leaderboard.
"""
from extensions import db
from models import Concern


class TestAdminUserManagement:
    def test_citizen_cannot_list_users(self, client, citizen):
        resp = client.get("/api/users", headers=citizen.headers)
        assert resp.status_code == 403
        assert resp.get_json()["message"] == "User role 'citizen' is not authorized to access this route."

    def test_list_and_filter(self, client, admin, citizen, other_citizen):
        resp = client.get("/api/users?role=citizen", headers=admin.headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert {u["id"] for u in data["users"]} == {citizen.id, other_citizen.id}
        assert data["pagination"]["total"] == 2

        resp = client.get("/api/users?search=Ravi", headers=admin.headers)
        assert [u["id"] for u in resp.get_json()["data"]["users"]] == [other_citizen.id]

    def test_stats(self, client, admin, citizen):
        stats = client.get("/api/users/stats", headers=admin.headers).get_json()["data"]["stats"]
        assert stats["totalUsers"] == 2
        assert stats["totalCitizens"] == 1
        assert stats["totalAdmins"] == 1

    def test_deactivation_locks_out_user(self, client, admin, citizen):
        resp = client.patch(f"/api/users/{citizen.id}/status", json={"isActive": False}, headers=admin.headers)
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "User has been deactivated."

        resp = client.get("/api/auth/profile", headers=citizen.headers)
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Not authorized, token failed"

    def test_status_requires_boolean(self, client, admin, citizen):
        resp = client.patch(f"/api/users/{citizen.id}/status", json={"isActive": "no"}, headers=admin.headers)
        assert resp.status_code == 400

    def test_role_change(self, client, admin, citizen):
        resp = client.patch(f"/api/users/{citizen.id}/role", json={"role": "admin"}, headers=admin.headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["role"] == "admin"

        resp = client.patch(f"/api/users/{citizen.id}/role", json={"role": "mayor"}, headers=admin.headers)
        assert resp.status_code == 400

    def test_admin_cannot_change_own_role(self, client, admin):
        resp = client.patch(f"/api/users/{admin.id}/role", json={"role": "citizen"}, headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "You cannot change your own role."

    def test_delete_user(self, client, admin, citizen):
        resp = client.delete(f"/api/users/{citizen.id}", headers=admin.headers)
        assert resp.status_code == 200
        resp = client.get(f"/api/users/{citizen.id}", headers=admin.headers)
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "User not found."


class TestLeaderboard:
    def test_counts_reports_and_resolutions(self, app, client, citizen, other_citizen):
        with app.app_context():
            for status in ("Resolved", "Pending"):
                db.session.add(
                    Concern(
                        title="Broken streetlight",
                        description="The light near the bus stop has been out for a week.",
                        category="Infrastructure",
                        location="Sector 4",
                        status=status,
                        created_by=citizen.id,
                    )
                )
            db.session.add(
                Concern(
                    title="Garbage pile",
                    description="Uncollected garbage near the market.",
                    category="Sanitation",
                    location="Market Road",
                    created_by=other_citizen.id,
                )
            )
            db.session.commit()

        resp = client.get("/api/users/leaderboard")
        assert resp.status_code == 200
        rows = resp.get_json()["data"]
        assert rows[0]["id"] == citizen.id
        assert rows[0]["reportCount"] == 2
        assert rows[0]["resolvedCount"] == 1
        assert rows[1]["reportCount"] == 1
