"""
Tests for routes/concerns.py and routes/comments.py.
"""
import io
import os

from PIL import Image

from extensions import db
from models import Concern, Notification
from utils.uploads import path_for_url

CONCERN_BODY = {
    "title": "Pothole on Station Road",
    "description": "A deep pothole near the railway crossing is causing two-wheeler accidents.",
    "category": "Infrastructure",
    "location": "Station Road, Nagpur",
    "lat": 21.1458,
    "lng": 79.0882,
}


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def _create(client, user, **overrides):
    resp = client.post("/api/concerns", json=dict(CONCERN_BODY, **overrides), headers=user.headers)
    assert resp.status_code == 201
    return resp.get_json()["data"]


class TestReporting:
    def test_create_json(self, client, citizen):
        concern = _create(client, citizen)
        assert concern["status"] == "Pending"
        assert concern["coordinates"] == {"lat": 21.1458, "lng": 79.0882}
        assert concern["createdBy"]["id"] == citizen.id
        assert concern["upvoteCount"] == 0

    def test_requires_login(self, client):
        assert client.post("/api/concerns", json=CONCERN_BODY).status_code == 401

    def test_invalid_category(self, client, citizen):
        resp = client.post("/api/concerns", json=dict(CONCERN_BODY, category="Weather"), headers=citizen.headers)
        assert resp.status_code == 400
        assert "category" in resp.get_json()["errors"]

    def test_out_of_range_latitude(self, client, citizen):
        resp = client.post("/api/concerns", json=dict(CONCERN_BODY, lat=123.0), headers=citizen.headers)
        assert resp.status_code == 400
        assert "lat" in resp.get_json()["errors"]

    def test_image_upload_is_served(self, app, client, citizen):
        data = {
            "title": CONCERN_BODY["title"],
            "description": CONCERN_BODY["description"],
            "category": "Infrastructure",
            "location": CONCERN_BODY["location"],
            "image": (io.BytesIO(_png_bytes()), "pothole.png", "image/png"),
        }
        resp = client.post("/api/concerns", data=data, headers=citizen.headers, content_type="multipart/form-data")
        assert resp.status_code == 201
        image_url = resp.get_json()["data"]["imageUrl"]
        assert image_url.startswith("/uploads/concerns/image-")

        served = client.get(image_url)
        assert served.status_code == 200
        assert served.data.startswith(b"\x89PNG")

    def test_fake_image_rejected(self, client, citizen):
        data = dict(
            title=CONCERN_BODY["title"],
            description=CONCERN_BODY["description"],
            category="Infrastructure",
            location=CONCERN_BODY["location"],
            image=(io.BytesIO(b"definitely not a png"), "pothole.png", "image/png"),
        )
        resp = client.post("/api/concerns", data=data, headers=citizen.headers, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid image data"

    def test_wrong_extension_rejected(self, client, citizen):
        data = dict(
            title=CONCERN_BODY["title"],
            description=CONCERN_BODY["description"],
            category="Infrastructure",
            location=CONCERN_BODY["location"],
            image=(io.BytesIO(b"%PDF-1.4"), "pothole.pdf", "application/pdf"),
        )
        resp = client.post("/api/concerns", data=data, headers=citizen.headers, content_type="multipart/form-data")
        assert resp.status_code == 400


class TestBrowsing:
    def test_public_list_with_filters(self, client, citizen, admin):
        first = _create(client, citizen)
        _create(client, citizen, category="Sanitation", title="Overflowing drain")
        client.put(f"/api/concerns/{first['id']}/status", json={"status": "Resolved"}, headers=admin.headers)

        body = client.get("/api/concerns").get_json()
        assert body["count"] == 2
        assert body["pagination"]["total"] == 2

        resolved = client.get("/api/concerns?status=Resolved").get_json()
        assert [c["id"] for c in resolved["data"]] == [first["id"]]

        sanitation = client.get("/api/concerns?category=Sanitation&status=All").get_json()
        assert [c["title"] for c in sanitation["data"]] == ["Overflowing drain"]

    def test_my_concerns(self, client, citizen, other_citizen):
        _create(client, citizen)
        _create(client, other_citizen)
        body = client.get("/api/concerns/my/all", headers=citizen.headers).get_json()
        assert body["count"] == 1
        assert body["data"][0]["createdBy"]["id"] == citizen.id

    def test_citizen_stats(self, client, citizen, admin, make_policy):
        concern = _create(client, citizen)
        make_policy(admin)
        client.put(f"/api/concerns/{concern['id']}/status", json={"status": "In Progress"}, headers=admin.headers)

        data = client.get("/api/concerns/citizen/stats", headers=citizen.headers).get_json()["data"]
        assert data["stats"]["myConcerns"] == 1
        assert data["stats"]["inProgress"] == 1
        assert data["stats"]["unreadNotifications"] == 1
        assert {a["type"] for a in data["recentActivities"]} == {"concern", "policy"}

    def test_get_missing(self, client):
        resp = client.get("/api/concerns/nope")
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "Concern not found"


class TestUpvotes:
    def test_upvote_toggles(self, client, citizen, other_citizen):
        concern = _create(client, citizen)
        url = f"/api/concerns/{concern['id']}/upvote"

        first = client.put(url, headers=other_citizen.headers).get_json()["data"]
        assert first["upvoteCount"] == 1
        assert first["hasUpvoted"] is True
        assert first["upvotes"] == [other_citizen.id]

        second = client.put(url, headers=other_citizen.headers).get_json()["data"]
        assert second["upvoteCount"] == 0
        assert second["hasUpvoted"] is False


class TestEmbeddedComments:
    def test_admin_comment_is_official_and_notifies_owner(self, app, client, citizen, admin):
        concern = _create(client, citizen)
        resp = client.post(
            f"/api/concerns/{concern['id']}/comments",
            json={"text": "A repair crew is scheduled for Monday."},
            headers=admin.headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["data"]["isOfficial"] is True

        with app.app_context():
            note = Notification.query.filter_by(recipient_id=citizen.id, type="NewComment").one()
            assert note.message == 'Meera Admin commented on your concern: "A repair crew is scheduled for Monday."'

    def test_owner_comment_does_not_notify(self, app, client, citizen):
        concern = _create(client, citizen)
        client.post(f"/api/concerns/{concern['id']}/comments", json={"text": "Still unfixed."}, headers=citizen.headers)
        with app.app_context():
            assert Notification.query.filter_by(recipient_id=citizen.id).count() == 0

    def test_empty_comment(self, client, citizen):
        concern = _create(client, citizen)
        resp = client.post(f"/api/concerns/{concern['id']}/comments", json={"text": ""}, headers=citizen.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Comment text is required"


class TestStatusUpdates:
    def test_admin_updates_status_and_notifies(self, app, client, citizen, admin):
        concern = _create(client, citizen)
        resp = client.put(
            f"/api/concerns/{concern['id']}/status", json={"status": "In Progress"}, headers=admin.headers
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "In Progress"
        with app.app_context():
            note = Notification.query.filter_by(recipient_id=citizen.id, type="StatusUpdate").one()
            assert note.message == 'The status of your concern "Pothole on Station Road" has been updated to "In Progress".'
            assert note.concern_id == concern["id"]

    def test_invalid_status(self, client, citizen, admin):
        concern = _create(client, citizen)
        resp = client.put(f"/api/concerns/{concern['id']}/status", json={"status": "Done"}, headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid status value"

    def test_citizen_cannot_update_status(self, client, citizen):
        concern = _create(client, citizen)
        resp = client.put(f"/api/concerns/{concern['id']}/status", json={"status": "Resolved"}, headers=citizen.headers)
        assert resp.status_code == 403


class TestDeletion:
    def test_owner_deletes_pending_concern_and_image(self, app, client, citizen, other_citizen):
        data = dict(
            title=CONCERN_BODY["title"],
            description=CONCERN_BODY["description"],
            category="Infrastructure",
            location=CONCERN_BODY["location"],
            image=(io.BytesIO(_png_bytes()), "pothole.png", "image/png"),
        )
        concern = client.post(
            "/api/concerns", data=data, headers=citizen.headers, content_type="multipart/form-data"
        ).get_json()["data"]
        client.put(f"/api/concerns/{concern['id']}/upvote", headers=other_citizen.headers)
        client.post(f"/api/comments/{concern['id']}", json={"text": "Same here"}, headers=other_citizen.headers)

        with app.test_request_context():
            image_path = path_for_url(concern["imageUrl"])
        assert os.path.exists(image_path)

        resp = client.delete(f"/api/concerns/{concern['id']}", headers=citizen.headers)
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Concern deleted successfully"
        assert not os.path.exists(image_path)
        with app.app_context():
            assert db.session.get(Concern, concern["id"]) is None

    def test_owner_cannot_delete_once_in_progress(self, client, citizen, admin):
        concern = _create(client, citizen)
        client.put(f"/api/concerns/{concern['id']}/status", json={"status": "In Progress"}, headers=admin.headers)
        resp = client.delete(f"/api/concerns/{concern['id']}", headers=citizen.headers)
        assert resp.status_code == 403
        assert resp.get_json()["message"] == "Not authorized to delete this concern"

    def test_admin_can_delete_any(self, client, citizen, admin):
        concern = _create(client, citizen)
        client.put(f"/api/concerns/{concern['id']}/status", json={"status": "Resolved"}, headers=admin.headers)
        assert client.delete(f"/api/concerns/{concern['id']}", headers=admin.headers).status_code == 200

    def test_status_notification_survives_deletion(self, app, client, citizen, admin):
        concern = _create(client, citizen)
        client.put(f"/api/concerns/{concern['id']}/status", json={"status": "Rejected"}, headers=admin.headers)
        client.delete(f"/api/concerns/{concern['id']}", headers=admin.headers)
        with app.app_context():
            note = Notification.query.filter_by(recipient_id=citizen.id).one()
            assert note.concern_id is None


class TestStandaloneComments:
    def test_add_list_and_delete(self, client, citizen, other_citizen):
        concern = _create(client, citizen)
        created = client.post(
            f"/api/comments/{concern['id']}", json={"text": "I noticed this too."}, headers=other_citizen.headers
        )
        assert created.status_code == 201
        comment = created.get_json()["data"]
        assert comment["concern"] == concern["id"]

        listing = client.get(f"/api/comments/{concern['id']}", headers=citizen.headers).get_json()
        assert listing["count"] == 1

        forbidden = client.delete(f"/api/comments/item/{comment['id']}", headers=citizen.headers)
        assert forbidden.status_code == 403
        assert forbidden.get_json()["message"] == "Not authorized to delete this comment"

        removed = client.delete(f"/api/comments/item/{comment['id']}", headers=other_citizen.headers)
        assert removed.status_code == 200
        assert removed.get_json()["message"] == "Comment removed"

    def test_admin_can_delete_any_comment(self, client, citizen, admin):
        concern = _create(client, citizen)
        comment = client.post(
            f"/api/comments/{concern['id']}", json={"text": "Citizen note"}, headers=citizen.headers
        ).get_json()["data"]
        assert client.delete(f"/api/comments/item/{comment['id']}", headers=admin.headers).status_code == 200

    def test_comment_on_missing_concern(self, client, citizen):
        resp = client.post("/api/comments/missing", json={"text": "Hello"}, headers=citizen.headers)
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "Concern not found"

    def test_comment_too_long(self, client, citizen):
        concern = _create(client, citizen)
        resp = client.post(f"/api/comments/{concern['id']}", json={"text": "x" * 501}, headers=citizen.headers)
        assert resp.status_code == 400
