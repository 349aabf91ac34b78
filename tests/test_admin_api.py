"""Tests for tag moderation and search maintenance."""
from conftest import add_search, audit_actions


def tag(client, headers, record_id: str, tags: str):
    response = client.post(f"/api/v1/records/{record_id}/tags", json={"tags": tags}, headers=headers)
    assert response.status_code == 200, response.text


class TestAdminAccess:
    """Only superusers reach /api/v1/admin."""

    def test_regular_user_is_refused(self, client, auth_headers):
        response = client.get("/api/v1/admin/tags", headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Superuser access required"

    def test_anonymous_is_refused(self, client):
        assert client.post("/api/v1/admin/maintenance/expire-searches", json={"days": 30}).status_code == 401


class TestTagModeration:
    """/api/v1/admin/tags"""

    def test_listing(self, client, auth_headers, admin_headers):
        tag(client, auth_headers, "rec1", "whale sea")
        data = client.get("/api/v1/admin/tags", headers=admin_headers).json()
        assert data["total"] == 2
        assert {row["tag"] for row in data["tags"]} == {"whale", "sea"}
        assert all(row["record_id"] == "rec1" for row in data["tags"])

    def test_listing_filters_and_paging(self, client, auth_headers, other_headers, admin_headers):
        tag(client, auth_headers, "rec1", "whale")
        tag(client, other_headers, "rec2", "island")
        everything = client.get("/api/v1/admin/tags", headers=admin_headers).json()["tags"]
        island = next(row for row in everything if row["tag"] == "island")

        data = client.get("/api/v1/admin/tags", params={"user_id": island["user_id"]}, headers=admin_headers).json()
        assert [row["tag"] for row in data["tags"]] == ["island"]

        page = client.get("/api/v1/admin/tags", params={"limit": 1}, headers=admin_headers).json()
        assert page["total"] == 2
        assert len(page["tags"]) == 1

    def test_delete_by_id(self, client, auth_headers, admin_headers):
        tag(client, auth_headers, "rec1", "whale sea")
        rows = client.get("/api/v1/admin/tags", headers=admin_headers).json()["tags"]
        whale = next(row for row in rows if row["tag"] == "whale")

        response = client.post("/api/v1/admin/tags/delete", json={"ids": [whale["id"]]}, headers=admin_headers)
        assert response.json() == {"deleted": 1}
        assert client.get("/api/v1/tags", headers=auth_headers).json() == [{"tag": "sea", "count": 1}]
        assert ("tag_delete", "success") in audit_actions()

    def test_delete_by_tag(self, client, auth_headers, other_headers, admin_headers):
        tag(client, auth_headers, "rec1", "spam")
        tag(client, other_headers, "rec2", "spam keep")
        rows = client.get("/api/v1/admin/tags", headers=admin_headers).json()["tags"]
        spam_id = next(row["tag_id"] for row in rows if row["tag"] == "spam")

        response = client.post("/api/v1/admin/tags/delete", json={"tag_id": spam_id}, headers=admin_headers)
        assert response.json() == {"deleted": 2}
        assert client.get("/api/v1/tags", headers=other_headers).json() == [{"tag": "keep", "count": 1}]

    def test_empty_request_deletes_nothing(self, client, auth_headers, admin_headers):
        tag(client, auth_headers, "rec1", "whale")
        response = client.post("/api/v1/admin/tags/delete", json={}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "tags_none_selected"
        assert client.get("/api/v1/admin/tags", headers=admin_headers).json()["total"] == 1


class TestExpireSearches:
    """/api/v1/admin/maintenance/expire-searches"""

    def test_deletes_old_unsaved_searches(self, client, auth_headers, admin_headers):
        add_search("reader", {"lookfor": "old"}, days_old=10)
        add_search("reader", {"lookfor": "old but saved"}, days_old=10, saved=True)
        add_search("reader", {"lookfor": "recent"})

        response = client.post("/api/v1/admin/maintenance/expire-searches", json={"days": 5}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"deleted": 1, "days": 5}

        remaining = client.get("/api/v1/searches", headers=auth_headers).json()
        assert sorted(s["search_params"]["lookfor"] for s in remaining) == ["old but saved", "recent"]
        assert ("maintenance", "success") in audit_actions()

    def test_minimum_age(self, client, admin_headers):
        response = client.post("/api/v1/admin/maintenance/expire-searches", json={"days": 1}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Expiration age must be at least 2 days."
