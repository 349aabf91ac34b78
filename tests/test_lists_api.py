"""Tests for lists, favorites, tags and search history."""
from conftest import add_search


def create_list(client, headers, title: str = "Reading", public: bool = False) -> dict:
    response = client.post("/api/v1/lists", json={"title": title, "public": public}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestLists:
    """/api/v1/lists"""

    def test_create_and_list(self, client, auth_headers):
        created = create_list(client, auth_headers, "Whales")
        assert created["title"] == "Whales"
        assert created["public"] is False
        assert created["count"] == 0
        create_list(client, auth_headers, "Archive")

        lists = client.get("/api/v1/lists", headers=auth_headers).json()
        assert [item["title"] for item in lists] == ["Archive", "Whales"]

    def test_lists_are_per_user(self, client, auth_headers, other_headers):
        create_list(client, auth_headers)
        assert client.get("/api/v1/lists", headers=other_headers).json() == []

    def test_private_list_is_hidden(self, client, auth_headers, other_headers):
        created = create_list(client, auth_headers)
        assert client.get(f"/api/v1/lists/{created['id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/v1/lists/{created['id']}", headers=other_headers).status_code == 403
        response = client.get(f"/api/v1/lists/{created['id']}")
        assert response.status_code == 403
        assert response.json()["detail"] == "list_access_denied"

    def test_public_list_is_readable(self, client, auth_headers):
        created = create_list(client, auth_headers, public=True)
        client.post(
            "/api/v1/favorites",
            json={"record_id": "rec1", "title": "Moby Dick", "list_id": created["id"]},
            headers=auth_headers,
        )
        data = client.get(f"/api/v1/lists/{created['id']}").json()
        assert data["list"]["count"] == 1
        assert [r["record_id"] for r in data["records"]] == ["rec1"]
        assert data["records"][0]["title"] == "Moby Dick"

    def test_update(self, client, auth_headers, other_headers):
        created = create_list(client, auth_headers)
        response = client.patch(
            f"/api/v1/lists/{created['id']}",
            json={"title": "Renamed", "public": True},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert response.json()["public"] is True

        response = client.patch(f"/api/v1/lists/{created['id']}", json={"title": "Mine"}, headers=other_headers)
        assert response.status_code == 403

    def test_delete(self, client, auth_headers, other_headers):
        created = create_list(client, auth_headers)
        client.post(
            "/api/v1/favorites",
            json={"record_id": "rec1", "list_id": created["id"], "tags": "sea"},
            headers=auth_headers,
        )
        assert client.delete(f"/api/v1/lists/{created['id']}", headers=other_headers).status_code == 403
        assert client.delete(f"/api/v1/lists/{created['id']}", headers=auth_headers).status_code == 204
        assert client.get(f"/api/v1/lists/{created['id']}", headers=auth_headers).status_code == 404
        assert client.get("/api/v1/favorites", headers=auth_headers).json() == []
        assert client.get("/api/v1/tags", headers=auth_headers).json() == []

    def test_unknown_list(self, client, auth_headers):
        assert client.get("/api/v1/lists/999", headers=auth_headers).status_code == 404
        assert client.delete("/api/v1/lists/999", headers=auth_headers).status_code == 404

    def test_requires_login(self, client):
        assert client.get("/api/v1/lists").status_code == 401
        assert client.post("/api/v1/lists", json={"title": "x"}).status_code == 401


class TestFavorites:
    """Saving and removing records."""

    def test_first_save_creates_default_list(self, client, auth_headers):
        response = client.post(
            "/api/v1/favorites",
            json={"record_id": "rec1", "title": "Moby Dick", "tags": 'whale "sea story"', "notes": "Chapter 1"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        saved = response.json()
        assert saved["tags"] == ["whale", "sea story"]

        lists = client.get("/api/v1/lists", headers=auth_headers).json()
        assert [(item["title"], item["count"]) for item in lists] == [("My Favorites", 1)]
        assert lists[0]["id"] == saved["list_id"]

        favorites = client.get("/api/v1/favorites", headers=auth_headers).json()
        assert favorites[0]["record_id"] == "rec1"
        assert favorites[0]["notes"] == "Chapter 1"

    def test_later_saves_reuse_first_list(self, client, auth_headers):
        first = client.post("/api/v1/favorites", json={"record_id": "rec1"}, headers=auth_headers).json()
        second = client.post("/api/v1/favorites", json={"record_id": "rec2"}, headers=auth_headers).json()
        assert first["list_id"] == second["list_id"]
        assert len(client.get("/api/v1/favorites", headers=auth_headers).json()) == 2

    def test_saving_twice_keeps_one_entry(self, client, auth_headers):
        client.post("/api/v1/favorites", json={"record_id": "rec1"}, headers=auth_headers)
        client.post("/api/v1/favorites", json={"record_id": "rec1", "notes": "again"}, headers=auth_headers)
        favorites = client.get("/api/v1/favorites", headers=auth_headers).json()
        assert len(favorites) == 1
        assert favorites[0]["notes"] == "again"

    def test_save_to_new_list(self, client, auth_headers):
        client.post("/api/v1/favorites", json={"record_id": "rec1"}, headers=auth_headers)
        saved = client.post(
            "/api/v1/favorites",
            json={"record_id": "rec2", "new_list_title": "To read"},
            headers=auth_headers,
        ).json()
        titles = {item["id"]: item["title"] for item in client.get("/api/v1/lists", headers=auth_headers).json()}
        assert titles[saved["list_id"]] == "To read"
        assert len(titles) == 2

    def test_save_to_foreign_or_missing_list(self, client, auth_headers, other_headers):
        foreign = create_list(client, other_headers)
        response = client.post(
            "/api/v1/favorites",
            json={"record_id": "rec1", "list_id": foreign["id"]},
            headers=auth_headers,
        )
        assert response.status_code == 403
        response = client.post("/api/v1/favorites", json={"record_id": "rec1", "list_id": 999}, headers=auth_headers)
        assert response.status_code == 404

    def test_remove_records_drops_list_tags(self, client, auth_headers):
        saved = client.post(
            "/api/v1/favorites",
            json={"record_id": "rec1", "tags": "whale"},
            headers=auth_headers,
        ).json()
        client.post("/api/v1/favorites", json={"record_id": "rec2"}, headers=auth_headers)

        response = client.post(
            f"/api/v1/lists/{saved['list_id']}/remove",
            json={"ids": ["rec1", "unknown"]},
            headers=auth_headers,
        )
        assert response.json() == {"removed": 1}
        assert [f["record_id"] for f in client.get("/api/v1/favorites", headers=auth_headers).json()] == ["rec2"]
        assert client.get("/api/v1/tags", headers=auth_headers).json() == []

    def test_remove_from_foreign_list(self, client, auth_headers, other_headers):
        foreign = create_list(client, other_headers)
        response = client.post(f"/api/v1/lists/{foreign['id']}/remove", json={"ids": ["rec1"]}, headers=auth_headers)
        assert response.status_code == 403


class TestTags:
    """Record tagging."""

    def test_tag_and_untag(self, client, auth_headers):
        response = client.post("/api/v1/records/rec2/tags", json={"tags": 'Fiction "South Seas"'}, headers=auth_headers)
        assert response.json() == {"tags": ["fiction", "south seas"]}
        client.post("/api/v1/records/rec1/tags", json={"tags": "fiction"}, headers=auth_headers)

        tags = client.get("/api/v1/tags", headers=auth_headers).json()
        assert tags == [{"tag": "fiction", "count": 2}, {"tag": "south seas", "count": 1}]

        assert client.delete("/api/v1/records/rec2/tags/Fiction", headers=auth_headers).json() == {"removed": 1}
        response = client.delete("/api/v1/records/rec2/tags/fiction", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Tag not found"

    def test_tags_are_per_user(self, client, auth_headers, other_headers):
        client.post("/api/v1/records/rec1/tags", json={"tags": "mine"}, headers=auth_headers)
        assert client.get("/api/v1/tags", headers=other_headers).json() == []
        assert client.delete("/api/v1/records/rec1/tags/mine", headers=other_headers).status_code == 404

    def test_tagging_twice_is_idempotent(self, client, auth_headers):
        client.post("/api/v1/records/rec1/tags", json={"tags": "sea"}, headers=auth_headers)
        client.post("/api/v1/records/rec1/tags", json={"tags": "sea"}, headers=auth_headers)
        assert client.get("/api/v1/tags", headers=auth_headers).json() == [{"tag": "sea", "count": 1}]


class TestSearchHistory:
    """/api/v1/searches"""

    def test_save_and_filter(self, client, auth_headers):
        first = add_search("reader", {"lookfor": "whale"})
        add_search("reader", {"lookfor": "sea"})

        response = client.patch(f"/api/v1/searches/{first}", json={"saved": True, "title": "Whales"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["saved"] is True
        assert response.json()["title"] == "Whales"

        saved = client.get("/api/v1/searches", params={"saved": "true"}, headers=auth_headers).json()
        assert [s["id"] for s in saved] == [first]
        unsaved = client.get("/api/v1/searches", params={"saved": "false"}, headers=auth_headers).json()
        assert [s["search_params"]["lookfor"] for s in unsaved] == ["sea"]

    def test_delete(self, client, auth_headers):
        search_id = add_search("reader", {"lookfor": "whale"})
        assert client.delete(f"/api/v1/searches/{search_id}", headers=auth_headers).status_code == 204
        assert client.delete(f"/api/v1/searches/{search_id}", headers=auth_headers).status_code == 404

    def test_foreign_searches_are_invisible(self, client, auth_headers, other_headers):
        search_id = add_search("reader", {"lookfor": "whale"})
        assert client.get("/api/v1/searches", headers=other_headers).json() == []
        response = client.patch(f"/api/v1/searches/{search_id}", json={"saved": True}, headers=other_headers)
        assert response.status_code == 404
        assert client.delete(f"/api/v1/searches/{search_id}", headers=other_headers).status_code == 404
