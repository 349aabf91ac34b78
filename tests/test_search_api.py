"""Tests for the JSON/JSONP search and record API."""
import json
import re

import httpx
import pytest

from conftest import register, login
from portal.api.deps import get_permissions, get_search_runner
from portal.config import settings
from portal.main import app
from portal.services.permissions import PermissionManager
from portal.services.search import FacetFormatter, RecordFormatter, SearchRunner, SolrConnector, SolrRecord
from portal.services.search.facets import build_facet_tree, hierarchical_display
from portal.services.search.runner import params_from_request, parse_filter

DOCS = {
    "rec1": {
        "id": "rec1",
        "title": "Moby Dick",
        "author": ["Melville, Herman"],
        "author2": ["Melville, Herman", "Kent, Rockwell"],
        "author2_role": ["aut", "ill"],
        "format": ["Book"],
        "language": ["English"],
        "isbn": ["9780142437247", "0142437247 (pbk.)"],
        "url": ["http://example.org/moby"],
    },
    "rec2": {"id": "rec2", "title": "Typee", "format": ["eBook"]},
}

FACETS = {
    "format": [["Book", 5], ["eBook", 2]],
    "building": [["0/Main/", 3], ["1/Main/Reading/", 2], ["0/Branch/", 1]],
}


class FakeSolr:
    """Answers Solr select requests from :data:`DOCS`."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="org.apache.solr.search.SyntaxError")
        query = request.url.params.get("q", "")
        if query.startswith("id:"):
            wanted = re.findall(r'"([^"]+)"', query)
            # Solr does not keep the requested order
            docs = [DOCS[i] for i in sorted(wanted, reverse=True) if i in DOCS]
        else:
            docs = list(DOCS.values())
        total = len(docs)
        docs = docs[:int(request.url.params.get("rows", len(docs)))]
        body = {"response": {"numFound": total, "docs": docs}}
        if request.url.params.get_list("facet.field"):
            body["facet_counts"] = {"facet_fields": FACETS}
        return httpx.Response(200, json=body)


@pytest.fixture
def solr():
    fake = FakeSolr()
    connector = SolrConnector("http://solr.test/solr", "biblio", transport=httpx.MockTransport(fake))
    app.dependency_overrides[get_search_runner] = lambda: SearchRunner(connector)
    return fake


class TestSearch:
    """GET/POST /api/v1/search"""

    def test_default_fields(self, client, solr):
        response = client.get("/api/v1/search", params={"lookfor": "moby"})
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        data = response.json()
        assert data["status"] == "OK"
        assert data["resultCount"] == 2
        first = data["records"][0]
        assert first["id"] == "rec1"
        assert first["title"] == "Moby Dick"
        assert first["formats"] == ["Book"]
        assert first["urls"] == [{"url": "http://example.org/moby", "desc": "http://example.org/moby"}]
        assert first["authors"]["primary"] == {"Melville, Herman": {"role": ["aut"]}}
        assert first["authors"]["secondary"] == {"Kent, Rockwell": {"role": ["ill"]}}
        assert "facets" not in data

    def test_requested_fields_only(self, client, solr):
        response = client.get("/api/v1/search", params=[("lookfor", "moby"), ("field[]", "title"), ("field[]", "cleanIsbn")])
        records = response.json()["records"]
        assert records[0] == {"title": "Moby Dick", "cleanIsbn": "0142437247"}
        assert records[1] == {"title": "Typee"}

    def test_field_not_a_list_returns_no_records(self, client, solr):
        response = client.get("/api/v1/search", params={"lookfor": "moby", "field": "title"})
        data = response.json()
        assert "records" not in data
        assert solr.requests[-1].url.params["rows"] == "0"

    def test_post_form(self, client, solr):
        response = client.post("/api/v1/search", data={"lookfor": "typee", "sort": "title"})
        assert response.status_code == 200
        params = solr.requests[-1].url.params
        assert params["q"] == "typee"
        assert params["sort"] == "title_sort asc, author_sort asc"

    def test_facets(self, client, solr):
        response = client.get("/api/v1/search", params=[("lookfor", "x"), ("facet[]", "format")])
        facets = response.json()["facets"]
        assert [(f["value"], f["count"]) for f in facets["format"]] == [("Book", 5), ("eBook", 2)]
        assert "filter%5B%5D=format%3A%22Book%22" in facets["format"][0]["href"]
        assert "facet.field" in str(solr.requests[-1].url)

    def test_facet_filter(self, client, solr):
        response = client.get(
            "/api/v1/search",
            params=[("lookfor", "x"), ("facet[]", "format"), ("facetFilter[]", "format:^e")],
        )
        assert [f["value"] for f in response.json()["facets"]["format"]] == ["eBook"]

    def test_hierarchical_facets(self, client, solr, monkeypatch):
        monkeypatch.setattr(settings, "SEARCH_HIERARCHICAL_FACETS", ["building"])
        response = client.get("/api/v1/search", params=[("lookfor", "x"), ("facet[]", "building")])
        tree = response.json()["facets"]["building"]
        assert [node["translated"] for node in tree] == ["Main", "Branch"]
        assert tree[0]["children"][0]["value"] == "1/Main/Reading/"
        assert "children" not in tree[1]
        assert len(solr.requests) == 2

    def test_jsonp(self, client, solr):
        response = client.get("/api/v1/search", params={"lookfor": "x", "callback": "handle.results"})
        assert response.headers["content-type"].startswith("application/javascript")
        assert response.text.startswith("handle.results(")
        assert response.text.endswith(");")
        payload = json.loads(response.text[len("handle.results("):-2])
        assert payload["resultCount"] == 2

    def test_invalid_callback(self, client, solr):
        response = client.get("/api/v1/search", params={"lookfor": "x", "callback": "alert(1)"})
        assert response.status_code == 400
        assert response.json() == {"status": "ERROR", "statusMessage": "Invalid callback"}

    @pytest.mark.parametrize("limit", ["abc", "-1", "101"])
    def test_invalid_limit(self, client, solr, limit):
        response = client.get("/api/v1/search", params={"lookfor": "x", "limit": limit})
        assert response.status_code == 400
        assert response.json()["statusMessage"] == "Invalid limit"

    def test_pretty_print(self, client, solr):
        response = client.get("/api/v1/search", params={"lookfor": "x", "prettyPrint": "1"})
        assert '\n  "status": "OK"' in response.text

    def test_invalid_query(self, client):
        connector = SolrConnector(
            "http://solr.test/solr", "biblio", transport=httpx.MockTransport(FakeSolr(status_code=400))
        )
        app.dependency_overrides[get_search_runner] = lambda: SearchRunner(connector)
        response = client.get("/api/v1/search", params={"lookfor": "title:("})
        assert response.status_code == 400
        assert response.json() == {"status": "ERROR", "statusMessage": "Invalid search"}

    def test_backend_failure(self, client):
        connector = SolrConnector(
            "http://solr.test/solr", "biblio", transport=httpx.MockTransport(FakeSolr(status_code=500))
        )
        app.dependency_overrides[get_search_runner] = lambda: SearchRunner(connector)
        response = client.get("/api/v1/search", params={"lookfor": "x"})
        assert response.status_code == 400
        assert response.json()["status"] == "ERROR"

    def test_permission_denied(self, client, solr):
        app.dependency_overrides[get_permissions] = lambda: PermissionManager({})
        response = client.get("/api/v1/search", params={"lookfor": "x"})
        assert response.status_code == 403
        assert response.json()["statusMessage"] == "Permission denied"

    def test_logged_in_search_is_recorded(self, client, solr):
        register(client, "searcher")
        headers = login(client, "searcher")
        client.get("/api/v1/search", params={"lookfor": "whale"}, headers=headers)
        history = client.get("/api/v1/searches", headers=headers).json()
        assert len(history) == 1
        assert history[0]["search_params"]["lookfor"] == "whale"
        assert history[0]["result_count"] == 2
        assert history[0]["saved"] is False

    def test_options(self, client):
        response = client.options("/api/v1/search")
        assert response.status_code == 204
        assert "GET, POST, OPTIONS" in response.headers["access-control-allow-methods"]


class TestRecord:
    """GET/POST /api/v1/record"""

    def test_keeps_requested_order(self, client, solr):
        response = client.get("/api/v1/record", params=[("id[]", "rec1"), ("id[]", "rec2"), ("id[]", "nope")])
        data = response.json()
        assert data["resultCount"] == 2
        assert [r["id"] for r in data["records"]] == ["rec1", "rec2"]

    def test_single_id(self, client, solr):
        response = client.get("/api/v1/record", params={"id": "rec2", "field[]": "title"})
        assert response.json()["records"] == [{"title": "Typee"}]

    def test_missing_id(self, client, solr):
        response = client.get("/api/v1/record")
        assert response.status_code == 400
        assert response.json()["statusMessage"] == "Missing id"
        assert solr.requests == []

    def test_unknown_id(self, client, solr):
        data = client.get("/api/v1/record", params={"id": "nope"}).json()
        assert data == {"status": "OK", "resultCount": 0}


class TestApiDescription:
    """GET /api"""

    def test_describes_fields(self, client):
        data = client.get("/api").json()
        assert data["defaultFields"] == ["authors", "formats", "id", "languages", "series", "subjects", "title", "urls"]
        assert "method" not in data["recordFields"]["title"]
        assert data["recordFields"]["title"]["type"] == "string"
        assert data["maxLimit"] == settings.SEARCH_API_MAX_LIMIT


class TestSearchParams:
    """Request to Solr parameter translation."""

    def test_filters(self):
        assert parse_filter('format:"Book"') == ("AND", "format", "Book")
        assert parse_filter('~language:"English"') == ("OR", "language", "English")
        assert parse_filter("-format:eBook") == ("NOT", "format", "eBook")
        assert parse_filter("nonsense") is None

    def test_or_filters_are_tagged(self):
        params = params_from_request({"filter": ['~format:"Book"', '~format:"eBook"', '-language:"Latin"']})
        params.add_facet("format")
        solr = params.to_solr()
        assert ("fq", '{!tag=format_filter}format:("Book" OR "eBook")') in solr
        assert ("fq", '-language:"Latin"') in solr
        assert ("facet.field", "{!ex=format_filter}format") in solr

    def test_paging_and_defaults(self):
        params = params_from_request({"page": "3", "limit": "10", "type": "Bogus", "sort": "bogus"})
        assert params.search_type == "AllFields"
        assert params.sort == settings.SEARCH_DEFAULT_SORT
        solr = dict(params.to_solr())
        assert solr["q"] == "*:*"
        assert solr["start"] == 20
        assert solr["rows"] == 10


class TestFormatters:
    """Record and facet formatting."""

    def test_empty_values_are_omitted(self):
        records = RecordFormatter().format([SolrRecord({"id": "x"})], ["id", "title", "formats", "bogus"])
        assert records == [{"id": "x"}]

    def test_record_page_is_escaped(self):
        assert SolrRecord({"id": "a/b c"}).get_record_page() == "/Record/a%2Fb%20c"

    def test_applied_facets_are_flagged(self):
        facets = {"format": [{"value": "Book", "count": 1, "isApplied": True}, {"value": "Map", "count": 2}]}
        result = FacetFormatter().format({}, [("lookfor", "x")], facets, requested=["format"])
        assert result["format"][0]["isApplied"] is True
        assert "isApplied" not in result["format"][1]

    def test_hierarchy_helpers(self):
        assert hierarchical_display("1/Main/Reading/") == "Reading"
        assert hierarchical_display("plain") == "plain"
        tree = build_facet_tree([{"value": "0/A/"}, {"value": "1/A/B/"}, {"value": "2/A/B/C/"}])
        assert tree[0]["children"][0]["children"][0]["value"] == "2/A/B/C/"
