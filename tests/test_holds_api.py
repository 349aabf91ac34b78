"""Tests for holdings, hold placement and the holds list."""
from datetime import date, timedelta

import pytest

from conftest import audit_actions
from portal.api.deps import get_ils
from portal.config import settings
from portal.main import app
from portal.services.ils import ILSConnection
from portal.services.ils.drivers.demo import DemoDriver


def display(day: date) -> str:
    return day.strftime(settings.ILS_DISPLAY_DATE_FORMAT)


def in_days(days: int) -> str:
    return display(date.today() + timedelta(days=days))


def use_catalog(**config) -> ILSConnection:
    """Route requests to a demo driver built from ``config``."""
    catalog = ILSConnection(DemoDriver({"holds": settings.ILS_HOLDS, **config}))
    app.dependency_overrides[get_ils] = lambda: catalog
    return catalog


class LinkOnlyCancelDriver(DemoDriver):
    """Sends patrons to the library system to cancel holds."""

    cancel_holds = None

    async def get_cancel_hold_link(self, hold, patron):
        return f"https://ils.example.org/holds/{hold['reqnum']}/cancel"


class NoValidityCheckDriver(DemoDriver):
    check_request_is_valid = None


def hold_link(client, headers, record_id: str = "rec1") -> dict:
    response = client.get(f"/api/v1/records/{record_id}/holdings", headers=headers)
    assert response.status_code == 200, response.text
    link = response.json()["holdings"][0]["link"]
    return {k: v for k, v in link.items() if k != "id"}


def list_holds(client, headers) -> dict:
    response = client.get("/api/v1/holds", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestHoldings:
    """GET /api/v1/records/{id}/holdings"""

    def test_anonymous_holdings_have_no_links(self, client):
        data = client.get("/api/v1/records/rec1/holdings").json()
        assert data["id"] == "rec1"
        assert data["total"] == len(data["holdings"]) > 0
        assert not any("link" in item for item in data["holdings"])
        assert data["messages"] == []

    def test_without_library_account_no_links(self, client, auth_headers):
        data = client.get("/api/v1/records/rec1/holdings", headers=auth_headers).json()
        assert not any("link" in item for item in data["holdings"])

    def test_patron_gets_signed_links(self, client, patron_headers):
        data = client.get("/api/v1/records/rec1/holdings", headers=patron_headers).json()
        link = data["holdings"][0]["link"]
        assert link["id"] == "rec1"
        assert link["item_id"] == "rec1-1"
        assert link["level"] == "copy"
        assert len(link["hashKey"]) == 64


class TestHoldForm:
    """GET /api/v1/records/{id}/hold"""

    def test_form_data(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        response = client.get("/api/v1/records/rec1/hold", params=link, headers=patron_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["gatheredDetails"]["item_id"] == "rec1-1"
        assert data["extraHoldFields"] == ["comments", "requestGroup", "pickUpLocation", "requiredByDate"]
        assert [loc["locationID"] for loc in data["pickup"]] == ["A", "B", "C"]
        assert data["defaultPickup"] == "A"
        assert data["requestGroupNeeded"] is False
        assert data["defaultRequiredDate"].endswith(str(date.today().year + 5))

    def test_tampered_link(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        link["item_id"] = "rec1-2"
        response = client.get("/api/v1/records/rec1/hold", params=link, headers=patron_headers)
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "error_inconsistent_parameters"}]

    def test_link_for_another_record(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        response = client.get("/api/v1/records/rec2/hold", params=link, headers=patron_headers)
        assert response.status_code == 400

    def test_blocked_patron(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        use_catalog(failure_probabilities={"check_request_is_valid": 100})
        response = client.get("/api/v1/records/rec1/hold", params=link, headers=patron_headers)
        assert response.status_code == 403
        assert response.json()["messages"][0]["msg"] == "hold_error_blocked"

    def test_holds_disabled(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        catalog = ILSConnection(DemoDriver({"holds": settings.ILS_HOLDS}), holds_mode="none")
        app.dependency_overrides[get_ils] = lambda: catalog
        response = client.get("/api/v1/records/rec1/hold", params=link, headers=patron_headers)
        assert response.status_code == 400
        assert response.json()["messages"][0]["msg"] == "hold_error_blocked"

    def test_driver_without_validity_check(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        catalog = ILSConnection(NoValidityCheckDriver({"holds": settings.ILS_HOLDS}))
        app.dependency_overrides[get_ils] = lambda: catalog
        assert not catalog.check_capability("check_request_is_valid")

        response = client.get("/api/v1/records/rec1/hold", params=link, headers=patron_headers)
        assert response.status_code == 200, response.text
        assert response.json()["messages"] == []

        response = client.post(
            "/api/v1/records/rec1/hold",
            params=link,
            json={"pickUpLocation": "B", "requiredByDate": in_days(30)},
            headers=patron_headers,
        )
        assert response.status_code == 200, response.text

    def test_requires_library_account(self, client, auth_headers):
        response = client.get("/api/v1/records/rec1/hold", headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "catalog_login_required"


class TestPlaceHold:
    """POST /api/v1/records/{id}/hold"""

    def test_place_hold(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        response = client.post(
            "/api/v1/records/rec1/hold",
            params=link,
            json={"requiredByDate": in_days(30), "comment": "Thanks"},
            headers=patron_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json() == {
            "success": True,
            "messages": [{"type": "success", "msg": "hold_place_success"}],
        }
        holds = list_holds(client, patron_headers)["holds"]
        assert len(holds) == 4
        placed = holds[-1]
        assert placed["id"] == "rec1"
        assert placed["location"] == "A"
        assert placed["expire"] == in_days(30)
        assert placed["comment"] == "Thanks"
        assert ("hold_place", "success") in audit_actions()

    def test_start_date_freezes_hold(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        use_catalog(holds={**settings.ILS_HOLDS, "extraHoldFields": "startDate:requiredByDate:pickUpLocation"})
        response = client.post(
            "/api/v1/records/rec1/hold",
            params=link,
            json={"startDate": in_days(10), "requiredByDate": in_days(30), "pickUpLocation": "B"},
            headers=patron_headers,
        )
        assert response.status_code == 200, response.text
        placed = list_holds(client, patron_headers)["holds"][-1]
        assert placed["frozen"] is True
        assert placed["frozenThrough"] == in_days(9)
        assert placed["location"] == "B"

    def test_invalid_pickup(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        response = client.post(
            "/api/v1/records/rec1/hold",
            params=link,
            json={"pickUpLocation": "Z", "requiredByDate": in_days(30)},
            headers=patron_headers,
        )
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "hold_invalid_pickup"}]

    @pytest.mark.parametrize("required_by", [None, "not a date", "01-01-2000"])
    def test_invalid_required_by(self, client, patron_headers, required_by):
        link = hold_link(client, patron_headers)
        body = {} if required_by is None else {"requiredByDate": required_by}
        response = client.post("/api/v1/records/rec1/hold", params=link, json=body, headers=patron_headers)
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "hold_required_by_date_invalid"}]

    def test_driver_failure(self, client, patron_headers):
        link = hold_link(client, patron_headers)
        use_catalog(failure_probabilities={"place_hold": 100})
        response = client.post(
            "/api/v1/records/rec1/hold",
            params=link,
            json={"requiredByDate": in_days(30)},
            headers=patron_headers,
        )
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert [m["msg"] for m in data["messages"]][0] == "hold_place_fail_text"
        assert len(data["messages"]) == 2
        assert ("hold_place", "failure") in audit_actions()


class TestHoldsList:
    """GET /api/v1/holds"""

    def test_listing(self, client, patron_headers):
        data = list_holds(client, patron_headers)
        holds = data["holds"]
        assert [h["reqnum"] for h in holds] == ["000000", "000001", "000002"]
        assert "cancel_details" not in holds[0]
        assert "updateDetails" not in holds[0]
        assert holds[1]["cancel_details"] == "000001"
        assert holds[1]["updateDetails"] == "000001"
        assert data["cancelForm"] is True
        assert data["updateForm"] is True
        assert [p["locationID"] for p in data["pickup"]] == ["A", "B", "C"]
        assert data["updateResults"] is None

    def test_without_cancel_support(self, client, patron_headers):
        catalog = ILSConnection(DemoDriver({"holds": settings.ILS_HOLDS}), cancel_holds_enabled=False)
        app.dependency_overrides[get_ils] = lambda: catalog
        data = list_holds(client, patron_headers)
        assert data["cancelForm"] is False
        assert not any("cancel_details" in h for h in data["holds"])

    def test_cancel_through_library_link(self, client, patron_headers):
        catalog = ILSConnection(LinkOnlyCancelDriver({"holds": settings.ILS_HOLDS}))
        app.dependency_overrides[get_ils] = lambda: catalog
        data = list_holds(client, patron_headers)
        assert data["holds"][1]["cancel_link"] == "https://ils.example.org/holds/000001/cancel"
        assert not any("cancel_details" in h for h in data["holds"])
        assert data["cancelForm"] is False

    def test_ils_failure(self, client, patron_headers):
        use_catalog(failure_probabilities={"get_my_holds": 100})
        response = client.get("/api/v1/holds", headers=patron_headers)
        assert response.status_code == 503
        assert response.json()["detail"] == "ils_connection_failed"

    def test_pickup_failure_is_tolerated(self, client, patron_headers):
        use_catalog(failure_probabilities={"get_pick_up_locations": 100})
        data = list_holds(client, patron_headers)
        assert data["pickup"] == []
        assert len(data["holds"]) == 3


class TestCancelHolds:
    """POST /api/v1/holds/cancel"""

    def test_cancel_selected(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/cancel",
            json={"cancelSelected": True, "selectedIDS": ["000001"]},
            headers=patron_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["cancelResults"]["count"] == 1
        assert data["messages"] == [
            {"type": "success", "msg": "hold_cancel_success_items", "tokens": {"%%count%%": 1}}
        ]
        assert [h["reqnum"] for h in list_holds(client, patron_headers)["holds"]] == ["000000", "000002"]
        assert ("hold_cancel", "success") in audit_actions()

    def test_cancel_all(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/cancel",
            json={"cancelAll": True, "cancelAllIDS": ["000001", "000002"]},
            headers=patron_headers,
        )
        assert response.json()["cancelResults"]["count"] == 2

    def test_confirmation(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/cancel",
            json={"cancelAll": True, "cancelAllIDS": ["000001", "000002"], "confirm": False},
            headers=patron_headers,
        )
        data = response.json()
        assert data["confirm"]["ids"] == ["000001", "000002"]
        assert len(list_holds(client, patron_headers)["holds"]) == 3

    def test_ids_not_offered_are_rejected(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/cancel",
            json={"cancelSelected": True, "selectedIDS": ["000000"]},
            headers=patron_headers,
        )
        data = response.json()
        assert data["cancelResults"] == {}
        assert data["messages"] == [{"type": "error", "msg": "error_inconsistent_parameters"}]
        assert len(list_holds(client, patron_headers)["holds"]) == 3

    def test_empty_selection(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post("/api/v1/holds/cancel", json={"cancelSelected": True}, headers=patron_headers)
        assert response.json()["messages"] == [{"type": "error", "msg": "hold_empty_selection"}]

    def test_cancel_unavailable(self, client, patron_headers):
        catalog = ILSConnection(DemoDriver({"holds": settings.ILS_HOLDS}), cancel_holds_enabled=False)
        app.dependency_overrides[get_ils] = lambda: catalog
        response = client.post(
            "/api/v1/holds/cancel",
            json={"cancelAll": True, "cancelAllIDS": ["000001"]},
            headers=patron_headers,
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "hold_cancel_unavailable"


class TestEditHolds:
    """GET and POST /api/v1/holds/edit"""

    def test_form_with_conflicting_locations(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.get(
            "/api/v1/holds/edit",
            params=[("selectedIDS", "000001"), ("selectedIDS", "000002")],
            headers=patron_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["fields"] == ["frozen", "frozenThrough", "pickUpLocation"]
        assert [p["locationID"] for p in data["pickupLocations"]] == ["A", "B", "C"]
        assert data["conflictingPickupLocations"] is True

    def test_single_hold_offers_its_own_locations(self, client, patron_headers):
        list_holds(client, patron_headers)
        data = client.get("/api/v1/holds/edit", params={"selectedIDS": "000001"}, headers=patron_headers).json()
        assert [p["locationID"] for p in data["pickupLocations"]] == ["A", "B", "C", "D"]
        assert data["conflictingPickupLocations"] is False

    def test_check_limit_stops_after_first_hold(self, client, patron_headers):
        use_catalog(holds={**settings.ILS_HOLDS, "pickUpLocationCheckLimit": 1})
        list_holds(client, patron_headers)
        response = client.get(
            "/api/v1/holds/edit",
            params=[("selectedIDS", "000001"), ("selectedIDS", "000002")],
            headers=patron_headers,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert [p["locationID"] for p in data["pickupLocations"]] == ["A", "B", "C", "D"]
        assert data["conflictingPickupLocations"] is False

    def test_update(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/edit",
            json={
                "selectedIDS": ["000001"],
                "gatheredDetails": {"pickUpLocation": "D", "frozen": "1"},
                "updateHolds": True,
            },
            headers=patron_headers,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["updated"] is True
        assert data["results"] == {"000001": {"success": True}}
        assert data["messages"] == [
            {"type": "success", "msg": "hold_edit_success_items", "tokens": {"%%count%%": 1}}
        ]

        listing = list_holds(client, patron_headers)
        assert listing["updateResults"] == {"000001": {"success": True}}
        changed = listing["holds"][1]
        assert changed["location"] == "D"
        assert changed["frozen"] is True
        assert list_holds(client, patron_headers)["updateResults"] is None
        assert ("hold_update", "success") in audit_actions()

    def test_update_with_invalid_pickup(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/edit",
            json={
                "selectedIDS": ["000002"],
                "gatheredDetails": {"pickUpLocation": "D"},
                "updateHolds": True,
            },
            headers=patron_headers,
        )
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "hold_invalid_pickup"}]

    def test_update_with_past_frozen_through(self, client, patron_headers):
        list_holds(client, patron_headers)
        response = client.post(
            "/api/v1/holds/edit",
            json={
                "selectedIDS": ["000002"],
                "gatheredDetails": {"frozen": "1", "frozenThrough": in_days(-2)},
                "updateHolds": True,
            },
            headers=patron_headers,
        )
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "hold_frozen_through_date_invalid"}]

    def test_ids_not_offered_are_rejected(self, client, patron_headers):
        response = client.post(
            "/api/v1/holds/edit",
            json={"selectedIDS": ["000001"], "updateHolds": True},
            headers=patron_headers,
        )
        assert response.status_code == 400
        assert response.json()["messages"] == [{"type": "error", "msg": "error_inconsistent_parameters"}]

    def test_nothing_selected(self, client, patron_headers):
        response = client.get("/api/v1/holds/edit", headers=patron_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "hold_edit_unavailable"

    def test_driver_failure_is_reported(self, client, patron_headers):
        list_holds(client, patron_headers)
        use_catalog(failure_probabilities={"update_holds": 100})
        response = client.post(
            "/api/v1/holds/edit",
            json={"selectedIDS": ["000001", "000002"], "gatheredDetails": {"frozen": "0"}, "updateHolds": True},
            headers=patron_headers,
        )
        data = response.json()
        assert all(not r["success"] for r in data["results"].values())
        assert data["messages"] == [
            {"type": "error", "msg": "hold_edit_failed_items", "tokens": {"%%count%%": 2}}
        ]
