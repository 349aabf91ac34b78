"""Tests for the holds workflow helper."""
from datetime import date, datetime, time, timedelta

import pytest

from portal.services.dates import DateConverter
from portal.services.flash import FlashMessenger
from portal.services.holds import HoldsHelper, date_from_offsets
from portal.services.ils.connection import ILSConnection
from portal.services.ils.drivers.demo import DemoDriver
from portal.services.session_store import UserSession

PATRON = {"id": "patron1", "cat_username": "patron1"}


def display(day: date) -> str:
    return day.strftime("%m-%d-%Y")


@pytest.fixture
def helper():
    return HoldsHelper(UserSession(), FlashMessenger(), DateConverter("%m-%d-%Y"), hmac_key="secret")


@pytest.fixture
def catalog():
    return ILSConnection(DemoDriver())


class TestValidIds:
    """Ids offered to the user are the only ones accepted back."""

    def test_remembered_ids_validate(self, helper):
        helper.remember_valid_id("000001")
        helper.remember_valid_id(2)
        assert helper.validate_ids(["000001", "2"])

    def test_unknown_id_fails(self, helper):
        helper.remember_valid_id("000001")
        assert not helper.validate_ids(["000001", "000009"])

    def test_reset_forgets_ids(self, helper):
        helper.remember_valid_id("000001")
        helper.reset_validation()
        assert helper.get_valid_ids() == []
        assert not helper.validate_ids(["000001"])

    def test_ids_are_not_duplicated(self, helper):
        helper.remember_valid_id("a")
        helper.remember_valid_id("a")
        assert helper.get_valid_ids() == ["a"]


class TestCancelDetails:
    """Cancel details attached to listed holds."""

    async def test_cancellable_hold_is_remembered(self, helper, catalog):
        hold = {"reqnum": "000001", "cancel_details": "000001"}
        result = await helper.add_cancel_details(catalog, hold, {"function": "cancelHolds"}, PATRON)
        assert result["cancel_details"] == "000001"
        assert helper.validate_ids(["000001"])

    async def test_empty_cancel_details_are_removed(self, helper, catalog):
        hold = {"reqnum": "000000", "cancel_details": ""}
        result = await helper.add_cancel_details(catalog, hold, {"function": "cancelHolds"}, PATRON)
        assert "cancel_details" not in result
        assert helper.get_valid_ids() == []

    async def test_details_come_from_driver_when_missing(self, helper, catalog):
        hold = {"reqnum": "000002", "available": False}
        result = await helper.add_cancel_details(catalog, hold, {"function": "cancelHolds"}, PATRON)
        assert result["cancel_details"] == "000002"

    async def test_no_cancel_support_strips_details(self, helper, catalog):
        hold = {"reqnum": "000001", "cancel_details": "000001"}
        result = await helper.add_cancel_details(catalog, hold, False, PATRON)
        assert "cancel_details" not in result


class LinkOnlyCancelDriver(DemoDriver):
    cancel_holds = None

    async def get_cancel_hold_link(self, hold, patron):
        return f"https://ils.example.org/cancel/{hold['reqnum']}"


class TestCancelLinks:
    """Drivers that only link out to their own cancel page."""

    async def test_cancel_mechanism_is_a_link(self):
        catalog = ILSConnection(LinkOnlyCancelDriver())
        assert await catalog.check_function("cancelHolds") == {"function": "getCancelHoldLink"}

    async def test_link_is_attached(self, helper):
        catalog = ILSConnection(LinkOnlyCancelDriver())
        hold = {"reqnum": "000001", "cancel_details": "000001"}
        result = await helper.add_cancel_details(catalog, hold, {"function": "getCancelHoldLink"}, PATRON)
        assert result["cancel_link"] == "https://ils.example.org/cancel/000001"
        assert "cancel_details" not in result
        assert helper.get_valid_ids() == []


class TestCancelHolds:
    """The cancel workflow."""

    async def test_without_action_nothing_happens(self, helper, catalog):
        assert await helper.cancel_holds(catalog, PATRON, {}) == {}
        assert len(helper.flash) == 0

    async def test_empty_selection(self, helper, catalog):
        result = await helper.cancel_holds(catalog, PATRON, {"cancelSelected": True, "selectedIDS": []})
        assert result == {}
        assert helper.flash.messages == [{"type": "error", "msg": "hold_empty_selection"}]

    async def test_confirmation_requested(self, helper, catalog):
        result = await helper.cancel_holds(
            catalog, PATRON, {"cancelAll": True, "cancelAllIDS": ["000001"], "confirm": False}
        )
        assert result["confirm"]["action"] == "cancelAll"
        assert result["confirm"]["ids"] == ["000001"]
        assert result["confirm"]["message"] == "confirm_hold_cancel_all_text"

    async def test_unknown_ids_are_rejected(self, helper, catalog):
        result = await helper.cancel_holds(catalog, PATRON, {"cancelSelected": True, "selectedIDS": ["000001"]})
        assert result == {}
        assert helper.flash.messages[0]["msg"] == "error_inconsistent_parameters"
        assert len(await catalog.get_my_holds(PATRON)) == 3

    async def test_selected_holds_are_cancelled(self, helper, catalog):
        helper.remember_valid_id("000001")
        helper.remember_valid_id("000002")
        result = await helper.cancel_holds(
            catalog, PATRON, {"cancelSelected": True, "cancelSelectedIDS": ["000001", "000002"]}
        )
        assert result["count"] == 2
        assert helper.flash.messages == [
            {"type": "success", "msg": "hold_cancel_success_items", "tokens": {"%%count%%": 2}}
        ]
        remaining = await catalog.get_my_holds(PATRON)
        assert [h["reqnum"] for h in remaining] == ["000000"]


class TestValidateDates:
    """Start and required-by date checks."""

    def test_fields_not_enabled(self, helper):
        result = helper.validate_dates("garbage", "garbage", ["comments"])
        assert result == {"startDateTS": None, "requiredByTS": None, "errors": []}

    def test_valid_required_by(self, helper):
        tomorrow = date.today() + timedelta(days=1)
        result = helper.validate_dates(None, display(tomorrow), "requiredByDate")
        assert result["errors"] == []
        assert result["requiredByTS"] == int(datetime.combine(tomorrow, time(23, 59, 59)).timestamp())

    def test_past_required_by(self, helper):
        result = helper.validate_dates(None, display(date.today() - timedelta(days=1)), ["requiredByDate"])
        assert result["errors"] == ["hold_required_by_date_invalid"]

    def test_missing_required_by_is_invalid(self, helper):
        result = helper.validate_dates(None, None, ["requiredByDate"])
        assert result["errors"] == ["hold_required_by_date_invalid"]

    def test_optional_required_by_may_be_empty(self, helper):
        result = helper.validate_dates(None, "", ["requiredByDateOptional"])
        assert result["errors"] == []

    def test_unparsable_start_date(self, helper):
        result = helper.validate_dates("2024-13-45", None, ["startDate"])
        assert result["errors"] == ["hold_start_date_invalid"]

    def test_required_by_before_start(self, helper):
        start = date.today() + timedelta(days=10)
        required = date.today() + timedelta(days=5)
        result = helper.validate_dates(display(start), display(required), ["startDate", "requiredByDate"])
        assert result["errors"] == ["hold_required_by_date_before_start_date"]

    def test_frozen_through_in_past(self, helper):
        result = helper.validate_frozen_through(display(date.today() - timedelta(days=3)), ["frozenThrough"])
        assert result["errors"] == ["hold_frozen_through_date_invalid"]


class TestDefaultRequiredDate:
    """Default required-by dates from ``[driver:]d:m:y``."""

    def test_offsets_roll_over_month_end(self):
        assert date_from_offsets(0, 1, 0, today=date(2023, 1, 31)) == int(
            datetime.combine(date(2023, 2, 28), time.min).timestamp()
        )

    async def test_plain_offsets(self, helper):
        expected = date_from_offsets(0, 0, 1)
        assert await helper.get_default_required_date({"defaultRequiredDate": "0:0:1"}) == expected

    async def test_driver_value_wins(self, helper, catalog):
        result = await helper.get_default_required_date({"defaultRequiredDate": "driver:0:2:0"}, catalog, PATRON)
        assert datetime.fromtimestamp(result).year == date.today().year + 5

    async def test_malformed_setting_falls_back(self, helper):
        assert await helper.get_default_required_date({"defaultRequiredDate": "a:b:c"}) == date_from_offsets(0, 1, 0)


class TestInputValidation:
    """Pickup location, request group and link checks."""

    LOCATIONS = [{"locationID": "A"}, {"locationID": "B"}]

    def test_pickup_must_be_offered(self, helper):
        assert helper.validate_pick_up_input("A", "pickUpLocation", self.LOCATIONS)
        assert not helper.validate_pick_up_input("Z", "pickUpLocation", self.LOCATIONS)

    def test_pickup_ignored_when_not_a_field(self, helper):
        assert helper.validate_pick_up_input("Z", "comments", self.LOCATIONS)

    def test_request_group_only_for_title_level(self, helper):
        groups = [{"id": 1}]
        assert helper.validate_request_group_input({"level": "copy", "requestGroupId": "9"}, "requestGroup", groups)
        assert not helper.validate_request_group_input({"level": "title", "requestGroupId": "9"}, "requestGroup", groups)
        assert helper.validate_request_group_input({"level": "title", "requestGroupId": "1"}, "requestGroup", groups)

    def test_signed_link_is_accepted(self, helper):
        keys = ["id", "item_id", "level"]
        params = {"id": "rec1", "item_id": "rec1-1", "level": "copy"}
        params["hashKey"] = helper.make_link_hash(keys, params)
        gathered = helper.validate_request(keys, params, {"comment": "please", "level": "title"})
        assert gathered == {"comment": "please", "id": "rec1", "item_id": "rec1-1", "level": "copy"}

    def test_tampered_link_is_rejected(self, helper):
        keys = ["id", "item_id", "level"]
        params = {"id": "rec1", "item_id": "rec1-1", "level": "copy"}
        params["hashKey"] = helper.make_link_hash(keys, params)
        params["item_id"] = "rec1-2"
        assert helper.validate_request(keys, params) is False
