"""Holds workflow helper.

Tracks which hold ids a user has been offered, runs the cancel workflow and
validates the pickup location, request group and date inputs of hold forms.
"""
import calendar
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import structlog

from portal.services.crypt import link_hash, verify_signature
from portal.services.dates import DateConverter, DateError, today_timestamp
from portal.services.flash import FlashMessenger
from portal.services.ils.connection import ILSConnection
from portal.services.session_store import UserSession

logger = structlog.get_logger()


def split_fields(value: Union[str, Iterable[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [f.strip() for f in value.split(":") if f.strip()]
    return list(value)


def date_from_offsets(days: int, months: int, years: int, today: Optional[date] = None) -> int:
    """Timestamp of midnight ``days``/``months``/``years`` from today."""
    today = today or date.today()
    month_index = today.month - 1 + months
    year = today.year + years + month_index // 12
    month = month_index % 12 + 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    target = date(year, month, day) + timedelta(days=days)
    return int(datetime.combine(target, time.min).timestamp())


class HoldsHelper:
    """Hold request logic for one user's session."""

    def __init__(
        self,
        session: UserSession,
        flash: Optional[FlashMessenger] = None,
        dates: Optional[DateConverter] = None,
        hmac_key: Optional[str] = None,
    ):
        self.session = session
        self.flash = flash or FlashMessenger()
        self.dates = dates or DateConverter()
        self.hmac_key = hmac_key

    # Valid id tracking

    def reset_validation(self) -> None:
        self.session.valid_ids = []

    def remember_valid_id(self, value) -> None:
        value = str(value)
        if value not in self.session.valid_ids:
            self.session.valid_ids.append(value)

    def get_valid_ids(self) -> List[str]:
        return list(self.session.valid_ids)

    def validate_ids(self, ids: Iterable) -> bool:
        """True when every id was previously offered to this user."""
        valid = set(self.session.valid_ids)
        return all(str(i) in valid for i in ids)

    # Cancelling

    async def add_cancel_details(
        self,
        catalog: ILSConnection,
        details: Dict[str, Any],
        cancel_status,
        patron: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Attach cancel information to a hold and remember its cancel id."""
        details = dict(details)
        if not cancel_status:
            details.pop("cancel_link", None)
            details.pop("cancel_details", None)
            return details
        if cancel_status["function"] == "getCancelHoldLink":
            details.pop("cancel_details", None)
            details["cancel_link"] = await catalog.get_cancel_hold_link(details, patron)
        elif "cancel_details" in details:
            # An empty string means the hold cannot be cancelled
            if details["cancel_details"] == "":
                del details["cancel_details"]
            else:
                self.remember_valid_id(details["cancel_details"])
        else:
            cancel_details = await catalog.get_cancel_hold_details(details, patron)
            if cancel_details != "":
                details["cancel_details"] = cancel_details
                self.remember_valid_id(cancel_details)
        return details

    async def cancel_holds(
        self,
        catalog: ILSConnection,
        patron: Dict[str, Any],
        params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Cancel the holds chosen in ``params``.

        ``params`` carries ``cancelAll`` with ``cancelAllIDS`` or
        ``cancelSelected`` with ``selectedIDS`` (``cancelSelectedIDS`` is
        still accepted). When ``confirm`` is False the ids are echoed back
        under ``confirm`` instead of being cancelled.
        """
        if params.get("cancelAll"):
            details = params.get("cancelAllIDS")
            action = "cancelAll"
        elif params.get("cancelSelected"):
            details = params.get("selectedIDS")
            if details is None:
                details = params.get("cancelSelectedIDS")
            action = "cancelSelected"
        else:
            return {}

        if not details:
            self.flash.error("hold_empty_selection")
            return {}
        details = [str(d) for d in details]

        if params.get("confirm") is False:
            return {
                "confirm": {
                    "title": "hold_cancel_all" if action == "cancelAll" else "hold_cancel_selected",
                    "message": f"confirm_{'hold_cancel_all' if action == 'cancelAll' else 'hold_cancel_selected'}_text",
                    "action": action,
                    "ids": details,
                }
            }

        if not self.validate_ids(details):
            logger.warning("Cancel request with unknown hold ids", patron_id=patron.get("id"))
            self.flash.error("error_inconsistent_parameters")
            return {}

        results = await catalog.cancel_holds({"details": details, "patron": patron})
        if not results:
            self.flash.error("hold_cancel_fail")
            return {}
        failed = sum(1 for item in (results.get("items") or {}).values() if not item.get("success"))
        if failed:
            self.flash.error("hold_cancel_fail_items", {"%%count%%": failed})
        if results.get("count", 0) > 0:
            self.flash.success("hold_cancel_success_items", {"%%count%%": results["count"]})
        return results

    # Date validation

    def validate_dates(
        self,
        start_date: Optional[str],
        required_by: Optional[str],
        enabled_fields: Iterable[str],
    ) -> Dict[str, Any]:
        """Check start and required-by dates of a hold form.

        Returns ``startDateTS``, ``requiredByTS`` (end of day) and a list of
        error keys.
        """
        enabled = split_fields(enabled_fields)
        result: Dict[str, Any] = {"startDateTS": None, "requiredByTS": None, "errors": []}
        if not {"startDate", "requiredByDate", "requiredByDateOptional"} & set(enabled):
            return result
        today = today_timestamp()

        if "startDate" in enabled:
            try:
                result["startDateTS"] = self.dates.display_to_timestamp(start_date) if start_date else 0
                if result["startDateTS"] < today:
                    result["errors"].append("hold_start_date_invalid")
            except DateError:
                result["errors"].append("hold_start_date_invalid")

        if "requiredByDate" in enabled or "requiredByDateOptional" in enabled:
            optional = "requiredByDateOptional" in enabled
            try:
                result["requiredByTS"] = (
                    self.dates.display_to_timestamp(required_by, end_of_day=True) if required_by else 0
                )
                if (not optional or result["requiredByTS"]) and result["requiredByTS"] < today:
                    result["errors"].append("hold_required_by_date_invalid")
            except DateError:
                result["errors"].append("hold_required_by_date_invalid")

        if (
            not result["errors"]
            and "startDate" in enabled
            and result["requiredByTS"]
            and result["startDateTS"] > result["requiredByTS"]
        ):
            result["errors"].append("hold_required_by_date_before_start_date")
        return result

    def validate_frozen_through(self, frozen_through: Optional[str], extra_fields: Iterable[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"frozenThroughTS": None, "errors": []}
        if "frozenThrough" not in split_fields(extra_fields) or not frozen_through:
            return result
        try:
            result["frozenThroughTS"] = self.dates.display_to_timestamp(frozen_through)
            if result["frozenThroughTS"] < int(datetime.now().timestamp()):
                result["errors"].append("hold_frozen_through_date_invalid")
        except DateError:
            result["errors"].append("hold_frozen_through_date_invalid")
        return result

    # Form input validation

    def validate_pick_up_input(self, pickup, extra_fields: Iterable[str], pick_up_libs: List[Dict[str, Any]]) -> bool:
        if "pickUpLocation" not in split_fields(extra_fields):
            return True
        return any(str(lib.get("locationID")) == str(pickup) for lib in pick_up_libs or [])

    def validate_request_group_input(
        self,
        gathered: Mapping[str, Any],
        extra_fields: Iterable[str],
        request_groups: List[Dict[str, Any]],
    ) -> bool:
        if "requestGroup" not in split_fields(extra_fields):
            return True
        # Only title level requests carry a request group
        if gathered.get("level") != "title":
            return True
        return any(str(group.get("id")) == str(gathered.get("requestGroupId")) for group in request_groups or [])

    async def get_default_required_date(
        self,
        check_holds: Mapping[str, Any],
        catalog: Optional[ILSConnection] = None,
        patron: Optional[Dict[str, Any]] = None,
        hold_info: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Default required-by timestamp from a ``[driver:]d:m:y`` setting."""
        parts = str(check_holds.get("defaultRequiredDate") or "0:1:0").split(":")
        use_driver = parts[0] == "driver"
        if use_driver:
            parts = parts[1:]
        if len(parts) < 3:
            parts = ["0", "1", "0"]

        if use_driver and catalog is not None and catalog.check_capability("get_hold_default_required_date"):
            result = await catalog.get_hold_default_required_date(patron, hold_info)
            if result:
                return int(result)

        try:
            days, months, years = (int(p) for p in parts[:3])
        except ValueError:
            days, months, years = 0, 1, 0
        return date_from_offsets(days, months, years)

    # Link integrity

    def make_link_hash(self, keys: Iterable[str], params: Mapping[str, Any]) -> str:
        return link_hash(list(keys), params, self.hmac_key)

    def validate_request(
        self,
        link_keys: Iterable[str],
        params: Mapping[str, Any],
        posted: Optional[Mapping[str, Any]] = None,
    ) -> Union[Dict[str, Any], bool]:
        """Verify ``hashKey`` against the link parameters.

        Returns the gathered request details (posted values overridden by the
        signed link values) or False when the link was tampered with.
        """
        keys = list(link_keys)
        values = {key: params.get(key) for key in keys}
        expected = self.make_link_hash(keys, values)
        if not verify_signature(expected, str(params.get("hashKey") or "")):
            return False
        gathered = dict(posted or {})
        gathered["id"] = params.get("id")
        gathered.update(values)
        return gathered
