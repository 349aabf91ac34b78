"""In-memory demonstration driver.

Keeps holds per patron in process memory and produces stable holdings for
any record id. Failures can be simulated per method through
``failure_probabilities`` (percentages, 0 by default).
"""
import random
import zlib
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog

from portal.services.dates import DateConverter
from portal.services.ils.drivers.base import AbstractILSDriver
from portal.services.ils.exceptions import ILSException

logger = structlog.get_logger()

LOCATIONS = [
    {"locationID": "A", "locationDisplay": "Campus A"},
    {"locationID": "B", "locationDisplay": "Campus B"},
    {"locationID": "C", "locationDisplay": "Campus C"},
]

REQUEST_GROUPS = [
    {"id": 1, "name": "Main Library"},
    {"id": 2, "name": "Branch Library"},
]

DEFAULT_HOLDS_CONFIG = {
    "HMACKeys": "id:item_id:level",
    "extraHoldFields": "comments:requestGroup:pickUpLocation:requiredByDate",
    "defaultRequiredDate": "driver:0:2:0",
}


class DemoDriver(AbstractILSDriver):
    """Demo ILS backed by dictionaries."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.users: Dict[str, str] = self.config.get("users") or {}
        self.failure_probabilities: Dict[str, int] = self.config.get("failure_probabilities") or {}
        self.holds_config: Dict[str, Any] = self.config.get("holds") or DEFAULT_HOLDS_CONFIG
        self.default_pick_up_location = self.config.get("default_pick_up_location", "A")
        self.dates = DateConverter()
        self._holds: Dict[str, List[Dict[str, Any]]] = {}

    def is_failing(self, method: str) -> bool:
        probability = self.failure_probabilities.get(method, 0)
        return probability > 0 and random.randint(1, 100) <= probability

    def _check_failure(self, method: str) -> None:
        if self.is_failing(method):
            raise ILSException(f"Simulated failure in {method}")

    def _display(self, day: date) -> str:
        return self.dates.to_display_date(day)

    def _initial_holds(self) -> List[Dict[str, Any]]:
        today = date.today()
        holds = []
        for i in range(3):
            available = i == 0
            reqnum = f"{i:06d}"
            hold = {
                "id": f"demo-{i + 1}",
                "source": "Solr",
                "title": f"Demo Title {i}",
                "location": LOCATIONS[i]["locationID"],
                "create": self._display(today - timedelta(days=i + 1)),
                "expire": self._display(today + timedelta(days=30)),
                "item_id": i,
                "reqnum": reqnum,
                "available": available,
                "in_transit": False,
                "requestGroup": REQUEST_GROUPS[i % len(REQUEST_GROUPS)]["name"],
                "frozen": False,
                "frozenThrough": "",
                # Available holds can no longer be cancelled or changed
                "cancel_details": "" if available else reqnum,
                "updateDetails": "" if available else reqnum,
            }
            if available:
                hold["last_pickup_date"] = self._display(today + timedelta(days=3))
            else:
                hold["position"] = i + 1
            holds.append(hold)
        return holds

    def _patron_holds(self, patron: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        key = str((patron or {}).get("id", ""))
        if key not in self._holds:
            self._holds[key] = self._initial_holds()
        return self._holds[key]

    def reset(self) -> None:
        """Forget all patron state."""
        self._holds.clear()

    async def patron_login(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        self._check_failure("patron_login")
        username = (username or "").strip()
        password = (password or "").strip()
        if self.users and self.users.get(username) != password:
            return None
        return {
            "id": username,
            "firstname": "Lib",
            "lastname": "Rarian",
            "cat_username": username,
            "cat_password": password,
            "email": "Lib.Rarian@library.not",
            "major": None,
            "college": None,
        }

    async def get_my_profile(self, patron: Dict[str, Any]) -> Dict[str, Any]:
        self._check_failure("get_my_profile")
        return {
            "firstname": f"Lib-{patron['cat_username']}",
            "lastname": "Rarian",
            "address1": "Somewhere...",
            "address2": "Over the Rainbow",
            "zip": "12345",
            "city": "City",
            "country": "Country",
            "phone": "1900 CALL ME",
            "group": "Library Staff",
            "expiration_date": "Someday",
            "home_library": self.default_pick_up_location,
        }

    async def get_holding(self, record_id: str, patron: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._check_failure("get_holding")
        seed = zlib.crc32(record_id.encode())
        count = seed % 4 + 1
        holdings = []
        for number in range(1, count + 1):
            location = LOCATIONS[(seed + number) % len(LOCATIONS)]
            available = (seed + number) % 3 != 0
            holdings.append({
                "id": record_id,
                "source": "Solr",
                "item_id": f"{record_id}-{number}",
                "number": number,
                "barcode": f"{(seed + number) % 50000:08d}",
                "availability": available,
                "status": "Available" if available else "Checked Out",
                "location": location["locationDisplay"],
                "reserve": "N",
                "callnumber": f"QA{seed % 1000}.{number}",
                "duedate": "" if available else self._display(date.today() + timedelta(days=14)),
                "is_holdable": True,
                "addLink": bool(patron),
                "level": "copy",
                "enumchron": f"volume {number // 4 + 1}, issue {number % 4}",
            })
        return {"total": len(holdings), "holdings": holdings, "electronic_holdings": []}

    async def get_my_holds(self, patron: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._check_failure("get_my_holds")
        return [dict(hold) for hold in self._patron_holds(patron)]

    async def get_pick_up_locations(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        self._check_failure("get_pick_up_locations")
        result = list(LOCATIONS)
        reqnum = (hold_details or {}).get("reqnum")
        if reqnum is not None and str(reqnum).isdigit() and int(reqnum) == 1:
            result.append({"locationID": "D", "locationDisplay": "Campus D"})
        excluded = self.config.get("exclude_pickup_locations") or []
        return [loc for loc in result if loc["locationID"] not in excluded]

    async def get_default_pick_up_location(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None):
        return self.default_pick_up_location

    async def get_request_groups(self, record_id: Optional[str], patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return list(REQUEST_GROUPS)

    async def get_default_request_group(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None):
        if self.is_failing("get_default_request_group"):
            return False
        return REQUEST_GROUPS[0]["id"]

    async def check_request_is_valid(self, record_id: str, data: Dict[str, Any], patron: Dict[str, Any]):
        if self.is_failing("check_request_is_valid"):
            return {"valid": False, "status": "hold_error_blocked"}
        return {"valid": True, "status": "request_place_text"}

    async def place_hold(self, details: Dict[str, Any]) -> Dict[str, Any]:
        if self.is_failing("place_hold"):
            return {
                "success": False,
                "sysMessage": "Demonstrating failure; keep trying and it will work eventually.",
            }
        holds = self._patron_holds(details.get("patron"))
        next_id = holds[-1]["item_id"] + 1 if holds else 0
        expire = None
        if details.get("requiredByTS"):
            expire = self.dates.timestamp_to_display_date(details["requiredByTS"])
        request_group = ""
        for group in REQUEST_GROUPS:
            if str(group["id"]) == str(details.get("requestGroupId")):
                request_group = group["name"]
                break
        frozen = False
        frozen_through = ""
        if details.get("startDateTS"):
            # Suspended until the day before the requested start
            frozen = True
            start = datetime.fromtimestamp(details["startDateTS"]) - timedelta(days=1)
            frozen_through = self._display(start.date())
        reqnum = f"{next_id:06d}"
        holds.append({
            "id": details.get("id"),
            "source": "Solr",
            "title": details.get("title", ""),
            "location": details.get("pickUpLocation"),
            "expire": expire,
            "create": self._display(date.today()),
            "reqnum": reqnum,
            "item_id": next_id,
            "available": False,
            "in_transit": False,
            "position": len(holds) + 1,
            "requestGroup": request_group,
            "frozen": frozen,
            "frozenThrough": frozen_through,
            "updateDetails": reqnum,
            "cancel_details": reqnum,
            "comment": details.get("comment", ""),
        })
        logger.info("Demo hold placed", record_id=details.get("id"), reqnum=reqnum)
        return {"success": True}

    async def cancel_holds(self, details: Dict[str, Any]) -> Dict[str, Any]:
        self._check_failure("cancel_holds_all")
        holds = self._patron_holds(details.get("patron"))
        wanted = [str(d) for d in details.get("details", [])]
        kept = []
        result = {"count": 0, "items": {}}
        for hold in holds:
            if str(hold["reqnum"]) not in wanted:
                kept.append(hold)
            elif self.is_failing("cancel_holds"):
                kept.append(hold)
                result["items"][hold["item_id"]] = {
                    "success": False,
                    "status": "hold_cancel_fail",
                    "sysMessage": "Demonstrating failure; keep trying and it will work eventually.",
                }
            else:
                result["count"] += 1
                result["items"][hold["item_id"]] = {"success": True, "status": "hold_cancel_success"}
        holds[:] = kept
        return result

    async def get_cancel_hold_details(self, hold: Dict[str, Any], patron: Dict[str, Any]) -> str:
        if hold.get("available") or hold.get("in_transit"):
            return ""
        return str(hold.get("reqnum", ""))

    async def update_holds(self, hold_details: List[str], fields: Dict[str, Any], patron: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        results: Dict[str, Dict[str, Any]] = {}
        wanted = [str(d) for d in hold_details]
        for hold in self._patron_holds(patron):
            if not hold.get("updateDetails") or str(hold["updateDetails"]) not in wanted:
                continue
            if self.is_failing("update_holds"):
                results[hold["reqnum"]] = {
                    "success": False,
                    "status": "Simulated error; try again and it will work eventually.",
                }
                continue
            if "frozen" in fields:
                if fields["frozen"]:
                    hold["frozen"] = True
                    hold["frozenThrough"] = (
                        self.dates.timestamp_to_display_date(fields["frozenThroughTS"])
                        if fields.get("frozenThroughTS") else ""
                    )
                else:
                    hold["frozen"] = False
                    hold["frozenThrough"] = ""
            if fields.get("pickUpLocation"):
                hold["location"] = fields["pickUpLocation"]
            results[hold["reqnum"]] = {"success": True}
        return results

    async def get_hold_default_required_date(self, patron: Dict[str, Any], hold_info: Optional[Dict[str, Any]]) -> Optional[int]:
        if self.is_failing("get_hold_default_required_date"):
            return None
        today = date.today()
        try:
            target = today.replace(year=today.year + 5)
        except ValueError:
            target = today.replace(year=today.year + 5, day=28)
        return int(datetime.combine(target, datetime.min.time()).timestamp())

    async def get_account_blocks(self, patron: Dict[str, Any]):
        if self.is_failing("get_account_blocks"):
            return ["simulated account block"]
        return False

    async def get_config(self, function: str, params: Optional[Dict[str, Any]] = None):
        if function == "Holds":
            return self.holds_config
        return False
