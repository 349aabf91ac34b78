"""Wrapper around the configured ILS driver."""
from functools import lru_cache
from typing import Any, Dict, Optional, Union

import structlog

from portal.config import settings
from portal.services.ils.drivers import DRIVERS
from portal.services.ils.drivers.base import AbstractILSDriver
from portal.services.ils.exceptions import ILSException

logger = structlog.get_logger()


class ILSConnection:
    """Calls into an ILS driver.

    Driver errors other than :class:`ILSException` are logged and re-raised
    as :class:`ILSException`, so callers only ever handle one error type.
    """

    def __init__(
        self,
        driver: AbstractILSDriver,
        holds_mode: str = "all",
        cancel_holds_enabled: bool = True,
    ):
        self.driver = driver
        self.holds_mode = holds_mode
        self.cancel_holds_enabled = cancel_holds_enabled

    def check_capability(self, method: str) -> bool:
        """Whether the driver implements ``method``."""
        return self.driver.supports(method)

    async def call(self, method: str, *args, **kwargs):
        if not self.check_capability(method):
            raise ILSException(f"Cannot call method: {method}")
        try:
            return await getattr(self.driver, method)(*args, **kwargs)
        except ILSException:
            raise
        except Exception as e:
            logger.error("ILS driver call failed", method=method, error=str(e))
            raise ILSException(str(e)) from e

    async def check_function(self, function: str, params: Optional[Dict[str, Any]] = None) -> Union[Dict[str, Any], bool]:
        """Describe how a feature is supported, or return False.

        ``Holds`` yields the parsed holds configuration and ``cancelHolds``
        names the cancel mechanism (``cancelHolds`` or ``getCancelHoldLink``).
        """
        try:
            if function == "Holds":
                return await self._check_holds(params)
            if function == "cancelHolds":
                return self._check_cancel_holds()
        except ILSException as e:
            logger.error("ILS feature check failed", function=function, error=str(e))
        return False

    async def _check_holds(self, params: Optional[Dict[str, Any]]):
        config = await self.call("get_config", "Holds", params)
        if self.holds_mode != "none" and self.check_capability("place_hold") and config and "HMACKeys" in config:
            response: Dict[str, Any] = {
                "function": "placeHold",
                "HMACKeys": [k for k in str(config["HMACKeys"]).split(":") if k],
            }
            if "defaultRequiredDate" in config:
                response["defaultRequiredDate"] = config["defaultRequiredDate"]
            if "extraHoldFields" in config:
                response["extraHoldFields"] = config["extraHoldFields"]
            if config.get("updateFields"):
                response["updateFields"] = [f.strip() for f in str(config["updateFields"]).split(":") if f.strip()]
            response["helpText"] = config.get("helpText", "")
            response["updateHelpText"] = config.get("updateHelpText", "")
            response["pickUpLocationCheckLimit"] = int(config.get("pickUpLocationCheckLimit") or 0)
            return response
        if self.check_capability("get_hold_link"):
            return {"function": "getHoldLink"}
        return False

    def _check_cancel_holds(self):
        if not self.cancel_holds_enabled:
            return False
        if self.check_capability("cancel_holds"):
            return {"function": "cancelHolds"}
        if self.check_capability("get_cancel_hold_link"):
            return {"function": "getCancelHoldLink"}
        return False

    async def patron_login(self, username: str, password: str):
        return await self.call("patron_login", username, password)

    async def get_my_profile(self, patron):
        return await self.call("get_my_profile", patron)

    async def get_my_holds(self, patron):
        return await self.call("get_my_holds", patron)

    async def get_holding(self, record_id: str, patron=None):
        return await self.call("get_holding", record_id, patron)

    async def get_pick_up_locations(self, patron, hold_details=None):
        return await self.call("get_pick_up_locations", patron, hold_details)

    async def get_default_pick_up_location(self, patron, hold_details=None):
        return await self.call("get_default_pick_up_location", patron, hold_details)

    async def get_request_groups(self, record_id, patron, hold_details=None):
        return await self.call("get_request_groups", record_id, patron, hold_details)

    async def get_default_request_group(self, patron, hold_details=None):
        return await self.call("get_default_request_group", patron, hold_details)

    async def check_request_is_valid(self, record_id, data, patron):
        # Drivers without a validity check accept every request
        if not self.check_capability("check_request_is_valid"):
            return True
        return await self.call("check_request_is_valid", record_id, data, patron)

    async def place_hold(self, details):
        return await self.call("place_hold", details)

    async def cancel_holds(self, details):
        return await self.call("cancel_holds", details)

    async def get_cancel_hold_details(self, hold, patron):
        return await self.call("get_cancel_hold_details", hold, patron)

    async def get_cancel_hold_link(self, hold, patron):
        return await self.call("get_cancel_hold_link", hold, patron)

    async def update_holds(self, hold_details, fields, patron):
        return await self.call("update_holds", hold_details, fields, patron)

    async def get_hold_default_required_date(self, patron, hold_info):
        return await self.call("get_hold_default_required_date", patron, hold_info)

    async def get_account_blocks(self, patron):
        return await self.call("get_account_blocks", patron)


def create_driver(name: str) -> AbstractILSDriver:
    """Instantiate a driver by its configured name."""
    try:
        driver_class = DRIVERS[name]
    except KeyError:
        raise ILSException(f"Unknown ILS driver: {name}")
    return driver_class({
        "users": settings.DEMO_ILS_USERS,
        "failure_probabilities": settings.DEMO_ILS_FAILURE_PROBABILITY,
        "holds": settings.ILS_HOLDS,
    })


@lru_cache()
def get_ils_connection() -> ILSConnection:
    """Process-wide connection to the configured ILS."""
    logger.info("Initializing ILS connection", driver=settings.ILS_DRIVER)
    return ILSConnection(
        create_driver(settings.ILS_DRIVER),
        holds_mode=settings.ILS_HOLDS_MODE,
        cancel_holds_enabled=settings.ILS_CANCEL_HOLDS_ENABLED,
    )
