"""Driver contract implemented by every ILS integration.

Patrons, holds and holdings are passed around as plain dicts. A patron is
whatever ``patron_login`` returned (``id``, ``cat_username``,
``cat_password``, names, email).
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union


class AbstractILSDriver(ABC):
    """Base class for ILS drivers.

    Methods that raise :class:`NotImplementedError` here are optional; a
    driver supports one when it overrides it (see :meth:`supports`).
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    def supports(self, method: str) -> bool:
        """Whether this driver provides ``method``."""
        implementation = getattr(type(self), method, None)
        if implementation is None or not callable(implementation):
            return False
        base = getattr(AbstractILSDriver, method, None)
        return base is None or implementation is not base

    @abstractmethod
    async def patron_login(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """Return the patron for valid credentials, None otherwise."""

    @abstractmethod
    async def get_my_profile(self, patron: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_holding(self, record_id: str, patron: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return ``{total, holdings, electronic_holdings}`` for a record."""

    @abstractmethod
    async def get_config(self, function: str, params: Optional[Dict[str, Any]] = None) -> Union[Dict[str, Any], bool]:
        """Driver configuration for a feature, or False when unsupported."""

    async def get_my_holds(self, patron: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_pick_up_locations(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_default_pick_up_location(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None):
        raise NotImplementedError

    async def get_request_groups(self, record_id: Optional[str], patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_default_request_group(self, patron: Dict[str, Any], hold_details: Optional[Dict[str, Any]] = None):
        raise NotImplementedError

    async def check_request_is_valid(self, record_id: str, data: Dict[str, Any], patron: Dict[str, Any]) -> Union[bool, Dict[str, Any]]:
        raise NotImplementedError

    async def place_hold(self, details: Dict[str, Any]) -> Dict[str, Any]:
        """Place a hold; returns ``{success, sysMessage?}``."""
        raise NotImplementedError

    async def cancel_holds(self, details: Dict[str, Any]) -> Dict[str, Any]:
        """Cancel holds; returns ``{count, items: {item_id: {success, status}}}``."""
        raise NotImplementedError

    async def get_cancel_hold_details(self, hold: Dict[str, Any], patron: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def get_cancel_hold_link(self, hold: Dict[str, Any], patron: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def get_hold_link(self, record_id: str, details: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def update_holds(self, hold_details: List[str], fields: Dict[str, Any], patron: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    async def get_hold_default_required_date(self, patron: Dict[str, Any], hold_info: Optional[Dict[str, Any]]) -> Optional[int]:
        raise NotImplementedError

    async def get_account_blocks(self, patron: Dict[str, Any]):
        """List of block reasons, or False when the account is not blocked."""
        raise NotImplementedError
