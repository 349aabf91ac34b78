"""Rule-based permission checks.

A permission maps to a list of rules. Each rule may name ``role``
(``guest`` or ``loggedin``), ``ipRange`` (CIDR blocks or ``start-end``
ranges) and ``username``. A rule matches when every condition it names
matches, and a permission is granted when any of its rules match.
"""
import ipaddress
from typing import Any, Dict, Iterable, List, Optional

import structlog

from portal.config import settings

logger = structlog.get_logger()


class ForbiddenError(Exception):
    """Raised when a signature or permission check fails."""


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def ip_in_range(ip: Optional[str], ranges: Iterable[str]) -> bool:
    """Check ``ip`` against CIDR blocks, ``a-b`` ranges or single addresses."""
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for spec in ranges:
        spec = spec.strip()
        try:
            if "-" in spec:
                start, end = (ipaddress.ip_address(p.strip()) for p in spec.split("-", 1))
                if start.version == address.version and start <= address <= end:
                    return True
            elif address in ipaddress.ip_network(spec, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring malformed IP range", ip_range=spec)
    return False


class PermissionManager:
    """Evaluates configured permission rules for a request context."""

    def __init__(self, rules: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.rules = settings.PERMISSIONS if rules is None else rules

    def _rule_matches(self, rule: Dict[str, Any], user, ip: Optional[str]) -> bool:
        if "role" in rule:
            roles = _as_list(rule["role"])
            role = "loggedin" if user is not None else "guest"
            if role not in roles:
                return False
        if "ipRange" in rule and not ip_in_range(ip, _as_list(rule["ipRange"])):
            return False
        if "username" in rule:
            if user is None or user.username not in _as_list(rule["username"]):
                return False
        return True

    def is_granted(self, permission: str, user=None, ip: Optional[str] = None) -> bool:
        rules = self.rules.get(permission)
        if not rules:
            return False
        return any(self._rule_matches(rule, user, ip) for rule in rules)


permission_manager = PermissionManager()
