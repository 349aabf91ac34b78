"""Login attempt tracking and account lockout."""
import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import structlog

from portal.config import settings

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginRateLimiter:
    """
    Counts failed logins per username within a time window.

    State lives in process memory: it resets on restart and is not shared
    between worker processes.
    """

    def __init__(self, max_attempts: Optional[int] = None, lockout_minutes: Optional[int] = None):
        self.max_attempts = max_attempts or settings.LOGIN_MAX_ATTEMPTS
        self.lockout_minutes = lockout_minutes or settings.LOGIN_LOCKOUT_MINUTES
        # {username: [(timestamp, ip), ...]}
        self._failed_attempts: Dict[str, List[Tuple[datetime, Optional[str]]]] = defaultdict(list)
        # {username: unlock_time}
        self._lockouts: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(username: str) -> str:
        return username.strip().lower()

    def _clean_old_attempts(self, key: str) -> None:
        cutoff = _utcnow() - timedelta(minutes=self.lockout_minutes)
        self._failed_attempts[key] = [(ts, ip) for ts, ip in self._failed_attempts[key] if ts > cutoff]

    async def is_locked(self, username: str) -> Tuple[bool, Optional[int]]:
        """Return ``(locked, seconds_remaining)``."""
        key = self._key(username)
        async with self._lock:
            unlock_time = self._lockouts.get(key)
            if unlock_time is None:
                return False, None
            if _utcnow() < unlock_time:
                return True, int((unlock_time - _utcnow()).total_seconds())
            del self._lockouts[key]
            self._failed_attempts.pop(key, None)
            return False, None

    async def record_failed_attempt(self, username: str, ip: Optional[str] = None) -> Tuple[bool, int]:
        """Return ``(now_locked, attempts_remaining)``."""
        key = self._key(username)
        async with self._lock:
            self._clean_old_attempts(key)
            self._failed_attempts[key].append((_utcnow(), ip))
            attempt_count = len(self._failed_attempts[key])
            logger.warning(
                "Failed login attempt",
                username=username,
                ip=ip,
                attempt_count=attempt_count,
                max_attempts=self.max_attempts,
            )
            if attempt_count >= self.max_attempts:
                unlock_time = _utcnow() + timedelta(minutes=self.lockout_minutes)
                self._lockouts[key] = unlock_time
                logger.error(
                    "Account locked due to too many failed attempts",
                    username=username,
                    ip=ip,
                    unlock_time=unlock_time.isoformat(),
                )
                return True, 0
            return False, self.max_attempts - attempt_count

    async def record_successful_login(self, username: str, ip: Optional[str] = None) -> None:
        key = self._key(username)
        async with self._lock:
            self._failed_attempts.pop(key, None)
            self._lockouts.pop(key, None)
        logger.info("Successful login", username=username, ip=ip)

    async def reset(self) -> None:
        async with self._lock:
            self._failed_attempts.clear()
            self._lockouts.clear()


login_rate_limiter = LoginRateLimiter()
