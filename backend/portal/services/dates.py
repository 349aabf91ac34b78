"""Conversion between display dates and machine dates."""
from datetime import date, datetime, time
from typing import Optional, Union

from portal.config import settings


class DateError(ValueError):
    """Raised when a date string cannot be parsed."""


class DateConverter:
    """Parses and formats dates in the configured display format."""

    def __init__(self, display_format: Optional[str] = None):
        self.display_format = display_format or settings.ILS_DISPLAY_DATE_FORMAT

    def parse_display_date(self, value: str) -> date:
        """Parse a display date.

        Raises:
            DateError: if ``value`` does not match the display format
        """
        try:
            return datetime.strptime(value.strip(), self.display_format).date()
        except (AttributeError, ValueError) as e:
            raise DateError(f"Date/time problem: {value!r}") from e

    def display_to_timestamp(self, value: str, end_of_day: bool = False) -> int:
        """Unix timestamp of a display date (start or end of that day)."""
        day = self.parse_display_date(value)
        moment = datetime.combine(day, time(23, 59, 59) if end_of_day else time.min)
        return int(moment.timestamp())

    def to_display_date(self, value: Union[date, datetime, str], source_format: str = "%Y-%m-%d") -> str:
        """Format a date (or a string in ``source_format``) for display."""
        if isinstance(value, str):
            try:
                value = datetime.strptime(value, source_format)
            except ValueError as e:
                raise DateError(f"Date/time problem: {value!r}") from e
        return value.strftime(self.display_format)

    def timestamp_to_display_date(self, timestamp: Union[int, float]) -> str:
        return datetime.fromtimestamp(timestamp).strftime(self.display_format)


def today_timestamp() -> int:
    """Timestamp of the start of the current day."""
    return int(datetime.combine(date.today(), time.min).timestamp())
