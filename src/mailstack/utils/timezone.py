"""
Timezone Utilities
Run reports are stamped in UTC and rendered in the host's configured zone
"""

from datetime import datetime
from typing import Optional

import pytz

# ========================
# Timezone Constants
# ========================
UTC = pytz.UTC
DEFAULT_TIMEZONE = "UTC"


class TimezoneHandler:
    """Handle timezone conversions for run reports"""

    @staticmethod
    def get_timezone(name: Optional[str] = None):
        """
        Resolve a timezone name

        Args:
            name: IANA timezone name (e.g. "Europe/Berlin"), UTC when empty

        Returns:
            pytz timezone

        Raises:
            ValueError: If the name is unknown
        """
        if not name:
            return UTC
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {name}")

    @staticmethod
    def to_local(dt: datetime, name: Optional[str] = None) -> datetime:
        """
        Convert datetime to the given timezone

        Args:
            dt: Datetime (naive values are assumed UTC)
            name: Target timezone name

        Returns:
            Aware datetime in the target zone
        """
        if dt.tzinfo is None:
            # Assume UTC if naive
            dt = UTC.localize(dt)
        return dt.astimezone(TimezoneHandler.get_timezone(name))

    @staticmethod
    def format_local(
        dt: datetime,
        name: Optional[str] = None,
        format: str = "%Y-%m-%d %H:%M:%S %Z"
    ) -> str:
        """
        Format datetime in the given timezone

        Example:
            >>> dt = datetime(2024, 11, 16, 3, 45, 23, tzinfo=UTC)
            >>> TimezoneHandler.format_local(dt, "Asia/Kolkata")
            '2024-11-16 09:15:23 IST'
        """
        return TimezoneHandler.to_local(dt, name).strftime(format)


# ========================
# Convenience Functions
# ========================

def now_utc() -> datetime:
    """Get current UTC time"""
    return datetime.now(UTC)


def format_timestamp(dt: datetime, name: Optional[str] = None) -> str:
    """Format a report timestamp"""
    return TimezoneHandler.format_local(dt, name)
