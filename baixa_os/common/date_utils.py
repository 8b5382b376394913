"""Portal-local time helpers.

The GCOM portal interprets every date it receives in its own local time zone,
so the timestamps typed into the closure form are computed there, not in the
machine locale.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Sao_Paulo"
PORTAL_DATETIME_FORMAT = "%d/%m/%Y %H:%M"
PORTAL_DATE_FORMAT = "%d/%m/%Y"
EXECUTION_START_HOUR = 8


def get_timezone() -> ZoneInfo:
    """Return the portal time zone (``PORTAL_TIMEZONE`` overrides the default)."""

    name = os.getenv("PORTAL_TIMEZONE", DEFAULT_TIMEZONE)
    return ZoneInfo(name)


def aware_now(tz: ZoneInfo | None = None) -> datetime:
    """Return ``datetime.now`` in the portal time zone."""

    return datetime.now(tz or get_timezone())


@dataclass(frozen=True)
class ExecutionWindow:
    start: datetime
    end: datetime

    @property
    def start_text(self) -> str:
        return self.start.strftime(PORTAL_DATETIME_FORMAT)

    @property
    def end_text(self) -> str:
        return self.end.strftime(PORTAL_DATETIME_FORMAT)

    @property
    def day_text(self) -> str:
        return self.end.strftime(PORTAL_DATE_FORMAT)


def execution_window(reference: datetime | None = None, tz: ZoneInfo | None = None) -> ExecutionWindow:
    """Return the execution start (08:00 today) and end (now) in portal time."""

    current = reference or aware_now(tz)
    start = current.replace(hour=EXECUTION_START_HOUR, minute=0, second=0, microsecond=0)
    return ExecutionWindow(start=start, end=current)
