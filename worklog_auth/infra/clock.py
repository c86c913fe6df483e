from __future__ import annotations

from datetime import datetime
from typing import Protocol

from worklog_auth.domain.models import now_utc


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return now_utc()


system_clock = SystemClock()
