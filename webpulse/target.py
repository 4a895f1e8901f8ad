"""Per-URL health record."""

from __future__ import annotations

import datetime as _dt
from typing import Optional


class TargetState:
    """Mutable health history of one monitored URL.

    A record is only ever touched by the check loop of its own URL, so it
    carries no lock.
    """

    def __init__(self, url: str):
        self._url = url
        self.consecutive_failures = 0
        self.last_error = ""
        self.in_failure_state = False
        self.last_alert_time: Optional[_dt.datetime] = None
        self.last_suppression_log_time: Optional[_dt.datetime] = None

    @property
    def url(self) -> str:
        return self._url

    def record_failure(self, detail: str) -> int:
        self.consecutive_failures += 1
        self.in_failure_state = True
        self.last_error = detail
        return self.consecutive_failures

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.last_error = ""
        self.in_failure_state = False
        self.last_alert_time = None
        self.last_suppression_log_time = None

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (f"TargetState(url={self._url!r}, "
                f"consecutive_failures={self.consecutive_failures}, "
                f"in_failure_state={self.in_failure_state})")
