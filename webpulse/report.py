"""Periodic status report rendering."""

import datetime as _dt
from typing import Iterable, List

from .target import TargetState

SEPARATOR = "=" * 40


def render_status_report(targets: Iterable[TargetState],
                         now: _dt.datetime) -> str:
    """Render the multi-line report listing every target's up/down state."""

    targets = list(targets)
    lines: List[str] = [
        SEPARATOR,
        f"Daily Status Report - {now.strftime('%Y-%m-%d %H:%M:%S')}",
        SEPARATOR,
        f"Active sites being monitored: {len(targets)}",
        "",
    ]
    for target in targets:
        if target.in_failure_state:
            lines.append(f"✗ {target.url} - Status: DOWN")
            lines.append(
                f"  └─ Consecutive failures: {target.consecutive_failures}")
            lines.append(f"  └─ Last error: {target.last_error}")
        else:
            lines.append(f"✓ {target.url} - Status: UP")
    lines.append(SEPARATOR)
    return "\n".join(lines)
