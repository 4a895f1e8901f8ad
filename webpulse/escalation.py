"""Escalation policy that turns probe outcomes into delays and notifications."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from configuration import MonitorSettings

from .probe import Outcome
from .target import TargetState

LOGGER = logging.getLogger(__name__)

ESCALATED_CHECK_INTERVAL = _dt.timedelta(minutes=1)
SUPPRESSION_LOG_WINDOW = _dt.timedelta(minutes=15)


class TargetStatus(Enum):
    """Outcome of processing one probe for a target."""

    HEALTHY = "healthy"
    RECOVERED = "recovered"
    FIRST_FAILURE = "first_failure"
    FAILING = "failing"
    ALERTED = "alerted"
    SUPPRESSED = "suppressed"
    COOLDOWN = "cooldown"

    @property
    def is_failure(self) -> bool:
        return self not in (TargetStatus.HEALTHY, TargetStatus.RECOVERED)

    @property
    def status_text(self) -> str:
        return "DOWN" if self.is_failure else "UP"


class Notifier:
    """Interface the engine uses to hand off alert and recovery events."""

    def notify_alert(self, url: str, consecutive_failures: int,
                     last_error: str) -> None:  # pragma: no cover - interface contract
        raise NotImplementedError

    def notify_recovery(self, url: str) -> None:  # pragma: no cover - interface contract
        raise NotImplementedError


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    url: str
    consecutive_failures: int = 0
    last_error: str = ""


@dataclass(frozen=True)
class EscalationDecision:
    url: str
    status: TargetStatus
    delay: _dt.timedelta
    consecutive_failures: int
    event: Optional[NotificationEvent] = None


class EscalationEngine:
    """Decide the next state, the next check delay and any notification.

    Healthy targets are checked every ``check_interval``. The first failure
    switches the target to ``escalated_interval`` and it stays there until it
    recovers. Once ``failure_threshold`` consecutive failures are reached an
    alert is sent, then at most once per ``alert_cooldown`` while the outage
    lasts. Withheld alerts are logged at most once per
    ``suppression_log_window``.
    """

    def __init__(
        self,
        *,
        failure_threshold: int,
        check_interval: _dt.timedelta,
        alert_cooldown: _dt.timedelta,
        notifier: Optional[Notifier] = None,
        escalated_interval: _dt.timedelta = ESCALATED_CHECK_INTERVAL,
        suppression_log_window: _dt.timedelta = SUPPRESSION_LOG_WINDOW,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.check_interval = check_interval
        self.alert_cooldown = alert_cooldown
        self.escalated_interval = escalated_interval
        self.suppression_log_window = suppression_log_window
        self._notifier = notifier

    @classmethod
    def from_settings(
        cls,
        settings: MonitorSettings,
        notifier: Optional[Notifier] = None,
    ) -> "EscalationEngine":
        return cls(
            failure_threshold=settings.failure_threshold,
            check_interval=settings.check_interval,
            alert_cooldown=settings.alert_cooldown,
            notifier=notifier,
        )

    def process(
        self,
        target: TargetState,
        outcome: Outcome,
        now: _dt.datetime,
        *,
        stop_event: Optional[threading.Event] = None,
    ) -> EscalationDecision:
        """Apply ``outcome`` to ``target`` and notify when the policy says so.

        Once ``stop_event`` is set the state is still updated but no
        notification is sent.
        """

        if outcome.healthy:
            decision = self._handle_healthy(target)
        else:
            decision = self._handle_unhealthy(target, outcome.detail, now)

        if decision.event is not None:
            if stop_event is not None and stop_event.is_set():
                LOGGER.info(
                    "monitor.escalation.notification_discarded url=%s kind=%s",
                    decision.url,
                    decision.event.kind,
                )
            else:
                self._dispatch(decision.event)
        return decision

    def _handle_healthy(self, target: TargetState) -> EscalationDecision:
        if target.in_failure_state:
            LOGGER.info(
                "monitor.escalation.recovery url=%s failures=%d message=[RECOVERY] %s is back online",
                target.url,
                target.consecutive_failures,
                target.url,
            )
            target.record_success()
            return EscalationDecision(
                url=target.url,
                status=TargetStatus.RECOVERED,
                delay=self.check_interval,
                consecutive_failures=0,
                event=NotificationEvent(kind="recovery", url=target.url),
            )

        target.record_success()
        return EscalationDecision(
            url=target.url,
            status=TargetStatus.HEALTHY,
            delay=self.check_interval,
            consecutive_failures=0,
        )

    def _handle_unhealthy(self, target: TargetState, detail: str,
                          now: _dt.datetime) -> EscalationDecision:
        failures = target.record_failure(detail)
        status = TargetStatus.FAILING

        if failures == 1:
            LOGGER.warning(
                "monitor.escalation.first_failure url=%s error=%s interval=%ss",
                target.url,
                detail,
                int(self.escalated_interval.total_seconds()),
            )
            status = TargetStatus.FIRST_FAILURE
        elif failures < self.failure_threshold:
            LOGGER.warning(
                "monitor.escalation.repeat_failure url=%s failures=%d threshold=%d error=%s",
                target.url,
                failures,
                self.failure_threshold,
                detail,
            )

        event = None
        if failures >= self.failure_threshold:
            status, event = self._handle_threshold(target, now)

        return EscalationDecision(
            url=target.url,
            status=status,
            delay=self.escalated_interval,
            consecutive_failures=failures,
            event=event,
        )

    def _handle_threshold(
        self, target: TargetState, now: _dt.datetime
    ) -> Tuple[TargetStatus, Optional[NotificationEvent]]:
        last_alert = target.last_alert_time
        if last_alert is None or now - last_alert >= self.alert_cooldown:
            LOGGER.error(
                "monitor.escalation.alert url=%s failures=%d error=%s",
                target.url,
                target.consecutive_failures,
                target.last_error,
            )
            target.last_alert_time = now
            event = NotificationEvent(
                kind="alert",
                url=target.url,
                consecutive_failures=target.consecutive_failures,
                last_error=target.last_error,
            )
            return TargetStatus.ALERTED, event

        last_notice = target.last_suppression_log_time
        if last_notice is not None and now - last_notice < self.suppression_log_window:
            return TargetStatus.COOLDOWN, None

        remaining = self.alert_cooldown - (now - last_alert)
        LOGGER.info(
            "monitor.escalation.alert_suppressed url=%s failures=%d remaining_hours=%d",
            target.url,
            target.consecutive_failures,
            int(remaining.total_seconds() // 3600),
        )
        target.last_suppression_log_time = now
        return TargetStatus.SUPPRESSED, None

    def _dispatch(self, event: NotificationEvent) -> None:
        if self._notifier is None:
            return
        try:
            if event.kind == "alert":
                self._notifier.notify_alert(event.url,
                                            event.consecutive_failures,
                                            event.last_error)
            elif event.kind == "recovery":
                self._notifier.notify_recovery(event.url)
            else:
                raise ValueError(f"Unknown notification kind: {event.kind}")
        except Exception as exc:
            LOGGER.exception(
                "monitor.escalation.notification_error url=%s kind=%s error=%s",
                event.url,
                event.kind,
                exc,
            )
