# -*- codeing = utf-8 -*-
# @Create: 2023-02-16 3:37 p.m.
# @Update: 2026-10-19 11:20 a.m.
# @Author: John Zhao
"""Implementation of the monitoring orchestration layer."""

from __future__ import annotations

import datetime as _dt
import functools
import logging
import threading
import time
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from configuration import Settings

from .escalation import (EscalationDecision, EscalationEngine, Notifier,
                         TargetStatus)
from .probe import Outcome, probe
from .report import render_status_report
from .send_email import MailNotifier
from .target import TargetState

LOGGER = logging.getLogger(__name__)

REPORT_INITIAL_DELAY = _dt.timedelta(hours=1)
REPORT_PERIOD = _dt.timedelta(hours=24)
DEFAULT_GRACE_PERIOD = 10.0


def _default_clock() -> _dt.datetime:
    return _dt.datetime.now(_dt.UTC).replace(tzinfo=None)


class MonitorScheduler:
    """Run one self-rearming check loop per target plus the periodic report.

    Every target gets its own worker thread that probes, hands the outcome to
    the escalation engine and then waits for the delay the engine returned.
    A target's record is only touched from its own thread, so checks for one
    URL never overlap while different URLs run concurrently.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        prober: Optional[Callable[[str], Outcome]] = None,
        notifier: Optional[Notifier] = None,
        engine: Optional[EscalationEngine] = None,
        clock: Optional[Callable[[], _dt.datetime]] = None,
        event_handler: Optional[Callable[[EscalationDecision], None]] = None,
        report_sink: Optional[Callable[[str], None]] = None,
        report_delay: _dt.timedelta = REPORT_INITIAL_DELAY,
        report_period: _dt.timedelta = REPORT_PERIOD,
    ) -> None:
        self._settings = settings
        self._prober = prober or functools.partial(
            probe, timeout=settings.request_timeout)
        if engine is None:
            if notifier is None:
                notifier = MailNotifier(settings.mail,
                                        settings.monitor.recipient_email)
            engine = EscalationEngine.from_settings(settings.monitor, notifier)
        self._engine = engine
        self._clock = clock or _default_clock
        self._event_handler = event_handler or (lambda decision: None)
        self._report_sink = report_sink or self._log_report
        self._report_delay = report_delay
        self._report_period = report_period

        self._targets: Dict[str, TargetState] = {
            url: TargetState(url)
            for url in settings.monitor.urls
        }
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    @property
    def targets(self) -> Mapping[str, TargetState]:
        return MappingProxyType(self._targets)

    @property
    def engine(self) -> EscalationEngine:
        return self._engine

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Scheduler is already running")

        # Threads abandoned by an earlier stop() keep their own event.
        self._stop_event = threading.Event()
        stop_event = self._stop_event

        for target in self._targets.values():
            thread = threading.Thread(
                name=f"webpulse-check-{target.url}",
                target=self._run_target,
                args=(target, stop_event),
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        report_thread = threading.Thread(
            name="webpulse-report",
            target=self._run_reports,
            args=(stop_event, ),
            daemon=True,
        )
        report_thread.start()
        self._threads.append(report_thread)

        LOGGER.info("monitor.scheduler.started targets=%d",
                    len(self._targets))

    def stop(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
        """Stop arming checks and wait up to ``grace_period`` seconds for workers.

        Workers still blocked in a request after the grace period are left to
        die with the process; whatever they observe afterwards is discarded.
        """

        if not self._threads:
            return

        self._stop_event.set()
        deadline = time.monotonic() + max(grace_period, 0.0)
        for thread in self._threads:
            thread.join(max(deadline - time.monotonic(), 0.0))
            if thread.is_alive():
                LOGGER.warning("monitor.scheduler.thread_abandoned name=%s",
                               thread.name)
        self._threads.clear()
        LOGGER.info("monitor.scheduler.stopped")

    def run_check(self, url: str) -> EscalationDecision:
        """Run a single check for ``url`` outside the background loops."""

        try:
            target = self._targets[url]
        except KeyError:
            raise KeyError(f"Unknown target: {url}") from None
        return self._check(target)

    def status_report(self) -> str:
        return render_status_report(self._targets.values(), self._clock())

    def emit_status_report(self) -> None:
        try:
            self._report_sink(self.status_report())
        except Exception as exc:
            LOGGER.exception("monitor.scheduler.report_error error=%s", exc)

    def _run_target(self, target: TargetState,
                    stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            outcome = self._probe(target)
            if stop_event.is_set():
                LOGGER.info("monitor.scheduler.outcome_discarded url=%s",
                            target.url)
                break

            decision = self._process(target, outcome, stop_event)
            self._handle_decision(decision)
            if stop_event.wait(max(decision.delay.total_seconds(), 0.0)):
                break

    def _run_reports(self, stop_event: threading.Event) -> None:
        delay = self._report_delay
        while not stop_event.wait(max(delay.total_seconds(), 0.0)):
            self.emit_status_report()
            delay = self._report_period

    def _check(self, target: TargetState) -> EscalationDecision:
        outcome = self._probe(target)
        decision = self._process(target, outcome)
        self._handle_decision(decision)
        return decision

    def _probe(self, target: TargetState) -> Outcome:
        try:
            return self._prober(target.url)
        except Exception as exc:
            LOGGER.exception("monitor.scheduler.probe_error url=%s error=%s",
                             target.url, exc)
            return Outcome(False, f"Error: {exc}")

    def _process(
        self,
        target: TargetState,
        outcome: Outcome,
        stop_event: Optional[threading.Event] = None,
    ) -> EscalationDecision:
        try:
            return self._engine.process(target, outcome, self._clock(),
                                        stop_event=stop_event)
        except Exception as exc:
            LOGGER.exception("monitor.scheduler.engine_error url=%s error=%s",
                             target.url, exc)
            failures = target.record_failure(f"Error: {exc}")
            return EscalationDecision(
                url=target.url,
                status=TargetStatus.FAILING,
                delay=self._engine.escalated_interval,
                consecutive_failures=failures,
            )

    def _handle_decision(self, decision: EscalationDecision) -> None:
        try:
            self._event_handler(decision)
        except Exception as exc:  # pragma: no cover
            LOGGER.exception(
                "monitor.scheduler.event_handler_error url=%s status=%s error=%s",
                decision.url,
                decision.status.name,
                exc,
            )

    @staticmethod
    def _log_report(report: str) -> None:
        LOGGER.info("monitor.scheduler.status_report\n%s", report)
