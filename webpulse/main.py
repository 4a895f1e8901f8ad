# -*- codeing = utf-8 -*-
# @Create: 2023-02-16 3:37 p.m.
# @Update: 2026-10-19 11:48 a.m.
# @Author: John Zhao
"""Command-line entry point for the WebPulse health monitor."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

import configuration
from configuration import ConfigurationError, Settings

from . import __version__
from .scheduler import MonitorScheduler
from .send_email import MailNotifier

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webpulse",
        description="Probe HTTP endpoints and email an operator on outages.",
    )
    parser.add_argument(
        "config",
        nargs="?",
        default=None,
        help=(f"Path to the settings file (defaults to ${configuration.CONFIG_PATH_ENV} "
              f"or ./{configuration.DEFAULT_CONFIG_FILE})"),
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Write a sample settings file to the config path and exit",
    )
    parser.add_argument("--version",
                        action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def _log_banner(settings: Settings) -> None:
    monitor = settings.monitor
    LOGGER.info("webpulse.start version=%s config=%s", __version__,
                settings.source)
    LOGGER.info(
        "webpulse.settings urls=%d interval=%smin threshold=%d cooldown=%sh timeout=%ss",
        len(monitor.urls),
        monitor.check_interval_minutes,
        monitor.failure_threshold,
        monitor.alert_cooldown_hours,
        settings.request_timeout,
    )
    for url in monitor.urls:
        LOGGER.info("webpulse.target url=%s", url)


def _install_signal_handlers(stopped: threading.Event) -> None:

    def _handle_signal(signum, _frame) -> None:
        LOGGER.info("webpulse.signal signal=%s", signal.Signals(signum).name)
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)


def _wait_for_shutdown(stopped: threading.Event) -> None:
    # Short waits keep the main thread responsive to signals.
    while not stopped.wait(1.0):
        pass


def run(settings: Settings) -> int:
    if settings.monitor.send_test_email_on_startup:
        LOGGER.info("webpulse.test_email recipient=%s",
                    settings.monitor.recipient_email)
        notifier = MailNotifier(settings.mail,
                                settings.monitor.recipient_email)
        notifier.send_test_email()

    scheduler = MonitorScheduler(settings)
    stopped = threading.Event()
    _install_signal_handlers(stopped)

    scheduler.start()
    try:
        _wait_for_shutdown(stopped)
    finally:
        LOGGER.info("webpulse.stopping")
        scheduler.stop()
        LOGGER.info("webpulse.stopped")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config_path = configuration.resolve_config_path(args.config)

    if args.init:
        try:
            written = configuration.writeconfig(config_path)
        except FileExistsError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        print(f"Sample configuration written to {written}")
        return 0

    try:
        settings = configuration.load_settings(config_path)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if not Path(config_path).exists():
            print(
                f"Create one with: webpulse --init {config_path}",
                file=sys.stderr,
            )
        return 1

    logging_settings = settings.logging
    try:
        configuration.configure_logging(logging_settings)
    except OSError as exc:
        print(f"Error: unable to open log file {logging_settings.file_path}: {exc}",
              file=sys.stderr)
        return 1

    _log_banner(settings)
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
