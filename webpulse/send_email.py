# -*- codeing = utf-8 -*-
# @Time : 2023-03-29 3:56 p.m.
# @Author: weijiazhao
# @File : send_email.py
# @Software: PyCharm

import datetime as _dt
import logging
import smtplib
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, parseaddr
from typing import Callable, Optional, Tuple

from configuration import MailSettings

from .escalation import Notifier

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _normalise_timestamp(occurred_at) -> str:
    if isinstance(occurred_at, str):
        return occurred_at
    if isinstance(occurred_at, (_dt.datetime, _dt.date)):
        return occurred_at.strftime(TIMESTAMP_FORMAT)
    return str(occurred_at)


def build_alert_message(url: str, consecutive_failures: int, last_error: str,
                        occurred_at) -> Tuple[str, str]:
    subject = f"[WebPulse Alert] {url} is DOWN"
    body = ("WebPulse Health Check Alert\n"
            "===========================\n\n"
            f"URL: {url}\n"
            "Status: DOWN\n"
            f"Consecutive Failures: {consecutive_failures}\n"
            f"Last Error: {last_error}\n"
            f"Time: {_normalise_timestamp(occurred_at)}\n\n"
            "Please investigate immediately.\n")
    return subject, body


def build_recovery_message(url: str, occurred_at) -> Tuple[str, str]:
    subject = f"[WebPulse Recovery] {url} is UP"
    body = ("WebPulse Health Check Recovery\n"
            "==============================\n\n"
            f"URL: {url}\n"
            "Status: UP\n"
            f"Time: {_normalise_timestamp(occurred_at)}\n\n"
            "Service has recovered.\n")
    return subject, body


def build_test_message(occurred_at) -> Tuple[str, str]:
    subject = "[WebPulse Test] Email Service Test"
    body = (
        "WebPulse Health Monitor Email Test\n"
        "===================================\n\n"
        "This is a test email to verify that the email service is configured correctly.\n\n"
        f"Time: {_normalise_timestamp(occurred_at)}\n\n"
        "If you received this message, your email configuration is working properly.\n"
    )
    return subject, body


def _format_address(address: str) -> str:
    """Convert an address into an RFC display form with UTF-8 encoded names."""

    name, email_addr = parseaddr(address)
    if not email_addr:
        if name:
            return str(Header(name, "utf-8"))
        return str(Header(address, "utf-8"))

    if name:
        return formataddr((str(Header(name, "utf-8")), email_addr))
    return email_addr


def _extract_email(address: str) -> str:
    """Extract the bare mailbox used for SMTP transmission."""

    return parseaddr(address)[1] or address


def send_email(mail: MailSettings, subject: str, body: str,
               recipient: str) -> None:
    recipient = (recipient or "").strip()
    if not recipient:
        raise ValueError("Recipient address must not be empty")

    display_from = _format_address(mail.from_addr)
    display_to = _format_address(recipient)
    transmit_from = _extract_email(mail.from_addr)
    transmit_to = [_extract_email(recipient)]

    message = MIMEMultipart()
    message['From'] = display_from
    message['To'] = display_to
    message['Subject'] = Header(subject, 'utf-8')
    message['Date'] = formatdate(localtime=True)
    message.attach(MIMEText(body, 'plain', 'utf-8'))

    smtp_factory = smtplib.SMTP_SSL if mail.use_ssl else smtplib.SMTP

    try:
        with smtp_factory(mail.smtp_server, mail.smtp_port) as server:
            if mail.use_starttls:
                server.starttls()
            server.login(mail.username, mail.password)
            server.sendmail(transmit_from, transmit_to, message.as_string())
    except smtplib.SMTPAuthenticationError:
        LOGGER.exception(
            "mail.smtp.authentication_error server=%s username=%s recipients=%s",
            mail.smtp_server,
            mail.username,
            display_to,
        )
        raise
    except smtplib.SMTPException:
        LOGGER.exception(
            "mail.smtp.communication_error server=%s port=%s recipients=%s",
            mail.smtp_server,
            mail.smtp_port,
            display_to,
        )
        raise
    except Exception:
        LOGGER.exception(
            "mail.smtp.unknown_error server=%s port=%s recipients=%s",
            mail.smtp_server,
            mail.smtp_port,
            display_to,
        )
        raise

    LOGGER.info("mail.smtp.sent recipients=%s subject=%s", display_to,
                subject)


def _default_clock() -> _dt.datetime:
    return _dt.datetime.now()


class MailNotifier(Notifier):
    """Render alert/recovery emails and deliver them to a single recipient.

    Delivery is fire-and-forget: failures are logged and never raised.
    """

    def __init__(
        self,
        mail: MailSettings,
        recipient: str,
        *,
        clock: Optional[Callable[[], _dt.datetime]] = None,
        sender: Optional[Callable[[MailSettings, str, str, str], None]] = None,
    ) -> None:
        self._mail = mail
        self._recipient = recipient
        self._clock = clock or _default_clock
        self._sender = sender or send_email

    @property
    def recipient(self) -> str:
        return self._recipient

    def notify_alert(self, url: str, consecutive_failures: int,
                     last_error: str) -> bool:
        subject, body = build_alert_message(url, consecutive_failures,
                                            last_error, self._clock())
        return self._deliver("alert", subject, body)

    def notify_recovery(self, url: str) -> bool:
        subject, body = build_recovery_message(url, self._clock())
        return self._deliver("recovery", subject, body)

    def send_test_email(self) -> bool:
        subject, body = build_test_message(self._clock())
        return self._deliver("test", subject, body)

    def _deliver(self, kind: str, subject: str, body: str) -> bool:
        try:
            self._sender(self._mail, subject, body, self._recipient)
        except Exception as exc:
            LOGGER.error(
                "mail.notifier.delivery_failed kind=%s recipient=%s error=%s",
                kind,
                self._recipient,
                exc,
            )
            return False
        return True
