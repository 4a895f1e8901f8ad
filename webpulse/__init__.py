# -*- codeing = utf-8 -*-
# @Create: 2023-03-29 3:23 p.m.
# @Update: 2026-10-19 11:50 a.m.
# @Author: John Zhao
"""WebPulse health monitor: probing, escalation and notification."""

__version__ = "1.0.2"

from . import escalation, probe, report, send_email
from .escalation import (
    EscalationDecision,
    EscalationEngine,
    NotificationEvent,
    Notifier,
    TargetStatus,
)
from .probe import Outcome
from .scheduler import MonitorScheduler
from .send_email import MailNotifier
from .target import TargetState

__all__ = [
    "EscalationDecision",
    "EscalationEngine",
    "MailNotifier",
    "MonitorScheduler",
    "NotificationEvent",
    "Notifier",
    "Outcome",
    "TargetState",
    "TargetStatus",
    "escalation",
    "probe",
    "report",
    "send_email",
]
