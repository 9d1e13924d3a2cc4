"""
Alert emission hook.

Alerts are fire-and-forget: a failing sink is logged and never affects
the operation that raised the alert. Rendering and delivery belong to
the sinks, not to this package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Protocol

from .util import new_id, utc_now

logger = logging.getLogger(__name__)


class AlertCategory(str, Enum):
    CLOCK_WARNING = "CLOCK_WARNING"
    CLOCK_BREACH = "CLOCK_BREACH"
    COMPLIANCE_GAP = "COMPLIANCE_GAP"
    SECURITY_INCIDENT = "SECURITY_INCIDENT"
    AI_BLOCKED = "AI_BLOCKED"
    SYSTEM_HEALTH = "SYSTEM_HEALTH"
    GOVERNANCE = "GOVERNANCE"
    DATA_BREACH = "DATA_BREACH"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    BREACH = "BREACH"


_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.BREACH: logging.CRITICAL,
}


@dataclass(frozen=True)
class Alert:
    category: AlertCategory
    severity: AlertSeverity
    title: str
    message: str
    regulation: str | None = None
    related_ids: dict[str, str] = field(default_factory=dict)
    alert_id: str = field(default_factory=lambda: new_id("ALT"))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "regulation": self.regulation,
            "related_ids": self.related_ids,
            "created_at": self.created_at.isoformat(),
        }


class AlertSink(Protocol):
    def send(self, alert: Alert) -> None:
        ...


class LoggingAlertSink:
    """Write alerts to the `evgraph.alerts` logger."""

    def send(self, alert: Alert) -> None:
        logger.log(
            _LOG_LEVELS[alert.severity],
            "[%s] %s: %s",
            alert.category.value,
            alert.title,
            alert.message,
        )


class AlertDispatcher:
    def __init__(self, sinks: Iterable[AlertSink] | None = None):
        self.sinks: list[AlertSink] = list(sinks) if sinks is not None else [LoggingAlertSink()]

    def add_sink(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    def emit(self, alert: Alert) -> None:
        for sink in self.sinks:
            try:
                sink.send(alert)
            except Exception:
                logger.exception("Alert sink %r failed for alert %s", sink, alert.alert_id)
