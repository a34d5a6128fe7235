#!/usr/bin/env python3
"""
ErrorHandler - Centralized exception handling for the selection system

Every intent the router dispatches runs inside an ErrorContext. Expected
failure modes (a lookup that rejected, a multi-edge request) are recorded,
turned into UI alerts and absorbed; only CRITICAL_STOP errors propagate to
the caller.

    with error_handler.create_context_manager(ErrorCategory.ACTION_ROUTING,
                                              ErrorSeverity.MEDIUM_ALERT,
                                              operation="selectObjects"):
        ...

Repeats of the same (category, exception type) inside the suppression
window are counted but not re-reported; the next report carries the count.
"""

import logging
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple, Type

from uuid_extensions import uuid7

from selection_system.core.request_context import get_request_id


# =============================================================================
# SELECTION EXCEPTIONS
# =============================================================================

class SelectionError(Exception):
    """Base class for selection system errors"""


class FetchFailed(SelectionError):
    """A vertex, edge or workspace lookup rejected. Nothing was committed."""

    def __init__(self, message: str, lookup: str = ""):
        super().__init__(message)
        self.lookup = lookup


class UnsupportedOperation(SelectionError):
    """The request asked for something the system does not support (multi-edge delete)."""


class UnresolvableTarget(SelectionError):
    """An intent needed an explicit id or a single selected vertex and found neither."""


# =============================================================================
# SEVERITY / CATEGORY
# =============================================================================

class ErrorSeverity(Enum):
    CRITICAL_STOP = "critical_stop"   # Propagate to the caller
    HIGH_DEGRADE = "high_degrade"     # A feature is broken, keep going
    MEDIUM_ALERT = "medium_alert"     # Show in the alerts panel
    LOW_DEBUG = "low_debug"           # Only surfaced in debug mode


class ErrorCategory(Enum):
    # Selection state
    SELECTION_RESOLVE = "selection_resolve"
    SELECTION_COMMIT = "selection_commit"

    # Intents
    ACTION_ROUTING = "action_routing"

    # Collaborators
    DATA_ACCESS = "data_access"
    SERVICE_CONNECTION = "service"

    # Side effects
    CLIPBOARD = "clipboard"
    EVENT_DELIVERY = "event_delivery"

    GENERAL = "general"
    UNKNOWN = "unknown"


# Selection exceptions carry their own routing, whatever the surrounding context says
EXCEPTION_ROUTES: Dict[Type[Exception], Tuple[ErrorCategory, ErrorSeverity]] = {
    FetchFailed: (ErrorCategory.DATA_ACCESS, ErrorSeverity.MEDIUM_ALERT),
    UnsupportedOperation: (ErrorCategory.ACTION_ROUTING, ErrorSeverity.LOW_DEBUG),
}

ALERT_STYLES = {
    ErrorSeverity.CRITICAL_STOP: "red bold",
    ErrorSeverity.HIGH_DEGRADE: "red",
    ErrorSeverity.MEDIUM_ALERT: "yellow",
    ErrorSeverity.LOW_DEBUG: "dim yellow",
}

MAX_MESSAGE_LENGTH = 100


@dataclass
class ErrorRecord:
    """One reported (not suppressed) error."""
    error_id: str
    timestamp: datetime
    category: ErrorCategory
    severity: ErrorSeverity
    error_type: str
    message: str
    context: str = ""
    operation: str = ""
    request_id: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        return data


class ErrorHandler:
    """Records, de-duplicates and routes errors raised while handling intents."""

    def __init__(self, console=None, debug_mode=False, log_file: Optional[str] = None,
                 history_size: int = 100):
        self.console = console
        self.debug_mode = debug_mode

        self.error_counts: Counter = Counter()        # (category, type) -> times seen
        self.pending_suppressed: Counter = Counter()  # (category, type) -> hidden since last report
        self.suppressed_total = 0
        self._last_reported: Dict[Tuple[str, str], datetime] = {}

        self.history: Deque[ErrorRecord] = deque(maxlen=history_size)
        self.acknowledged: set = set()

        self.alert_queue: List[str] = []
        self.critical_alerts: List[str] = []

        self.logger = logging.getLogger('selection_errors')
        self.logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)
        if log_file and not self.logger.handlers:
            handler = logging.FileHandler(log_file)
            handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
            self.logger.addHandler(handler)

    # =========================================================================
    # REPORTING
    # =========================================================================

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     context: str = "",
                     operation: str = "",
                     suppress_duplicate_minutes: int = 5) -> bool:
        """
        Record an error and route it to the alert queues and the log.

        Returns:
            True if the caller should swallow the exception, False to re-raise.
        """
        key = (category.value, type(error).__name__)
        now = datetime.now()
        self.error_counts[key] += 1

        last = self._last_reported.get(key)
        if last is not None and (now - last).total_seconds() < suppress_duplicate_minutes * 60:
            self.pending_suppressed[key] += 1
            self.suppressed_total += 1
            return severity != ErrorSeverity.CRITICAL_STOP

        self._last_reported[key] = now
        record = ErrorRecord(
            error_id=str(uuid7()),
            timestamp=now,
            category=category,
            severity=severity,
            error_type=type(error).__name__,
            message=str(error),
            context=context,
            operation=operation,
            request_id=get_request_id(),
        )
        self.history.append(record)

        summary = self._describe(record, key)
        self._route(summary, record)

        log_line = f"[{record.request_id}] {category.value}: {summary}"
        if severity == ErrorSeverity.LOW_DEBUG:
            self.logger.debug(log_line)
        elif severity == ErrorSeverity.MEDIUM_ALERT:
            self.logger.warning(log_line)
        else:
            self.logger.error(log_line, exc_info=self.debug_mode)

        return severity != ErrorSeverity.CRITICAL_STOP

    def _describe(self, record: ErrorRecord, key: Tuple[str, str]) -> str:
        text = record.message or record.error_type
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH] + "..."
        if record.context:
            text = f"{record.context}: {text}"
        if record.operation:
            text = f"{record.operation} failed - {text}"

        seen = self.error_counts[key]
        if seen > 1:
            text += f" (#{seen})"
        hidden = self.pending_suppressed.pop(key, 0)
        if hidden:
            text += f" [+{hidden} suppressed]"
        return text

    def _route(self, summary: str, record: ErrorRecord) -> None:
        style = ALERT_STYLES.get(record.severity, "dim")
        alert = f"[{style}][{record.category.value}] {summary}[/{style}]"

        if record.severity == ErrorSeverity.CRITICAL_STOP:
            self.critical_alerts.append(alert)
            if self.console:
                self.console.print(alert)
        elif record.severity != ErrorSeverity.LOW_DEBUG or self.debug_mode:
            self.alert_queue.append(alert)

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def recent_errors(self) -> List[ErrorRecord]:
        return list(self.history)

    def errors_of_type(self, error_type: type) -> List[ErrorRecord]:
        """Reported errors raised as the given exception type"""
        return [r for r in self.history if r.error_type == error_type.__name__]

    def get_error_by_id(self, error_id: str) -> Optional[ErrorRecord]:
        return next((r for r in self.history if r.error_id == error_id), None)

    def acknowledge_error(self, error_id: str) -> Optional[ErrorRecord]:
        """Mark an error as seen. Returns the record, or None for an unknown id."""
        record = self.get_error_by_id(error_id)
        if record is not None:
            self.acknowledged.add(error_id)
        return record

    def get_alerts_for_ui(self, max_alerts: int = 8, clear_after: bool = True) -> List[str]:
        """Critical alerts first, then the rest; the newest max_alerts are kept"""
        alerts = (self.critical_alerts + self.alert_queue)[-max_alerts:]
        if clear_after:
            self.critical_alerts = []
            self.alert_queue = []
        return alerts

    def peek_alerts_for_ui(self, max_alerts: int = 8) -> List[str]:
        return self.get_alerts_for_ui(max_alerts, clear_after=False)

    def get_error_summary(self) -> Dict[str, Any]:
        return {
            'total_errors': sum(self.error_counts.values()),
            'reported': len(self.history),
            'suppressed': self.suppressed_total,
            'by_category': dict(Counter(r.category.value for r in self.history)),
            'most_common': [(f"{c}/{t}", n) for (c, t), n in self.error_counts.most_common(5)],
            'unacknowledged': sum(1 for r in self.history if r.error_id not in self.acknowledged),
        }

    def create_context_manager(self, category: ErrorCategory, severity: ErrorSeverity,
                               operation: str = "", context: str = "",
                               suppress_duplicate_minutes: int = 5) -> "ErrorContext":
        return ErrorContext(self, category, severity, operation, context, suppress_duplicate_minutes)


class ErrorContext:
    """Reports any Exception raised in the block; swallows it unless CRITICAL_STOP."""

    def __init__(self, error_handler: ErrorHandler, category: ErrorCategory,
                 severity: ErrorSeverity, operation: str = "", context: str = "",
                 suppress_duplicate_minutes: int = 5):
        self.error_handler = error_handler
        self.category = category
        self.severity = severity
        self.operation = operation
        self.context = context
        self.suppress_duplicate_minutes = suppress_duplicate_minutes

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Cancellation and interpreter exits are not ours to absorb
        if exc_type is None or not issubclass(exc_type, Exception):
            return False

        category, severity = self.category, self.severity
        for exc_class, route in EXCEPTION_ROUTES.items():
            if isinstance(exc_val, exc_class):
                category, severity = route
                break

        return self.error_handler.handle_error(
            exc_val,
            category,
            severity,
            context=self.context,
            operation=self.operation,
            suppress_duplicate_minutes=self.suppress_duplicate_minutes,
        )
