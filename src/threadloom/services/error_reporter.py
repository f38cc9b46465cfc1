"""Collects pipeline errors published on the bus."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable

from ..messaging.content import ErrorContent
from ..messaging.errors import MessagingError
from ..messaging.events import ErrorOccurred, EventBus, MessagesUpdated, Unsubscribe
from ..repositories.base import MessageRepository

LOGGER = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass(slots=True)
class ErrorReport:
    """One reported failure, kept for display and diagnostics."""

    id: str
    level: str
    context: str
    message: str
    thread_id: str | None
    user_id: str | None
    timestamp: float
    details: dict | None = None
    displayed: bool = False


ReportListener = Callable[[ErrorReport], None]


class ErrorReporter:
    """Subscribes to :class:`ErrorOccurred`, keeps recent reports and logs them.

    With ``persist_errors`` enabled and a repository available, each report is
    also stored in its thread as an ``error`` message that is visible to the
    user but never sent to the model.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        repository: MessageRepository | None = None,
        persist_errors: bool = False,
        max_reports: int = 100,
    ) -> None:
        self._bus = bus
        self._repository = repository
        self._persist_errors = persist_errors
        self._reports: deque[ErrorReport] = deque(maxlen=max(1, max_reports))
        self._listeners: list[ReportListener] = []

    def attach(self) -> Unsubscribe:
        return self._bus.subscribe(ErrorOccurred, self.handle)

    def set_repository(self, repository: MessageRepository | None) -> None:
        self._repository = repository

    async def handle(self, event: ErrorOccurred) -> None:
        report = self.report(
            event.error,
            context=event.context,
            thread_id=event.thread_id,
            user_id=event.user_id,
        )
        if self._persist_errors and self._repository is not None and event.thread_id:
            await self._persist(report)

    def report(
        self,
        error: BaseException | str,
        *,
        context: str = "",
        level: str | None = None,
        thread_id: str | None = None,
        user_id: str | None = None,
    ) -> ErrorReport:
        if isinstance(error, MessagingError):
            message = error.message
            details = error.to_dict()
            level = level or error.severity
        elif isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            details = {"exception": error.__class__.__name__}
        else:
            message = str(error)
            details = None
        report = ErrorReport(
            id=f"error-{uuid.uuid4().hex[:12]}",
            level=level or "error",
            context=context,
            message=message,
            thread_id=thread_id,
            user_id=user_id,
            timestamp=time.time(),
            details=details,
        )
        LOGGER.log(
            _LOG_LEVELS.get(report.level, logging.ERROR),
            "[%s] %s (thread=%s)",
            report.context or "unknown",
            report.message,
            report.thread_id,
        )
        self._reports.append(report)
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:
                LOGGER.exception("Error report listener failed")
        return report

    def add_listener(self, listener: ReportListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def reports(self) -> list[ErrorReport]:
        return list(self._reports)

    def undisplayed(self) -> list[ErrorReport]:
        return [report for report in self._reports if not report.displayed]

    def mark_as_displayed(self, report_id: str) -> None:
        for report in self._reports:
            if report.id == report_id:
                report.displayed = True
                return

    def clear(self) -> None:
        self._reports.clear()

    async def _persist(self, report: ErrorReport) -> None:
        content = ErrorContent(
            message=f"{report.context}: {report.message}" if report.context else report.message,
            original_content=json.dumps(report.details, ensure_ascii=False, default=str) if report.details else None,
        )
        try:
            await self._repository.save_message(  # type: ignore[union-attr]
                content,
                "assistant",
                report.user_id or "",
                report.thread_id or "",
                send_to_model=False,
                metadata={"error_report_id": report.id},
            )
        except Exception:
            # Publishing ErrorOccurred here could loop back into this handler.
            LOGGER.exception("Unable to store error report %s", report.id)
            return
        await self._announce_thread(report)

    async def _announce_thread(self, report: ErrorReport) -> None:
        thread_id = report.thread_id or ""
        result = await self._repository.get_messages(thread_id)  # type: ignore[union-attr]
        if not result.ok:
            LOGGER.warning(
                "Stored error report %s but could not reload thread %s: %s", report.id, thread_id, result.error
            )
            return
        self._bus.publish(
            MessagesUpdated(thread_id=thread_id, user_id=report.user_id or "", messages=result.messages)
        )


__all__ = ["ErrorReport", "ErrorReporter"]
