"""Job base class with lifecycle events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

EVENT_STARTED = "started"
EVENT_PROGRESS = "progress"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"


@dataclass(frozen=True)
class JobEvent:
    job: str
    event: str
    timestamp: str
    payload: dict[str, Any] = field(default_factory=dict)


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, default=str))
    except (TypeError, ValueError) as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


class BaseJob:
    """A schedulable unit of work.

    ``execute()`` wraps ``run()`` with ``started``/``completed``/``failed``
    events; subclasses may emit ``progress`` events while running. An
    unexpected error fails the run and is re-raised after the event.
    """

    name = "job"

    def __init__(self) -> None:
        self._listeners: list[Callable[[JobEvent], None]] = []

    def add_listener(self, listener: Callable[[JobEvent], None]) -> None:
        self._listeners.append(listener)

    def emit(self, event: str, **payload) -> JobEvent:
        job_event = JobEvent(
            job=self.name,
            event=event,
            timestamp=datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            payload=payload,
        )
        level = logging.ERROR if event == EVENT_FAILED else logging.INFO
        _log_event(level, f"job_{event}", job=self.name, **payload)
        for listener in list(self._listeners):
            try:
                listener(job_event)
            except Exception:
                logger.exception("job listener failed job=%s event=%s", self.name, event)
        return job_event

    def progress(self, message: str, *, current: int | None = None, total: int | None = None) -> None:
        self.emit(EVENT_PROGRESS, detail=message, current=current, total=total)

    def run(self) -> dict[str, Any]:
        raise NotImplementedError

    def execute(self) -> dict[str, Any]:
        self.emit(EVENT_STARTED)
        try:
            result = self.run()
        except Exception as exc:
            self.emit(EVENT_FAILED, error=str(exc), error_type=exc.__class__.__name__)
            raise
        self.emit(EVENT_COMPLETED, result=result)
        return result
