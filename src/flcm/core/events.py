"""Lifecycle events emitted by the pipeline orchestrator.

Usage:
    emitter = EventEmitter()
    emitter.on(PipelineEvent.STAGE_TRANSITION, lambda event: print(event.payload))
"""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from flcm.core.utils import utc_now

logger = logging.getLogger(__name__)


class PipelineEvent(str, Enum):
    PIPELINE_STARTED = "pipeline_started"
    VALIDATION_FAILED = "validation_failed"
    STAGE_TRANSITION = "stage_transition"
    STAGE_ERROR = "stage_error"
    DOCUMENT_SAVED = "document_saved"
    SAVE_ERROR = "save_error"
    PIPELINE_COMPLETE = "pipeline_complete"
    PIPELINE_CANCELLED = "pipeline_cancelled"
    RETRY_ATTEMPT = "retry_attempt"
    RETRY_EXHAUSTED = "retry_exhausted"
    TRANSFORM_ERROR = "transform_error"


@dataclass(frozen=True)
class Event:
    """A single emitted event."""

    sequence: int
    type: PipelineEvent
    context_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


Listener = Callable[[Event], None]


class EventEmitter:
    """Synchronous listener registry.

    Listeners run in registration order on the emitting thread. A listener that
    raises is logged and skipped so one bad subscriber cannot break a run.
    """

    def __init__(self) -> None:
        self._listeners: dict[PipelineEvent | None, list[Listener]] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def on(self, event_type: PipelineEvent | None, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for one event type, or for all when ``event_type`` is None.

        Returns a callable that unregisters the listener.
        """
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.off(event_type, listener)

        return unsubscribe

    def off(self, event_type: PipelineEvent | None, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event_type: PipelineEvent, context_id: str | None = None, **payload: Any) -> Event:
        with self._lock:
            event = Event(sequence=next(self._sequence), type=event_type, context_id=context_id, payload=payload)
            listeners = [*self._listeners.get(event_type, []), *self._listeners.get(None, [])]

        logger.debug("event %s context=%s", event_type.value, context_id)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed for event %s", event_type.value)
        return event
