"""Bounded progress stream shared by a download worker and its observers."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, Optional

from vidshelf.core.errors import LibraryError
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry

logger = setup_logger(__name__)

PROGRESS = "progress"
COMPLETE = "complete"
ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in (COMPLETE, ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, **self.data}


class ProgressStream:
    """Single-producer progress channel with a drop-oldest buffer.

    ``emit`` never blocks: once ``maxsize`` events are waiting, the oldest one
    is discarded and counted in ``dropped``. The terminal event (``complete``
    or ``error``) is held outside the buffer and is always delivered after
    every buffered event. Events emitted after close are ignored.
    """

    def __init__(self, maxsize: int = 256):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.dropped = 0
        self._events: Deque[ProgressEvent] = deque(maxlen=maxsize)
        self._terminal: Optional[ProgressEvent] = None
        self._terminal_delivered = False
        self._cond = threading.Condition()
        self.entry: Optional[LibraryEntry] = None
        self.error: Optional[LibraryError] = None

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._terminal is not None

    @property
    def exhausted(self) -> bool:
        """True once the terminal event has been handed to a consumer."""
        with self._cond:
            return self._terminal_delivered

    @property
    def result(self) -> Optional[ProgressEvent]:
        with self._cond:
            return self._terminal

    def emit(self, message: str, **data: Any) -> None:
        self._push(ProgressEvent(PROGRESS, message, data))

    def complete(self, entry: LibraryEntry, message: str = "Download complete") -> None:
        self._close(ProgressEvent(COMPLETE, message, {"video": entry.to_api_dict()}), entry=entry)

    def fail(self, error: LibraryError) -> None:
        details = {key: value for key, value in error.to_dict().items() if key != "message"}
        self._close(ProgressEvent(ERROR, error.message, details), error=error)

    def _push(self, event: ProgressEvent) -> None:
        with self._cond:
            if self._terminal is not None:
                logger.debug(f"Ignoring progress after close: {event.message}")
                return
            if len(self._events) == self.maxsize:
                self.dropped += 1
            self._events.append(event)
            self._cond.notify_all()

    def _close(
        self,
        event: ProgressEvent,
        entry: Optional[LibraryEntry] = None,
        error: Optional[LibraryError] = None,
    ) -> None:
        with self._cond:
            if self._terminal is not None:
                logger.debug(f"Stream already closed, ignoring {event.type}: {event.message}")
                return
            self._terminal = event
            self.entry = entry
            self.error = error
            self._cond.notify_all()
        if self.dropped:
            logger.debug(f"Progress stream closed with {self.dropped} dropped event(s)")

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, blocking up to ``timeout`` seconds.

        Returns None on timeout or once the terminal event has been consumed.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._events or self._terminal is not None,
                timeout=timeout,
            )
            if self._events:
                return self._events.popleft()
            if self._terminal is not None and not self._terminal_delivered:
                self._terminal_delivered = True
                return self._terminal
            return None

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._terminal is not None, timeout=timeout)

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event
