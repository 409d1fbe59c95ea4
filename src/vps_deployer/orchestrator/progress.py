"""Typed progress stream between the orchestrator and the request layer."""

from __future__ import annotations

import json
import queue
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from .models import ProgressSnapshot


@dataclass(frozen=True)
class ProgressEvent:
    snapshot: ProgressSnapshot

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "progress", **self.snapshot.to_dict()}


@dataclass(frozen=True)
class CompleteEvent:
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "complete", **self.payload}


@dataclass(frozen=True)
class ErrorEvent:
    error: str
    logs: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "error", "error": self.error}
        if self.logs is not None:
            payload["logs"] = self.logs
        return payload


@dataclass(frozen=True)
class SyncEvent:
    """Reconciliation progress: discovering, discovered, importing, imported, reconciling."""

    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, **self.data}


_CLOSED = object()


class ProgressChannel:
    """
    A write-once stream of progress events.

    The orchestrator publishes into it; the boundary layer either registers a
    listener (called synchronously on publish) or iterates the channel from
    another thread until it is closed.
    """

    def __init__(self, listener: Optional[Callable[[Dict[str, Any]], None]] = None) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._closed = False
        if listener:
            self._listeners.append(listener)

    def subscribe(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.append(listener)

    def publish(self, event: Any) -> None:
        if self._closed:
            raise RuntimeError("Progress channel is closed")
        payload = event.to_dict()
        for listener in self._listeners:
            listener(payload)
        self._queue.put(payload)

    def step_observer(self) -> Callable[[ProgressSnapshot], None]:
        """Adapter handed to :class:`StepLogger`."""
        return lambda snapshot: self.publish(ProgressEvent(snapshot))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def drain(self) -> List[Dict[str, Any]]:
        """Return every queued event without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return events
            events.append(item)


def to_json_line(event: Dict[str, Any]) -> str:
    return json.dumps(event, default=str)
