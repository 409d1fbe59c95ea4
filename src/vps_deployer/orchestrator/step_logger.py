"""Step tracking with a replayable text transcript."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..scripts.sanitize import redact_command
from .models import DeploymentStep, ProgressSnapshot, StepStatus

OUTPUT_LIMIT = 5000

StepObserver = Callable[[ProgressSnapshot], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepLogger:
    """
    Tracks an ordered list of steps through their status lifecycle.

    Every transition notifies the observer with an immutable snapshot of all
    steps plus the transcript so far. The observer is called synchronously,
    so the pipeline does no further work until it returns.
    """

    def __init__(
        self,
        observer: Optional[StepObserver] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._observer = observer
        self._clock = clock
        self._steps: List[DeploymentStep] = []
        self._index: Dict[str, DeploymentStep] = {}
        self._text_log = ""

    def add_step(self, name: str, command: Optional[str] = None, step_id: Optional[str] = None) -> str:
        step_id = step_id or f"step-{len(self._steps)}"
        if step_id in self._index:
            raise ValueError(f"Duplicate step id: {step_id}")
        step = DeploymentStep(
            id=step_id,
            name=name,
            command=redact_command(command) if command else None,
        )
        self._steps.append(step)
        self._index[step_id] = step
        return step_id

    def start(self, step_id: str) -> None:
        step = self._get(step_id)
        step.status = StepStatus.RUNNING
        step.started_at = self._clock().isoformat()
        self._append(f"START: {step.name}")
        if step.command:
            self._append(f"  Command: {step.command}")
        self._notify()

    def complete(self, step_id: str, output: Optional[str] = None) -> None:
        step = self._get(step_id)
        step.status = StepStatus.SUCCESS
        self._finish(step, output)
        self._append(f"DONE: {step.name} ({step.duration_ms}ms)")
        self._notify()

    def fail(self, step_id: str, error: str, output: Optional[str] = None) -> None:
        step = self._get(step_id)
        step.status = StepStatus.FAILED
        self._finish(step, output)
        step.error = error
        self._append(f"FAILED: {step.name} - {error}")
        self._notify()

    def skip(self, step_id: str, reason: Optional[str] = None) -> None:
        step = self._get(step_id)
        step.status = StepStatus.SKIPPED
        self._append(f"SKIPPED: {step.name}" + (f" ({reason})" if reason else ""))
        self._notify()

    def note(self, message: str) -> None:
        """Append a free-form transcript line without touching any step."""
        self._append(message)
        self._notify()

    @property
    def steps(self) -> List[DeploymentStep]:
        return [replace(step) for step in self._steps]

    @property
    def text_log(self) -> str:
        return self._text_log

    def step(self, step_id: str) -> DeploymentStep:
        return replace(self._get(step_id))

    def running_step_id(self) -> Optional[str]:
        return self._first_with(StepStatus.RUNNING)

    def failed_step_id(self) -> Optional[str]:
        return self._first_with(StepStatus.FAILED)

    def failed_step_name(self) -> Optional[str]:
        step_id = self.failed_step_id()
        return self._index[step_id].name if step_id else None

    def last_completed_step_id(self) -> Optional[str]:
        """The last step, in pipeline order, that finished successfully."""
        completed = [s.id for s in self._steps if s.status is StepStatus.SUCCESS]
        return completed[-1] if completed else None

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(steps=tuple(self.steps), text_log=self._text_log)

    def to_dict(self) -> dict:
        return {"steps": [s.to_dict() for s in self._steps], "textLog": self._text_log}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str, observer: Optional[StepObserver] = None) -> "StepLogger":
        data = json.loads(payload)
        logger = cls(observer)
        for raw in data.get("steps", []):
            step = DeploymentStep.from_dict(raw)
            logger._steps.append(step)
            logger._index[step.id] = step
        logger._text_log = data.get("textLog", "")
        return logger

    def _get(self, step_id: str) -> DeploymentStep:
        try:
            return self._index[step_id]
        except KeyError:
            raise KeyError(f"Unknown step id: {step_id}") from None

    def _first_with(self, status: StepStatus) -> Optional[str]:
        for step in self._steps:
            if step.status is status:
                return step.id
        return None

    def _finish(self, step: DeploymentStep, output: Optional[str]) -> None:
        finished = self._clock()
        step.finished_at = finished.isoformat()
        if step.started_at:
            started = datetime.fromisoformat(step.started_at)
            step.duration_ms = int((finished - started).total_seconds() * 1000)
        step.output = output[:OUTPUT_LIMIT] if output else None

    def _append(self, message: str) -> None:
        self._text_log += f"[{self._clock().isoformat()}] {message}\n"

    def _notify(self) -> None:
        if self._observer:
            self._observer(self.snapshot())
