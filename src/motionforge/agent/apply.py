"""All-or-nothing execution of a plan's mutate steps."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from motionforge.models import PlanStep

logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT")


class AtomicApplyAdapter(Protocol[SnapshotT]):
    def capture(self) -> SnapshotT: ...

    def restore(self, snapshot: SnapshotT) -> None: ...

    def execute(self, action: str, payload: Any) -> Any: ...


@dataclass
class AtomicApplyResult:
    ok: bool
    commands_executed: int
    events: list[Any] = field(default_factory=list)
    failed_step_id: str | None = None
    error: Exception | None = None


def _events_of(out: Any) -> list[Any]:
    if isinstance(out, dict):
        return list(out.get("events") or [])
    return list(getattr(out, "events", None) or [])


def apply_plan_steps_atomic(adapter: AtomicApplyAdapter, steps: list[PlanStep]) -> AtomicApplyResult:
    """Run mutate steps in order; on any failure restore the captured snapshot."""
    restore_point = adapter.capture()
    events: list[Any] = []
    executed = 0
    current_step_id: str | None = None
    try:
        for step in steps:
            if step.type != "mutate":
                continue
            current_step_id = step.id
            out = adapter.execute(step.command.action, step.command.input)
            events.extend(_events_of(out))
            executed += 1
    except Exception as exc:
        logger.info("Plan step %s failed after %d commands; restoring", current_step_id, executed)
        adapter.restore(restore_point)
        return AtomicApplyResult(
            ok=False,
            commands_executed=executed,
            failed_step_id=current_step_id,
            error=exc,
        )
    return AtomicApplyResult(ok=True, commands_executed=executed, events=events)


class RuntimeApplyAdapter:
    """Adapts a MotionForgeRuntime to the capture/restore/execute protocol."""

    def __init__(self, runtime):
        self.runtime = runtime

    def capture(self):
        return self.runtime.capture_restore_point()

    def restore(self, snapshot) -> None:
        self.runtime.restore_restore_point(snapshot)

    def execute(self, action: str, payload: Any):
        return self.runtime.execute(action, payload)
