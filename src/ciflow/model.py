# model.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple


class Outcome(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL


TERMINAL: FrozenSet[Outcome] = frozenset(
    {Outcome.SKIPPED, Outcome.SUCCEEDED, Outcome.FAILED, Outcome.CANCELLED}
)

# Outcomes that stop a non-force-run dependent from running at all.
BLOCKING: FrozenSet[Outcome] = frozenset({Outcome.FAILED, Outcome.CANCELLED})

_TRANSITIONS: Dict[Outcome, FrozenSet[Outcome]] = {
    Outcome.PENDING: frozenset({Outcome.SKIPPED, Outcome.RUNNING, Outcome.CANCELLED}),
    Outcome.RUNNING: frozenset({Outcome.SUCCEEDED, Outcome.FAILED, Outcome.CANCELLED}),
}


class Condition(str, Enum):
    """Closed set of named run policies for a job."""
    RUN_IF_SUCCESS = "run-if-success"
    SKIP_IF_DUPLICATE = "skip-if-duplicate"
    FORCE_RUN = "force-run"


@dataclass(frozen=True)
class Step:
    """A single shell command (step) inside a job body."""
    name: str
    run: str
    cwd: str | None = None

    # "success" | "failure" | "always", relative to the earlier steps of the job
    when: str = "success"
    # Trigger filters; None means "any"
    events: Optional[Tuple[str, ...]] = None
    branches: Optional[Tuple[str, ...]] = None


@dataclass
class Job:
    """
    A job descriptor: body + dependencies + gating policy + matrix axes.

    `needs` names other jobs. If a needed job has a matrix, this job waits for
    every one of its instances.
    """
    name: str
    body: Optional[Callable[..., Any]] = None

    needs: list[str] = field(default_factory=list)
    condition: Condition = Condition.RUN_IF_SUCCESS

    # axis -> ordered values; the cartesian product gives the instances
    matrix: Dict[str, list] = field(default_factory=dict)

    produces: list[str] = field(default_factory=list)
    consumes: list[str] = field(default_factory=list)

    concurrency: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    # Aggregation gate knobs
    gate: bool = False
    allow_skipped: bool = False


@dataclass(frozen=True)
class JobInstance:
    """One schedulable unit: a job plus one matrix assignment."""
    id: str
    job: Job = field(compare=False, repr=False)
    assignment: Tuple[Tuple[str, Any], ...] = ()

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def matrix(self) -> Dict[str, Any]:
        return dict(self.assignment)


class InstanceState:
    """
    Mutable outcome slot of one instance.

    Terminal outcomes are write-once: `transition` returns False instead of
    overwriting them.
    """

    def __init__(self, instance: JobInstance):
        self.instance = instance
        self.outcome: Outcome = Outcome.PENDING
        self.detail: Optional[str] = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self._lock = threading.Lock()

    def transition(self, outcome: Outcome, detail: Optional[str] = None) -> bool:
        with self._lock:
            if self.outcome.is_terminal:
                return False
            allowed = _TRANSITIONS.get(self.outcome, frozenset())
            if outcome not in allowed:
                raise RuntimeError(
                    f"[{self.instance.id}] illegal transition {self.outcome.value} -> {outcome.value}"
                )
            now = time.monotonic()
            if outcome is Outcome.RUNNING:
                self.started_at = now
            else:
                self.finished_at = now
            self.outcome = outcome
            if detail is not None:
                self.detail = detail
            return True

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def __repr__(self) -> str:
        return f"InstanceState({self.instance.id!r}, {self.outcome.value})"


DEFAULT_DO_NOT_SKIP: FrozenSet[str] = frozenset({"push", "manual", "scheduled"})


@dataclass
class Workflow:
    """Everything a workflow file declares."""
    jobs: List[Job]
    name: Optional[str] = None

    # TriggerRule objects (see context.py); empty means every event
    triggers: list = field(default_factory=list)

    # Globs hashed into the content fingerprint (falls back to the git tree)
    inputs: List[str] = field(default_factory=list)

    # Event kinds that are never treated as duplicates
    do_not_skip: FrozenSet[str] = DEFAULT_DO_NOT_SKIP

    concurrency_limits: Dict[str, int] = field(default_factory=dict)
