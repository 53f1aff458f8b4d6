# context.py
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from .artifacts import ArtifactStore
from .errors import ArtifactError, ConfigError
from .model import DEFAULT_DO_NOT_SKIP, JobInstance, Outcome

EVENT_KINDS: Tuple[str, ...] = ("push", "pull_request", "manual", "scheduled")


# ----------------------------------------------------------------------
# Trigger input
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class TriggerEvent:
    """
    What started the run.

    For pull requests `branch` is the target branch, for everything else the
    branch that was built.
    """
    kind: str
    branch: Optional[str] = None
    fingerprint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ConfigError(f"unknown event kind {self.kind!r}", details={"known": list(EVENT_KINDS)})


@dataclass(frozen=True)
class TriggerRule:
    kind: str
    branches: Optional[Tuple[str, ...]] = None
    branches_ignore: Optional[Tuple[str, ...]] = None

    def matches(self, event: TriggerEvent) -> bool:
        if event.kind != self.kind:
            return False
        branch = event.branch or ""
        if self.branches is not None and not any(fnmatch(branch, p) for p in self.branches):
            return False
        if self.branches_ignore and any(fnmatch(branch, p) for p in self.branches_ignore):
            return False
        return True


def _patterns(values: Optional[Iterable[str]]) -> Optional[Tuple[str, ...]]:
    return tuple(values) if values is not None else None


def on_push(branches: Optional[List[str]] = None, branches_ignore: Optional[List[str]] = None) -> TriggerRule:
    return TriggerRule("push", _patterns(branches), _patterns(branches_ignore))


def on_pull_request(branches: Optional[List[str]] = None, branches_ignore: Optional[List[str]] = None) -> TriggerRule:
    return TriggerRule("pull_request", _patterns(branches), _patterns(branches_ignore))


def on_manual() -> TriggerRule:
    return TriggerRule("manual")


def on_schedule() -> TriggerRule:
    return TriggerRule("scheduled")


def should_trigger(rules: Iterable[TriggerRule], event: TriggerEvent) -> bool:
    rules = list(rules)
    return not rules or any(r.matches(event) for r in rules)


# ----------------------------------------------------------------------
# Run context
# ----------------------------------------------------------------------

class FingerprintHistory(Protocol):
    def has_success(self, fingerprint: str) -> bool: ...


@dataclass(frozen=True)
class RunContext:
    """Process-wide, read-only facts about the run."""
    event: TriggerEvent
    duplicate: bool = False
    workflow: Optional[str] = None
    repo_root: Path = field(default_factory=lambda: Path("."))
    work_dir: Optional[Path] = None

    @property
    def kind(self) -> str:
        return self.event.kind

    @property
    def branch(self) -> Optional[str]:
        return self.event.branch

    @property
    def fingerprint(self) -> Optional[str]:
        return self.event.fingerprint


def is_duplicate(
    event: TriggerEvent,
    history: Optional[FingerprintHistory],
    do_not_skip: FrozenSet[str] = DEFAULT_DO_NOT_SKIP,
) -> bool:
    """
    True when an identical-content run already succeeded.

    Events in `do_not_skip` (push, manual, scheduled by default) always build.
    """
    if history is None or not event.fingerprint:
        return False
    if event.kind in do_not_skip:
        return False
    return history.has_success(event.fingerprint)


def build_run_context(
    event: TriggerEvent,
    *,
    history: Optional[FingerprintHistory] = None,
    do_not_skip: FrozenSet[str] = DEFAULT_DO_NOT_SKIP,
    workflow: Optional[str] = None,
    repo_root: str | Path = ".",
    work_dir: str | Path | None = None,
) -> RunContext:
    return RunContext(
        event=event,
        duplicate=is_duplicate(event, history, frozenset(do_not_skip)),
        workflow=workflow,
        repo_root=Path(repo_root),
        work_dir=Path(work_dir) if work_dir is not None else None,
    )


# ----------------------------------------------------------------------
# What a job body sees
# ----------------------------------------------------------------------

@dataclass
class JobContext:
    run: RunContext
    instance: JobInstance
    dependencies: Dict[str, Outcome]
    artifacts: ArtifactStore
    producers: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def matrix(self) -> Dict[str, object]:
        return self.instance.matrix

    def put(self, name: str, payload: bytes) -> None:
        if name not in self.instance.job.produces:
            raise ArtifactError(self.instance.id, name, "artifact not declared in produces")
        self.artifacts.put(self.instance.id, name, payload)

    def producers_of(self, name: str) -> List[str]:
        if name not in self.instance.job.consumes:
            raise ArtifactError(self.instance.id, name, "artifact not declared in consumes")
        return list(self.producers.get(name, []))

    def get(self, name: str, producer: Optional[str] = None) -> bytes:
        ids = self.producers_of(name)
        if producer is None:
            if len(ids) != 1:
                raise ArtifactError(
                    self.instance.id, name, f"{len(ids)} producers, pass producer= one of {ids}"
                )
            producer = ids[0]
        elif producer not in ids:
            raise ArtifactError(producer, name, f"not a dependency of {self.instance.id}")
        return self.artifacts.get(producer, name)

    def collect(self, name: str) -> Dict[str, bytes]:
        """Payloads from every producer instance (e.g. all matrix shards)."""
        return {pid: self.artifacts.get(pid, name) for pid in self.producers_of(name)}
