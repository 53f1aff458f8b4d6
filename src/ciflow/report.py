# report.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from .context import RunContext
from .dag import Graph
from .model import BLOCKING, Outcome


class InstanceReport(BaseModel):
    id: str
    job: str
    matrix: Dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    detail: Optional[str] = None
    duration: Optional[float] = None


class RunReport(BaseModel):
    """Final status surface of a run: the gate's verdict plus every instance."""
    workflow: Optional[str] = None
    event: str
    branch: Optional[str] = None
    fingerprint: Optional[str] = None
    duplicate: bool = False
    gate: Optional[str] = None
    outcome: Outcome
    detail: Optional[str] = None
    instances: List[InstanceReport] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is Outcome.SUCCEEDED else 1

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def instance(self, iid: str) -> InstanceReport:
        for inst in self.instances:
            if inst.id == iid:
                return inst
        raise KeyError(iid)

    def failures(self) -> List[InstanceReport]:
        return [i for i in self.instances if i.outcome in BLOCKING]


def _run_outcome(graph: Graph) -> tuple[Outcome, Optional[str]]:
    if graph.gate is not None:
        state = graph.states[graph.gate]
        return state.outcome, state.detail

    # Without a gate: no instance may have failed or been cancelled.
    outcomes = graph.outcomes()
    failed = [iid for iid, o in outcomes.items() if o is Outcome.FAILED]
    cancelled = [iid for iid, o in outcomes.items() if o is Outcome.CANCELLED]
    if failed:
        return Outcome.FAILED, f"failed: {', '.join(failed)}"
    if cancelled:
        return Outcome.CANCELLED, f"cancelled: {', '.join(cancelled)}"
    return Outcome.SUCCEEDED, None


def build_report(graph: Graph, context: RunContext) -> RunReport:
    outcome, detail = _run_outcome(graph)
    instances = [
        InstanceReport(
            id=iid,
            job=inst.name,
            matrix=inst.matrix,
            outcome=graph.states[iid].outcome,
            detail=graph.states[iid].detail,
            duration=graph.states[iid].duration,
        )
        for iid, inst in graph.instances.items()
    ]
    return RunReport(
        workflow=context.workflow,
        event=context.kind,
        branch=context.branch,
        fingerprint=context.fingerprint,
        duplicate=context.duplicate,
        gate=graph.gate,
        outcome=outcome,
        detail=detail,
        instances=instances,
    )
