# gate.py
from __future__ import annotations

from typing import Dict, List

from .context import JobContext
from .errors import ExecutionFailure
from .model import Outcome


def not_passing(dependencies: Dict[str, Outcome], *, allow_skipped: bool = False) -> List[str]:
    accepted = {Outcome.SUCCEEDED}
    if allow_skipped:
        accepted.add(Outcome.SKIPPED)
    return [dep for dep, outcome in dependencies.items() if outcome not in accepted]


def check_required(instance_id: str, dependencies: Dict[str, Outcome], *, allow_skipped: bool = False) -> None:
    """
    Raise ExecutionFailure naming every required dependency that did not pass.
    """
    bad = not_passing(dependencies, allow_skipped=allow_skipped)
    if bad:
        listed = ", ".join(f"{dep} ({dependencies[dep].value})" for dep in bad)
        raise ExecutionFailure(instance_id, f"required jobs did not succeed: {listed}")


def gate_body(ctx: JobContext) -> None:
    """Body of the aggregation gate: its only input is the dependency outcomes."""
    check_required(ctx.instance.id, ctx.dependencies, allow_skipped=ctx.instance.job.allow_skipped)
