# conditions.py
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from .context import RunContext
from .errors import DependencyFailure
from .model import BLOCKING, Condition, InstanceState, JobInstance, Outcome


class Decision(str, Enum):
    RUN = "run"
    SKIP = "skip"
    NOOP = "noop"  # instance was already terminal


def dependency_failure(
    instance: JobInstance,
    dependencies: Dict[str, Outcome],
) -> Optional[DependencyFailure]:
    """The failure that keeps `instance` from running, if any. Force-run jobs have none."""
    if instance.job.condition is Condition.FORCE_RUN:
        return None
    failed = [d for d, o in dependencies.items() if o in BLOCKING]
    if not failed:
        return None
    return DependencyFailure(instance=instance.id, failed=failed)


def check_dependencies(instance: JobInstance, dependencies: Dict[str, Outcome]) -> None:
    failure = dependency_failure(instance, dependencies)
    if failure is not None:
        raise failure


def decide(
    instance: JobInstance,
    dependencies: Dict[str, Outcome],
    context: RunContext,
) -> tuple[Decision, Optional[str]]:
    """
    Pure decision for an instance whose dependencies are all terminal and
    none of them blocking. Returns (decision, reason).
    """
    condition = instance.job.condition

    if condition is Condition.FORCE_RUN:
        return Decision.RUN, None

    if condition is Condition.SKIP_IF_DUPLICATE and context.duplicate:
        return Decision.SKIP, f"duplicate of a successful run ({context.fingerprint})"

    skipped: List[str] = [d for d, o in dependencies.items() if o is Outcome.SKIPPED]
    if skipped:
        return Decision.SKIP, f"dependency skipped: {', '.join(skipped)}"

    return Decision.RUN, None


def evaluate(
    state: InstanceState,
    dependencies: Dict[str, Outcome],
    context: RunContext,
) -> Decision:
    """
    Evaluate the instance's condition once.

    Writes Skipped (without touching the body) when the policy says so.
    Calling it again on a terminal instance is a no-op.
    Raises DependencyFailure when a required dependency failed or was cancelled.
    """
    if state.outcome is not Outcome.PENDING:
        return Decision.NOOP

    pending = [d for d, o in dependencies.items() if not o.is_terminal]
    if pending:
        raise RuntimeError(f"[{state.instance.id}] evaluated before dependencies finished: {pending}")

    check_dependencies(state.instance, dependencies)

    decision, reason = decide(state.instance, dependencies, context)
    if decision is Decision.SKIP:
        state.transition(Outcome.SKIPPED, reason)
    return decision
