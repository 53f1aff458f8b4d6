# src/ciflow/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .context import TriggerRule
from .errors import ConfigError
from .gate import gate_body
from .model import DEFAULT_DO_NOT_SKIP, Condition, Job, Step, Workflow
from .steps import ShellBody


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    when: str = "success",
    events: Optional[Iterable[str]] = None,
    branches: Optional[Iterable[str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        when=when,
        events=tuple(events) if events is not None else None,
        branches=tuple(branches) if branches is not None else None,
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def _condition(value: Union[Condition, str]) -> Condition:
    try:
        return Condition(value)
    except ValueError:
        known = [c.value for c in Condition]
        raise ConfigError(f"unknown condition {value!r}, expected one of {known}") from None


def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    body: Optional[Callable[..., Any]] = None,  # or: job("x", body=fn)
    needs: Optional[List[str]] = None,
    condition: Union[Condition, str] = Condition.RUN_IF_SUCCESS,
    matrix: Optional[Dict[str, Iterable[Any]]] = None,
    produces: Optional[List[str]] = None,
    consumes: Optional[List[str]] = None,
    concurrency: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    if steps and body is not None:
        raise ConfigError("pass either shell steps or body=, not both", job=name)
    if not steps and body is None:
        raise ConfigError("job must have at least one step or a body", job=name)

    if steps:
        steps_final = list(steps)
        if cwd is not None:
            steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]
        body = ShellBody(steps_final)

    return Job(
        name=name,
        body=body,
        needs=list(needs or []),
        condition=_condition(condition),
        matrix={axis: list(values) for axis, values in (matrix or {}).items()},
        produces=list(produces or []),
        consumes=list(consumes or []),
        concurrency=concurrency,
        env={k: str(v) for k, v in (env or {}).items()},
    )


def gate(name: str, needs: List[str], *, allow_skipped: bool = False) -> Job:
    """
    The aggregation gate: always runs, passes iff every needed instance succeeded
    (or was skipped, with allow_skipped=True). Its outcome is the run's status.
    """
    return Job(
        name=name,
        body=gate_body,
        needs=list(needs),
        condition=Condition.FORCE_RUN,
        gate=True,
        allow_skipped=allow_skipped,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._body: Optional[Callable[..., Any]] = None
        self._condition: Condition = Condition.RUN_IF_SUCCESS
        self._matrix: dict[str, list] = {}
        self._produces: list[str] = []
        self._consumes: list[str] = []
        self._concurrency: Optional[str] = None
        self._env: dict[str, str] = {}

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **kwargs):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    def with_body(self, fn: Callable[..., Any]):
        self._body = fn
        return self

    def with_condition(self, condition: Union[Condition, str]):
        self._condition = _condition(condition)
        return self

    def with_matrix(self, **axes: Iterable[Any]):
        self._matrix.update({k: list(v) for k, v in axes.items()})
        return self

    def produces(self, *names: str):
        self._produces.extend(names)
        return self

    def consumes(self, *names: str):
        self._consumes.extend(names)
        return self

    def in_class(self, concurrency: str):
        self._concurrency = concurrency
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Job:
        return job(
            self.name,
            *self._steps,
            body=self._body,
            needs=self._needs,
            condition=self._condition,
            matrix=self._matrix,
            produces=self._produces,
            consumes=self._consumes,
            concurrency=self._concurrency,
            env=self._env,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> Dict[str, list]:
    """
    Matrix axes for job(..., matrix=...). Axis order is argument order.

    Example:
        matrix(batch=[0, 1], total_batch=[2])
    """
    return {axis: list(values) for axis, values in axes.items()}


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    name: Optional[str] = None,
    triggers: Optional[List[TriggerRule]] = None,
    inputs: Optional[List[str]] = None,
    do_not_skip: Optional[Iterable[str]] = None,
    concurrency_limits: Optional[Dict[str, int]] = None,
) -> Workflow:
    """
    Workflow definition helper.

        from ciflow import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )
    """
    return Workflow(
        jobs=list(jobs),
        name=name,
        triggers=list(triggers or []),
        inputs=list(inputs or []),
        do_not_skip=frozenset(do_not_skip) if do_not_skip is not None else DEFAULT_DO_NOT_SKIP,
        concurrency_limits=dict(concurrency_limits or {}),
    )


