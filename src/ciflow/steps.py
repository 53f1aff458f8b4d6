# steps.py
from __future__ import annotations

import os
import re
import subprocess
import tempfile
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .artifacts import slug
from .context import JobContext, RunContext
from .errors import StepFailure
from .model import Step
from .ui.console import get_console

STEP_POLICIES = ("success", "failure", "always")

TOOL_HINTS = {
    "nim": "Install Nim (choosenim) or fix PATH.",
    "tar": "Install tar or fix PATH.",
    "make": "Install make (build-essential) or fix PATH.",
    "git": "Install Git or fix PATH.",
}

# sh(1) reports a missing command with exit status 127
_NOT_FOUND = 127


def _env_key(axis: str) -> str:
    return "CIFLOW_MATRIX_" + re.sub(r"[^A-Za-z0-9]+", "_", axis).upper()


def step_selected(step: Step, run: RunContext, *, failed: bool) -> Optional[str]:
    """
    None if the step should run, otherwise the reason it is skipped.

    `failed` tells whether an earlier step of the same job failed.
    """
    if step.when == "success" and failed:
        return "an earlier step failed"
    if step.when == "failure" and not failed:
        return "only runs after a failure"
    if step.events is not None and run.kind not in step.events:
        return f"event {run.kind} not in {list(step.events)}"
    if step.branches is not None and not any(fnmatch(run.branch or "", p) for p in step.branches):
        return f"branch {run.branch} not in {list(step.branches)}"
    return None


def tool_hint(cmd: str) -> Optional[str]:
    """Install hint for the command that sh(1) could not find."""
    words = cmd.split()
    if not words:
        return None
    return TOOL_HINTS.get(words[0], f"Install {words[0]} or fix PATH.")


def _run_step(instance: str, step: Step, repo_root: Path, env: Dict[str, str]) -> None:
    cwd = (repo_root / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise FileNotFoundError(f"[{instance}] step '{step.name}' cwd not found: {cwd}")

    proc = subprocess.run(
        step.run,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        capture_output=True,
    )

    console = get_console()
    if proc.stdout:
        console.print_debug(f"[{instance}] {step.name} stdout:\n{proc.stdout[-4000:]}")

    if proc.returncode != 0:
        hint = None
        if proc.returncode == _NOT_FOUND:
            hint = tool_hint(step.run)
        console.print_failure(
            f"{instance} / {step.name}",
            proc.stderr or step.run,
            exit_code=proc.returncode,
            hint=hint,
        )
        raise StepFailure(
            instance=instance,
            message=f"step '{step.name}' failed",
            step=step.name,
            cmd=step.run,
            exit_code=proc.returncode,
            stderr=proc.stderr[-4000:],
        )


class ShellBody:
    """
    Job body made of shell steps.

    Environment seen by every step (on top of os.environ and job.env):
      CIFLOW_EVENT, CIFLOW_BRANCH, CIFLOW_JOB, CIFLOW_INSTANCE,
      CIFLOW_MATRIX_<AXIS>      one per matrix axis
      CIFLOW_ARTIFACTS_IN       consumed artifacts: <name> (one producer)
                                or <name>/<producer-slug> (several)
      CIFLOW_ARTIFACTS_OUT      write produced artifacts here as <name>
    """

    def __init__(self, steps: Sequence[Step]):
        for s in steps:
            if s.when not in STEP_POLICIES:
                raise ValueError(f"step '{s.name}': when must be one of {STEP_POLICIES}, got {s.when!r}")
        self.steps: List[Step] = list(steps)

    def __repr__(self) -> str:
        return f"ShellBody({[s.name for s in self.steps]})"

    def environment(self, ctx: JobContext, in_dir: Path, out_dir: Path) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(ctx.instance.job.env or {})
        env.update(
            {
                "CIFLOW_EVENT": ctx.run.kind,
                "CIFLOW_BRANCH": ctx.run.branch or "",
                "CIFLOW_JOB": ctx.instance.name,
                "CIFLOW_INSTANCE": ctx.instance.id,
                "CIFLOW_ARTIFACTS_IN": str(in_dir),
                "CIFLOW_ARTIFACTS_OUT": str(out_dir),
            }
        )
        for axis, value in ctx.instance.assignment:
            env[_env_key(axis)] = str(value)
        return env

    def stage_inputs(self, ctx: JobContext, in_dir: Path) -> None:
        for name in ctx.instance.job.consumes:
            producers = ctx.producers_of(name)
            if len(producers) == 1:
                (in_dir / name).write_bytes(ctx.get(name))
                continue
            d = in_dir / name
            d.mkdir(parents=True, exist_ok=True)
            for pid, payload in ctx.collect(name).items():
                (d / slug(pid)).write_bytes(payload)

    def __call__(self, ctx: JobContext) -> Dict[str, bytes]:
        console = get_console()
        repo_root = Path(ctx.run.repo_root).resolve()
        work_dir = ctx.run.work_dir
        if work_dir is not None:
            Path(work_dir).mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix=f"{slug(ctx.instance.id)}-", dir=work_dir) as tmp:
            in_dir = Path(tmp) / "in"
            out_dir = Path(tmp) / "out"
            in_dir.mkdir()
            out_dir.mkdir()

            self.stage_inputs(ctx, in_dir)
            env = self.environment(ctx, in_dir, out_dir)

            failure: Optional[StepFailure] = None
            for step in self.steps:
                reason = step_selected(step, ctx.run, failed=failure is not None)
                if reason is not None:
                    console.print_step_skipped(ctx.instance.id, step.name, reason)
                    continue
                console.print_step(ctx.instance.id, step.name)
                try:
                    _run_step(ctx.instance.id, step, repo_root, env)
                except StepFailure as e:
                    # keep going: "failure"/"always" steps still get their turn
                    if failure is None:
                        failure = e

            if failure is not None:
                raise failure

            return {
                name: (out_dir / name).read_bytes()
                for name in ctx.instance.job.produces
                if (out_dir / name).is_file()
            }
