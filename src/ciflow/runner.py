# runner.py
from __future__ import annotations

import runpy
import threading
from collections import defaultdict, deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Union

from .artifacts import ArtifactStore
from .conditions import Decision, dependency_failure, evaluate
from .context import JobContext, RunContext, TriggerEvent
from .dag import Graph, build_graph
from .errors import ConfigError, DependencyFailure, ExecutionFailure
from .model import BLOCKING, Job, JobInstance, Outcome, Workflow
from .report import RunReport, build_report
from .ui.console import get_console


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define one of:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"ciflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        loaded = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        loaded = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        loaded = Workflow(jobs=loaded)
    if not isinstance(loaded, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow or a List[Job]. "
            "Define workflow() -> wf(...), WORKFLOW = wf(...) or JOBS = [Job, ...]."
        )
    if loaded.name is None:
        loaded.name = wf_path.stem
    return loaded


# ----------------------------------------------------------------------
# Execution primitive (runs on a worker thread)
# ----------------------------------------------------------------------

def _run_instance(ctx: JobContext) -> None:
    instance = ctx.instance
    get_console().print_job_start(instance.id)

    produced = instance.job.body(ctx)
    if isinstance(produced, dict):
        for name, payload in produced.items():
            ctx.put(name, payload)

    missing = [n for n in instance.job.produces if not ctx.artifacts.has(instance.id, n)]
    if missing:
        raise ExecutionFailure(instance.id, f"declared artifacts not produced: {missing}")


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class Scheduler:
    """
    Walks the instance graph and runs ready instances on a thread pool.

    Only this (the calling) thread changes outcomes. Workers run job bodies
    and write nothing but their own artifact slot.
    """

    def __init__(
        self,
        graph: Graph,
        context: RunContext,
        *,
        artifacts: ArtifactStore,
        max_workers: Optional[int] = None,
        concurrency_limits: Optional[Dict[str, int]] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
    ):
        self.graph = graph
        self.context = context
        self.artifacts = artifacts
        self.workers = max_workers or max(1, len(graph.instances))
        self.limits = dict(concurrency_limits or {})
        self.cancel_event = cancel_event or threading.Event()
        self.poll_interval = poll_interval

        for cls, limit in self.limits.items():
            if limit < 1:
                raise ConfigError(f"concurrency limit for '{cls}' must be >= 1, got {limit}")

        self.remaining: Dict[str, int] = {iid: len(deps) for iid, deps in graph.deps.items()}
        self.candidates: Deque[str] = deque(iid for iid, n in self.remaining.items() if n == 0)
        self.queue: List[str] = []  # decided to run, waiting for a free slot
        self.in_flight: Dict[Future, str] = {}
        self.class_running: Dict[str, int] = defaultdict(int)

        for iid in graph.instances:
            artifacts.register(iid)

    # -- state changes --------------------------------------------------

    def _finish(self, iid: str, outcome: Outcome, detail: Optional[str] = None) -> None:
        if self.graph.states[iid].transition(outcome, detail):
            self._settled(iid)

    def _settled(self, iid: str) -> None:
        """Bookkeeping after `iid` reached a terminal outcome."""
        state = self.graph.states[iid]
        self.artifacts.seal(iid, state.outcome)
        self._print_outcome(iid)

        for child in self.graph.dependents[iid]:
            self.remaining[child] -= 1
            if self.graph.states[child].outcome is not Outcome.PENDING:
                continue
            if state.outcome in BLOCKING:
                failure = dependency_failure(self.graph.instances[child], {iid: state.outcome})
                if failure is not None:
                    # not re-evaluated: cancelled right away
                    self._finish(child, Outcome.CANCELLED, str(failure))
                    continue
            if self.remaining[child] == 0:
                self.candidates.append(child)

    def _print_outcome(self, iid: str) -> None:
        console = get_console()
        state = self.graph.states[iid]
        if state.outcome is Outcome.SUCCEEDED:
            console.print_success(iid)
        elif state.outcome is Outcome.FAILED:
            console.print_failure(iid, state.detail or "", is_job=True)
        elif state.outcome is Outcome.SKIPPED:
            console.print_job_skipped(iid, state.detail or "")
        elif state.outcome is Outcome.CANCELLED:
            console.print_job_cancelled(iid, state.detail or "")

    def cancel_all(self, reason: str = "run cancelled") -> None:
        """Every non-terminal instance becomes Cancelled. Running bodies are left to finish."""
        for iid, state in self.graph.states.items():
            if not state.outcome.is_terminal:
                self._finish(iid, Outcome.CANCELLED, reason)
        self.queue.clear()
        self.candidates.clear()

    # -- loop steps ---------------------------------------------------

    def _dependency_outcomes(self, iid: str) -> Dict[str, Outcome]:
        return {d: self.graph.states[d].outcome for d in self.graph.deps[iid]}

    def _consider(self) -> None:
        while self.candidates:
            iid = self.candidates.popleft()
            state = self.graph.states[iid]
            try:
                decision = evaluate(state, self._dependency_outcomes(iid), self.context)
            except DependencyFailure as e:
                self._finish(iid, Outcome.CANCELLED, str(e))
                continue
            if decision is Decision.SKIP:
                self._settled(iid)
            elif decision is Decision.RUN:
                self.queue.append(iid)

    def _slot_free(self, job: Job) -> bool:
        cls = job.concurrency
        if cls is None or cls not in self.limits:
            return True
        return self.class_running[cls] < self.limits[cls]

    def _job_context(self, iid: str) -> JobContext:
        return JobContext(
            run=self.context,
            instance=self.graph.instances[iid],
            dependencies=self._dependency_outcomes(iid),
            artifacts=self.artifacts,
            producers=self.graph.producers.get(iid, {}),
        )

    def _admit(self, pool: ThreadPoolExecutor) -> None:
        i = 0
        while i < len(self.queue) and len(self.in_flight) < self.workers:
            iid = self.queue[i]
            instance: JobInstance = self.graph.instances[iid]
            if not self._slot_free(instance.job):
                i += 1
                continue
            self.queue.pop(i)
            if not self.graph.states[iid].transition(Outcome.RUNNING):
                continue
            self.artifacts.open(iid)
            if instance.job.concurrency is not None:
                self.class_running[instance.job.concurrency] += 1
            fut = pool.submit(_run_instance, self._job_context(iid))
            self.in_flight[fut] = iid

    def _complete(self, fut: Future) -> None:
        iid = self.in_flight.pop(fut)
        cls = self.graph.instances[iid].job.concurrency
        if cls is not None:
            self.class_running[cls] -= 1

        try:
            fut.result()
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            # sys.exit() in a body fails the instance like any other error
            get_console().print_debug(f"[{iid}] body raised {type(e).__name__}")
            self._finish(iid, Outcome.FAILED, f"{type(e).__name__}: {e}")
        else:
            self._finish(iid, Outcome.SUCCEEDED)

    # -- main loop ----------------------------------------------------

    def run(self) -> RunReport:
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            while True:
                # cancellation is honoured at admission time
                if self.cancel_event.is_set():
                    self.cancel_all()

                self._consider()
                self._admit(pool)

                if not self.in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready instances
                done, _ = wait(list(self.in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    self._complete(fut)

        stuck = [iid for iid, st in self.graph.states.items() if not st.outcome.is_terminal]
        if stuck:
            raise RuntimeError(f"scheduler stopped with non-terminal instances: {stuck}")

        return build_report(self.graph, self.context)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_dag(
    jobs: Union[Graph, Workflow, Iterable[Job]],
    *,
    context: Optional[RunContext] = None,
    max_workers: Optional[int] = None,
    concurrency_limits: Optional[Dict[str, int]] = None,
    artifact_root: str | Path | None = None,
    keep_artifacts: bool = False,
    cancel_event: Optional[threading.Event] = None,
    poll_interval: float = 0.1,
    artifacts: Optional[ArtifactStore] = None,
) -> RunReport:
    """
    Build (if needed) and execute the graph, returning the run report.

    A malformed graph raises ConfigError before any body runs. Artifacts are
    discarded when the run ends unless keep_artifacts is set or the caller
    passed its own store.
    """
    if isinstance(jobs, Workflow):
        if concurrency_limits is None:
            concurrency_limits = jobs.concurrency_limits
        jobs = jobs.jobs
    graph = jobs if isinstance(jobs, Graph) else build_graph(list(jobs))

    if context is None:
        context = RunContext(event=TriggerEvent("manual"))

    owned = artifacts is None
    if artifacts is None:
        artifacts = ArtifactStore(artifact_root, keep=keep_artifacts)
    scheduler = Scheduler(
        graph,
        context,
        artifacts=artifacts,
        max_workers=max_workers,
        concurrency_limits=concurrency_limits,
        cancel_event=cancel_event,
        poll_interval=poll_interval,
    )
    try:
        return scheduler.run()
    finally:
        if owned and not keep_artifacts:
            artifacts.discard()
