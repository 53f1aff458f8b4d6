# dag.py
from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import ConfigError
from .matrix import expand
from .model import Condition, InstanceState, Job, JobInstance, Outcome

_ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job-level DAG.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must finish BEFORE this job
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(f"duplicate job names: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise ConfigError(
                    f"job '{job.name}' needs missing job '{need}'",
                    job=job.name,
                    details={"known": sorted(name_set)},
                )
            # Edge need -> job.name (need must finish before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels".
    Jobs in the same level have no edge between them.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise ConfigError("dependency cycle detected", details={"stuck": remaining})

    return levels


@dataclass
class Graph:
    """
    Instance-level graph, built (and validated) once per run.

    `instances` is ordered topologically. `states` holds the only mutable
    data: one outcome slot per instance.
    """
    jobs: Dict[str, Job]
    levels: List[List[str]]
    instances: Dict[str, JobInstance] = field(default_factory=dict)
    states: Dict[str, InstanceState] = field(default_factory=dict)
    deps: Dict[str, List[str]] = field(default_factory=dict)
    dependents: Dict[str, List[str]] = field(default_factory=dict)
    # consumer instance -> artifact name -> producer instances among its deps
    producers: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    by_job: Dict[str, List[str]] = field(default_factory=dict)
    gate: Optional[str] = None

    def outcomes(self) -> Dict[str, Outcome]:
        return {iid: st.outcome for iid, st in self.states.items()}

    def instance_levels(self) -> List[List[str]]:
        return [[iid for name in level for iid in self.by_job[name]] for level in self.levels]


def _check_job(job: Job) -> None:
    if job.body is None:
        raise ConfigError("job has no body", job=job.name)
    try:
        job.condition = Condition(job.condition)
    except ValueError:
        raise ConfigError(f"unknown condition {job.condition!r}", job=job.name) from None
    for name in list(job.produces) + list(job.consumes):
        if not _ARTIFACT_NAME.match(name):
            raise ConfigError(f"invalid artifact name {name!r}", job=job.name)
    if job.gate:
        if job.matrix:
            raise ConfigError("a gate job cannot have a matrix", job=job.name)
        if job.condition is not Condition.FORCE_RUN:
            raise ConfigError("a gate job must use the force-run condition", job=job.name)


def build_graph(jobs: List[Job]) -> Graph:
    """
    Validate the descriptors and expand them into instances.

    Raises ConfigError for duplicate names, dangling needs, cycles, empty
    matrix axes, bad gates and consumed artifacts that no direct dependency
    produces. Nothing is executed here.
    """
    jobs = list(jobs)
    for job in jobs:
        _check_job(job)

    gates = [j.name for j in jobs if j.gate]
    if len(gates) > 1:
        raise ConfigError(f"only one gate job is allowed, found {gates}")

    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg)

    graph = Graph(jobs={j.name: j for j in jobs}, levels=levels)

    for level in levels:
        for name in level:
            job = graph.jobs[name]
            graph.by_job[name] = []
            for inst in expand(job):
                graph.instances[inst.id] = inst
                graph.states[inst.id] = InstanceState(inst)
                graph.deps[inst.id] = []
                graph.dependents[inst.id] = []
                graph.by_job[name].append(inst.id)

    for name, job in graph.jobs.items():
        # A dependency on a matrix job is a dependency on all of its instances.
        upstream = [iid for need in dict.fromkeys(job.needs) for iid in graph.by_job[need]]

        offered: Dict[str, List[str]] = {}
        for iid in upstream:
            for art in graph.instances[iid].job.produces:
                offered.setdefault(art, []).append(iid)

        missing = [art for art in job.consumes if art not in offered]
        if missing:
            raise ConfigError(
                f"consumes artifacts no dependency produces: {missing}",
                job=name,
            )

        for iid in graph.by_job[name]:
            graph.deps[iid] = list(upstream)
            graph.producers[iid] = {art: list(offered[art]) for art in job.consumes}
            for dep in upstream:
                graph.dependents[dep].append(iid)

    if gates:
        graph.gate = graph.by_job[gates[0]][0]

    return graph
