# matrix.py
from __future__ import annotations

from itertools import product
from typing import Any, Dict, Iterable, List, Tuple

from .errors import ConfigError
from .model import Job, JobInstance


def instance_id(name: str, assignment: Tuple[Tuple[str, Any], ...]) -> str:
    """
    Stable identity of an instance.

        instance_id("test", (("batch", 0), ("total_batch", 2)))
        -> "test[batch=0,total_batch=2]"
    """
    if not assignment:
        return name
    inner = ",".join(f"{axis}={value}" for axis, value in assignment)
    return f"{name}[{inner}]"


def _axis_values(job: Job, axis: str, values: Any) -> List[Any]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise ConfigError(
            f"matrix axis '{axis}' must be a sequence of values, got {type(values).__name__}",
            job=job.name,
        )
    values = list(values)
    if not values:
        raise ConfigError(f"matrix axis '{axis}' is empty", job=job.name)
    return values


def expand(job: Job) -> List[JobInstance]:
    """
    Cartesian product of the job's matrix axes, one JobInstance per combination.

    Axes keep their declared order, values keep theirs. A job without a matrix
    gives exactly one instance. An axis with a single value is not special:
    it simply shows up in every instance's assignment.
    """
    axes: Dict[str, list] = job.matrix or {}
    if not axes:
        return [JobInstance(id=job.name, job=job)]

    names = list(axes)
    columns = [_axis_values(job, axis, axes[axis]) for axis in names]

    out: List[JobInstance] = []
    seen = set()
    for combo in product(*columns):
        assignment = tuple(zip(names, combo))
        iid = instance_id(job.name, assignment)
        if iid in seen:
            raise ConfigError(f"matrix produces duplicate instance {iid}", job=job.name)
        seen.add(iid)
        out.append(JobInstance(id=iid, job=job, assignment=assignment))
    return out


def matrix_size(job: Job) -> int:
    size = 1
    for axis, values in (job.matrix or {}).items():
        size *= len(_axis_values(job, axis, values))
    return size
