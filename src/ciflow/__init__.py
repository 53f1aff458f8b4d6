from .context import RunContext, TriggerEvent, on_manual, on_pull_request, on_push, on_schedule
# runner (via dag) loads the ciflow.matrix submodule; import it before dsl so
# the package attribute `matrix` stays bound to the DSL function.
from .runner import load_workflow, run_dag
from .dsl import JobBuilder, build, gate, job, matrix, sh, wf
from .errors import (
    ArtifactMissing,
    ArtifactNotReady,
    ConfigError,
    DependencyFailure,
    DuplicateArtifactError,
    ExecutionFailure,
)
from .model import Condition, Job, Outcome, Step, Workflow

__all__ = [
    "job", "sh", "gate", "matrix", "wf", "JobBuilder", "build",
    "run_dag", "load_workflow",
    "Job", "Step", "Workflow", "Condition", "Outcome",
    "RunContext", "TriggerEvent", "on_push", "on_pull_request", "on_manual", "on_schedule",
    "ConfigError", "DependencyFailure", "ExecutionFailure",
    "ArtifactNotReady", "ArtifactMissing", "DuplicateArtifactError",
]
