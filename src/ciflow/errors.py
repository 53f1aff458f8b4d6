# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class CIError(Exception):
    """Base class for every error raised by ciflow."""


# ----------------------------------------------------------------------
# Build time
# ----------------------------------------------------------------------

@dataclass(eq=False)
class ConfigError(CIError):
    """
    Malformed workflow: cycle, dangling dependency, empty matrix axis, ...

    Raised while the graph is built, before any job body runs.
    """
    message: str
    job: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"config: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Run time
# ----------------------------------------------------------------------

@dataclass(eq=False)
class DependencyFailure(CIError):
    instance: str
    failed: List[str]

    def __str__(self) -> str:
        return f"[{self.instance}] required dependency did not succeed: {', '.join(self.failed)}"


@dataclass(eq=False)
class ExecutionFailure(CIError):
    """Raised by a job body to report that its work failed."""
    instance: str
    message: str

    def __str__(self) -> str:
        return f"[{self.instance}] {self.message}"


@dataclass(eq=False)
class StepFailure(ExecutionFailure):
    step: str = ""
    cmd: str = ""
    exit_code: int = 1
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.instance}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


# ----------------------------------------------------------------------
# Artifact contract violations (never masked)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class ArtifactError(CIError):
    producer: str
    name: str
    message: str = "artifact contract violated"

    def __str__(self) -> str:
        return f"{self.message}: {self.producer}/{self.name}"


@dataclass(eq=False)
class ArtifactNotReady(ArtifactError):
    message: str = "producer has not finished"


@dataclass(eq=False)
class ArtifactMissing(ArtifactError):
    message: str = "artifact unavailable"


@dataclass(eq=False)
class DuplicateArtifactError(ArtifactError):
    message: str = "artifact already written"
