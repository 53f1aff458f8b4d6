from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError
from .history import DEFAULT_HISTORY_URL


def _int_or_none(environ: Mapping[str, str], key: str) -> Optional[int]:
    raw = environ.get(key, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigError(f"{key} must be >= 1, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    history_url: str = DEFAULT_HISTORY_URL
    work_dir: Path = Path(".ciflow/work")
    max_workers: Optional[int] = None
    poll_interval: float = 0.1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        try:
            poll = float(environ.get("CIFLOW_POLL_INTERVAL", "0.1"))
        except ValueError:
            raise ConfigError("CIFLOW_POLL_INTERVAL must be a number") from None
        return cls(
            history_url=environ.get("CIFLOW_HISTORY_URL", DEFAULT_HISTORY_URL),
            work_dir=Path(environ.get("CIFLOW_WORK_DIR", ".ciflow/work")),
            max_workers=_int_or_none(environ, "CIFLOW_MAX_WORKERS"),
            poll_interval=poll,
        )
