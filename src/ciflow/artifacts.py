# artifacts.py
from __future__ import annotations

import hashlib
import re
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .errors import (
    ArtifactError,
    ArtifactMissing,
    ArtifactNotReady,
    DuplicateArtifactError,
)
from .model import Outcome

# ---------------------------------------------------------------------
# Artifact handoff between a producing instance and its dependents.
#
# Each producer owns one slot:
#   registered -> open (producer Running) -> sealed (producer terminal)
#
# put() is only legal while the slot is open, get() only once it is sealed
# as succeeded. Every slot carries its own lock; no operation touches more
# than one slot, so there is no store-wide lock.
#
# With a root directory, payloads are spilled to disk:
#   root/
#     <producer-slug>/
#       <name>
# ---------------------------------------------------------------------


def slug(instance_id: str) -> str:
    """Filesystem-safe, collision-free name for an instance id."""
    base = re.sub(r"[^A-Za-z0-9_.-]+", "_", instance_id).strip("_") or "instance"
    digest = hashlib.sha256(instance_id.encode("utf-8")).hexdigest()[:8]
    return f"{base}-{digest}"


class _Slot:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.open = False
        self.sealed: Optional[Outcome] = None
        self.payloads: Dict[str, bytes] = {}
        self.paths: Dict[str, Path] = {}


class ArtifactStore:
    def __init__(self, root: str | Path | None = None, *, keep: bool = False):
        self.root = Path(root).resolve() if root is not None else None
        self.keep = keep
        self._slots: Dict[str, _Slot] = {}
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)

    # -- lifecycle (driven by the scheduler) --------------------------

    def register(self, producer_id: str) -> None:
        self._slots.setdefault(producer_id, _Slot())

    def open(self, producer_id: str) -> None:
        slot = self._slot(producer_id, "")
        with slot.lock:
            slot.open = True

    def seal(self, producer_id: str, outcome: Outcome) -> None:
        slot = self._slot(producer_id, "")
        with slot.lock:
            slot.open = False
            slot.sealed = outcome

    # -- producer / consumer API --------------------------------------

    def put(self, producer_id: str, name: str, payload: bytes) -> None:
        if not isinstance(payload, (bytes, bytearray)):
            raise TypeError(f"artifact payload must be bytes, got {type(payload).__name__}")
        slot = self._slot(producer_id, name)
        with slot.lock:
            if name in slot.payloads or name in slot.paths:
                raise DuplicateArtifactError(producer_id, name)
            if not slot.open:
                raise ArtifactError(producer_id, name, "producer is not running")
            if self.root is None:
                slot.payloads[name] = bytes(payload)
            else:
                slot.paths[name] = self._write(producer_id, name, bytes(payload))

    def get(self, producer_id: str, name: str) -> bytes:
        slot = self._slot(producer_id, name)
        with slot.lock:
            if slot.sealed is None:
                raise ArtifactNotReady(producer_id, name)
            if slot.sealed is not Outcome.SUCCEEDED:
                raise ArtifactMissing(producer_id, name, f"producer ended {slot.sealed.value}")
            if name in slot.payloads:
                return slot.payloads[name]
            path = slot.paths.get(name)
        if path is None:
            raise ArtifactMissing(producer_id, name, "producer never wrote")
        return path.read_bytes()

    def has(self, producer_id: str, name: str) -> bool:
        slot = self._slot(producer_id, name)
        with slot.lock:
            return name in slot.payloads or name in slot.paths

    def names(self, producer_id: str) -> List[str]:
        slot = self._slot(producer_id, "")
        with slot.lock:
            return sorted(set(slot.payloads) | set(slot.paths))

    def discard(self) -> None:
        """Drop every payload (and the spill directory unless keep=True)."""
        for slot in self._slots.values():
            with slot.lock:
                slot.payloads.clear()
                slot.paths.clear()
        if self.root is not None and not self.keep and self.root.exists():
            shutil.rmtree(self.root)

    # -- internals ----------------------------------------------------

    def _slot(self, producer_id: str, name: str) -> _Slot:
        slot = self._slots.get(producer_id)
        if slot is None:
            raise ArtifactError(producer_id, name, "unknown producer")
        return slot

    def _write(self, producer_id: str, name: str, payload: bytes) -> Path:
        d = self.root / slug(producer_id)
        d.mkdir(parents=True, exist_ok=True)
        dest = d / name
        tmp = d / f".{name}.tmp"
        try:
            # write to tmp, then atomic rename
            tmp.write_bytes(payload)
            tmp.replace(dest)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        return dest
