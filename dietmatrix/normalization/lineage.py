"""Run manifest tying every source sheet to the matrix files built from it."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import hashlib
from pathlib import Path
from typing import Any, Dict, List

MANIFEST_DATASET = "diet_matrix"


def compute_file_hash(path: Path | str) -> str:
    # survey sheets are small enough to hash in one read
    return "sha256:" + hashlib.sha256(Path(path).read_bytes()).hexdigest()


@dataclass(frozen=True)
class ManifestEntry:
    """One file read or written by a run. Source files also carry study/table/role."""

    path: str
    file_hash: str
    record_count: int | None = None
    study: str | None = None
    table: str | None = None
    role: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class RunManifest:
    run_id: str
    created_at: str
    inputs: List[ManifestEntry] = field(default_factory=list)
    outputs: List[ManifestEntry] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "dataset": MANIFEST_DATASET,
            "run_id": self.run_id,
            "created_at": self.created_at,
            "inputs": [entry.as_dict() for entry in self.inputs],
            "outputs": [entry.as_dict() for entry in self.outputs],
        }
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


__all__ = ["MANIFEST_DATASET", "ManifestEntry", "RunManifest", "compute_file_hash"]
