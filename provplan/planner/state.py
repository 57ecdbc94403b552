"""
Versioned snapshot of realized infrastructure.

A snapshot is passed into the driver and a new one comes back; nothing here
is global. The on-disk JSON is owned by the CLI. Two runs against the same
state file at once are not supported.
"""
import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from provplan.models.resource import RealizedResource, ResourceKey

STATE_FORMAT = 1


@dataclass(frozen=True)
class StateSnapshot:
    version: int = 0
    resources: Dict[ResourceKey, RealizedResource] = field(default_factory=dict)
    lineage: str = ""
    updated: str = ""

    def get(self, key: ResourceKey) -> Optional[RealizedResource]:
        return self.resources.get(key)

    def __len__(self) -> int:
        return len(self.resources)

    def succeed(self, realized: Iterable[RealizedResource]) -> "StateSnapshot":
        """Return the next version with the given records superseding old ones."""
        merged = dict(self.resources)
        for rr in realized:
            merged[rr.key] = rr
        return StateSnapshot(
            version=self.version + 1,
            resources=merged,
            lineage=self.lineage or str(uuid.uuid4()),
            updated=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    def to_dict(self) -> dict:
        return {
            "format": STATE_FORMAT,
            "version": self.version,
            "lineage": self.lineage,
            "updated": self.updated,
            "resources": [rr.to_dict() for rr in self.resources.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StateSnapshot":
        if not isinstance(data, dict):
            raise ValueError("state file must hold a JSON object")
        if data.get("format", STATE_FORMAT) != STATE_FORMAT:
            raise ValueError(f"unsupported state format {data.get('format')!r}")
        records = [RealizedResource.from_dict(r) for r in data.get("resources") or []]
        return cls(
            version=int(data.get("version", 0)),
            resources={rr.key: rr for rr in records},
            lineage=data.get("lineage", ""),
            updated=data.get("updated", ""),
        )


def load_state(path: str) -> StateSnapshot:
    if not os.path.exists(path):
        return StateSnapshot()
    with open(path, encoding="utf-8") as fh:
        return StateSnapshot.from_dict(json.load(fh))


def save_state(snapshot: StateSnapshot, path: str) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8", newline="\n") as fh:
        json.dump(snapshot.to_dict(), fh, indent=2, sort_keys=True)
        fh.write("\n")
    os.replace(tmp, path)
