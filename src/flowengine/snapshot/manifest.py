"""Dependency snapshot manifests (stdlib-only).

Snapshot layout:
  manifest.json        declared dependency set ({name, version, dependencies})
  version.json         staleness record (timestamp, python version, packages)
  site-packages/       copied distributions (modules + .dist-info)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

MANIFEST_FILENAME = "manifest.json"
VERSION_FILENAME = "version.json"
SITE_PACKAGES_DIRNAME = "site-packages"

SNAPSHOT_NAME = "flowengine-flow-deps"
SNAPSHOT_FORMAT_VERSION = "1.0.0"


class SnapshotError(RuntimeError):
    """Raised when a snapshot cannot be prepared or is missing."""


@dataclass(frozen=True)
class SnapshotManifest:
    """manifest.json: the dependency set a compiled program may import."""

    dependencies: Dict[str, str] = field(default_factory=dict)
    name: str = SNAPSHOT_NAME
    version: str = SNAPSHOT_FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "dependencies": dict(self.dependencies)}

    @classmethod
    def from_dict(cls, raw: Any) -> "SnapshotManifest":
        if not isinstance(raw, dict):
            raise SnapshotError("manifest.json must be a JSON object")
        deps = raw.get("dependencies")
        return cls(
            dependencies={str(k): str(v) for k, v in deps.items()} if isinstance(deps, dict) else {},
            name=str(raw.get("name") or SNAPSHOT_NAME),
            version=str(raw.get("version") or SNAPSHOT_FORMAT_VERSION),
        )


@dataclass(frozen=True)
class SnapshotVersionInfo:
    """version.json: when the snapshot was built and from what."""

    created_at: str
    python_version: str
    packages: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_at": self.created_at,
            "python_version": self.python_version,
            "packages": dict(self.packages),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "SnapshotVersionInfo":
        if not isinstance(raw, dict):
            raise SnapshotError("version.json must be a JSON object")
        pkgs = raw.get("packages")
        return cls(
            created_at=str(raw.get("created_at") or ""),
            python_version=str(raw.get("python_version") or ""),
            packages={str(k): str(v) for k, v in pkgs.items()} if isinstance(pkgs, dict) else {},
        )


def write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, sort_keys=False) + "\n", encoding="utf-8")


def _read_json(path: Path) -> Optional[Any]:
    if not path.is_file():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SnapshotError(f"Unreadable snapshot file {path}: {e}") from e


def read_manifest(snapshot_dir: Path) -> Optional[SnapshotManifest]:
    raw = _read_json(Path(snapshot_dir) / MANIFEST_FILENAME)
    return SnapshotManifest.from_dict(raw) if raw is not None else None


def read_version_info(snapshot_dir: Path) -> Optional[SnapshotVersionInfo]:
    raw = _read_json(Path(snapshot_dir) / VERSION_FILENAME)
    return SnapshotVersionInfo.from_dict(raw) if raw is not None else None
