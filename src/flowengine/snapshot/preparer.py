"""Dependency snapshot preparer.

Copies the third-party packages a compiled program may import (plus the local
analysis package) from a `site-packages` style directory into an isolated
snapshot, dependency-first, and records what was copied.

Preparation into the same snapshot directory is not safe to run concurrently;
callers serialize it (one preparation per install, not per run).
"""

from __future__ import annotations

import importlib.metadata
import importlib.util
import os
import platform
import re
import shutil
import sysconfig
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from packaging.markers import InvalidMarker, Marker
from packaging.requirements import InvalidRequirement, Requirement

from ..logging import get_logger
from .manifest import (
    MANIFEST_FILENAME,
    SITE_PACKAGES_DIRNAME,
    VERSION_FILENAME,
    SnapshotError,
    SnapshotManifest,
    SnapshotVersionInfo,
    read_manifest,
    read_version_info,
    write_json,
)

logger = get_logger(__name__)

# Packages the generated program imports directly.
ROOT_PACKAGES: Tuple[str, ...] = ("httpx", "flowengine_analysis")

# Local (in-repo) packages: import name -> declared dependencies.
LOCAL_PACKAGE_REQUIRES: Dict[str, Tuple[str, ...]] = {
    "flowengine_analysis": ("httpx",),
}

_EXTRA_MARKER_RE = re.compile(r"\bextra\s*==")
_IGNORED_TREE_ITEMS = shutil.ignore_patterns("__pycache__", "*.pyc")


def canonical_name(name: str) -> str:
    return re.sub(r"[-_.]+", "-", str(name or "")).lower()


def is_type_only(name: str) -> bool:
    c = canonical_name(name)
    return c.startswith("types-") or c.endswith("-stubs")


def parse_requirement(line: str) -> Optional[Tuple[str, Optional[str]]]:
    """Parse a `Requires-Dist` value into `(name, marker)`.

    Returns None for extras-only and unparseable requirements.
    """
    try:
        req = Requirement(str(line or ""))
    except InvalidRequirement:
        return None
    marker = str(req.marker) if req.marker is not None else None
    if marker and _EXTRA_MARKER_RE.search(marker):
        return None
    return req.name, marker


def marker_applies(marker: Optional[str]) -> bool:
    """True when *marker* holds for this interpreter (no marker always holds)."""
    if not marker:
        return True
    try:
        return Marker(marker).evaluate({"extra": ""})
    except InvalidMarker:
        return True


@dataclass(frozen=True)
class PackageSource:
    """One distribution to copy: where its files live and what it needs."""

    name: str
    version: str
    requires: Tuple[Tuple[str, Optional[str]], ...] = ()
    # Paths copied into the snapshot's site-packages (module dirs/files, dist-info).
    paths: Tuple[Path, ...] = ()
    dist_info: Optional[Path] = None

    @property
    def key(self) -> str:
        return canonical_name(self.name)


def _top_level_paths(root: Path, dist: importlib.metadata.Distribution, dist_info: Path) -> List[Path]:
    names: list[str] = []
    top_level = dist.read_text("top_level.txt")
    if top_level:
        names = [n.strip() for n in top_level.splitlines() if n.strip()]
    else:
        for f in dist.files or []:
            parts = Path(str(f)).parts
            if not parts or parts[0] in ("..", dist_info.name) or parts[0].endswith((".dist-info", ".pth")):
                continue
            first = parts[0]
            if len(parts) == 1 and first.endswith(".py"):
                first = first[: -len(".py")]
            if first not in names:
                names.append(first)

    out: list[Path] = []
    for name in names:
        pkg_dir = root / name
        if pkg_dir.is_dir():
            out.append(pkg_dir)
            continue
        out.extend(sorted(p for p in root.glob(f"{name}.*") if p.is_file() and not p.name.endswith(".pth")))
    return out


def scan_distributions(root: Path) -> Dict[str, PackageSource]:
    """Index `*.dist-info` directories under *root* by canonical name."""
    index: Dict[str, PackageSource] = {}
    for dist_info in sorted(root.glob("*.dist-info")):
        dist = importlib.metadata.PathDistribution(dist_info)
        meta = dist.metadata
        name = meta.get("Name") if meta is not None else None
        if not name:
            continue
        requires: list[Tuple[str, Optional[str]]] = []
        for line in dist.requires or []:
            parsed = parse_requirement(line)
            if parsed is not None:
                requires.append(parsed)
        src = PackageSource(
            name=str(name),
            version=str(meta.get("Version") or "0"),
            requires=tuple(requires),
            paths=tuple(_top_level_paths(root, dist, dist_info)),
            dist_info=dist_info,
        )
        index.setdefault(src.key, src)
    return index


def _local_package(import_name: str) -> Optional[PackageSource]:
    spec = importlib.util.find_spec(import_name)
    if spec is None or not spec.origin:
        return None
    origin = Path(spec.origin).resolve()
    path = origin.parent if origin.name == "__init__.py" else origin
    from .. import __version__

    return PackageSource(
        name=import_name,
        version=__version__,
        requires=tuple((r, None) for r in LOCAL_PACKAGE_REQUIRES.get(import_name, ())),
        paths=(path,),
    )


def default_root_modules_path() -> Path:
    """The `site-packages` directory that holds httpx (else the interpreter's purelib)."""
    spec = importlib.util.find_spec("httpx")
    if spec is not None and spec.origin:
        return Path(spec.origin).resolve().parent.parent
    return Path(sysconfig.get_paths()["purelib"])


def default_snapshot_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the snapshot directory.

    Priority:
    1) `FLOWENGINE_SNAPSHOT_DIR`
    2) `~/.flowengine/flow-deps`
    """
    env = os.environ if environ is None else environ
    raw = str(env.get("FLOWENGINE_SNAPSHOT_DIR") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".flowengine" / "flow-deps"


class SnapshotPreparer:
    """Build `<snapshot>/site-packages` from a root modules directory.

    Args:
        root_packages: Names the generated program imports.
        local_packages: Import names resolved from this interpreter instead of
            the root directory (editable installs keep working).
    """

    def __init__(
        self,
        root_packages: Iterable[str] = ROOT_PACKAGES,
        local_packages: Iterable[str] = tuple(LOCAL_PACKAGE_REQUIRES),
    ):
        self.root_packages: Tuple[str, ...] = tuple(root_packages)
        self.local_packages: Tuple[str, ...] = tuple(local_packages)
        self._local_cache: Dict[str, PackageSource] = {}

    def _local(self, name: str) -> Optional[PackageSource]:
        if name not in self.local_packages:
            return None
        if name not in self._local_cache:
            src = _local_package(name)
            if src is None:
                return None
            self._local_cache[name] = src
        return self._local_cache[name]

    def resolve(self, root_modules_path: Path) -> List[PackageSource]:
        """Return every package to copy, dependencies before dependents.

        Raises:
            SnapshotError: the root directory or a required package is missing.
        """
        root = Path(root_modules_path)
        if not root.is_dir():
            raise SnapshotError(f"Root modules directory not found: {root}")
        index = scan_distributions(root)

        order: list[PackageSource] = []
        done: Set[str] = set()
        visiting: Set[str] = set()

        def _visit(name: str, required_by: Optional[str], marker: Optional[str]) -> None:
            key = canonical_name(name)
            if key in done or key in visiting:
                return
            if not marker_applies(marker):
                logger.debug("Dependency marker does not apply; skipped", package=name, marker=marker)
                return
            src = self._local(name) or index.get(key)
            if src is None:
                suffix = f" (required by {required_by})" if required_by else ""
                raise SnapshotError(f"Required package '{name}' not found in {root}{suffix}")
            visiting.add(key)
            for dep, dep_marker in src.requires:
                if canonical_name(dep) == key or is_type_only(dep):
                    continue
                _visit(dep, src.name, dep_marker)
            visiting.discard(key)
            done.add(key)
            order.append(src)

        for name in self.root_packages:
            _visit(name, None, None)
        return order

    def prepare(self, root_modules_path: Optional[Path] = None, snapshot_dir: Optional[Path] = None) -> Path:
        """Copy the resolved packages and write `manifest.json` / `version.json`.

        Packages already present in the snapshot are not copied again.
        """
        root = Path(root_modules_path) if root_modules_path is not None else default_root_modules_path()
        target = Path(snapshot_dir) if snapshot_dir is not None else default_snapshot_dir()
        site = target / SITE_PACKAGES_DIRNAME
        site.mkdir(parents=True, exist_ok=True)

        packages = self.resolve(root)
        for src in packages:
            self._copy(src, site)

        versions = {src.name: src.version for src in packages}
        write_json(target / MANIFEST_FILENAME, SnapshotManifest(dependencies=versions).to_dict())
        write_json(
            target / VERSION_FILENAME,
            SnapshotVersionInfo(
                created_at=datetime.now(timezone.utc).isoformat(),
                python_version=platform.python_version(),
                packages=versions,
            ).to_dict(),
        )
        logger.info("Flow dependency snapshot ready", snapshot_dir=str(target), packages=len(packages))
        return target

    def _copy(self, src: PackageSource, site: Path) -> None:
        items: list[Path] = list(src.paths)
        if src.dist_info is not None:
            items.append(src.dist_info)
        if not items:
            raise SnapshotError(f"Required package '{src.name}' has no files to copy")

        copied = 0
        try:
            for item in items:
                dest = site / item.name
                if dest.exists():
                    continue
                if item.is_dir():
                    shutil.copytree(item, dest, ignore=_IGNORED_TREE_ITEMS)
                else:
                    shutil.copy2(item, dest)
                copied += 1
        except OSError as e:
            raise SnapshotError(f"Failed to copy required package '{src.name}': {e}") from e
        if copied:
            logger.info("Copied package into snapshot", package=src.name, version=src.version)


def check_snapshot(snapshot_dir: Path) -> Path:
    """Raise `SnapshotError` unless *snapshot_dir* holds a prepared snapshot."""
    target = Path(snapshot_dir)
    if not (target / SITE_PACKAGES_DIRNAME).is_dir() or read_manifest(target) is None:
        raise SnapshotError(
            f"Flow dependencies not found at {target}. Run `flowengine prepare-deps` first."
        )
    return target


def is_snapshot_stale(snapshot_dir: Path, root_modules_path: Optional[Path] = None) -> bool:
    """True when the snapshot was built from different package versions or another Python."""
    info = read_version_info(Path(snapshot_dir))
    if info is None:
        return True
    current = platform.python_version().split(".")[:2]
    if info.python_version.split(".")[:2] != current:
        return True
    root = Path(root_modules_path) if root_modules_path is not None else default_root_modules_path()
    index = scan_distributions(root) if root.is_dir() else {}
    for name, version in info.packages.items():
        installed = index.get(canonical_name(name))
        if installed is None:
            # Local packages have no dist-info under the root.
            if name in LOCAL_PACKAGE_REQUIRES:
                continue
            return True
        if installed.version != version:
            return True
    return False


def installed_packages(snapshot_dir: Path) -> Iterable[str]:
    manifest = read_manifest(Path(snapshot_dir))
    return sorted(manifest.dependencies) if manifest is not None else []
