"""Isolated dependency snapshots for compiled flow programs."""

from .manifest import (
    MANIFEST_FILENAME,
    SITE_PACKAGES_DIRNAME,
    VERSION_FILENAME,
    SnapshotError,
    SnapshotManifest,
    SnapshotVersionInfo,
    read_manifest,
    read_version_info,
)
from .preparer import (
    ROOT_PACKAGES,
    PackageSource,
    SnapshotPreparer,
    check_snapshot,
    default_root_modules_path,
    default_snapshot_dir,
    installed_packages,
    is_snapshot_stale,
    marker_applies,
    parse_requirement,
    scan_distributions,
)

__all__ = [
    "MANIFEST_FILENAME",
    "SITE_PACKAGES_DIRNAME",
    "VERSION_FILENAME",
    "ROOT_PACKAGES",
    "PackageSource",
    "SnapshotError",
    "SnapshotManifest",
    "SnapshotPreparer",
    "SnapshotVersionInfo",
    "check_snapshot",
    "default_root_modules_path",
    "default_snapshot_dir",
    "installed_packages",
    "is_snapshot_stale",
    "marker_applies",
    "parse_requirement",
    "read_manifest",
    "read_version_info",
    "scan_distributions",
]
