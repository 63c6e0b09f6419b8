import json
from pathlib import Path

import pytest


def _dist(root: Path, name: str, version: str, *, requires=(), module_file: bool = False) -> None:
    info = root / f"{name}-{version}.dist-info"
    info.mkdir(parents=True)
    lines = ["Metadata-Version: 2.1", f"Name: {name}", f"Version: {version}"]
    lines.extend(f"Requires-Dist: {r}" for r in requires)
    (info / "METADATA").write_text("\n".join(lines) + "\n", encoding="utf-8")
    (info / "top_level.txt").write_text(name + "\n", encoding="utf-8")
    if module_file:
        (root / f"{name}.py").write_text("VALUE = 1\n", encoding="utf-8")
    else:
        (root / name).mkdir()
        (root / name / "__init__.py").write_text("", encoding="utf-8")


def _root(tmp_path: Path, *, with_anyio: bool = True) -> Path:
    root = tmp_path / "root-site"
    root.mkdir()
    _dist(
        root,
        "httpx",
        "0.27.0",
        requires=("anyio>=3", "h2>=3,<5 ; extra == 'http2'", "colorama ; python_version < '3'", "types-certifi"),
    )
    if with_anyio:
        _dist(root, "anyio", "4.4.0", requires=("six",))
        _dist(root, "six", "1.16.0", module_file=True)
    return root


def test_parse_requirement() -> None:
    from flowengine.snapshot import parse_requirement

    assert parse_requirement("anyio>=3") == ("anyio", None)
    assert parse_requirement("colorama ; platform_system == 'Windows'") == ("colorama", 'platform_system == "Windows"')
    assert parse_requirement("h2>=3 ; extra == 'http2'") is None
    assert parse_requirement("") is None


def test_marker_applies_evaluates_against_this_interpreter() -> None:
    from flowengine.snapshot import marker_applies

    assert marker_applies(None) is True
    assert marker_applies('python_version >= "3"') is True
    assert marker_applies('python_version < "3"') is False


def test_resolve_orders_dependencies_first(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotPreparer

    preparer = SnapshotPreparer(root_packages=("httpx",), local_packages=())

    order = [p.name for p in preparer.resolve(_root(tmp_path))]

    assert order == ["six", "anyio", "httpx"]


def test_prepare_copies_packages_and_writes_manifests(tmp_path: Path) -> None:
    from flowengine.snapshot import (
        SnapshotPreparer,
        check_snapshot,
        installed_packages,
        is_snapshot_stale,
        read_manifest,
        read_version_info,
    )

    root = _root(tmp_path)
    snapshot = tmp_path / "snapshot"
    preparer = SnapshotPreparer(root_packages=("httpx",), local_packages=())

    assert preparer.prepare(root, snapshot) == snapshot

    site = snapshot / "site-packages"
    assert (site / "httpx" / "__init__.py").is_file()
    assert (site / "anyio" / "__init__.py").is_file()
    assert (site / "six.py").is_file()
    assert (site / "httpx-0.27.0.dist-info" / "METADATA").is_file()
    assert not (site / "colorama").exists()

    manifest = read_manifest(snapshot)
    assert manifest.dependencies == {"six": "1.16.0", "anyio": "4.4.0", "httpx": "0.27.0"}
    assert json.loads((snapshot / "manifest.json").read_text(encoding="utf-8"))["dependencies"]["httpx"] == "0.27.0"
    assert read_version_info(snapshot).packages["anyio"] == "4.4.0"
    assert list(installed_packages(snapshot)) == ["anyio", "httpx", "six"]
    assert check_snapshot(snapshot) == snapshot
    assert is_snapshot_stale(snapshot, root) is False

    # Preparing again over an existing snapshot is a no-op for present packages.
    preparer.prepare(root, snapshot)
    assert (site / "six.py").is_file()


def test_snapshot_becomes_stale_when_a_version_changes(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotPreparer, is_snapshot_stale

    root = _root(tmp_path)
    snapshot = tmp_path / "snapshot"
    SnapshotPreparer(root_packages=("httpx",), local_packages=()).prepare(root, snapshot)

    meta = root / "anyio-4.4.0.dist-info" / "METADATA"
    meta.write_text(meta.read_text(encoding="utf-8").replace("Version: 4.4.0", "Version: 4.5.0"), encoding="utf-8")

    assert is_snapshot_stale(snapshot, root) is True
    assert is_snapshot_stale(tmp_path / "never-built", root) is True


def test_missing_required_package_names_the_package(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotError, SnapshotPreparer

    root = _root(tmp_path, with_anyio=False)
    preparer = SnapshotPreparer(root_packages=("httpx",), local_packages=())

    with pytest.raises(SnapshotError) as exc:
        preparer.prepare(root, tmp_path / "snapshot")
    assert "Required package 'anyio' not found" in str(exc.value)
    assert "required by httpx" in str(exc.value)


def test_missing_dependency_with_a_true_marker_is_an_error(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotError, SnapshotPreparer

    root = tmp_path / "root-site"
    root.mkdir()
    _dist(root, "httpx", "0.27.0", requires=('needed-pkg ; python_version >= "3"',))
    preparer = SnapshotPreparer(root_packages=("httpx",), local_packages=())

    with pytest.raises(SnapshotError, match="needed-pkg"):
        preparer.prepare(root, tmp_path / "snapshot")


def test_missing_root_directory_is_an_error(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotError, SnapshotPreparer

    with pytest.raises(SnapshotError):
        SnapshotPreparer(root_packages=("httpx",), local_packages=()).resolve(tmp_path / "absent")


def test_local_analysis_package_is_copied_from_this_interpreter(tmp_path: Path) -> None:
    from flowengine import __version__
    from flowengine.snapshot import SnapshotPreparer, read_manifest

    root = _root(tmp_path)
    snapshot = tmp_path / "snapshot"

    SnapshotPreparer().prepare(root, snapshot)

    assert (snapshot / "site-packages" / "flowengine_analysis" / "__init__.py").is_file()
    assert read_manifest(snapshot).dependencies["flowengine_analysis"] == __version__


def test_check_snapshot_rejects_unprepared_directory(tmp_path: Path) -> None:
    from flowengine.snapshot import SnapshotError, check_snapshot

    with pytest.raises(SnapshotError) as exc:
        check_snapshot(tmp_path)
    assert "prepare-deps" in str(exc.value)


def test_default_snapshot_dir_honours_environment(tmp_path: Path) -> None:
    from flowengine.snapshot import default_snapshot_dir

    assert default_snapshot_dir({"FLOWENGINE_SNAPSHOT_DIR": str(tmp_path)}) == tmp_path
    assert default_snapshot_dir({}).name == "flow-deps"
