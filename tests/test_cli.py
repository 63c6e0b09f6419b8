import json
from pathlib import Path

import pytest


def _write_request(tmp_path: Path, flow_only: bool = False) -> Path:
    flow = {
        "id": "flow-cli",
        "name": "CLI",
        "blocks": [
            {"id": "i", "type": "import", "file": "data.json"},
            {"id": "t", "type": "transform", "actionId": "missing-action"},
        ],
        "edges": [{"id": "e1", "source": "i", "target": "t"}],
    }
    path = tmp_path / "request.json"
    payload = flow if flow_only else {"flow": flow, "actions": [], "itemLimit": 2}
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_compile_writes_program_and_reports_warnings(tmp_path: Path, capsys) -> None:
    from flowengine.cli import main
    from flowengine.compiler import ANALYSIS_IMPORT_LINE

    out = tmp_path / "flow.py"

    assert main(["compile", str(_write_request(tmp_path)), "-o", str(out)]) == 0

    text = out.read_text(encoding="utf-8")
    assert text.splitlines()[0] == ANALYSIS_IMPORT_LINE
    assert "ITEM_LIMIT = 2" in text
    assert "missing-action" in capsys.readouterr().err


def test_compile_accepts_bare_flow_and_item_limit_override(tmp_path: Path, capsys) -> None:
    from flowengine.cli import main

    assert main(["compile", str(_write_request(tmp_path, flow_only=True)), "--item-limit", "7"]) == 0
    assert "ITEM_LIMIT = 7" in capsys.readouterr().out


def test_compile_fails_on_structural_error(tmp_path: Path, capsys) -> None:
    from flowengine.cli import main

    path = tmp_path / "bad.json"
    path.write_text(
        json.dumps(
            {
                "id": "bad",
                "blocks": [{"id": "i", "type": "import"}, {"id": "e", "type": "export"}],
                "edges": [{"source": "i", "target": "e"}],
            }
        ),
        encoding="utf-8",
    )

    assert main(["compile", str(path)]) == 2
    assert "Compile failed" in capsys.readouterr().err


def test_run_without_snapshot_fails_cleanly(tmp_path: Path, capsys) -> None:
    from flowengine.cli import main

    code = main(["run", str(_write_request(tmp_path)), "--snapshot-dir", str(tmp_path / "no-snapshot")])

    assert code == 2
    assert "prepare-deps" in capsys.readouterr().err


def test_prepare_deps_reports_missing_root(tmp_path: Path, capsys) -> None:
    from flowengine.cli import main

    code = main(["prepare-deps", "--root-modules", str(tmp_path / "nope"), "--snapshot-dir", str(tmp_path / "s")])

    assert code == 1
    assert "Failed to prepare flow dependencies" in capsys.readouterr().err


def test_load_request_merges_extra_actions(tmp_path: Path) -> None:
    from flowengine.cli import load_request

    actions = tmp_path / "actions.json"
    actions.write_text(json.dumps({"actions": [{"id": "u1", "type": "transform", "code": ""}]}), encoding="utf-8")

    request = load_request(str(_write_request(tmp_path)), actions_path=str(actions), item_limit=5)

    assert [a.id for a in request.actions] == ["u1"]
    assert request.item_limit == 5
    assert request.flow.id == "flow-cli"


def test_help_lists_subcommands_and_exit_codes(capsys) -> None:
    from flowengine.cli import main

    with pytest.raises(SystemExit) as exc:
        main(["--help"])

    assert exc.value.code == 0
    out = capsys.readouterr().out
    for command in ("compile", "run", "prepare-deps", "models"):
        assert command in out
    assert "130 interrupted" in out
