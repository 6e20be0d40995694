import json
from pathlib import Path

import pytest

from formlink.cli import main


def _write(tmp_path: Path, name: str, data: dict) -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


def _schema(tmp_path: Path) -> Path:
    return _write(
        tmp_path,
        "schema.json",
        {
            "type": "object",
            "properties": {
                "price": {"type": "number"},
                "quantity": {"type": "number"},
                "total": {
                    "type": "number",
                    "ui": {
                        "linkage": {
                            "type": "computed",
                            "dependencies": ["price", "quantity"],
                            "fulfill": {"expression": "price * quantity"},
                        }
                    },
                },
                "discount": {
                    "type": "number",
                    "ui": {
                        "linkage": {
                            "type": "disabled",
                            "dependencies": ["total"],
                            "when": {"field": "total", "operator": "<", "value": 100},
                            "fulfill": {"state": {"disabled": True}},
                        }
                    },
                },
            },
        },
    )


def test_check_reports_counts(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["check", str(_schema(tmp_path))])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "Declared linkages: 2" in out
    assert "Dependencies: 3" in out


def test_check_fails_on_cycle(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write(
        tmp_path,
        "cycle.json",
        {
            "linkages": {
                "A": {"type": "value", "dependencies": ["B"], "fulfill": {"expression": "B + 1"}},
                "B": {"type": "value", "dependencies": ["A"], "fulfill": {"expression": "A + 1"}},
            }
        },
    )
    with pytest.raises(SystemExit) as excinfo:
        main(["check", str(path)])
    assert excinfo.value.code == 1
    assert "A -> B" in capsys.readouterr().err


def test_affected_lists_fields_in_order(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        main(["affected", str(_schema(tmp_path)), "price"])
    assert capsys.readouterr().out.split() == ["total", "discount"]


def test_evaluate_prints_results(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    values = _write(tmp_path, "values.json", {"price": 10, "quantity": 4})
    with pytest.raises(SystemExit) as excinfo:
        main(["evaluate", str(_schema(tmp_path)), "--values", str(values)])
    assert excinfo.value.code == 0
    results = json.loads(capsys.readouterr().out)
    assert results == {"discount": {"disabled": True}, "total": {"value": 40.0}}


def test_missing_file_exits_with_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["check", str(tmp_path / "nope.json")])
    assert excinfo.value.code == 2
    assert "not found" in capsys.readouterr().err
