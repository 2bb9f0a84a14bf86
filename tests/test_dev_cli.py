from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

CLI_PATH = Path(__file__).resolve().parents[1] / "tools" / "dev_cli.py"


@pytest.fixture
def dev_cli():
    spec = importlib.util.spec_from_file_location("dev_cli", CLI_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def db_args(tmp_path: Path) -> list[str]:
    return ["--database-url", f"sqlite:///{(tmp_path / 'cli.sqlite').as_posix()}"]


def test_import_holdings_and_clear(dev_cli, db_args, tmp_path: Path, robinhood_csv: bytes, capsys):
    csv_path = tmp_path / "robinhood.csv"
    csv_path.write_bytes(robinhood_csv)

    assert dev_cli.main([*db_args, "import", str(csv_path)]) == 0
    output = capsys.readouterr().out
    assert "Rows: 3 total, 2 valid, 1 skipped" in output
    assert "Row 3: action 'CDIV'" in output
    assert "added=1 updated=0 removed=0" in output

    assert dev_cli.main([*db_args, "holdings"]) == 0
    assert "AAPL" in capsys.readouterr().out

    assert dev_cli.main([*db_args, "clear", "--confirm", "clear"]) == 1
    assert dev_cli.main([*db_args, "clear", "--confirm", "CLEAR"]) == 0
    assert "Cleared 1 holdings." in capsys.readouterr().out


def test_import_dry_run_with_mapping_and_exclusions(dev_cli, db_args, tmp_path: Path, capsys):
    csv_path = tmp_path / "custom.csv"
    csv_path.write_text("Code,Units,Each\nAAPL,10,100\nMSFT,5,300\n", encoding="utf-8")

    status = dev_cli.main(
        [
            *db_args,
            "import",
            str(csv_path),
            "--map",
            "ticker=Code",
            "--map",
            "shares=Units",
            "--map",
            "price=Each",
            "--exclude",
            "2",
            "--dry-run",
        ]
    )

    output = capsys.readouterr().out
    assert status == 0
    assert "ticker        <- Code" in output
    assert "AAPL" in output.split("Positions:")[1]
    assert "MSFT" not in output.split("Positions:")[1]
    assert "Dry run" in output

    assert dev_cli.main([*db_args, "holdings"]) == 0
    assert "No holdings." in capsys.readouterr().out


def test_detect_reports_format(dev_cli, tmp_path: Path, generic_csv: bytes, capsys):
    csv_path = tmp_path / "generic.csv"
    csv_path.write_bytes(generic_csv)

    assert dev_cli.main(["detect", str(csv_path)]) == 0
    output = capsys.readouterr().out
    assert "Format: unknown" in output
    assert "Rows: 2" in output
