from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest
from openpyxl import load_workbook
from typer.testing import CliRunner

from agencypulse import db
from agencypulse.agents import AnalystAgent, ImportAgent, ReporterAgent
from agencypulse.cli import app
from agencypulse.health import HealthInput
from agencypulse.synth import SynthSpec, generate_synthetic_dataset

ANSWERS = dict(
    checkin="quinzenal",
    whatsapp="mesmo_dia",
    adimplencia="em_dia",
    recarga="ate_10_dias",
    roi_bucket="roi_3",
    growth="perfil_b_gt_50k",
    engagement_vs_avg="estavel",
    checkin_produtivo="sim",
    progresso="parcial",
    relacionamento_interno="neutro",
    aviso_previo="gt_60_dias",
    pesquisa_respondida="sim",
    csat_tecnico="ate_4",
    nps="neutro",
    mhs="pouco",
    pesquisa_geral_respondida="sim",
)


def _load_dataset(tmp_path: Path):
    data_dir = tmp_path / "data"
    generate_synthetic_dataset(data_dir, SynthSpec(start="2025-01", months=2, employees=4, clients=5, seed=7))
    conn = db.get_connection(db.init_db(tmp_path / "pulse.db"))
    db.import_backup(conn, json.loads((data_dir / "backup.json").read_text(encoding="utf-8")))
    return data_dir, conn


def test_end_to_end_base(tmp_path: Path) -> None:
    data_dir, conn = _load_dataset(tmp_path)
    out_dir = tmp_path / "out"
    try:
        outcome = ImportAgent().run(conn, (data_dir / "time_export.csv").read_text(encoding="utf-8"))
        assert outcome.imported > 0
        assert outcome.new_employees == 0
        assert outcome.new_clients == 0
        assert outcome.start.month == 1
        assert outcome.end.month == 2

        active = next(c for c in db.list_clients(conn) if c.is_active)
        with db.transaction(conn):
            db.upsert_health_input(conn, HealthInput(client_id=active.id, month_key="2025-02", **ANSWERS))

        report = AnalystAgent().run(conn, None, None, today=date(2025, 3, 1))
    finally:
        conn.close()

    assert report.start == outcome.start
    assert report.end == outcome.end
    assert report.month == "2025-02"
    assert list(report.scores) == [active.id]

    dash = report.result.dashboard
    assert dash.total_hours == pytest.approx(sum(c.total_hours for c in report.result.clients))
    assert dash.total_cost == pytest.approx(sum(c.operational_cost for c in report.result.clients))
    assert dash.gross_profit == pytest.approx(dash.total_revenue - dash.total_cost)
    assert report.result.active_months == ["2025-01", "2025-02"]

    ReporterAgent().package(out_dir=out_dir, report=report)
    assert (out_dir / "profitability_pack.xlsx").exists()
    assert (out_dir / "narrative.md").exists()
    assert (out_dir / "charts").exists()

    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["period"]["health_month"] == "2025-02"

    wb = load_workbook(out_dir / "profitability_pack.xlsx")
    assert {"Dashboard", "Clients", "Employees", "Departments", "Health"} <= set(wb.sheetnames)


def test_reimport_replaces_overlapping_entries(tmp_path: Path) -> None:
    data_dir, conn = _load_dataset(tmp_path)
    text = (data_dir / "time_export.csv").read_text(encoding="utf-8")
    try:
        first = ImportAgent().run(conn, text)
        second = ImportAgent().run(conn, text)
        assert second.total_entries == first.total_entries
        assert len(db.list_entries(conn)) == first.imported
    finally:
        conn.close()


def test_import_without_rows_changes_nothing(tmp_path: Path) -> None:
    _, conn = _load_dataset(tmp_path)
    try:
        outcome = ImportAgent().run(conn, "not an export\n")
        assert outcome.imported == 0
        assert outcome.warnings
        assert db.list_entries(conn) == []
    finally:
        conn.close()


def test_cli_pipeline(tmp_path: Path) -> None:
    runner = CliRunner()
    data_dir = tmp_path / "data"
    db_path = tmp_path / "cli.db"
    out_dir = tmp_path / "pack"

    steps = [
        ["synth", "--out", str(data_dir), "--months", "1", "--employees", "3", "--clients", "4"],
        ["init-db", "--db", str(db_path)],
        ["import-backup", str(data_dir / "backup.json"), "--db", str(db_path)],
        ["import-entries", str(data_dir / "time_export.csv"), "--db", str(db_path)],
        ["report", "--out", str(out_dir), "--db", str(db_path)],
        ["export-backup", "--out", str(tmp_path / "backup.json"), "--db", str(db_path)],
    ]
    for args in steps:
        result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output

    assert (out_dir / "profitability_pack.xlsx").exists()
    backup = json.loads((tmp_path / "backup.json").read_text(encoding="utf-8"))
    assert len(backup["clients"]) == 4
    assert backup["entries"]


def test_cli_score_unknown_client(tmp_path: Path) -> None:
    db_path = db.init_db(tmp_path / "cli.db")
    result = CliRunner().invoke(app, ["score", "cli-missing", "2025-01", "--db", str(db_path)])
    assert result.exit_code != 0


def test_analyst_fills_missing_start_from_entries(tmp_path: Path) -> None:
    data_dir, conn = _load_dataset(tmp_path)
    try:
        outcome = ImportAgent().run(conn, (data_dir / "time_export.csv").read_text(encoding="utf-8"))
        report = AnalystAgent().run(conn, None, date(2025, 1, 31), today=date(2025, 3, 1))
    finally:
        conn.close()

    assert report.start == outcome.start
    assert report.end == date(2025, 1, 31)
    assert report.result.active_months == ["2025-01"]
    assert report.result.dashboard.total_revenue > 0
