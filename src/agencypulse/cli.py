from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import db
from .agents import AnalystAgent, ImportAgent, ReporterAgent
from .config import ScoringConfig, Settings, default_scoring_config
from .health import score_health
from .synth import SynthSpec, generate_synthetic_dataset

app = typer.Typer(add_completion=False, help="Client profitability, capacity and health scoring.")
console = Console()
settings = Settings()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")):
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _day(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{name} must be YYYY-MM-DD") from None


@app.command()
def synth(
    out: Path = typer.Option(..., help="Output directory for the synthetic export and profiles."),
    start: str = typer.Option("2025-01", help="Start month (YYYY-MM)."),
    months: int = typer.Option(3, min=1, help="Number of months."),
    employees: int = typer.Option(6, min=1, help="Number of employees."),
    clients: int = typer.Option(8, min=1, help="Number of clients."),
    seed: int = typer.Option(42, help="RNG seed."),
):
    generate_synthetic_dataset(out, SynthSpec(start=start, months=months, employees=employees, clients=clients, seed=seed))
    console.print(f"Wrote synthetic dataset to {out}")


@app.command(name="init-db")
def init_db_cmd(
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    """Initialize the SQLite database (creates tables if they don't exist)."""
    path = db.init_db(db_path)
    console.print(f"Database initialized at {path}")


@app.command(name="import-entries")
def import_entries(
    export: Path = typer.Argument(..., exists=True, dir_okay=False, help="Semicolon-delimited time export."),
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    """Import a time-tracking export, replacing stored entries in its date span."""
    db.init_db(db_path)
    conn = db.get_connection(db_path)
    try:
        outcome = ImportAgent().run(conn, export.read_text(encoding="utf-8-sig"))
    finally:
        conn.close()
    for warning in outcome.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    console.print(
        f"Imported {outcome.imported} entries ({outcome.start} to {outcome.end}); "
        f"{outcome.new_employees} new employees, {outcome.new_clients} new clients"
    )


@app.command(name="import-backup")
def import_backup(
    backup: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup JSON document."),
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    db.init_db(db_path)
    conn = db.get_connection(db_path)
    try:
        counts = db.import_backup(conn, json.loads(backup.read_text(encoding="utf-8")))
    finally:
        conn.close()
    console.print("Restored " + ", ".join(f"{n} {k}" for k, n in counts.items()))


@app.command(name="export-backup")
def export_backup(
    out: Path = typer.Option(..., help="Where to write the backup JSON."),
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    conn = db.get_connection(db_path)
    try:
        backup = db.export_backup(conn)
    finally:
        conn.close()
    out.write_text(json.dumps(backup, indent=2), encoding="utf-8")
    console.print(f"Wrote backup to {out}")


@app.command()
def report(
    out: Path = typer.Option(..., help="Output directory for the management pack."),
    start: Optional[str] = typer.Option(None, help="First day (YYYY-MM-DD); defaults to the earliest entry."),
    end: Optional[str] = typer.Option(None, help="Last day, inclusive (YYYY-MM-DD); defaults to the latest entry."),
    month: Optional[str] = typer.Option(None, help="Health assessment month (YYYY-MM); defaults to the end month."),
    config: Optional[Path] = typer.Option(None, help="Scoring config YAML (default uses packaged config)."),
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    cfg = ScoringConfig.from_yaml(config) if config else default_scoring_config()
    conn = db.get_connection(db_path)
    try:
        result = AnalystAgent(cfg).run(conn, _day(start, "start"), _day(end, "end"), date.today(), month)
    finally:
        conn.close()
    ReporterAgent().package(out_dir=out, report=result)

    dash = result.result.dashboard
    table = Table(title=f"Summary ({result.label})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Revenue", f"{dash.total_revenue:,.2f}")
    table.add_row("Cost", f"{dash.total_cost:,.2f}")
    table.add_row("Gross profit", f"{dash.gross_profit:,.2f}")
    table.add_row("Margin", f"{dash.overall_margin:.1f}%")
    table.add_row("Capacity used", f"{dash.global_capacity_rate:.1f}%")
    console.print(table)
    console.print(f"Wrote management pack to {out}")


@app.command()
def score(
    client_id: str = typer.Argument(..., help="Client id."),
    month: str = typer.Argument(..., help="Assessment month (YYYY-MM)."),
    config: Optional[Path] = typer.Option(None, help="Scoring config YAML (default uses packaged config)."),
    db_path: Path = typer.Option(str(settings.db_path), "--db", help="Path to the SQLite database file."),
):
    """Show the health score of a saved assessment."""
    cfg = ScoringConfig.from_yaml(config) if config else default_scoring_config()
    conn = db.get_connection(db_path)
    try:
        client = db.get_client(conn, client_id)
        data = db.get_health_input(conn, client_id, month)
    finally:
        conn.close()
    if client is None:
        raise typer.BadParameter(f"Unknown client: {client_id}")
    if data is None:
        raise typer.BadParameter(f"No assessment saved for {client_id} in {month}")

    result = score_health(data, client, date.today(), cfg)
    console.print(f"{client.name} {month}: [bold]{result.score:.2f}[/bold] {result.flag.value} ({result.action})")
    b = result.breakdown
    console.print(
        f"engagement {b.engagement:.2f} | results {b.results:.2f} | "
        f"relationship {b.relationship:.2f} | surveys {b.surveys:.2f}"
    )


def _find_available_port(host: str, preferred: int) -> int:
    """Return *preferred* if free, otherwise try fallbacks then let the OS pick."""
    import socket

    candidates = [preferred] + [p for p in (8000, 8001, 8080, 8888) if p != preferred]
    for port in candidates:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, port))
                return port
            except OSError:
                continue
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind (use 0.0.0.0 for LAN)."),
    port: int = typer.Option(8000, help="Port to serve the API on."),
):
    """Start the dashboard API server."""
    try:
        import uvicorn
    except Exception as e:  # pragma: no cover
        raise typer.BadParameter('Missing server deps. Install with: pip install -e ".[server]"') from e

    actual_port = _find_available_port(host, port)
    if actual_port != port:
        console.print(f"Port {port} is in use, using port {actual_port} instead.")
    uvicorn.run("agencypulse.server:app", host=host, port=actual_port, reload=False)
