from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

from . import db
from .aggregation import aggregate
from .config import ScoringConfig, default_scoring_config
from .health import HealthScoreResult, score_portfolio
from .ingest import entry_date_bounds, merge_entries, parse_time_entries
from .periods import month_key
from .reporting import save_charts, write_excel_pack, write_narrative, write_summary_json
from .types import AggregationResult

logger = logging.getLogger("agencypulse.agents")


@dataclass(frozen=True)
class ImportOutcome:
    imported: int
    total_entries: int
    new_employees: int
    new_clients: int
    start: Optional[date]
    end: Optional[date]
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodReport:
    start: Optional[date]
    end: Optional[date]
    month: str
    result: AggregationResult
    scores: dict[str, HealthScoreResult]
    names: dict[str, str]

    @property
    def label(self) -> str:
        if self.start is None or self.end is None:
            return "all entries"
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


class ImportAgent:
    def run(self, conn: sqlite3.Connection, text: str) -> ImportOutcome:
        entries, new_employees, new_clients, warnings = parse_time_entries(
            text, db.list_employees(conn), db.list_clients(conn)
        )
        existing = db.list_entries(conn)
        if not entries:
            return ImportOutcome(0, len(existing), 0, 0, None, None, warnings)

        merged = merge_entries(existing, entries)
        with db.transaction(conn):
            for employee in new_employees:
                db.upsert_employee(conn, employee)
            for client in new_clients:
                db.upsert_client(conn, client)
            db.replace_entries(conn, merged)

        start, end = entry_date_bounds(entries)
        logger.info(
            "Imported %d entries (%s..%s), %d new employees, %d new clients",
            len(entries),
            start,
            end,
            len(new_employees),
            len(new_clients),
        )
        return ImportOutcome(
            imported=len(entries),
            total_entries=len(merged),
            new_employees=len(new_employees),
            new_clients=len(new_clients),
            start=start,
            end=end,
            warnings=warnings,
        )


class AnalystAgent:
    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or default_scoring_config()

    def run(
        self,
        conn: sqlite3.Connection,
        start: Optional[date],
        end: Optional[date],
        today: date,
        month: Optional[str] = None,
    ) -> PeriodReport:
        entries = db.list_entries(conn)
        employees = db.list_employees(conn)
        clients = db.list_clients(conn)
        if start is None or end is None:
            first, last = entry_date_bounds(entries)
            start = start or first
            end = end or last

        month = month or month_key(end or today)
        result = aggregate(entries, employees, clients, start, end)
        scores = score_portfolio(db.list_health_inputs(conn, month), clients, month, today, self.config)
        return PeriodReport(
            start=start,
            end=end,
            month=month,
            result=result,
            scores=scores,
            names={c.id: c.name for c in clients},
        )


class ReporterAgent:
    def package(self, out_dir: Path, report: PeriodReport) -> None:
        out_dir.mkdir(parents=True, exist_ok=True)
        write_excel_pack(out_dir / "profitability_pack.xlsx", report.result, report.scores, report.names)
        write_summary_json(
            out_dir / "summary.json",
            report.result,
            {"start": report.start, "end": report.end, "health_month": report.month},
        )
        write_narrative(out_dir / "narrative.md", report.result, report.label, report.scores, report.names)
        save_charts(out_dir / "charts", report.result)
