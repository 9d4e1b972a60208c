from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from .types import ClientConfig, EmployeeConfig, TimeEntry

logger = logging.getLogger("agencypulse.ingest")

REQUIRED_COLUMNS = ("Executor", "Workspace", "Realizado", "Data")
_TRAILING_DELIMITERS = re.compile(r";+\s*$")


def time_to_decimal(value: str) -> float:
    """``"01:30"`` or ``"01:30:00"`` -> 1.5; seconds are ignored, anything unparseable is 0."""
    if not value:
        return 0.0
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        return 0.0
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return 0.0
    return hours + minutes / 60


def parse_br_date(value: str) -> Optional[date]:
    """``"24/11/2025"`` -> date(2025, 11, 24); None when malformed."""
    try:
        day, month, year = (int(p) for p in str(value).strip().split("/"))
        return date(year, month, day)
    except ValueError:
        return None


def _field_count(line: str) -> int:
    return len(next(csv.reader([line], delimiter=";"), []))


def _find_header(lines: list[str]) -> int:
    for idx, line in enumerate(lines):
        if "Executor" in line and "Workspace" in line:
            return idx
    return -1


def read_time_export(text: str) -> tuple[pd.DataFrame, list[str]]:
    """Load the raw rows of a semicolon-delimited time-tracking export.

    Preamble lines before the header are skipped. Returns an empty frame with
    a warning when no usable header is found.
    """
    warnings: list[str] = []
    lines = text.splitlines()
    header_idx = _find_header(lines)
    if header_idx == -1:
        warnings.append("No header row with Executor/Workspace columns; nothing imported.")
        return pd.DataFrame(columns=list(REQUIRED_COLUMNS)), warnings

    # Some trackers end data rows with ";" but not the header line.
    header, *rows = (_TRAILING_DELIMITERS.sub("", line) for line in lines[header_idx:])
    width = _field_count(header)
    kept = [row for row in rows if _field_count(row) <= width]
    too_long = len(rows) - len(kept)
    if too_long:
        warnings.append(f"{too_long} rows have more fields than the header; skipped.")

    raw = pd.read_csv(
        io.StringIO("\n".join([header, *kept])),
        sep=";",
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        index_col=False,
        engine="python",
    )
    raw = raw.fillna("")
    raw.columns = [str(c).strip().strip('"').strip() for c in raw.columns]

    missing = [c for c in REQUIRED_COLUMNS if c not in raw.columns]
    if missing:
        warnings.append(f"Export missing required columns: {', '.join(missing)}; nothing imported.")
        return pd.DataFrame(columns=list(REQUIRED_COLUMNS)), warnings

    out = raw[list(REQUIRED_COLUMNS)].copy()
    for col in REQUIRED_COLUMNS:
        out[col] = out[col].astype(str).str.strip().str.strip('"').str.strip()
    return out, warnings


def parse_time_entries(
    text: str,
    employees: Iterable[EmployeeConfig] = (),
    clients: Iterable[ClientConfig] = (),
) -> tuple[list[TimeEntry], list[EmployeeConfig], list[ClientConfig], list[str]]:
    """Turn an export into entries keyed by stable ids.

    Returns ``(entries, new_employees, new_clients, warnings)``. Performers and
    workspaces not matched by name against the given configs get a freshly
    discovered profile with default values.
    """
    raw, warnings = read_time_export(text)
    resolver = IdentityResolver(employees, clients)

    entries: list[TimeEntry] = []
    skipped_time = skipped_date = 0
    for row_no, row in enumerate(raw.itertuples(index=False), start=1):
        executor, workspace, realized, day = (str(v) for v in row)
        hours = time_to_decimal(realized)
        if hours == 0:
            skipped_time += 1
            continue
        entry_date = parse_br_date(day)
        if entry_date is None:
            skipped_date += 1
            logger.debug("Row %d: unparseable date %r", row_no, day)
            continue
        entries.append(
            TimeEntry(
                executor_id=resolver.employee_id(executor),
                client_id=resolver.client_id(workspace),
                hours=hours,
                entry_date=entry_date,
                id=uuid.uuid4().hex,
            )
        )

    if skipped_date:
        warnings.append(f"{skipped_date} rows have an unparseable date; skipped.")
    logger.info(
        "Parsed %d time entries (%d without realized time, %d with bad dates)",
        len(entries),
        skipped_time,
        skipped_date,
    )
    return entries, resolver.new_employees, resolver.new_clients, warnings


def load_time_entries(
    path: str | Path,
    employees: Iterable[EmployeeConfig] = (),
    clients: Iterable[ClientConfig] = (),
) -> tuple[list[TimeEntry], list[EmployeeConfig], list[ClientConfig], list[str]]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing time export: {path}")
    return parse_time_entries(path.read_text(encoding="utf-8-sig"), employees, clients)


class IdentityResolver:
    """Maps display names from an export onto synthetic config ids."""

    def __init__(self, employees: Iterable[EmployeeConfig], clients: Iterable[ClientConfig]):
        self._employees = {e.name: e.id for e in employees}
        self._clients = {c.name: c.id for c in clients}
        self.new_employees: list[EmployeeConfig] = []
        self.new_clients: list[ClientConfig] = []

    def employee_id(self, name: str) -> str:
        if name not in self._employees:
            config = EmployeeConfig(id=f"emp-{uuid.uuid4().hex[:12]}", name=name)
            self._employees[name] = config.id
            self.new_employees.append(config)
        return self._employees[name]

    def client_id(self, name: str) -> str:
        if name not in self._clients:
            config = ClientConfig(id=f"cli-{uuid.uuid4().hex[:12]}", name=name)
            self._clients[name] = config.id
            self.new_clients.append(config)
        return self._clients[name]


def entry_date_bounds(entries: Iterable[TimeEntry]) -> tuple[Optional[date], Optional[date]]:
    dates = [e.entry_date for e in entries]
    if not dates:
        return None, None
    return min(dates), max(dates)


def merge_entries(existing: Iterable[TimeEntry], batch: list[TimeEntry]) -> list[TimeEntry]:
    """Replace everything inside the batch's date span with the batch.

    Re-importing a month overwrites it while other months stay intact.
    """
    first, last = entry_date_bounds(batch)
    if first is None or last is None:
        return list(existing)
    kept = [e for e in existing if e.entry_date < first or e.entry_date > last]
    return kept + list(batch)
