"""SQLite persistence layer.

Stores employee and client profiles, imported time entries, and the monthly
health assessments (one per client and month). Writes are plain upserts:
the last writer wins and there is no conflict detection.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable, Optional

from .health import HealthInput
from .types import ClientCategory, ClientConfig, Department, EmployeeConfig, MonthlyCapacity, TimeEntry

DEFAULT_DB_PATH = Path("agencypulse.db")
BACKUP_VERSION = "2"

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


def get_connection(path: str | Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Context manager that commits on success, rolls back on error."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


# ---------------------------------------------------------------------------
# Schema & init
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS employees (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    department      TEXT NOT NULL DEFAULT 'Outros',
    default_cost    REAL NOT NULL DEFAULT 0,
    default_hours   REAL NOT NULL DEFAULT 160,
    history         TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS clients (
    id                  TEXT PRIMARY KEY,
    name                TEXT NOT NULL,
    is_active           INTEGER NOT NULL DEFAULT 1,
    category            TEXT NOT NULL DEFAULT 'Executar',
    default_fee         REAL NOT NULL DEFAULT 0,
    history             TEXT NOT NULL DEFAULT '{}',
    one_time_fee        REAL,
    contract_start_date TEXT
);

CREATE TABLE IF NOT EXISTS time_entries (
    id          TEXT PRIMARY KEY,
    executor_id TEXT NOT NULL,
    client_id   TEXT NOT NULL,
    hours       REAL NOT NULL,
    entry_date  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_time_entries_date ON time_entries(entry_date);

CREATE TABLE IF NOT EXISTS health_inputs (
    client_id   TEXT NOT NULL,
    month_key   TEXT NOT NULL,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, month_key)
);
"""


def init_db(path: str | Path = DEFAULT_DB_PATH) -> Path:
    """Create tables if they don't exist and return the database path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
    finally:
        conn.close()
    return path


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------


def _employee_from_row(row: sqlite3.Row) -> EmployeeConfig:
    history = {k: MonthlyCapacity(cost=float(v["cost"]), hours=float(v["hours"])) for k, v in json.loads(row["history"]).items()}
    return EmployeeConfig(
        id=row["id"],
        name=row["name"],
        department=Department(row["department"]),
        default_cost=float(row["default_cost"]),
        default_hours=float(row["default_hours"]),
        history=history,
    )


def upsert_employee(conn: sqlite3.Connection, employee: EmployeeConfig) -> None:
    history = {k: {"cost": v.cost, "hours": v.hours} for k, v in employee.history.items()}
    conn.execute(
        """INSERT INTO employees (id, name, department, default_cost, default_hours, history)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               name = excluded.name,
               department = excluded.department,
               default_cost = excluded.default_cost,
               default_hours = excluded.default_hours,
               history = excluded.history""",
        (
            employee.id,
            employee.name,
            employee.department.value,
            employee.default_cost,
            employee.default_hours,
            json.dumps(history, sort_keys=True),
        ),
    )


def list_employees(conn: sqlite3.Connection) -> list[EmployeeConfig]:
    rows = conn.execute("SELECT * FROM employees ORDER BY name, id").fetchall()
    return [_employee_from_row(r) for r in rows]


def get_employee(conn: sqlite3.Connection, employee_id: str) -> EmployeeConfig | None:
    row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
    return _employee_from_row(row) if row else None


def delete_employee(conn: sqlite3.Connection, employee_id: str) -> bool:
    cur = conn.execute("DELETE FROM employees WHERE id = ?", (employee_id,))
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def _client_from_row(row: sqlite3.Row) -> ClientConfig:
    start = row["contract_start_date"]
    return ClientConfig(
        id=row["id"],
        name=row["name"],
        is_active=bool(row["is_active"]),
        category=ClientCategory(row["category"]),
        default_fee=float(row["default_fee"]),
        history={k: float(v) for k, v in json.loads(row["history"]).items()},
        one_time_fee=float(row["one_time_fee"]) if row["one_time_fee"] is not None else None,
        contract_start_date=date.fromisoformat(start) if start else None,
    )


def upsert_client(conn: sqlite3.Connection, client: ClientConfig) -> None:
    conn.execute(
        """INSERT INTO clients (id, name, is_active, category, default_fee, history, one_time_fee, contract_start_date)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               name = excluded.name,
               is_active = excluded.is_active,
               category = excluded.category,
               default_fee = excluded.default_fee,
               history = excluded.history,
               one_time_fee = excluded.one_time_fee,
               contract_start_date = excluded.contract_start_date""",
        (
            client.id,
            client.name,
            int(client.is_active),
            client.category.value,
            client.default_fee,
            json.dumps(client.history, sort_keys=True),
            client.one_time_fee,
            client.contract_start_date.isoformat() if client.contract_start_date else None,
        ),
    )


def list_clients(conn: sqlite3.Connection) -> list[ClientConfig]:
    rows = conn.execute("SELECT * FROM clients ORDER BY name, id").fetchall()
    return [_client_from_row(r) for r in rows]


def get_client(conn: sqlite3.Connection, client_id: str) -> ClientConfig | None:
    row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
    return _client_from_row(row) if row else None


def delete_client(conn: sqlite3.Connection, client_id: str) -> bool:
    cur = conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Time entries
# ---------------------------------------------------------------------------


def _entry_from_row(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        executor_id=row["executor_id"],
        client_id=row["client_id"],
        hours=float(row["hours"]),
        entry_date=date.fromisoformat(row["entry_date"]),
    )


def list_entries(
    conn: sqlite3.Connection,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[TimeEntry]:
    query = "SELECT * FROM time_entries"
    params: list[Any] = []
    clauses: list[str] = []
    if start is not None:
        clauses.append("entry_date >= ?")
        params.append(start.isoformat())
    if end is not None:
        clauses.append("entry_date <= ?")
        params.append(end.isoformat())
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY entry_date, id"
    return [_entry_from_row(r) for r in conn.execute(query, params).fetchall()]


def replace_entries(conn: sqlite3.Connection, entries: Iterable[TimeEntry]) -> int:
    """Store ``entries`` as the complete entry collection."""
    rows = [(e.id, e.executor_id, e.client_id, e.hours, e.entry_date.isoformat()) for e in entries]
    conn.execute("DELETE FROM time_entries")
    conn.executemany(
        "INSERT INTO time_entries (id, executor_id, client_id, hours, entry_date) VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    return len(rows)


# ---------------------------------------------------------------------------
# Health inputs
# ---------------------------------------------------------------------------


def _write_health_row(conn: sqlite3.Connection, data: HealthInput, updated_at: datetime) -> None:
    conn.execute(
        """INSERT INTO health_inputs (client_id, month_key, payload, updated_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(client_id, month_key) DO UPDATE SET
               payload = excluded.payload,
               updated_at = excluded.updated_at""",
        (data.client_id, data.month_key, data.model_dump_json(), updated_at.isoformat()),
    )


def upsert_health_input(conn: sqlite3.Connection, data: HealthInput) -> HealthInput:
    stamped = data.model_copy(update={"last_updated": datetime.now(timezone.utc)})
    _write_health_row(conn, stamped, stamped.last_updated)
    return stamped


def get_health_input(conn: sqlite3.Connection, client_id: str, month_key: str) -> HealthInput | None:
    row = conn.execute(
        "SELECT payload FROM health_inputs WHERE client_id = ? AND month_key = ?",
        (client_id, month_key),
    ).fetchone()
    return HealthInput.model_validate_json(row["payload"]) if row else None


def list_health_inputs(conn: sqlite3.Connection, month_key: Optional[str] = None) -> list[HealthInput]:
    if month_key is None:
        rows = conn.execute("SELECT payload FROM health_inputs ORDER BY month_key, client_id").fetchall()
    else:
        rows = conn.execute(
            "SELECT payload FROM health_inputs WHERE month_key = ? ORDER BY client_id",
            (month_key,),
        ).fetchall()
    return [HealthInput.model_validate_json(r["payload"]) for r in rows]


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


def export_backup(conn: sqlite3.Connection) -> dict[str, Any]:
    employees = [
        {
            "id": e.id,
            "name": e.name,
            "department": e.department.value,
            "default_cost": e.default_cost,
            "default_hours": e.default_hours,
            "history": {k: {"cost": v.cost, "hours": v.hours} for k, v in e.history.items()},
        }
        for e in list_employees(conn)
    ]
    clients = [
        {
            "id": c.id,
            "name": c.name,
            "is_active": c.is_active,
            "category": c.category.value,
            "default_fee": c.default_fee,
            "history": dict(c.history),
            "one_time_fee": c.one_time_fee,
            "contract_start_date": c.contract_start_date.isoformat() if c.contract_start_date else None,
        }
        for c in list_clients(conn)
    ]
    entries = [
        {
            "id": e.id,
            "executor_id": e.executor_id,
            "client_id": e.client_id,
            "hours": e.hours,
            "entry_date": e.entry_date.isoformat(),
        }
        for e in list_entries(conn)
    ]
    health = [json.loads(h.model_dump_json()) for h in list_health_inputs(conn)]
    return {
        "version": BACKUP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "employees": employees,
        "clients": clients,
        "entries": entries,
        "health_inputs": health,
    }


def import_backup(conn: sqlite3.Connection, backup: dict[str, Any]) -> dict[str, int]:
    """Restore a backup document; existing rows with the same keys are overwritten."""
    if not isinstance(backup, dict) or "employees" not in backup or "clients" not in backup:
        raise ValueError("Backup must contain 'employees' and 'clients'")

    employees = [
        EmployeeConfig(
            id=str(e["id"]),
            name=str(e["name"]),
            department=Department(e.get("department", Department.OUTROS.value)),
            default_cost=float(e.get("default_cost", 0)),
            default_hours=float(e.get("default_hours", 160)),
            history={
                k: MonthlyCapacity(cost=float(v["cost"]), hours=float(v["hours"]))
                for k, v in (e.get("history") or {}).items()
            },
        )
        for e in backup["employees"]
    ]
    clients = [
        ClientConfig(
            id=str(c["id"]),
            name=str(c["name"]),
            is_active=bool(c.get("is_active", True)),
            category=ClientCategory(c.get("category", ClientCategory.EXECUTAR.value)),
            default_fee=float(c.get("default_fee", 0)),
            history={k: float(v) for k, v in (c.get("history") or {}).items()},
            one_time_fee=float(c["one_time_fee"]) if c.get("one_time_fee") is not None else None,
            contract_start_date=date.fromisoformat(c["contract_start_date"]) if c.get("contract_start_date") else None,
        )
        for c in backup["clients"]
    ]
    entries = [
        TimeEntry(
            id=str(e["id"]),
            executor_id=str(e["executor_id"]),
            client_id=str(e["client_id"]),
            hours=float(e["hours"]),
            entry_date=date.fromisoformat(e["entry_date"]),
        )
        for e in backup.get("entries", [])
    ]
    health = [HealthInput.model_validate(h) for h in backup.get("health_inputs", [])]

    with transaction(conn):
        for employee in employees:
            upsert_employee(conn, employee)
        for client in clients:
            upsert_client(conn, client)
        if entries:
            replace_entries(conn, entries)
        for item in health:
            _write_health_row(conn, item, item.last_updated or datetime.now(timezone.utc))
    return {
        "employees": len(employees),
        "clients": len(clients),
        "entries": len(entries),
        "health_inputs": len(health),
    }
