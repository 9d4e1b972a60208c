"""FastAPI APIRouter with CRUD endpoints for profiles, summaries, and health assessments."""

from __future__ import annotations

import uuid
from datetime import date
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from . import db
from .aggregation import aggregate
from .config import Settings
from .contracts import extract_contract_hints
from .health import HealthInput, score_health, score_portfolio
from .ingest import entry_date_bounds
from .periods import month_key
from .types import ClientCategory, ClientConfig, Department, EmployeeConfig, MonthlyCapacity

router = APIRouter(prefix="/api")

settings = Settings()
DB_PATH: Path = settings.db_path

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _conn():
    return db.get_connection(DB_PATH)


def _404(item: str):
    raise HTTPException(status_code=404, detail=f"{item} not found")


def get_current_user(request: Request) -> str | None:
    """Extract the caller's email from the X-User-Email header."""
    email = (request.headers.get("X-User-Email") or "").strip().lower()
    return email or None


def require_user(request: Request) -> str:
    """Raise 401 unless the caller has an email on the allowed domain."""
    email = get_current_user(request)
    if not email:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not email.endswith(f"@{settings.allowed_domain.lower()}"):
        raise HTTPException(status_code=401, detail=f"Access restricted to @{settings.allowed_domain} accounts")
    return email


def require_master(request: Request) -> str:
    """Writes are reserved for the master account when one is configured."""
    email = require_user(request)
    if settings.master_email and email != settings.master_email:
        raise HTTPException(status_code=403, detail="Only the master account can change data")
    return email


def _parse_day(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: expected YYYY-MM-DD") from None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class MonthlyCapacityIn(BaseModel):
    cost: float = Field(ge=0)
    hours: float = Field(ge=0)


class EmployeeIn(BaseModel):
    name: str = Field(min_length=1)
    department: Department = Department.OUTROS
    default_cost: float = Field(default=0.0, ge=0)
    default_hours: float = Field(default=160.0, ge=0)
    history: dict[str, MonthlyCapacityIn] = Field(default_factory=dict)

    def to_config(self, employee_id: str) -> EmployeeConfig:
        return EmployeeConfig(
            id=employee_id,
            name=self.name,
            department=self.department,
            default_cost=self.default_cost,
            default_hours=self.default_hours,
            history={k: MonthlyCapacity(cost=v.cost, hours=v.hours) for k, v in self.history.items()},
        )


class ClientIn(BaseModel):
    name: str = Field(min_length=1)
    is_active: bool = True
    category: ClientCategory = ClientCategory.EXECUTAR
    default_fee: float = Field(default=0.0, ge=0)
    history: dict[str, float] = Field(default_factory=dict)
    one_time_fee: Optional[float] = Field(default=None, ge=0)
    contract_start_date: Optional[date] = None

    def to_config(self, client_id: str) -> ClientConfig:
        return ClientConfig(
            id=client_id,
            name=self.name,
            is_active=self.is_active,
            category=self.category,
            default_fee=self.default_fee,
            history=dict(self.history),
            one_time_fee=self.one_time_fee,
            contract_start_date=self.contract_start_date,
        )


class ContractText(BaseModel):
    text: str


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------


@router.get("/employees")
def list_employees(request: Request):
    require_user(request)
    conn = _conn()
    try:
        return db.list_employees(conn)
    finally:
        conn.close()


@router.post("/employees", status_code=201)
def create_employee(body: EmployeeIn, request: Request):
    require_master(request)
    employee = body.to_config(f"emp-{uuid.uuid4().hex[:12]}")
    conn = _conn()
    try:
        with db.transaction(conn):
            db.upsert_employee(conn, employee)
        return employee
    finally:
        conn.close()


@router.put("/employees/{employee_id}")
def update_employee(employee_id: str, body: EmployeeIn, request: Request):
    require_master(request)
    conn = _conn()
    try:
        if db.get_employee(conn, employee_id) is None:
            _404("Employee")
        employee = body.to_config(employee_id)
        with db.transaction(conn):
            db.upsert_employee(conn, employee)
        return employee
    finally:
        conn.close()


@router.delete("/employees/{employee_id}")
def delete_employee(employee_id: str, request: Request):
    require_master(request)
    conn = _conn()
    try:
        with db.transaction(conn):
            deleted = db.delete_employee(conn, employee_id)
        if not deleted:
            _404("Employee")
        return {"deleted": True}
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@router.get("/clients")
def list_clients(request: Request):
    require_user(request)
    conn = _conn()
    try:
        return db.list_clients(conn)
    finally:
        conn.close()


@router.post("/clients", status_code=201)
def create_client(body: ClientIn, request: Request):
    require_master(request)
    client = body.to_config(f"cli-{uuid.uuid4().hex[:12]}")
    conn = _conn()
    try:
        with db.transaction(conn):
            db.upsert_client(conn, client)
        return client
    finally:
        conn.close()


@router.put("/clients/{client_id}")
def update_client(client_id: str, body: ClientIn, request: Request):
    require_master(request)
    conn = _conn()
    try:
        if db.get_client(conn, client_id) is None:
            _404("Client")
        client = body.to_config(client_id)
        with db.transaction(conn):
            db.upsert_client(conn, client)
        return client
    finally:
        conn.close()


@router.delete("/clients/{client_id}")
def delete_client(client_id: str, request: Request):
    require_master(request)
    conn = _conn()
    try:
        with db.transaction(conn):
            deleted = db.delete_client(conn, client_id)
        if not deleted:
            _404("Client")
        return {"deleted": True}
    finally:
        conn.close()


@router.post("/contracts/parse")
def parse_contract(body: ContractText, request: Request):
    require_master(request)
    return extract_contract_hints(body.text)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@router.get("/summary")
def get_summary(request: Request, start: Optional[str] = None, end: Optional[str] = None):
    require_user(request)
    start_day = _parse_day(start, "start")
    end_day = _parse_day(end, "end")
    conn = _conn()
    try:
        entries = db.list_entries(conn)
        employees = db.list_employees(conn)
        clients = db.list_clients(conn)
    finally:
        conn.close()

    if start_day is None or end_day is None:
        first, last = entry_date_bounds(entries)
        start_day = start_day or first
        end_day = end_day or last
    result = aggregate(entries, employees, clients, start_day, end_day)
    return {"start": start_day, "end": end_day, "result": result}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def get_portfolio_health(request: Request, month: Optional[str] = None):
    require_user(request)
    today = date.today()
    month = month or month_key(today)
    conn = _conn()
    try:
        inputs = db.list_health_inputs(conn, month)
        clients = db.list_clients(conn)
    finally:
        conn.close()
    return {"month": month, "scores": score_portfolio(inputs, clients, month, today)}


@router.get("/health/{client_id}/{month}")
def get_client_health(client_id: str, month: str, request: Request):
    require_user(request)
    conn = _conn()
    try:
        client = db.get_client(conn, client_id)
        if client is None:
            _404("Client")
        data = db.get_health_input(conn, client_id, month)
        if data is None:
            _404("Health assessment")
    finally:
        conn.close()
    return {"input": data, "score": score_health(data, client, date.today())}


@router.post("/health/preview")
def preview_health(data: HealthInput, request: Request):
    require_user(request)
    conn = _conn()
    try:
        client = db.get_client(conn, data.client_id)
    finally:
        conn.close()
    if client is None:
        _404("Client")
    return score_health(data, client, date.today())


@router.put("/health/{client_id}/{month}")
def save_health(client_id: str, month: str, request: Request, payload: dict[str, Any] = Body(...)):
    """Save the evaluation for one client and month (replaces any earlier one)."""
    require_master(request)
    try:
        data = HealthInput.model_validate({**payload, "client_id": client_id, "month_key": month})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    conn = _conn()
    try:
        client = db.get_client(conn, client_id)
        if client is None:
            _404("Client")
        with db.transaction(conn):
            saved = db.upsert_health_input(conn, data)
    finally:
        conn.close()
    return {"input": saved, "score": score_health(saved, client, date.today())}


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


@router.get("/backup")
def get_backup(request: Request):
    require_master(request)
    conn = _conn()
    try:
        return db.export_backup(conn)
    finally:
        conn.close()


@router.post("/backup")
def restore_backup(request: Request, payload: dict[str, Any] = Body(...)):
    require_master(request)
    conn = _conn()
    try:
        counts = db.import_backup(conn, payload)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {"restored": counts}

