"""Tests for the API endpoints using FastAPI TestClient."""

from __future__ import annotations

from pathlib import Path

import pytest

from agencypulse.config import Settings
from agencypulse.db import init_db

MASTER = {"X-User-Email": "boss@v4company.com"}
STAFF = {"X-User-Email": "analyst@v4company.com"}
OUTSIDER = {"X-User-Email": "someone@gmail.com"}

ANSWERS = dict(
    checkin="semanal",
    whatsapp="na_hora",
    adimplencia="em_dia",
    recarga="no_dia",
    roi_bucket="roi_lt_3",
    growth="perfil_a_lt_50k",
    engagement_vs_avg="alta_perf",
    checkin_produtivo="sim",
    progresso="muito",
    relacionamento_interno="melhorou",
    aviso_previo="gt_60_dias",
    pesquisa_respondida="sim",
    csat_tecnico="gt_4.5",
    nps="promotor",
    mhs="muito_desapontado",
    pesquisa_geral_respondida="sim",
)

EXPORT = """Relatório;;;
Executor;Workspace;Realizado;Data
Ana;Padaria;02:00;06/01/2025
Ana;Padaria;01:00;20/01/2025
Bruno;Oficina;04:30;31/01/2025
"""


@pytest.fixture(autouse=True)
def setup_test_db(tmp_path: Path):
    """Create a fresh DB for each test and patch api_crud to use it."""
    test_db_path = tmp_path / "test_api.db"
    init_db(test_db_path)

    from agencypulse import api_crud

    original_db_path = api_crud.DB_PATH
    original_settings = api_crud.settings
    api_crud.DB_PATH = test_db_path
    api_crud.settings = Settings(db_path=test_db_path, master_email="boss@v4company.com")

    yield

    api_crud.DB_PATH = original_db_path
    api_crud.settings = original_settings


@pytest.fixture()
def client():
    from fastapi.testclient import TestClient
    from agencypulse.server import app
    return TestClient(app)


def _new_client(client, **overrides):
    body = {"name": "Padaria", "category": "Ter", "default_fee": 3100.0}
    body.update(overrides)
    resp = client.post("/api/clients", json=body, headers=MASTER)
    assert resp.status_code == 201
    return resp.json()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200


def test_requires_company_email(client):
    assert client.get("/api/clients").status_code == 401
    resp = client.get("/api/clients", headers=OUTSIDER)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"
    assert client.get("/api/clients", headers=STAFF).status_code == 200


def test_only_master_writes(client):
    resp = client.post("/api/clients", json={"name": "Padaria"}, headers=STAFF)
    assert resp.status_code == 403


def test_employee_lifecycle(client):
    resp = client.post(
        "/api/employees",
        json={"name": "Ana", "department": "Criação", "default_cost": 8000, "history": {"2025-02": {"cost": 9000, "hours": 120}}},
        headers=MASTER,
    )
    assert resp.status_code == 201
    emp = resp.json()
    assert emp["id"].startswith("emp-")
    assert emp["history"]["2025-02"]["hours"] == 120

    resp = client.put(f"/api/employees/{emp['id']}", json={"name": "Ana Paula", "department": "Gestão"}, headers=MASTER)
    assert resp.status_code == 200
    assert client.get("/api/employees", headers=STAFF).json()[0]["name"] == "Ana Paula"

    assert client.delete(f"/api/employees/{emp['id']}", headers=MASTER).status_code == 200
    assert client.delete(f"/api/employees/{emp['id']}", headers=MASTER).status_code == 404


def test_client_lifecycle(client):
    created = _new_client(client, one_time_fee=1500.0, contract_start_date="2025-01-20")
    assert created["id"].startswith("cli-")
    assert created["contract_start_date"] == "2025-01-20"

    resp = client.put(f"/api/clients/{created['id']}", json={"name": "Padaria", "is_active": False}, headers=MASTER)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    assert client.put("/api/clients/cli-missing", json={"name": "X"}, headers=MASTER).status_code == 404
    assert client.delete(f"/api/clients/{created['id']}", headers=MASTER).status_code == 200


def test_invalid_category_is_422(client):
    resp = client.post("/api/clients", json={"name": "Padaria", "category": "Vender"}, headers=MASTER)
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"


def test_import_then_summary(client):
    resp = client.post(
        "/api/entries/import",
        files={"file": ("export.csv", EXPORT.encode("utf-8"), "text/csv")},
        headers=MASTER,
    )
    assert resp.status_code == 200
    outcome = resp.json()
    assert outcome["imported"] == 3
    assert outcome["new_employees"] == 2
    assert outcome["new_clients"] == 2
    assert outcome["start"] == "2025-01-06"
    assert outcome["end"] == "2025-01-31"

    # defaults to the span of stored entries
    summary = client.get("/api/summary", headers=STAFF).json()
    assert summary["start"] == "2025-01-06"
    assert summary["end"] == "2025-01-31"
    assert summary["result"]["dashboard"]["total_hours"] == pytest.approx(7.5)

    ranged = client.get("/api/summary", params={"start": "2025-01-01", "end": "2025-01-15"}, headers=STAFF).json()
    assert ranged["result"]["dashboard"]["total_hours"] == pytest.approx(2.0)


def test_import_requires_master(client):
    resp = client.post(
        "/api/entries/import",
        files={"file": ("export.csv", EXPORT.encode("utf-8"), "text/csv")},
        headers=STAFF,
    )
    assert resp.status_code == 403


def test_summary_rejects_bad_dates(client):
    resp = client.get("/api/summary", params={"start": "15/01/2025"}, headers=STAFF)
    assert resp.status_code == 400


def test_summary_revenue_is_pro_rated(client):
    _new_client(client)
    resp = client.get("/api/summary", params={"start": "2025-01-01", "end": "2025-01-15"}, headers=STAFF)
    assert resp.status_code == 200
    assert resp.json()["result"]["dashboard"]["total_revenue"] == pytest.approx(1500.0)


def test_health_save_score_and_portfolio(client):
    created = _new_client(client, contract_start_date="2020-01-01")

    resp = client.put(f"/api/health/{created['id']}/2025-06", json=ANSWERS, headers=MASTER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["input"]["last_updated"]
    assert body["score"]["score"] == pytest.approx(97.0)
    assert body["score"]["flag"] == "Green"

    got = client.get(f"/api/health/{created['id']}/2025-06", headers=STAFF).json()
    assert got["score"]["score"] == pytest.approx(97.0)

    portfolio = client.get("/api/health", params={"month": "2025-06"}, headers=STAFF).json()
    assert list(portfolio["scores"]) == [created["id"]]


def test_health_save_rejects_unknown_answer(client):
    created = _new_client(client)
    resp = client.put(f"/api/health/{created['id']}/2025-06", json={**ANSWERS, "nps": "fan"}, headers=MASTER)
    assert resp.status_code == 422
    assert any(err["loc"] == ["nps"] for err in resp.json()["detail"])


def test_health_save_unknown_client_is_404(client):
    resp = client.put("/api/health/cli-missing/2025-06", json=ANSWERS, headers=MASTER)
    assert resp.status_code == 404


def test_health_preview_does_not_store(client):
    created = _new_client(client, contract_start_date="2020-01-01")
    resp = client.post(
        "/api/health/preview",
        json={**ANSWERS, "client_id": created["id"], "month_key": "2025-06", "expects_measurable_results": False},
        headers=STAFF,
    )
    assert resp.status_code == 200
    assert resp.json()["policy"] == "results_excluded"
    assert client.get(f"/api/health/{created['id']}/2025-06", headers=STAFF).status_code == 404


def test_contract_parse(client):
    text = "Valor da Parcela: R$ 6.602,01\nData de início do projeto: 21 de fevereiro de 2026;"
    resp = client.post("/api/contracts/parse", json={"text": text}, headers=MASTER)
    assert resp.status_code == 200
    hints = resp.json()
    assert hints["recurring_fee"] == pytest.approx(6602.01)
    assert hints["start_date"] == "2026-02-21"


def test_backup_round_trip(client):
    _new_client(client)
    backup = client.get("/api/backup", headers=MASTER).json()
    assert backup["version"] == "2"
    assert len(backup["clients"]) == 1

    resp = client.post("/api/backup", json=backup, headers=MASTER)
    assert resp.status_code == 200
    assert resp.json()["restored"]["clients"] == 1

    assert client.post("/api/backup", json={"entries": []}, headers=MASTER).status_code == 400


def test_summary_fills_missing_end_from_entries(client):
    client.post(
        "/api/entries/import",
        files={"file": ("export.csv", EXPORT.encode("utf-8"), "text/csv")},
        headers=MASTER,
    )
    _new_client(client, name="Escola")

    summary = client.get("/api/summary", params={"start": "2025-01-10"}, headers=STAFF).json()
    assert summary["start"] == "2025-01-10"
    assert summary["end"] == "2025-01-31"
    assert summary["result"]["dashboard"]["total_hours"] == pytest.approx(5.5)
    assert summary["result"]["dashboard"]["total_revenue"] == pytest.approx(3100 * 22 / 31)
