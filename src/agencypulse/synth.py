from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .types import ClientCategory, Department

_DEPARTMENTS = [Department.CRIACAO, Department.ATENDIMENTO, Department.TRAFEGO, Department.GESTAO]
_CATEGORIES = list(ClientCategory)


@dataclass(frozen=True)
class SynthSpec:
    start: str  # YYYY-MM
    months: int
    employees: int
    clients: int
    seed: int


def _hhmm(hours: float) -> str:
    minutes = int(round(hours * 60))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def generate_synthetic_dataset(out_dir: str | Path, spec: SynthSpec) -> Path:
    """Write ``time_export.csv`` (tracker export layout) and ``backup.json`` (profiles)."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    rng = np.random.default_rng(spec.seed)
    periods = pd.period_range(spec.start, periods=spec.months, freq="M")
    employees = [f"Colaborador {idx:02d}" for idx in range(1, spec.employees + 1)]
    clients = [f"Cliente {idx:03d}" for idx in range(1, spec.clients + 1)]

    rows = []
    for period in periods:
        for day in pd.date_range(period.start_time, period.end_time, freq="B"):
            for executor in employees:
                for _ in range(int(rng.integers(1, 4))):
                    hours = float(rng.choice([0.25, 0.5, 1.0, 1.5, 2.0, 3.0]))
                    client = clients[int(rng.integers(0, len(clients)))]
                    rows.append([executor, client, _hhmm(hours), day.strftime("%d/%m/%Y")])
    export = pd.DataFrame(rows, columns=["Executor", "Workspace", "Realizado", "Data"])
    preamble = "Relatório de tarefas;;;\n"
    (out_dir / "time_export.csv").write_text(preamble + export.to_csv(sep=";", index=False), encoding="utf-8")

    backup = {
        "version": "2",
        "employees": [
            {
                "id": f"emp-synth-{idx:02d}",
                "name": name,
                "department": _DEPARTMENTS[idx % len(_DEPARTMENTS)].value,
                "default_cost": float(round(rng.normal(8_000, 1_500), 2)),
                "default_hours": 160.0,
                "history": {},
            }
            for idx, name in enumerate(employees)
        ],
        "clients": [
            {
                "id": f"cli-synth-{idx:03d}",
                "name": name,
                "is_active": bool(rng.random() > 0.1),
                "category": _CATEGORIES[idx % len(_CATEGORIES)].value,
                "default_fee": float(round(rng.normal(5_000, 1_500), 2)),
                "history": {},
                "one_time_fee": float(round(rng.normal(8_000, 2_000), 2)) if idx % 3 == 0 else None,
                "contract_start_date": str(periods[int(rng.integers(0, len(periods)))].start_time.date())
                if idx % 3 == 0
                else None,
            }
            for idx, name in enumerate(clients)
        ],
        "entries": [],
        "health_inputs": [],
    }
    (out_dir / "backup.json").write_text(json.dumps(backup, indent=2), encoding="utf-8")
    return out_dir
