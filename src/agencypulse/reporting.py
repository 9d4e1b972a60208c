from __future__ import annotations

import dataclasses
import json
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import matplotlib.pyplot as plt
import matplotlib.ticker as mtick
import pandas as pd
from openpyxl import Workbook
from openpyxl.utils.dataframe import dataframe_to_rows

from .health import HealthScoreResult
from .types import AggregationResult


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {_plain(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def summaries_frame(items: list[Any]) -> pd.DataFrame:
    """Flatten a list of summary dataclasses into a DataFrame."""
    return pd.DataFrame([{k: _plain(v) for k, v in dataclasses.asdict(item).items()} for item in items])


def dashboard_frame(result: AggregationResult) -> pd.DataFrame:
    dash = result.dashboard
    rows = [
        ("Total revenue", dash.total_revenue),
        ("Total cost", dash.total_cost),
        ("Gross profit", dash.gross_profit),
        ("Overall margin %", dash.overall_margin),
        ("Total hours", dash.total_hours),
        ("Total capacity hours", dash.total_capacity_hours),
        ("Capacity used %", dash.global_capacity_rate),
    ]
    rows.extend((f"Revenue - {cat.value}", amount) for cat, amount in dash.revenue_by_category.items())
    return pd.DataFrame(rows, columns=["Metric", "Value"])


def health_frame(scores: dict[str, HealthScoreResult], names: Optional[dict[str, str]] = None) -> pd.DataFrame:
    names = names or {}
    rows = [
        {
            "client_id": s.client_id,
            "client": names.get(s.client_id, s.client_id),
            "month_key": s.month_key,
            "score": s.score,
            "flag": s.flag.value,
            "action": s.action,
            "engagement": s.breakdown.engagement,
            "results": s.breakdown.results,
            "relationship": s.breakdown.relationship,
            "surveys": s.breakdown.surveys,
        }
        for s in scores.values()
    ]
    frame = pd.DataFrame(rows)
    return frame.sort_values("score") if not frame.empty else frame


def write_summary_json(path: str | Path, result: AggregationResult, period: dict[str, Any]) -> None:
    path = Path(path)
    payload = {
        "period": period,
        "active_months": result.active_months,
        "dashboard": _plain(dataclasses.asdict(result.dashboard)),
        "clients": [_plain(dataclasses.asdict(c)) for c in result.clients],
        "employees": [_plain(dataclasses.asdict(e)) for e in result.employees],
        "departments": [_plain(dataclasses.asdict(d)) for d in result.departments],
    }
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def write_narrative(
    path: str | Path,
    result: AggregationResult,
    period_label: str,
    scores: Optional[dict[str, HealthScoreResult]] = None,
    names: Optional[dict[str, str]] = None,
) -> None:
    path = Path(path)
    dash = result.dashboard
    lines: list[str] = []
    lines.append(f"# Profitability & Capacity: {period_label}")
    lines.append("")
    lines.append("## Totals")
    lines.append(f"- Revenue: {dash.total_revenue:,.2f}")
    lines.append(f"- Operational cost: {dash.total_cost:,.2f}")
    lines.append(f"- Gross profit: {dash.gross_profit:,.2f} ({dash.overall_margin:.1f}% margin)")
    lines.append(f"- Hours: {dash.total_hours:,.1f} of {dash.total_capacity_hours:,.1f} ({dash.global_capacity_rate:.1f}%)")
    lines.append("")

    losing = [c for c in result.clients if c.gross_profit < 0]
    if losing:
        lines.append("## Clients below cost")
        for c in sorted(losing, key=lambda c: c.gross_profit):
            lines.append(f"- {c.name}: {c.gross_profit:,.2f} ({c.total_hours:.1f} h)")
        lines.append("")

    if scores:
        lines.append("## Portfolio health")
        frame = health_frame(scores, names)
        for row in frame.itertuples(index=False):
            lines.append(f"- {row.client}: {row.score:.2f} {row.flag} ({row.action})")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")


def save_charts(out_dir: str | Path, result: AggregationResult) -> list[Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths: list[Path] = []

    if result.clients:
        clients = sorted(result.clients, key=lambda c: c.margin)
        plt.figure(figsize=(10, max(3, 0.35 * len(clients))))
        colors = ["#c0392b" if c.margin < 0 else "#27ae60" for c in clients]
        plt.barh([c.name for c in clients], [c.margin / 100 for c in clients], color=colors)
        plt.title("Client margin")
        plt.gca().xaxis.set_major_formatter(mtick.PercentFormatter(xmax=1.0, decimals=0))
        plt.grid(True, axis="x", alpha=0.25)
        p = out_dir / "client_margin.png"
        plt.tight_layout()
        plt.savefig(p, dpi=160)
        plt.close()
        paths.append(p)

    if result.departments:
        plt.figure(figsize=(8, 4))
        plt.bar(
            [d.department.value for d in result.departments],
            [d.utilization_rate / 100 for d in result.departments],
        )
        plt.axhline(1.0, color="gray", linestyle=":", linewidth=1)
        plt.title("Department utilization")
        plt.gca().yaxis.set_major_formatter(mtick.PercentFormatter(xmax=1.0, decimals=0))
        plt.grid(True, axis="y", alpha=0.25)
        p = out_dir / "department_utilization.png"
        plt.tight_layout()
        plt.savefig(p, dpi=160)
        plt.close()
        paths.append(p)

    return paths


def write_excel_pack(
    path: str | Path,
    result: AggregationResult,
    scores: Optional[dict[str, HealthScoreResult]] = None,
    names: Optional[dict[str, str]] = None,
) -> None:
    path = Path(path)
    wb = Workbook()
    wb.remove(wb.active)

    _add_df_sheet(wb, "Dashboard", dashboard_frame(result))
    _add_df_sheet(wb, "Clients", summaries_frame(result.clients))
    _add_df_sheet(wb, "Employees", summaries_frame(result.employees))
    _add_df_sheet(wb, "Departments", summaries_frame(result.departments))
    if scores:
        _add_df_sheet(wb, "Health", health_frame(scores, names))

    wb.save(path)


def _add_df_sheet(wb: Workbook, title: str, df: pd.DataFrame) -> None:
    ws = wb.create_sheet(title=title[:31])
    if df.empty and len(df.columns) == 0:
        return
    for r in dataframe_to_rows(df, index=False, header=True):
        ws.append(r)
    ws.freeze_panes = "A2"
