from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

import pandas as pd

from .periods import active_months, pro_rata_ratio
from .types import (
    AggregationResult,
    ClientCategory,
    ClientConfig,
    ClientSummary,
    DashboardSummary,
    Department,
    DepartmentSummary,
    EmployeeConfig,
    EmployeeSummary,
    TimeEntry,
)

logger = logging.getLogger("agencypulse.aggregation")

BASELINE_MONTHLY_HOURS = 160.0
FALLBACK_DEPARTMENT = Department.OUTROS
FALLBACK_CATEGORY = ClientCategory.EXECUTAR

_ENTRY_COLUMNS = ["executor_id", "client_id", "hours", "entry_date", "month_key"]


def _safe_div(num: float, den: float) -> float:
    return num / den if den != 0 else 0.0


def entries_frame(entries: Iterable[TimeEntry], start: Optional[date] = None, end: Optional[date] = None) -> pd.DataFrame:
    """Tabulate entries, keeping only those dated inside ``[start, end]`` when both bounds are given."""
    rows = [
        (e.executor_id, e.client_id, float(e.hours), e.entry_date, e.month_key)
        for e in entries
        if start is None or end is None or start <= e.entry_date <= end
    ]
    return pd.DataFrame(rows, columns=_ENTRY_COLUMNS)


def attribute_costs(frame: pd.DataFrame, employees: dict[str, EmployeeConfig]) -> pd.DataFrame:
    """Add ``hourly_rate`` and ``cost`` columns.

    The hourly rate comes from the performer's profile for the month the work
    happened in, never from the query range. Unknown performers cost nothing.
    """
    out = frame.copy()
    rates = {
        (executor, month): (employees[executor].hourly_rate(month) if executor in employees else 0.0)
        for executor, month in zip(out["executor_id"], out["month_key"])
    }
    out["hourly_rate"] = [rates[(e, m)] for e, m in zip(out["executor_id"], out["month_key"])]
    out["cost"] = out["hours"] * out["hourly_rate"]
    return out


def _totals_by(costed: pd.DataFrame, key: str) -> dict[str, tuple[float, float]]:
    if costed.empty:
        return {}
    grouped = costed.groupby(key, sort=True)[["hours", "cost"]].sum()
    return {str(k): (float(row["hours"]), float(row["cost"])) for k, row in grouped.iterrows()}


def client_revenue(
    client: ClientConfig,
    months: list[str],
    start: Optional[date],
    end: Optional[date],
) -> tuple[float, float]:
    """Return ``(pro-rated recurring fee, realized one-time fee)`` for the range."""
    recurring = 0.0
    for m in months:
        recurring += client.fee_for_month(m) * pro_rata_ratio(m, start, end)

    one_time = 0.0
    if (
        client.one_time_fee
        and client.contract_start_date is not None
        and start is not None
        and end is not None
        and start <= client.contract_start_date <= end
    ):
        one_time = float(client.one_time_fee)
    return recurring, one_time


def employee_capacity(
    employee: Optional[EmployeeConfig],
    months: list[str],
    start: Optional[date],
    end: Optional[date],
) -> float:
    if not months:
        return employee.default_hours if employee is not None else BASELINE_MONTHLY_HOURS

    capacity = 0.0
    for m in months:
        monthly = employee.for_month(m).hours if employee is not None else BASELINE_MONTHLY_HOURS
        capacity += monthly * pro_rata_ratio(m, start, end)
    return capacity


def _client_summaries(
    stats: dict[str, tuple[float, float]],
    clients: dict[str, ClientConfig],
    months: list[str],
    start: Optional[date],
    end: Optional[date],
) -> list[ClientSummary]:
    summaries: list[ClientSummary] = []
    for client_id in sorted(set(clients) | set(stats)):
        hours, cost = stats.get(client_id, (0.0, 0.0))
        config = clients.get(client_id)

        recurring, one_time = (0.0, 0.0)
        if config is not None:
            recurring, one_time = client_revenue(config, months, start, end)
        revenue = recurring + one_time

        if client_id not in stats and revenue == 0 and not (config is not None and config.is_active):
            continue

        profit = revenue - cost
        summaries.append(
            ClientSummary(
                client_id=client_id,
                name=config.name if config is not None else client_id,
                total_hours=hours,
                operational_cost=cost,
                revenue=revenue,
                one_time_fee=one_time,
                gross_profit=profit,
                margin=_safe_div(profit, revenue) * 100,
                is_active=config.is_active if config is not None else True,
                category=config.category if config is not None else FALLBACK_CATEGORY,
            )
        )
    summaries.sort(key=lambda s: s.gross_profit, reverse=True)
    return summaries


def _employee_summaries(
    stats: dict[str, tuple[float, float]],
    employees: dict[str, EmployeeConfig],
    months: list[str],
    start: Optional[date],
    end: Optional[date],
) -> list[EmployeeSummary]:
    summaries: list[EmployeeSummary] = []
    for employee_id in sorted(set(employees) | set(stats)):
        hours, cost = stats.get(employee_id, (0.0, 0.0))
        config = employees.get(employee_id)
        capacity = employee_capacity(config, months, start, end)
        summaries.append(
            EmployeeSummary(
                employee_id=employee_id,
                name=config.name if config is not None else employee_id,
                total_hours=hours,
                capacity_hours=capacity,
                utilization_rate=_safe_div(hours, capacity) * 100,
                cost_generated=cost,
                department=config.department if config is not None else FALLBACK_DEPARTMENT,
            )
        )
    summaries.sort(key=lambda s: s.utilization_rate, reverse=True)
    return summaries


def _department_summaries(employees: list[EmployeeSummary]) -> list[DepartmentSummary]:
    if not employees:
        return []
    frame = pd.DataFrame(
        {
            "department": [e.department.value for e in employees],
            "hours": [e.total_hours for e in employees],
            "capacity": [e.capacity_hours for e in employees],
        }
    )
    grouped = frame.groupby("department", sort=False).agg(
        hours=("hours", "sum"),
        capacity=("capacity", "sum"),
        headcount=("hours", "size"),
    )

    summaries: list[DepartmentSummary] = []
    for dept in Department:
        if dept.value not in grouped.index:
            continue
        row = grouped.loc[dept.value]
        hours, capacity = float(row["hours"]), float(row["capacity"])
        summaries.append(
            DepartmentSummary(
                department=dept,
                total_hours_realized=hours,
                total_capacity_hours=capacity,
                utilization_rate=_safe_div(hours, capacity) * 100,
                headcount=int(row["headcount"]),
            )
        )
    summaries.sort(key=lambda s: s.utilization_rate, reverse=True)
    return summaries


def aggregate(
    entries: Iterable[TimeEntry],
    employees: Iterable[EmployeeConfig],
    clients: Iterable[ClientConfig],
    start: Optional[date],
    end: Optional[date],
) -> AggregationResult:
    """Profitability and utilization for the inclusive range ``[start, end]``.

    Monthly fees and capacity are pro-rated per calendar month by the days of
    overlap with the range; costs use the rate of the month the work was done.
    Missing bounds keep every entry and leave the active month set empty.
    """
    employee_map = {e.id: e for e in employees}
    client_map = {c.id: c for c in clients}
    months = active_months(start, end)

    costed = attribute_costs(entries_frame(entries, start, end), employee_map)
    client_stats = _totals_by(costed, "client_id")
    employee_stats = _totals_by(costed, "executor_id")

    client_summaries = _client_summaries(client_stats, client_map, months, start, end)
    employee_summaries = _employee_summaries(employee_stats, employee_map, months, start, end)
    department_summaries = _department_summaries(employee_summaries)

    revenue_by_category = {category: 0.0 for category in ClientCategory}
    total_revenue = 0.0
    for summary in client_summaries:
        if summary.is_active or summary.revenue > 0:
            total_revenue += summary.revenue
            revenue_by_category[summary.category] += summary.revenue

    total_cost = float(costed["cost"].sum()) if not costed.empty else 0.0
    total_hours = float(costed["hours"].sum()) if not costed.empty else 0.0
    total_capacity = sum(d.total_capacity_hours for d in department_summaries)
    gross_profit = total_revenue - total_cost

    logger.debug(
        "Aggregated %d entries over %d months: %d clients, %d employees",
        len(costed.index),
        len(months),
        len(client_summaries),
        len(employee_summaries),
    )

    return AggregationResult(
        clients=client_summaries,
        employees=employee_summaries,
        departments=department_summaries,
        dashboard=DashboardSummary(
            total_revenue=total_revenue,
            total_cost=total_cost,
            gross_profit=gross_profit,
            overall_margin=_safe_div(gross_profit, total_revenue) * 100,
            total_hours=total_hours,
            total_capacity_hours=total_capacity,
            global_capacity_rate=_safe_div(total_hours, total_capacity) * 100,
            revenue_by_category=revenue_by_category,
        ),
        active_months=months,
    )
