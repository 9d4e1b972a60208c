from __future__ import annotations

from datetime import date

import pytest

from agencypulse.aggregation import aggregate, client_revenue, employee_capacity
from agencypulse.types import (
    ClientCategory,
    ClientConfig,
    Department,
    EmployeeConfig,
    MonthlyCapacity,
    TimeEntry,
)


def _designer(**kwargs) -> EmployeeConfig:
    base = dict(id="emp-1", name="Ana", department=Department.CRIACAO, default_cost=8000.0, default_hours=160.0)
    base.update(kwargs)
    return EmployeeConfig(**base)


def _client(**kwargs) -> ClientConfig:
    base = dict(id="cli-1", name="Padaria", category=ClientCategory.TER, default_fee=3000.0)
    base.update(kwargs)
    return ClientConfig(**base)


def test_cost_uses_rate_of_entry_month():
    entries = [TimeEntry("emp-1", "cli-1", 10.0, date(2025, 1, 10))]
    result = aggregate(entries, [_designer()], [_client()], date(2025, 1, 1), date(2025, 1, 31))

    (client,) = result.clients
    assert client.total_hours == 10.0
    assert client.operational_cost == pytest.approx(500.0)
    assert client.revenue == pytest.approx(3000.0)
    assert client.gross_profit == pytest.approx(2500.0)
    assert client.margin == pytest.approx(2500 / 3000 * 100)


def test_monthly_override_changes_rate_for_that_month_only():
    employee = _designer(history={"2025-02": MonthlyCapacity(cost=9000.0, hours=100.0)})
    entries = [
        TimeEntry("emp-1", "cli-1", 10.0, date(2025, 1, 10)),
        TimeEntry("emp-1", "cli-1", 10.0, date(2025, 2, 10)),
    ]
    result = aggregate(entries, [employee], [_client()], date(2025, 1, 1), date(2025, 2, 28))

    assert result.dashboard.total_cost == pytest.approx(500.0 + 900.0)
    (emp,) = result.employees
    assert emp.capacity_hours == pytest.approx(260.0)


def test_partial_month_revenue_is_pro_rated():
    result = aggregate([], [], [_client()], date(2025, 1, 1), date(2025, 1, 15))
    assert result.dashboard.total_revenue == pytest.approx(3000 * 15 / 31)
    assert result.dashboard.total_revenue == pytest.approx(1451.61, abs=0.01)


def test_one_time_fee_counted_when_start_inside_range():
    client = _client(one_time_fee=2000.0, contract_start_date=date(2025, 1, 20))

    recurring, one_time = client_revenue(client, ["2025-01"], date(2025, 1, 1), date(2025, 1, 31))
    assert recurring == pytest.approx(3000.0)
    assert one_time == 2000.0

    later = aggregate([], [], [client], date(2025, 2, 1), date(2025, 2, 28))
    assert later.clients[0].one_time_fee == 0.0
    assert later.dashboard.total_revenue == pytest.approx(3000.0)


def test_one_time_fee_counted_once_across_multi_month_range():
    client = _client(one_time_fee=2000.0, contract_start_date=date(2025, 1, 20))
    result = aggregate([], [], [client], date(2025, 1, 1), date(2025, 3, 31))
    assert result.dashboard.total_revenue == pytest.approx(3 * 3000.0 + 2000.0)


def test_aggregate_is_idempotent():
    entries = [
        TimeEntry("emp-1", "cli-1", 4.5, date(2025, 1, 3)),
        TimeEntry("emp-1", "cli-2", 2.0, date(2025, 1, 4)),
    ]
    employees = [_designer()]
    clients = [_client(), _client(id="cli-2", name="Oficina", default_fee=1200.0)]
    first = aggregate(entries, employees, clients, date(2025, 1, 1), date(2025, 1, 31))
    second = aggregate(entries, employees, clients, date(2025, 1, 1), date(2025, 1, 31))
    assert first == second


def test_entries_outside_range_are_ignored():
    entries = [
        TimeEntry("emp-1", "cli-1", 10.0, date(2025, 1, 10)),
        TimeEntry("emp-1", "cli-1", 99.0, date(2025, 2, 10)),
    ]
    result = aggregate(entries, [_designer()], [_client()], date(2025, 1, 1), date(2025, 1, 31))
    assert result.dashboard.total_hours == 10.0


def test_missing_bounds_keep_all_entries_and_fall_back_to_default_capacity():
    entries = [
        TimeEntry("emp-1", "cli-1", 10.0, date(2025, 1, 10)),
        TimeEntry("emp-1", "cli-1", 6.0, date(2025, 4, 10)),
    ]
    result = aggregate(entries, [_designer(default_hours=120.0)], [_client()], None, None)

    assert result.active_months == []
    assert result.dashboard.total_hours == 16.0
    assert result.dashboard.total_revenue == 0.0
    assert result.employees[0].capacity_hours == 120.0
    assert employee_capacity(None, [], None, None) == 160.0


def test_unknown_performer_costs_nothing():
    entries = [TimeEntry("emp-ghost", "cli-1", 8.0, date(2025, 1, 10))]
    result = aggregate(entries, [], [_client()], date(2025, 1, 1), date(2025, 1, 31))

    assert result.dashboard.total_cost == 0.0
    (emp,) = result.employees
    assert emp.name == "emp-ghost"
    assert emp.department is Department.OUTROS
    assert emp.capacity_hours == pytest.approx(160.0)


def test_zero_capacity_and_zero_revenue_do_not_divide_by_zero():
    employee = _designer(default_cost=5000.0, default_hours=0.0)
    client = _client(default_fee=0.0)
    entries = [TimeEntry("emp-1", "cli-1", 5.0, date(2025, 1, 10))]
    result = aggregate(entries, [employee], [client], date(2025, 1, 1), date(2025, 1, 31))

    assert result.dashboard.total_cost == 0.0
    assert result.employees[0].utilization_rate == 0.0
    assert result.clients[0].margin == 0.0
    assert result.dashboard.overall_margin == 0.0
    assert result.dashboard.global_capacity_rate == 0.0


def test_department_rollup_and_ordering():
    employees = [
        _designer(),
        _designer(id="emp-2", name="Bruno"),
        _designer(id="emp-3", name="Carla", department=Department.TRAFEGO),
    ]
    entries = [
        TimeEntry("emp-1", "cli-1", 40.0, date(2025, 1, 10)),
        TimeEntry("emp-2", "cli-1", 40.0, date(2025, 1, 11)),
        TimeEntry("emp-3", "cli-1", 160.0, date(2025, 1, 12)),
    ]
    result = aggregate(entries, employees, [_client()], date(2025, 1, 1), date(2025, 1, 31))

    assert [d.department for d in result.departments] == [Department.TRAFEGO, Department.CRIACAO]
    creation = result.departments[1]
    assert creation.headcount == 2
    assert creation.total_hours_realized == 80.0
    assert creation.total_capacity_hours == pytest.approx(320.0)
    assert creation.utilization_rate == pytest.approx(25.0)
    assert result.dashboard.total_capacity_hours == pytest.approx(480.0)


def test_inactive_client_without_activity_is_hidden():
    clients = [_client(), _client(id="cli-2", name="Antigo", is_active=False, default_fee=0.0)]
    result = aggregate([], [], clients, date(2025, 1, 1), date(2025, 1, 31))
    assert [c.client_id for c in result.clients] == ["cli-1"]


def test_revenue_by_category_covers_every_category():
    clients = [
        _client(),
        _client(id="cli-2", name="Escola", category=ClientCategory.SABER, default_fee=1000.0),
    ]
    result = aggregate([], [], clients, date(2025, 1, 1), date(2025, 1, 31))
    by_cat = result.dashboard.revenue_by_category
    assert set(by_cat) == set(ClientCategory)
    assert by_cat[ClientCategory.TER] == pytest.approx(3000.0)
    assert by_cat[ClientCategory.SABER] == pytest.approx(1000.0)
    assert by_cat[ClientCategory.EXECUTAR] == 0.0


def test_clients_sorted_by_profit():
    clients = [
        _client(id="cli-1", name="Pequeno", default_fee=500.0),
        _client(id="cli-2", name="Grande", default_fee=9000.0),
    ]
    result = aggregate([], [], clients, date(2025, 1, 1), date(2025, 1, 31))
    assert [c.client_id for c in result.clients] == ["cli-2", "cli-1"]
