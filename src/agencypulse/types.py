from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class Department(str, Enum):
    CRIACAO = "Criação"
    ATENDIMENTO = "Atendimento"
    TRAFEGO = "Gestão de Tráfego"
    GESTAO = "Gestão"
    OUTROS = "Outros"


class ClientCategory(str, Enum):
    SABER = "Saber"
    TER = "Ter"
    EXECUTAR = "Executar"


@dataclass(frozen=True)
class TimeEntry:
    executor_id: str
    client_id: str
    hours: float
    entry_date: date
    id: str = ""

    @property
    def month_key(self) -> str:
        return f"{self.entry_date.year:04d}-{self.entry_date.month:02d}"


@dataclass(frozen=True)
class MonthlyCapacity:
    cost: float
    hours: float


@dataclass(frozen=True)
class EmployeeConfig:
    id: str
    name: str
    department: Department = Department.OUTROS
    default_cost: float = 0.0
    default_hours: float = 160.0
    history: dict[str, MonthlyCapacity] = field(default_factory=dict)
    # e.g. {"2025-03": MonthlyCapacity(cost=9000, hours=120)}

    def for_month(self, month_key: str) -> MonthlyCapacity:
        override = self.history.get(month_key)
        if override is not None:
            return override
        return MonthlyCapacity(cost=self.default_cost, hours=self.default_hours)

    def hourly_rate(self, month_key: str) -> float:
        month = self.for_month(month_key)
        return month.cost / month.hours if month.hours > 0 else 0.0


@dataclass(frozen=True)
class ClientConfig:
    id: str
    name: str
    is_active: bool = True
    category: ClientCategory = ClientCategory.EXECUTAR
    default_fee: float = 0.0
    history: dict[str, float] = field(default_factory=dict)
    one_time_fee: Optional[float] = None
    contract_start_date: Optional[date] = None

    def fee_for_month(self, month_key: str) -> float:
        fee = self.history.get(month_key)
        return self.default_fee if fee is None else fee


@dataclass(frozen=True)
class ClientSummary:
    client_id: str
    name: str
    total_hours: float
    operational_cost: float
    revenue: float
    one_time_fee: float
    gross_profit: float
    margin: float
    is_active: bool
    category: ClientCategory


@dataclass(frozen=True)
class EmployeeSummary:
    employee_id: str
    name: str
    total_hours: float
    capacity_hours: float
    utilization_rate: float
    cost_generated: float
    department: Department


@dataclass(frozen=True)
class DepartmentSummary:
    department: Department
    total_hours_realized: float
    total_capacity_hours: float
    utilization_rate: float
    headcount: int


@dataclass(frozen=True)
class DashboardSummary:
    total_revenue: float
    total_cost: float
    gross_profit: float
    overall_margin: float
    total_hours: float
    total_capacity_hours: float
    global_capacity_rate: float
    revenue_by_category: dict[ClientCategory, float]


@dataclass(frozen=True)
class AggregationResult:
    clients: list[ClientSummary]
    employees: list[EmployeeSummary]
    departments: list[DepartmentSummary]
    dashboard: DashboardSummary
    active_months: list[str] = field(default_factory=list)
