"""Field scraping for contract documents already converted to text."""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .types import ClientConfig

logger = logging.getLogger("agencypulse.contracts")

_MONTHS = {
    "janeiro": 1,
    "fevereiro": 2,
    "março": 3,
    "marco": 3,
    "abril": 4,
    "maio": 5,
    "junho": 6,
    "julho": 7,
    "agosto": 8,
    "setembro": 9,
    "outubro": 10,
    "novembro": 11,
    "dezembro": 12,
}

_PATTERNS = {
    "client_name": re.compile(r"Contratante\s*([\s\S]*?)(?=\s*,?\s*pessoa jurídica|\s*,?\s*inscrita no CNPJ)", re.I),
    "recurring_fee": re.compile(r"Valor da Parcela:\s*R\$\s*([\d.,]+)", re.I),
    "one_time_fee": re.compile(r"Valor de implementação \(pontual\):\s*R\$\s*([\d.,]+)", re.I),
    "start_date": re.compile(r"Data de início do projeto:\s*(.*?)(?:;|$)", re.I | re.M),
}


@dataclass(frozen=True)
class ContractHints:
    client_name: Optional[str] = None
    recurring_fee: float = 0.0
    one_time_fee: float = 0.0
    start_date: Optional[date] = None


def parse_brl(value: str) -> float:
    """``"6.602,01"`` -> 6602.01; 0 when unparseable."""
    cleaned = value.strip().rstrip(".,").replace(".", "").replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_long_date(value: str) -> Optional[date]:
    """``"21 de fevereiro de 2026"`` -> date(2026, 2, 21)."""
    cleaned = value.replace(";", "").replace(".", "").strip().lower()
    parts = [p.strip() for p in cleaned.split(" de ")]
    if len(parts) != 3 or parts[1] not in _MONTHS:
        return None
    try:
        return date(int(parts[2]), _MONTHS[parts[1]], int(parts[0]))
    except ValueError:
        return None


def extract_contract_hints(text: str) -> ContractHints:
    found = {name: pattern.search(text) for name, pattern in _PATTERNS.items()}

    name = found["client_name"].group(1).strip() if found["client_name"] else None
    recurring = parse_brl(found["recurring_fee"].group(1)) if found["recurring_fee"] else 0.0
    one_time = parse_brl(found["one_time_fee"].group(1)) if found["one_time_fee"] else 0.0
    start = parse_long_date(found["start_date"].group(1)) if found["start_date"] else None

    logger.debug("Contract hints: name=%r fee=%s one_time=%s start=%s", name, recurring, one_time, start)
    return ContractHints(client_name=name or None, recurring_fee=recurring, one_time_fee=one_time, start_date=start)


def apply_contract_hints(client: ClientConfig, hints: ContractHints) -> ClientConfig:
    """Pre-populate commercial fields from a contract; absent hints leave fields as they are."""
    changes: dict[str, object] = {}
    if hints.recurring_fee:
        changes["default_fee"] = hints.recurring_fee
    if hints.one_time_fee:
        changes["one_time_fee"] = hints.one_time_fee
    if hints.start_date is not None:
        changes["contract_start_date"] = hints.start_date
    return dataclasses.replace(client, **changes) if changes else client
