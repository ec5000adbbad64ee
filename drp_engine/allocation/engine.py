"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION ENGINE (Distribuição de Stock da Origem)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Distribui o stock da origem pelas filiais destino respeitando o múltiplo de
venda do produto.

Mathematical Formulation:
─────────────────────────
    S = stock na origem, N = Σ necessidade_i, m = múltiplo de venda
    D = min(S, N)

    Stock suficiente (D ≥ N):
        exato_i  = D * necessidade_i / N
        base_i   = floor(exato_i / m) * m
        fração_i = exato_i - base_i
        sobra    = round(D) - Σ base_i
        sobra distribuída 1 unidade de cada vez:
            1) por fração decrescente (empates -> prioridade), só a filiais
               abaixo da necessidade
            2) unidades de segurança a filiais com necessidade > 0, por prioridade

    Stock insuficiente (D < N):
        rateio round-robin por prioridade: em cada volta a filial recebe
        min(m, stock restante, necessidade em aberto), até esgotar o stock
        ou satisfazer todas as necessidades

    Défice = max(0, N - S)
    Status:
        deficit   S = 0 e N > 0
        rationed  0 < S < N
        ok        caso contrário

Invariantes:
    Σ alocação_i ≤ min(S, N) (a menos do arredondamento half-up de D)
    alocação_i ≥ 0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from drp_engine.allocation.rounding import (
    floor_to_multiple,
    order_by_fraction,
    order_by_priority,
    round_half_up,
)

logger = logging.getLogger(__name__)


class AllocationStatus(str, Enum):
    OK = "ok"
    RATIONED = "rationed"
    DEFICIT = "deficit"


@dataclass
class AllocationOutcome:
    """Resultado da distribuição de um produto."""
    origin_supply: float
    total_need: float
    to_distribute: float
    deficit: float
    status: AllocationStatus
    fill_rate: float
    allocations: Dict[str, int] = field(default_factory=dict)
    base_allocations: Dict[str, int] = field(default_factory=dict)

    @property
    def total_allocated(self) -> int:
        return sum(self.allocations.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin_supply": self.origin_supply,
            "total_need": self.total_need,
            "to_distribute": self.to_distribute,
            "total_allocated": self.total_allocated,
            "deficit": self.deficit,
            "status": self.status.value,
            "fill_rate": round(self.fill_rate, 4),
            "allocations": dict(self.allocations),
        }


def resolve_status(origin_supply: float, total_need: float) -> AllocationStatus:
    if total_need <= 0:
        return AllocationStatus.OK
    if origin_supply <= 0:
        return AllocationStatus.DEFICIT
    if origin_supply < total_need:
        return AllocationStatus.RATIONED
    return AllocationStatus.OK


def fill_rate(origin_supply: float, total_need: float) -> float:
    if total_need <= 0:
        return 1.0
    if origin_supply <= 0:
        return 0.0
    return min(1.0, origin_supply / total_need)


def _distribute_sufficient(
    to_distribute: float,
    origin_supply: float,
    needs: Dict[str, float],
    multiple: int,
    priority: Sequence[str],
    allocations: Dict[str, int],
) -> Dict[str, int]:
    total_need = sum(needs.values())
    fractions: Dict[str, float] = {}
    for code, need in needs.items():
        exact = to_distribute * need / total_need
        base = floor_to_multiple(exact, multiple)
        allocations[code] = base
        fractions[code] = exact - base
    base_allocations = dict(allocations)

    target = round_half_up(to_distribute)
    if target > origin_supply:
        target = int(origin_supply)
    leftover = target - sum(allocations.values())

    # 1) top-up branches still below their need, largest lost fraction first
    ranked = order_by_fraction(fractions, priority)
    while leftover > 0:
        below = [code for code in ranked if allocations[code] < needs[code]]
        if not below:
            break
        for code in below:
            if leftover <= 0:
                break
            allocations[code] += 1
            leftover -= 1

    # 2) safety units to any branch with need, in priority order
    by_priority = order_by_priority(list(needs), priority)
    while leftover > 0 and by_priority:
        for code in by_priority:
            if leftover <= 0:
                break
            allocations[code] += 1
            leftover -= 1

    return base_allocations


def _distribute_insufficient(
    to_distribute: float,
    needs: Dict[str, float],
    multiple: int,
    priority: Sequence[str],
    allocations: Dict[str, int],
) -> None:
    step = multiple if multiple > 1 else 1
    # whole units only; fractional supply or need stays at the origin
    remaining = floor_to_multiple(to_distribute, 1)
    order = order_by_priority(list(needs), priority)
    progressed = True
    while remaining > 0 and progressed:
        progressed = False
        for code in order:
            if remaining <= 0:
                break
            open_need = floor_to_multiple(needs[code] - allocations[code], 1)
            quantity = min(step, remaining, open_need)
            if quantity > 0:
                allocations[code] += quantity
                remaining -= quantity
                progressed = True


def allocate(
    origin_supply: float,
    needs: Mapping[str, float],
    multiple: int = 1,
    priority: Sequence[str] = (),
) -> AllocationOutcome:
    """
    Distribui `origin_supply` pelas necessidades por filial.

    Args:
        origin_supply: Stock disponível na origem
        needs: filial -> necessidade (>= 0); a ordem não afeta o resultado
        multiple: Múltiplo de venda (<= 1 desativa arredondamento)
        priority: Ordem fixa das filiais para desempates e rateio

    Nunca levanta exceção para stock ou necessidade nulos.
    """
    supply = max(0.0, float(origin_supply or 0.0))
    multiple = int(multiple) if multiple and multiple > 1 else 1
    clean = {code: max(0.0, float(need or 0.0)) for code, need in needs.items()}
    positive = {code: need for code, need in clean.items() if need > 0}

    total_need = sum(positive.values())
    to_distribute = min(supply, total_need)
    allocations = {code: 0 for code in clean}
    base_allocations = dict(allocations)

    if to_distribute > 0:
        working = {code: 0 for code in positive}
        if to_distribute >= total_need:
            base_allocations.update(
                _distribute_sufficient(to_distribute, supply, positive, multiple, priority, working)
            )
        else:
            _distribute_insufficient(to_distribute, positive, multiple, priority, working)
        allocations.update(working)

    outcome = AllocationOutcome(
        origin_supply=supply,
        total_need=total_need,
        to_distribute=to_distribute,
        deficit=max(0.0, total_need - supply),
        status=resolve_status(supply, total_need),
        fill_rate=fill_rate(supply, total_need),
        allocations=allocations,
        base_allocations=base_allocations,
    )
    logger.debug(
        f"Allocated {outcome.total_allocated}/{supply} over {len(positive)} branches "
        f"(need {total_need}, multiple {multiple}, status {outcome.status.value})"
    )
    return outcome


def allocation_summary(outcomes: List[AllocationOutcome]) -> Dict[str, Any]:
    """Totais por lote de produtos."""
    counts = {status.value: 0 for status in AllocationStatus}
    for outcome in outcomes:
        counts[outcome.status.value] += 1
    return {
        "products": len(outcomes),
        "total_need": sum(o.total_need for o in outcomes),
        "total_origin_supply": sum(o.origin_supply for o in outcomes),
        "total_allocated": sum(o.total_allocated for o in outcomes),
        "total_deficit": sum(o.deficit for o in outcomes),
        "by_status": counts,
    }
