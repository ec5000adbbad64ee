"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    DEMAND RESOLVER (Necessidade por Filial)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Resolve a meta e a necessidade de cada filial destino, por ordem:

    1. Vendas próprias do produto no período
    2. Fallback de combinados: vendas próprias = 0 -> vendas do grupo
    3. Fallback de estoque mínimo: só se a meta total (1-2) for 0; por filial,
       quando a necessidade ainda é 0 e o estoque mínimo > stock atual
    4. Zero-stock tie-in: por prioridade, filial com stock 0 e sem necessidade
       recebe necessidade 1 enquanto a necessidade acumulada < stock na origem

    necessidade = max(0, meta - stock_atual)

O ciclo por filial de um produto é sequencial.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from drp_engine.combined.resolver import CombinedGroupResolver
from drp_engine.sales.aggregator import SalesAggregator
from drp_engine.sales.exit_frequency import ExitFrequency
from drp_engine.settings import DRPSettings, Settings
from drp_engine.sources import MinimumStockReader, StockLevel, StockReader

logger = logging.getLogger(__name__)


@dataclass
class BranchDemand:
    """Análise de uma filial destino para um produto."""
    branch_code: str
    branch_name: str
    on_hand: float = 0.0
    reserved: float = 0.0
    minimum_stock: float = 0.0
    own_sales: float = 0.0
    group_sales: float = 0.0
    meta: float = 0.0
    need: float = 0.0
    used_group_fallback: bool = False
    used_minimum_stock: bool = False
    zero_stock_tie_in: bool = False
    group_stock: float = 0.0
    allocation: int = 0
    exit_frequency: Optional[ExitFrequency] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_code": self.branch_code,
            "branch_name": self.branch_name,
            "on_hand": self.on_hand,
            "reserved": self.reserved,
            "minimum_stock": self.minimum_stock,
            "own_sales": self.own_sales,
            "group_sales": self.group_sales,
            "meta": self.meta,
            "need": self.need,
            "allocation": self.allocation,
            "used_group_fallback": self.used_group_fallback,
            "used_minimum_stock": self.used_minimum_stock,
            "zero_stock_tie_in": self.zero_stock_tie_in,
            "group_stock": self.group_stock,
            "exit_frequency": self.exit_frequency.to_dict() if self.exit_frequency else None,
        }


@dataclass
class ProductDemand:
    product_code: str
    period_days: int
    origin_supply: float
    combined_group: Optional[str] = None
    branches: List[BranchDemand] = field(default_factory=list)

    @property
    def total_need(self) -> float:
        return sum(b.need for b in self.branches)

    @property
    def total_meta(self) -> float:
        return sum(b.meta for b in self.branches)

    def needs(self) -> Dict[str, float]:
        return {b.branch_code: b.need for b in self.branches}

    def branch(self, branch_code: str) -> BranchDemand:
        for b in self.branches:
            if b.branch_code == branch_code:
                return b
        raise KeyError(branch_code)


class DemandResolver:
    """
    Uso:
        resolver = DemandResolver(sales, groups, stock, minimums)
        demand = resolver.resolve("P1", ["00", "01"], period_days=90, origin_supply=40)
    """

    def __init__(
        self,
        sales: SalesAggregator,
        groups: CombinedGroupResolver,
        stock: StockReader,
        minimums: Optional[MinimumStockReader] = None,
        settings: Optional[DRPSettings] = None,
    ):
        self.sales = sales
        self.groups = groups
        self.stock = stock
        self.minimums = minimums
        self.settings = settings or Settings.get()

    def minimum_stock(self, level: StockLevel) -> float:
        """Mínimo dinâmico ativo; senão o mínimo configurado no stock."""
        if self.minimums is not None:
            dynamic = self.minimums.active_minimum(level.product_code, level.branch_code)
            if dynamic is not None:
                return float(dynamic)
        return float(level.configured_minimum or 0.0)

    def _branch_demand(self, product_code: str, branch_code: str, period_days: int) -> BranchDemand:
        level = self.stock.stock_level(product_code, branch_code)
        own = self.sales.sold(product_code, branch_code, period_days)

        demand = BranchDemand(
            branch_code=branch_code,
            branch_name=self.settings.branch_name(branch_code),
            on_hand=level.on_hand,
            reserved=level.reserved,
            minimum_stock=self.minimum_stock(level),
            own_sales=own,
            meta=own,
        )

        if own <= 0 and self.groups.group_of(product_code) is not None:
            demand.group_sales = self.groups.group_sales(product_code, branch_code, period_days)
            if demand.group_sales > 0:
                demand.meta = demand.group_sales
                demand.used_group_fallback = True

        demand.group_stock = self.groups.group_stock(product_code, branch_code) if self.groups.stock else 0.0
        demand.need = max(0.0, demand.meta - demand.on_hand)
        return demand

    def resolve(
        self,
        product_code: str,
        branch_codes: Sequence[str],
        period_days: int,
        origin_supply: float,
        include_exit_frequency: bool = False,
    ) -> ProductDemand:
        result = ProductDemand(
            product_code=product_code,
            period_days=period_days,
            origin_supply=origin_supply,
            combined_group=self.groups.group_of(product_code),
        )

        # 1-2. own sales, group fallback
        for branch_code in branch_codes:
            demand = self._branch_demand(product_code, branch_code, period_days)
            if include_exit_frequency:
                demand.exit_frequency = self.sales.exit_frequency(product_code, branch_code, period_days)
            result.branches.append(demand)

        # 3. minimum-stock fallback, only when nothing sold anywhere
        if result.total_meta <= 0:
            for demand in result.branches:
                if demand.need <= 0 and demand.minimum_stock > 0 and demand.minimum_stock > demand.on_hand:
                    demand.meta = demand.minimum_stock
                    demand.need = max(0.0, demand.meta - demand.on_hand)
                    demand.used_minimum_stock = True

        # 4. zero-stock tie-in
        cumulative = result.total_need
        by_code = {d.branch_code: d for d in result.branches}
        for branch_code in self.settings.sort_by_priority(list(by_code)):
            if cumulative >= origin_supply:
                break
            demand = by_code[branch_code]
            if demand.on_hand == 0 and demand.need <= 0:
                demand.need = 1.0
                demand.zero_stock_tie_in = True
                cumulative += 1.0

        logger.debug(
            f"Demand for {product_code}: need {result.total_need} over {len(result.branches)} branches "
            f"(supply {origin_supply})"
        )
        return result

    def alternatives(self, product_code: str, origin_branch: str) -> List[Tuple[str, float]]:
        """Produtos combinados com stock na origem, maior stock primeiro."""
        return self.groups.siblings_with_stock(product_code, origin_branch)
