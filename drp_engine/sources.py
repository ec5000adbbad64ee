"""
DRP Engine - Data contracts
===========================

Contratos de leitura/escrita que o motor consome. A implementação SQL está em
`drp_engine.db`; os testes usam implementações em memória.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import pandas as pd


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SalesWindow:
    """Janela de datas semiaberta [start, end)."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "days": self.days}


@dataclass
class StockLevel:
    """Stock de um produto numa filial."""
    product_code: str
    branch_code: str
    on_hand: float = 0.0
    reserved: float = 0.0
    configured_minimum: float = 0.0


@dataclass(frozen=True)
class ProductInfo:
    product_code: str
    description: str = ""
    catalog_group: str = "Sem grupo"
    manufacturer_reference: str = "-"


# ═══════════════════════════════════════════════════════════════════════════════
# READERS
# ═══════════════════════════════════════════════════════════════════════════════

@runtime_checkable
class SalesReader(Protocol):
    def sold_quantity(self, product_codes: Sequence[str], branch_code: str, window: SalesWindow) -> float:
        """Sum of deduplicated outbound-sale quantities in the window."""
        ...

    def sale_days(self, product_code: str, branch_code: str, window: SalesWindow) -> int:
        """Number of distinct calendar days with at least one sale."""
        ...


class BulkSalesReader(Protocol):
    def candidate_products(self, window: SalesWindow, branch_codes: Sequence[str]) -> List[str]:
        ...

    def revenue_by_product(self, branch_code: str, window: SalesWindow) -> Dict[str, float]:
        ...

    def sales_totals(self, window: SalesWindow, branch_codes: Sequence[str]) -> pd.DataFrame:
        """Columns: product_code, branch_code, quantity."""
        ...


class StockReader(Protocol):
    def stock_level(self, product_code: str, branch_code: str) -> StockLevel:
        ...

    def stock_by_product(self, product_codes: Sequence[str], branch_code: str) -> Dict[str, float]:
        ...


class CatalogReader(Protocol):
    def products_with_stock(
        self,
        branch_code: str,
        catalog_group: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10000,
    ) -> List[ProductInfo]:
        ...

    def describe(self, product_codes: Sequence[str]) -> Dict[str, ProductInfo]:
        ...


class CombinedGroupReader(Protocol):
    def combined_memberships(self) -> List[Tuple[str, str]]:
        """(group_code, product_code) rows in member order."""
        ...


class ProductConfigReader(Protocol):
    def sales_multiples(self, product_codes: Sequence[str]) -> Dict[str, int]:
        ...


class MinimumStockReader(Protocol):
    def active_minimum(self, product_code: str, branch_code: str) -> Optional[float]:
        ...
