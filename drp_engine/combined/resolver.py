"""
Combined-Group Resolver
=======================

Products in the same combined group are interchangeable for demand and stock
purposes. The full product <-> group map is loaded in one pass per engine run
and stays read-only for the rest of the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from drp_engine.errors import GroupsNotLoadedError
from drp_engine.sales.aggregator import SalesAggregator
from drp_engine.sources import CombinedGroupReader, StockReader

logger = logging.getLogger(__name__)


@dataclass
class CombinedGroupMap:
    """Bidirectional product <-> group mapping."""
    product_to_group: Dict[str, str] = field(default_factory=dict)
    group_to_products: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, str]]) -> "CombinedGroupMap":
        mapping = cls()
        for group_code, product_code in rows:
            previous = mapping.product_to_group.get(product_code)
            if previous is not None and previous != group_code:
                # A product belongs to at most one group; first membership wins
                logger.warning(
                    f"Product {product_code} listed in groups {previous} and {group_code}; keeping {previous}"
                )
                continue
            members = mapping.group_to_products.setdefault(group_code, [])
            if product_code not in members:
                members.append(product_code)
            mapping.product_to_group[product_code] = group_code
        return mapping

    def __len__(self) -> int:
        return len(self.group_to_products)


class CombinedGroupResolver:
    """
    Aggregates sales and stock across a product's group siblings.

    Usage:
        resolver = CombinedGroupResolver(source, sales)
        resolver.load()                       # once per run
        resolver.group_sales("P1", "00", 90)
    """

    def __init__(self, reader: CombinedGroupReader, sales: SalesAggregator, stock: Optional[StockReader] = None):
        self.reader = reader
        self.sales = sales
        self.stock = stock
        self._map: Optional[CombinedGroupMap] = None

    def load(self) -> CombinedGroupMap:
        self._map = CombinedGroupMap.from_rows(self.reader.combined_memberships())
        logger.info(
            f"Loaded {len(self._map)} combined groups covering {len(self._map.product_to_group)} products"
        )
        return self._map

    @property
    def loaded(self) -> bool:
        return self._map is not None

    def _require(self) -> CombinedGroupMap:
        if self._map is None:
            raise GroupsNotLoadedError()
        return self._map

    def group_of(self, product_code: str) -> Optional[str]:
        return self._require().product_to_group.get(product_code)

    def members(self, product_code: str, include_self: bool = True) -> List[str]:
        """Group members in group order; empty when the product has no group."""
        mapping = self._require()
        group = mapping.product_to_group.get(product_code)
        if group is None:
            return []
        members = list(dict.fromkeys(mapping.group_to_products.get(group, [])))
        if not include_self:
            members = [code for code in members if code != product_code]
        return members

    def siblings(self, product_code: str) -> List[str]:
        return self.members(product_code, include_self=False)

    def group_sales(self, product_code: str, branch_code: str, window_days: int, include_self: bool = True) -> float:
        members = self.members(product_code, include_self=include_self)
        if not members:
            return 0.0
        return self.sales.sold(members, branch_code, window_days)

    def group_stock(self, product_code: str, branch_code: str, include_self: bool = False) -> float:
        if self.stock is None:
            raise ValueError("CombinedGroupResolver was built without a stock reader")
        members = self.members(product_code, include_self=include_self)
        if not members:
            return 0.0
        return float(sum(self.stock.stock_by_product(members, branch_code).values()))

    def siblings_with_stock(self, product_code: str, branch_code: str) -> List[Tuple[str, float]]:
        """Siblings holding positive stock at `branch_code`, largest first."""
        if self.stock is None:
            raise ValueError("CombinedGroupResolver was built without a stock reader")
        siblings = self.siblings(product_code)
        if not siblings:
            return []
        stock = self.stock.stock_by_product(siblings, branch_code)
        holding = [(code, qty) for code, qty in stock.items() if qty > 0]
        holding.sort(key=lambda item: (-item[1], item[0]))
        return holding
