"""
Allocation service: demand resolution + allocation for a set of products.

One run loads the combined groups and the sales multiples once and shares them
(read-only) across products. Products are independent and may be computed in
parallel; the branch loop inside one product is sequential.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from drp_engine.allocation.demand import BranchDemand, DemandResolver
from drp_engine.allocation.engine import AllocationOutcome, AllocationStatus, allocate, allocation_summary
from drp_engine.allocation.multiples import SalesMultipleTable
from drp_engine.combined.resolver import CombinedGroupResolver
from drp_engine.sales.aggregator import SalesAggregator
from drp_engine.schemas import AllocationRequest
from drp_engine.settings import DRPSettings, Settings
from drp_engine.sources import (
    CatalogReader,
    CombinedGroupReader,
    MinimumStockReader,
    ProductConfigReader,
    ProductInfo,
    SalesReader,
    StockReader,
)

logger = logging.getLogger(__name__)


@dataclass
class AlternativeProduct:
    product_code: str
    description: str
    origin_stock: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product_code,
            "description": self.description,
            "origin_stock": self.origin_stock,
        }


@dataclass
class ProductAllocation:
    """Resultado por produto (transiente, nunca persistido)."""
    product: ProductInfo
    origin_branch: str
    sales_multiple: int
    combined_group: Optional[str]
    outcome: AllocationOutcome
    branches: List[BranchDemand] = field(default_factory=list)
    alternatives: List[AlternativeProduct] = field(default_factory=list)

    @property
    def status(self) -> AllocationStatus:
        return self.outcome.status

    @property
    def deficit(self) -> float:
        return self.outcome.deficit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product.product_code,
            "description": self.product.description,
            "catalog_group": self.product.catalog_group,
            "origin_branch": self.origin_branch,
            "sales_multiple": self.sales_multiple,
            "combined_group": self.combined_group,
            **self.outcome.to_dict(),
            "branches": [b.to_dict() for b in self.branches],
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class _RunContext:
    request: AllocationRequest
    branches: List[str]
    multiples: SalesMultipleTable
    resolver: DemandResolver


class AllocationService:
    """
    Uso:
        source = SqlDataSource()
        service = AllocationService(
            catalog=source, stock=source, sales=source, groups=source,
            product_config=source, minimums=MinimumStockRepository(),
        )
        results = service.calculate(AllocationRequest(period_days=90))
    """

    def __init__(
        self,
        catalog: CatalogReader,
        stock: StockReader,
        sales: SalesReader,
        groups: CombinedGroupReader,
        product_config: ProductConfigReader,
        minimums: Optional[MinimumStockReader] = None,
        settings: Optional[DRPSettings] = None,
        clock: Callable[[], date] = date.today,
        max_workers: int = 1,
    ):
        self.catalog = catalog
        self.stock = stock
        self.sales = sales
        self.groups = groups
        self.product_config = product_config
        self.minimums = minimums
        self.settings = settings or Settings.get()
        self.clock = clock
        self.max_workers = max(1, max_workers)

    def _select_products(self, request: AllocationRequest) -> List[ProductInfo]:
        if request.product_codes:
            described = self.catalog.describe(request.product_codes)
            return [described[code] for code in request.product_codes][:request.limit]
        return self.catalog.products_with_stock(
            request.origin_branch,
            catalog_group=request.filters.catalog_group,
            search=request.filters.search,
            limit=request.limit,
        )

    def _context(self, request: AllocationRequest, products: List[ProductInfo]) -> _RunContext:
        aggregator = SalesAggregator(self.sales, clock=self.clock)
        groups = CombinedGroupResolver(self.groups, aggregator, stock=self.stock)
        groups.load()

        destinations = self.settings.destination_branches(request.origin_branch)
        if request.filters.branches:
            wanted = set(request.filters.branches)
            destinations = [code for code in destinations if code in wanted]

        return _RunContext(
            request=request,
            branches=destinations,
            multiples=SalesMultipleTable.load(self.product_config, [p.product_code for p in products]),
            resolver=DemandResolver(aggregator, groups, self.stock, self.minimums, self.settings),
        )

    def calculate(self, request: Union[AllocationRequest, Dict[str, Any]]) -> List[ProductAllocation]:
        """Calcula a alocação de todos os produtos do pedido."""
        if not isinstance(request, AllocationRequest):
            request = AllocationRequest.model_validate(request)
        self.settings.validate_period(request.period_days)

        started = time.monotonic()
        products = self._select_products(request)
        if not products:
            logger.info("Allocation: no products matched the request")
            return []
        context = self._context(request, products)

        if self.max_workers > 1 and len(products) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="drp-alloc") as pool:
                results = list(pool.map(lambda p: self.calculate_product(p, context), products))
        else:
            results = [self.calculate_product(p, context) for p in products]

        logger.info(
            f"Allocation computed for {len(results)} products in {time.monotonic() - started:.2f}s "
            f"(period {request.period_days}d, origin {request.origin_branch})"
        )
        return results

    def calculate_product(self, product: ProductInfo, context: _RunContext) -> ProductAllocation:
        request = context.request
        code = product.product_code
        origin = self.stock.stock_level(code, request.origin_branch).on_hand
        multiple = context.multiples.get(code)

        demand = context.resolver.resolve(
            code,
            context.branches,
            period_days=request.period_days,
            origin_supply=origin,
            include_exit_frequency=request.include_exit_frequency,
        )
        outcome = allocate(origin, demand.needs(), multiple, self.settings.branch_priority)
        for branch in demand.branches:
            branch.allocation = outcome.allocations.get(branch.branch_code, 0)

        alternatives: List[AlternativeProduct] = []
        if outcome.deficit > 0 and demand.combined_group is not None:
            siblings = context.resolver.alternatives(code, request.origin_branch)
            described = self.catalog.describe([sibling for sibling, _ in siblings])
            alternatives = [
                AlternativeProduct(
                    product_code=sibling,
                    description=described[sibling].description,
                    origin_stock=qty,
                )
                for sibling, qty in siblings
            ]

        return ProductAllocation(
            product=product,
            origin_branch=request.origin_branch,
            sales_multiple=multiple,
            combined_group=demand.combined_group,
            outcome=outcome,
            branches=demand.branches,
            alternatives=alternatives,
        )

    @staticmethod
    def summarize(results: List[ProductAllocation]) -> Dict[str, Any]:
        return allocation_summary([r.outcome for r in results])
