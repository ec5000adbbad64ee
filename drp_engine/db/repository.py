"""
SQL implementation of the DRP reader contracts.

Every sales aggregate goes through `_unique_sales()`, which collapses duplicated
movement lines before summing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, time
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from drp_engine.db.models import (
    CombinedGroupMemberModel,
    MovementModel,
    ProductConfigModel,
    ProductModel,
    SessionLocal,
    StockModel,
)
from drp_engine.settings import MovementKind
from drp_engine.sources import ProductInfo, SalesWindow, StockLevel

logger = logging.getLogger(__name__)

SALES_COLUMNS = ["product_code", "branch_code", "quantity"]


def _bounds(window: SalesWindow) -> Tuple[datetime, datetime]:
    return datetime.combine(window.start, time.min), datetime.combine(window.end, time.min)


class SqlDataSource:
    """Reads catalog, stock, movements, groups and product config through SQLAlchemy."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    # ═══════════════════════════════════════════════════════════════════════
    # SALES
    # ═══════════════════════════════════════════════════════════════════════

    def _unique_sales(self, window: SalesWindow, *criteria):
        start, end = _bounds(window)
        m = MovementModel
        return (
            select(
                m.document_number,
                m.product_code,
                m.branch_code,
                func.date(m.moved_at).label("sale_day"),
                m.sequence,
                m.quantity,
                m.unit_price,
            )
            .where(
                m.kind == MovementKind.SALE.value,
                m.moved_at >= start,
                m.moved_at < end,
                *criteria,
            )
            .distinct()
            .subquery()
        )

    def sold_quantity(self, product_codes: Sequence[str], branch_code: str, window: SalesWindow) -> float:
        codes = [product_codes] if isinstance(product_codes, str) else list(product_codes)
        if not codes:
            return 0.0
        sales = self._unique_sales(
            window,
            MovementModel.product_code.in_(codes),
            MovementModel.branch_code == branch_code,
        )
        with self._session() as session:
            total = session.execute(select(func.coalesce(func.sum(sales.c.quantity), 0.0))).scalar()
        return float(total or 0.0)

    def sale_days(self, product_code: str, branch_code: str, window: SalesWindow) -> int:
        sales = self._unique_sales(
            window,
            MovementModel.product_code == product_code,
            MovementModel.branch_code == branch_code,
        )
        with self._session() as session:
            days = session.execute(select(func.count(func.distinct(sales.c.sale_day)))).scalar()
        return int(days or 0)

    def candidate_products(self, window: SalesWindow, branch_codes: Sequence[str], min_quantity: float = 1.0) -> List[str]:
        """Products with at least `min_quantity` units sold in the window across the branches."""
        sales = self._unique_sales(window, MovementModel.branch_code.in_(list(branch_codes)))
        query = (
            select(sales.c.product_code)
            .group_by(sales.c.product_code)
            .having(func.sum(sales.c.quantity) >= min_quantity)
            .order_by(sales.c.product_code)
        )
        with self._session() as session:
            return [row[0] for row in session.execute(query)]

    def revenue_by_product(self, branch_code: str, window: SalesWindow) -> Dict[str, float]:
        sales = self._unique_sales(window, MovementModel.branch_code == branch_code)
        query = (
            select(sales.c.product_code, func.sum(sales.c.quantity * sales.c.unit_price))
            .group_by(sales.c.product_code)
        )
        with self._session() as session:
            return {code: float(revenue or 0.0) for code, revenue in session.execute(query)}

    def sales_totals(self, window: SalesWindow, branch_codes: Sequence[str]) -> pd.DataFrame:
        sales = self._unique_sales(window, MovementModel.branch_code.in_(list(branch_codes)))
        query = (
            select(sales.c.product_code, sales.c.branch_code, func.sum(sales.c.quantity))
            .group_by(sales.c.product_code, sales.c.branch_code)
        )
        with self._session() as session:
            rows = session.execute(query).all()
        return pd.DataFrame([tuple(row) for row in rows], columns=SALES_COLUMNS)

    # ═══════════════════════════════════════════════════════════════════════
    # STOCK
    # ═══════════════════════════════════════════════════════════════════════

    def stock_level(self, product_code: str, branch_code: str) -> StockLevel:
        with self._session() as session:
            row = session.execute(
                select(StockModel).where(
                    StockModel.product_code == product_code,
                    StockModel.branch_code == branch_code,
                )
            ).scalar_one_or_none()
        if row is None:
            return StockLevel(product_code=product_code, branch_code=branch_code)
        return StockLevel(
            product_code=product_code,
            branch_code=branch_code,
            on_hand=float(row.on_hand or 0.0),
            reserved=float(row.reserved or 0.0),
            configured_minimum=float(row.configured_minimum or 0.0),
        )

    def stock_by_product(self, product_codes: Sequence[str], branch_code: str) -> Dict[str, float]:
        codes = list(product_codes)
        if not codes:
            return {}
        query = select(StockModel.product_code, StockModel.on_hand).where(
            StockModel.product_code.in_(codes),
            StockModel.branch_code == branch_code,
        )
        with self._session() as session:
            found = {code: float(on_hand or 0.0) for code, on_hand in session.execute(query)}
        return {code: found.get(code, 0.0) for code in codes}

    # ═══════════════════════════════════════════════════════════════════════
    # CATALOG / GROUPS / CONFIG
    # ═══════════════════════════════════════════════════════════════════════

    def products_with_stock(
        self,
        branch_code: str,
        catalog_group: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10000,
    ) -> List[ProductInfo]:
        """Active products with positive on-hand stock at `branch_code`."""
        p = ProductModel
        query = (
            select(p)
            .join(StockModel, and_(StockModel.product_code == p.product_code, StockModel.branch_code == branch_code))
            .where(p.active.is_(True), StockModel.on_hand > 0)
        )
        if catalog_group:
            query = query.where(p.catalog_group == catalog_group)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(p.product_code.ilike(pattern), p.description.ilike(pattern)))
        query = query.order_by(p.product_code).limit(limit)

        with self._session() as session:
            products = session.execute(query).scalars().all()
        return [self._to_info(product) for product in products]

    def describe(self, product_codes: Sequence[str]) -> Dict[str, ProductInfo]:
        codes = list(product_codes)
        if not codes:
            return {}
        with self._session() as session:
            products = session.execute(
                select(ProductModel).where(ProductModel.product_code.in_(codes))
            ).scalars().all()
        found = {product.product_code: self._to_info(product) for product in products}
        return {code: found.get(code, ProductInfo(product_code=code)) for code in codes}

    def combined_memberships(self) -> List[Tuple[str, str]]:
        query = select(CombinedGroupMemberModel.group_code, CombinedGroupMemberModel.product_code).order_by(
            CombinedGroupMemberModel.group_code,
            CombinedGroupMemberModel.position,
            CombinedGroupMemberModel.product_code,
        )
        with self._session() as session:
            return [(group, product) for group, product in session.execute(query)]

    def sales_multiples(self, product_codes: Sequence[str]) -> Dict[str, int]:
        codes = list(product_codes)
        if not codes:
            return {}
        query = select(ProductConfigModel.product_code, ProductConfigModel.sales_multiple).where(
            ProductConfigModel.product_code.in_(codes),
            ProductConfigModel.active.is_(True),
        )
        with self._session() as session:
            return {code: int(multiple or 1) for code, multiple in session.execute(query)}

    @staticmethod
    def _to_info(product: ProductModel) -> ProductInfo:
        return ProductInfo(
            product_code=product.product_code,
            description=product.description or "",
            catalog_group=product.catalog_group or "Sem grupo",
            manufacturer_reference=product.manufacturer_reference or "-",
        )
