"""
Fixtures comuns para os testes do DRP engine.

- FakeSource: implementação em memória de todos os readers
- FakeMinimumStore: minimum-stock store em memória (thread-safe)
- session_factory / seed: SQLite em memória com as tabelas reais
"""
import threading
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from drp_engine.db.models import (
    CombinedGroupMemberModel,
    MovementModel,
    ProductConfigModel,
    ProductModel,
    StockModel,
    init_db,
)
from drp_engine.db.minimum_stock import variation_pct
from drp_engine.settings import DRPSettings, Settings
from drp_engine.sources import ProductInfo, SalesWindow, StockLevel

TODAY = date(2025, 6, 15)


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY FAKES
# ═══════════════════════════════════════════════════════════════════════════════

class FakeSource:
    """All reader contracts over plain lists/dicts."""

    def __init__(self):
        self.sales: List[Tuple[str, str, date, float, float]] = []
        self.stock: Dict[Tuple[str, str], StockLevel] = {}
        self.groups: List[Tuple[str, str]] = []
        self.multiples: Dict[str, int] = {}
        self.products: Dict[str, ProductInfo] = {}

    # builders
    def add_sale(self, product, branch, day, quantity, price=1.0):
        self.sales.append((product, branch, day, float(quantity), float(price)))
        return self

    def set_stock(self, product, branch, on_hand, reserved=0.0, minimum=0.0):
        self.stock[(product, branch)] = StockLevel(product, branch, on_hand, reserved, minimum)
        return self

    def add_group(self, group, *products):
        for product in products:
            self.groups.append((group, product))
        return self

    def add_product(self, code, description="", catalog_group="Sem grupo"):
        self.products[code] = ProductInfo(code, description, catalog_group)
        return self

    def _in(self, window: SalesWindow, day: date) -> bool:
        return window.start <= day < window.end

    # SalesReader
    def sold_quantity(self, product_codes: Sequence[str], branch_code: str, window: SalesWindow) -> float:
        codes = set(product_codes)
        return sum(q for p, b, d, q, _ in self.sales if p in codes and b == branch_code and self._in(window, d))

    def sale_days(self, product_code, branch_code, window):
        return len({d for p, b, d, _, _ in self.sales if p == product_code and b == branch_code and self._in(window, d)})

    # BulkSalesReader
    def candidate_products(self, window, branch_codes):
        totals: Dict[str, float] = {}
        for p, b, d, q, _ in self.sales:
            if b in branch_codes and self._in(window, d):
                totals[p] = totals.get(p, 0.0) + q
        return sorted(p for p, total in totals.items() if total >= 1)

    def revenue_by_product(self, branch_code, window):
        revenue: Dict[str, float] = {}
        for p, b, d, q, price in self.sales:
            if b == branch_code and self._in(window, d):
                revenue[p] = revenue.get(p, 0.0) + q * price
        return revenue

    def sales_totals(self, window, branch_codes):
        totals: Dict[Tuple[str, str], float] = {}
        for p, b, d, q, _ in self.sales:
            if b in branch_codes and self._in(window, d):
                totals[(p, b)] = totals.get((p, b), 0.0) + q
        rows = [(p, b, q) for (p, b), q in totals.items()]
        return pd.DataFrame(rows, columns=["product_code", "branch_code", "quantity"])

    # StockReader
    def stock_level(self, product_code, branch_code):
        return self.stock.get((product_code, branch_code), StockLevel(product_code, branch_code))

    def stock_by_product(self, product_codes, branch_code):
        return {code: self.stock_level(code, branch_code).on_hand for code in product_codes}

    # CatalogReader
    def products_with_stock(self, branch_code, catalog_group=None, search=None, limit=10000):
        found = []
        for code in sorted(self.products):
            info = self.products[code]
            if self.stock_level(code, branch_code).on_hand <= 0:
                continue
            if catalog_group and info.catalog_group != catalog_group:
                continue
            if search and search.lower() not in f"{code} {info.description}".lower():
                continue
            found.append(info)
        return found[:limit]

    def describe(self, product_codes):
        return {code: self.products.get(code, ProductInfo(code)) for code in product_codes}

    # CombinedGroupReader / ProductConfigReader
    def combined_memberships(self):
        return list(self.groups)

    def sales_multiples(self, product_codes):
        return {code: self.multiples[code] for code in product_codes if code in self.multiples}


class FakeMinimums:
    def __init__(self, values: Optional[Dict[Tuple[str, str], float]] = None):
        self.values = values or {}

    def active_minimum(self, product_code, branch_code):
        return self.values.get((product_code, branch_code))


class FakeMinimumStore:
    """Minimum-stock store over a dict; mirrors the SQL repository's upsert rules."""

    def __init__(self, fail_branches: Sequence[str] = ()):
        self.records: Dict[Tuple[str, str], dict] = {}
        self.history_rows: List[dict] = []
        self.fail_branches = set(fail_branches)
        self._lock = threading.Lock()

    def save_result(self, result):
        if result.branch_code in self.fail_branches:
            raise RuntimeError(f"store unavailable for branch {result.branch_code}")
        with self._lock:
            key = (result.product_code, result.branch_code)
            record = self.records.get(key)
            previous = record["active_value"] if record else None
            manual = record["manual_value"] if record else None
            active = manual if manual is not None else result.calculated_value
            self.records[key] = {
                "product_code": result.product_code,
                "branch_code": result.branch_code,
                "calculated_value": result.calculated_value,
                "manual_value": manual,
                "active_value": active,
                "abc_class": result.abc_class.value,
            }
            variation = variation_pct(previous, result.calculated_value)
            self.history_rows.append({"key": key, "previous_value": previous, "variation_pct": variation})
        result.previous_value = previous
        result.variation_pct = variation
        result.manual_value = manual
        result.active_value = active
        return result

    def get(self, product_code, branch_code):
        return self.records.get((product_code, branch_code))

    def set_manual_override(self, product_code, branch_code, value, user, note=None):
        record = self.records[(product_code, branch_code)]
        record.update(manual_value=value, active_value=value)
        return dict(record)

    def clear_manual_override(self, product_code, branch_code, user):
        record = self.records[(product_code, branch_code)]
        record.update(manual_value=None, active_value=record["calculated_value"])
        return dict(record)

    def history(self, product_code, branch_code, limit=10):
        rows = [r for r in self.history_rows if r["key"] == (product_code, branch_code)]
        return list(reversed(rows))[:limit]

    def below_minimum(self, branch_code=None, abc_class=None):
        return []

    def branch_summary(self, branch_code):
        return {"branch_code": branch_code}


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def reset_settings():
    """Garante que nenhum teste herda configuração de outro."""
    Settings.reset()
    yield
    Settings.reset()


@pytest.fixture
def settings():
    return DRPSettings()


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def session_factory():
    """SQLite em memória partilhado entre threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


class Seeder:
    def __init__(self, factory):
        self.factory = factory
        self._doc = 0

    def _add(self, *rows):
        with self.factory() as session:
            session.add_all(rows)
            session.commit()
        return self

    def product(self, code, description="", catalog_group=None, active=True):
        return self._add(ProductModel(
            product_code=code, description=description or f"Produto {code}",
            catalog_group=catalog_group, active=active,
        ))

    def stock(self, product, branch, on_hand, reserved=0.0, minimum=0.0):
        return self._add(StockModel(
            product_code=product, branch_code=branch, on_hand=on_hand,
            reserved=reserved, configured_minimum=minimum,
        ))

    def sale(self, product, branch, day, quantity, price=1.0, document=None, sequence=1, kind="55"):
        if document is None:
            self._doc += 1
            document = f"NF{self._doc:05d}"
        return self._add(MovementModel(
            document_number=document, product_code=product, branch_code=branch, kind=kind,
            moved_at=datetime.combine(day, datetime.min.time()) + timedelta(hours=10),
            sequence=sequence, quantity=quantity, unit_price=price,
        ))

    def group(self, group, *products):
        return self._add(*[
            CombinedGroupMemberModel(group_code=group, product_code=p, position=i)
            for i, p in enumerate(products)
        ])

    def multiple(self, product, value, active=True):
        return self._add(ProductConfigModel(product_code=product, sales_multiple=value, active=active))


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)
