"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    MINIMUM STOCK CALCULATOR (Estoque Mínimo Dinâmico)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Calcula o estoque mínimo por (produto, filial) a partir da classe ABC, da
tendência recente e da sazonalidade.

Mathematical Formulation:
─────────────────────────
    Média diária:
        μ_d = vendas_180 / 180

    Tendência:
        T = vendas_90 / vendas_90_180
        T = 1.5 se vendas_90_180 = 0 e vendas_90 > 0
        T = 1.0 se ambas forem 0
        T ∈ [0.5, 2.0]

    Sazonalidade (mesmo mês do ano anterior):
        S = vendas_mês(ano-1) / (vendas_ano(ano-1) / 12)
        S = 1.0 sem histórico do ano anterior
        S ∈ [0.5, 2.0]

    Estoque mínimo:
        EM = ceil( μ_d * (L + buffer_classe) * k_classe * T * S )
        EM ≥ 1 sempre que vendas_180 > 0

    onde:
        L = lead time fixo (30 dias)
        A: k = 2.0, buffer = 5 dias
        B: k = 1.5, buffer = 3 dias
        C: k = 1.2, buffer = 0 dias
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from drp_engine.min_stock.abc_classification import ABCClass, classify_abc
from drp_engine.sales.aggregator import SalesAggregator
from drp_engine.schemas import ManualAdjustment
from drp_engine.settings import DRPSettings, Settings
from drp_engine.sources import BulkSalesReader, SalesWindow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

class CalculationMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass
class SalesFigures:
    """Vendas de referência de um par (produto, filial)."""
    sales_180: float = 0.0
    sales_90: float = 0.0
    sales_90_180: float = 0.0


@dataclass
class MinimumStockResult:
    """
    Resultado do cálculo de estoque mínimo.

    Attributes:
        calculated_value: Valor calculado pela fórmula
        active_value: Valor em vigor (override manual, se existir)
        previous_value: Valor ativo anterior (None se não existia registo)
        variation_pct: Variação vs valor anterior (None se anterior ausente ou 0)
    """
    product_code: str
    branch_code: str
    calculated_value: int
    abc_class: ABCClass
    avg_daily_sales: float
    lead_time_days: int
    buffer_days: int
    safety_factor: float
    trend_factor: float
    seasonal_factor: float
    sales: SalesFigures = field(default_factory=SalesFigures)
    calculated_at: Optional[datetime] = None
    manual_value: Optional[int] = None
    active_value: Optional[int] = None
    previous_value: Optional[int] = None
    variation_pct: Optional[float] = None

    def __post_init__(self):
        if self.active_value is None:
            self.active_value = self.manual_value if self.manual_value is not None else self.calculated_value

    def to_dict(self) -> Dict[str, Any]:
        """Converte para dicionário."""
        return {
            "product_code": self.product_code,
            "branch_code": self.branch_code,
            "calculated_value": self.calculated_value,
            "manual_value": self.manual_value,
            "active_value": self.active_value,
            "abc_class": ABCClass(self.abc_class).value,
            "avg_daily_sales": round(self.avg_daily_sales, 4),
            "lead_time_days": self.lead_time_days,
            "buffer_days": self.buffer_days,
            "safety_factor": self.safety_factor,
            "trend_factor": round(self.trend_factor, 4),
            "seasonal_factor": round(self.seasonal_factor, 4),
            "sales_180": self.sales.sales_180,
            "sales_90": self.sales.sales_90,
            "sales_90_180": self.sales.sales_90_180,
            "previous_value": self.previous_value,
            "variation_pct": self.variation_pct,
            "calculated_at": self.calculated_at.isoformat() if self.calculated_at else None,
        }


@dataclass
class ProductRefreshResult:
    """Recálculo de um produto em todas as filiais; erros por filial não abortam as restantes."""
    product_code: str
    results: List[MinimumStockResult] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product_code,
            "results": [r.to_dict() for r in self.results],
            "errors": dict(self.errors),
        }


class MinimumStockStore(Protocol):
    def save_result(self, result: MinimumStockResult) -> MinimumStockResult: ...

    def get(self, product_code: str, branch_code: str) -> Optional[Dict[str, Any]]: ...

    def set_manual_override(
        self, product_code: str, branch_code: str, value: int, user: str, note: Optional[str] = None
    ) -> Dict[str, Any]: ...

    def clear_manual_override(self, product_code: str, branch_code: str, user: str) -> Dict[str, Any]: ...

    def history(self, product_code: str, branch_code: str, limit: int = 10) -> List[Dict[str, Any]]: ...

    def below_minimum(self, branch_code: Optional[str] = None, abc_class: Optional[str] = None) -> List[Dict[str, Any]]: ...

    def branch_summary(self, branch_code: str) -> Dict[str, Any]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# PURE FORMULAS
# ═══════════════════════════════════════════════════════════════════════════════

def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def trend_factor(recent: float, previous: float, lower: float = 0.5, upper: float = 2.0) -> float:
    """Vendas dos últimos 90 dias vs os 90 dias anteriores."""
    if previous <= 0:
        raw = 1.5 if recent > 0 else 1.0
    else:
        raw = recent / previous
    return clamp(raw, lower, upper)


def seasonal_factor(month_sales: float, year_sales: float, lower: float = 0.5, upper: float = 2.0) -> float:
    """Mesmo mês do ano anterior vs média mensal desse ano."""
    monthly_avg = year_sales / 12.0
    if monthly_avg <= 0:
        return 1.0
    return clamp(month_sales / monthly_avg, lower, upper)


def compute_minimum_stock(
    product_code: str,
    branch_code: str,
    figures: SalesFigures,
    abc_class: ABCClass,
    seasonal: float,
    settings: Optional[DRPSettings] = None,
    calculated_at: Optional[datetime] = None,
) -> MinimumStockResult:
    """Aplica a fórmula a valores já agregados (sem I/O)."""
    settings = settings or Settings.get()
    params = settings.class_params(abc_class)

    avg_daily = figures.sales_180 / settings.sales_window_days
    trend = trend_factor(figures.sales_90, figures.sales_90_180, settings.factor_min, settings.factor_max)
    season = clamp(seasonal, settings.factor_min, settings.factor_max)

    coverage_days = settings.lead_time_days + params.buffer_days
    raw = avg_daily * coverage_days * params.safety_factor * trend * season
    # round() first so float noise (7.2000000001) does not push ceil() up a unit
    value = int(math.ceil(round(raw, 9)))
    if figures.sales_180 > 0:
        value = max(1, value)

    return MinimumStockResult(
        product_code=product_code,
        branch_code=branch_code,
        calculated_value=value,
        abc_class=ABCClass(abc_class),
        avg_daily_sales=avg_daily,
        lead_time_days=settings.lead_time_days,
        buffer_days=params.buffer_days,
        safety_factor=params.safety_factor,
        trend_factor=trend,
        seasonal_factor=season,
        sales=figures,
        calculated_at=calculated_at,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CALCULATOR
# ═══════════════════════════════════════════════════════════════════════════════

class MinimumStockCalculator:
    """
    Cálculo interativo (um produto de cada vez) com persistência.

    Para o catálogo completo usar `BatchPrecomputationPipeline`, que faz o mesmo
    cálculo a partir de agregados em bulk.
    """

    def __init__(
        self,
        sales: SalesAggregator,
        revenue_reader: BulkSalesReader,
        store: MinimumStockStore,
        settings: Optional[DRPSettings] = None,
    ):
        self.sales = sales
        self.revenue_reader = revenue_reader
        self.store = store
        self.settings = settings or Settings.get()
        self._abc_cache: Dict[Tuple[str, SalesWindow], Dict[str, ABCClass]] = {}

    # ─── inputs ────────────────────────────────────────────────────────────

    def classify(self, product_code: str, branch_code: str) -> ABCClass:
        window = self.sales.window(self.settings.sales_window_days)
        key = (branch_code, window)
        if key not in self._abc_cache:
            revenue = self.revenue_reader.revenue_by_product(branch_code, window)
            self._abc_cache[key] = classify_abc(
                revenue, self.settings.abc_a_threshold, self.settings.abc_b_threshold
            )
        return self._abc_cache[key].get(product_code, ABCClass.C)

    def sales_figures(self, product_code: str, branch_code: str) -> SalesFigures:
        s = self.settings
        recent = self.sales.sold(product_code, branch_code, s.trend_window_days)
        previous = self.sales.sold(
            product_code, branch_code, s.sales_window_days - s.trend_window_days, offset_days=s.trend_window_days
        )
        return SalesFigures(sales_180=recent + previous, sales_90=recent, sales_90_180=previous)

    def seasonal(self, product_code: str, branch_code: str) -> float:
        today = self.sales.today()
        prior_year = today.year - 1
        month_sales = self.sales.sold_in_month(product_code, branch_code, prior_year, today.month)
        year_sales = self.sales.sold_in_year(product_code, branch_code, prior_year)
        return seasonal_factor(month_sales, year_sales, self.settings.factor_min, self.settings.factor_max)

    # ─── operations ────────────────────────────────────────────────────────

    def calculate(self, product_code: str, branch_code: str) -> MinimumStockResult:
        """Calcula sem gravar."""
        return compute_minimum_stock(
            product_code,
            branch_code,
            figures=self.sales_figures(product_code, branch_code),
            abc_class=self.classify(product_code, branch_code),
            seasonal=self.seasonal(product_code, branch_code),
            settings=self.settings,
            calculated_at=datetime.now(),
        )

    def calculate_and_save(self, product_code: str, branch_code: str) -> MinimumStockResult:
        stored = self.store.save_result(self.calculate(product_code, branch_code))
        if stored.variation_pct is not None and abs(stored.variation_pct) >= self.settings.variation_alert_pct:
            logger.warning(
                f"Minimum stock for {product_code}@{branch_code} moved {stored.variation_pct:+.1f}% "
                f"({stored.previous_value} -> {stored.calculated_value})"
            )
        return stored

    def refresh_product(self, product_code: str, branch_codes: Optional[Sequence[str]] = None) -> ProductRefreshResult:
        """Recalcula e grava o produto em todas as filiais destino."""
        branches = list(branch_codes) if branch_codes else self.settings.destination_branches()
        outcome = ProductRefreshResult(product_code=product_code)
        for branch_code in branches:
            try:
                outcome.results.append(self.calculate_and_save(product_code, branch_code))
            except Exception as e:
                logger.warning(f"Minimum stock failed for {product_code}@{branch_code}: {e}")
                outcome.errors[branch_code] = str(e)
        logger.info(
            f"Minimum stock refreshed for {product_code}: "
            f"{len(outcome.results)} ok, {len(outcome.errors)} failed"
        )
        return outcome

    def adjust_manual(
        self,
        product_code: str,
        branch_code: str,
        value: int,
        user: str,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Override manual; cria o registo (com o valor calculado) se ainda não existir."""
        adjustment = ManualAdjustment(
            product_code=product_code, branch_code=branch_code, value=value, user=user, note=note
        )
        if self.store.get(adjustment.product_code, adjustment.branch_code) is None:
            self.calculate_and_save(adjustment.product_code, adjustment.branch_code)
        record = self.store.set_manual_override(
            adjustment.product_code, adjustment.branch_code, adjustment.value, adjustment.user, adjustment.note
        )
        logger.info(f"Manual minimum stock {adjustment.value} set for {product_code}@{branch_code} by {user}")
        return record

    def clear_manual(self, product_code: str, branch_code: str, user: str) -> Dict[str, Any]:
        return self.store.clear_manual_override(product_code, branch_code, user)

    def history(self, product_code: str, branch_code: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self.store.history(product_code, branch_code, limit)

    def below_minimum(self, branch_code: Optional[str] = None, abc_class: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.store.below_minimum(branch_code, abc_class)

    def branch_summary(self, branch_code: str) -> Dict[str, Any]:
        return self.store.branch_summary(branch_code)
