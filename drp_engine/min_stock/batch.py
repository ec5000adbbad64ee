"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    BATCH PRE-COMPUTATION PIPELINE (Estoque Mínimo em Lote)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Recalcula o estoque mínimo de todo o catálogo sem consultas por produto:

    1. Produtos candidatos: uma query (vendas >= 1 nos últimos 180 dias)
    2. Pré-agregação em bulk:
         - ABC: uma query de faturação por filial
         - vendas 180 e 90 dias por (produto, filial); 90_180 = 180 - 90
         - mês homólogo e total do ano anterior (sazonalidade)
    3. Processamento em chunks de 50 produtos (fan-out em threads), cálculo
       puro a partir das tabelas em memória
    4. Gravação em sub-batches de 20 upserts paralelos

O job corre numa thread daemon; só existe um job ativo de cada vez
(`JobStateStore.try_start`). Um pedido de arranque com job em curso é
rejeitado e devolve o estado atual.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from drp_engine.min_stock.abc_classification import ABCClass, class_counts, classify_abc
from drp_engine.min_stock.calculator import (
    MinimumStockResult,
    MinimumStockStore,
    SalesFigures,
    compute_minimum_stock,
)
from drp_engine.min_stock.job_state import JobState, JobStateStore
from drp_engine.sales.aggregator import month_window, rolling_window, year_window
from drp_engine.settings import DRPSettings, Settings
from drp_engine.sources import BulkSalesReader

logger = logging.getLogger(__name__)

KEYS = ["product_code", "branch_code"]

PairKey = Tuple[str, str]


# ═══════════════════════════════════════════════════════════════════════════════
# LOOKUP TABLES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class LookupTables:
    """Agregados pré-calculados, só de leitura durante o job."""
    abc: Dict[str, Dict[str, ABCClass]] = field(default_factory=dict)
    sales: Dict[PairKey, SalesFigures] = field(default_factory=dict)
    seasonal: Dict[PairKey, float] = field(default_factory=dict)

    def abc_class(self, product_code: str, branch_code: str) -> ABCClass:
        return self.abc.get(branch_code, {}).get(product_code, ABCClass.C)

    def figures(self, product_code: str, branch_code: str) -> Optional[SalesFigures]:
        return self.sales.get((product_code, branch_code))

    def seasonal_factor(self, product_code: str, branch_code: str) -> float:
        return self.seasonal.get((product_code, branch_code), 1.0)


def build_lookup_tables(
    abc_by_branch: Dict[str, Dict[str, ABCClass]],
    sales_180: pd.DataFrame,
    sales_90: pd.DataFrame,
    month_sales: pd.DataFrame,
    year_sales: pd.DataFrame,
    factor_min: float = 0.5,
    factor_max: float = 2.0,
) -> LookupTables:
    """
    Junta os agregados bulk em dicionários indexados por (produto, filial).

    Todos os DataFrames têm colunas product_code, branch_code, quantity.
    """
    s180 = sales_180.rename(columns={"quantity": "sales_180"})
    s90 = sales_90.rename(columns={"quantity": "sales_90"})
    sales = s180.merge(s90, on=KEYS, how="left")
    sales["sales_90"] = pd.to_numeric(sales["sales_90"], errors="coerce").fillna(0.0)
    sales["sales_180"] = pd.to_numeric(sales["sales_180"], errors="coerce").fillna(0.0)
    sales["sales_90_180"] = (sales["sales_180"] - sales["sales_90"]).clip(lower=0.0)

    figures = {
        (row.product_code, row.branch_code): SalesFigures(
            sales_180=float(row.sales_180),
            sales_90=float(row.sales_90),
            sales_90_180=float(row.sales_90_180),
        )
        for row in sales.itertuples(index=False)
    }

    year = year_sales.rename(columns={"quantity": "year_total"})
    month = month_sales.rename(columns={"quantity": "month_total"})
    season = year.merge(month, on=KEYS, how="left")
    season["month_total"] = pd.to_numeric(season["month_total"], errors="coerce").fillna(0.0)
    monthly_avg = pd.to_numeric(season["year_total"], errors="coerce").fillna(0.0) / 12.0
    ratio = np.where(
        monthly_avg > 0,
        season["month_total"] / monthly_avg.replace(0.0, np.nan),
        1.0,
    )
    season["factor"] = np.clip(ratio.astype(float), factor_min, factor_max)

    seasonal = {
        (row.product_code, row.branch_code): float(row.factor)
        for row in season.itertuples(index=False)
    }

    return LookupTables(abc=abc_by_branch, sales=figures, seasonal=seasonal)


def format_eta(seconds: float) -> str:
    """Tempo restante legível: '45s', '12min', '2h 5min'."""
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        return f"{round(seconds / 60)}min"
    hours = int(seconds // 3600)
    minutes = round((seconds % 3600) / 60)
    return f"{hours}h {minutes}min"


@dataclass
class BatchStartResult:
    started: bool
    message: str
    state: JobState

    def to_dict(self) -> dict:
        return {"started": self.started, "message": self.message, "status": self.state.to_dict()}


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

class BatchPrecomputationPipeline:
    """
    Recálculo de estoque mínimo do catálogo completo.

    Uso:
        pipeline = BatchPrecomputationPipeline(SqlDataSource(), MinimumStockRepository())
        pipeline.start()          # não bloqueia
        pipeline.status()         # progresso
    """

    def __init__(
        self,
        source: BulkSalesReader,
        store: MinimumStockStore,
        settings: Optional[DRPSettings] = None,
        jobs: Optional[JobStateStore] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.source = source
        self.store = store
        self.settings = settings or Settings.get()
        self.jobs = jobs or JobStateStore(max_error_ids=self.settings.batch_max_error_ids)
        self.clock = clock
        self._thread: Optional[threading.Thread] = None

    # ─── control ───────────────────────────────────────────────────────────

    def start(self) -> BatchStartResult:
        """Arranca em background; rejeita se já existir um job em curso."""
        started, state = self.jobs.try_start()
        if not started:
            return BatchStartResult(
                started=False,
                message=f"A calculation is already running ({state.processed}/{state.total_products})",
                state=state,
            )
        self._thread = threading.Thread(
            target=self._execute,
            name=f"min-stock-batch-{state.job_id}",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Batch minimum stock job {state.job_id} started")
        return BatchStartResult(started=True, message="Calculation started in background", state=state)

    def run(self) -> JobState:
        """Versão síncrona (scripts/CLI). Se já houver job em curso devolve o seu estado."""
        started, state = self.jobs.try_start()
        if not started:
            return state
        self._execute()
        return self.jobs.status()

    def status(self) -> JobState:
        return self.jobs.status()

    def wait(self, timeout: Optional[float] = None) -> JobState:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.jobs.status()

    # ─── phases ────────────────────────────────────────────────────────────

    def prepare(self, today: date, branches: Sequence[str]) -> LookupTables:
        """Pré-agregação em bulk (uma query de faturação por filial)."""
        s = self.settings
        window_180 = rolling_window(today, s.sales_window_days)
        window_90 = rolling_window(today, s.trend_window_days)

        abc_by_branch: Dict[str, Dict[str, ABCClass]] = {}
        for branch_code in branches:
            revenue = self.source.revenue_by_product(branch_code, window_180)
            abc_by_branch[branch_code] = classify_abc(revenue, s.abc_a_threshold, s.abc_b_threshold)
            logger.info(f"ABC for branch {branch_code}: {class_counts(abc_by_branch[branch_code])}")

        prior_year = today.year - 1
        tables = build_lookup_tables(
            abc_by_branch,
            sales_180=self.source.sales_totals(window_180, branches),
            sales_90=self.source.sales_totals(window_90, branches),
            month_sales=self.source.sales_totals(month_window(prior_year, today.month), branches),
            year_sales=self.source.sales_totals(year_window(prior_year), branches),
            factor_min=s.factor_min,
            factor_max=s.factor_max,
        )
        logger.info(f"Pre-aggregated {len(tables.sales)} sales pairs, {len(tables.seasonal)} seasonal pairs")
        return tables

    def compute_pair(
        self, product_code: str, branch_code: str, tables: LookupTables, calculated_at: Optional[datetime] = None
    ) -> Optional[MinimumStockResult]:
        """Cálculo puro a partir das tabelas; None quando o par não vendeu em 180 dias."""
        figures = tables.figures(product_code, branch_code)
        if figures is None or figures.sales_180 <= 0:
            return None
        return compute_minimum_stock(
            product_code,
            branch_code,
            figures=figures,
            abc_class=tables.abc_class(product_code, branch_code),
            seasonal=tables.seasonal_factor(product_code, branch_code),
            settings=self.settings,
            calculated_at=calculated_at,
        )

    def compute_product(self, product_code: str, branches: Sequence[str], tables: LookupTables) -> List[MinimumStockResult]:
        now = datetime.now()
        results = []
        for branch_code in branches:
            result = self.compute_pair(product_code, branch_code, tables, now)
            if result is not None:
                results.append(result)
        return results

    def _process_chunk(self, chunk: Sequence[str], branches: Sequence[str], tables: LookupTables) -> List[MinimumStockResult]:
        results: List[MinimumStockResult] = []
        with ThreadPoolExecutor(max_workers=max(1, len(chunk)), thread_name_prefix="min-stock-calc") as pool:
            futures = {pool.submit(self.compute_product, code, branches, tables): code for code in chunk}
            for future in as_completed(futures):
                product_code = futures[future]
                try:
                    results.extend(future.result())
                    self.jobs.record_success()
                except Exception as e:
                    logger.warning(f"Minimum stock failed for product {product_code}: {e}")
                    self.jobs.record_failure(product_code)
        return results

    def _save(self, results: List[MinimumStockResult]) -> int:
        """Grava em sub-batches com upserts paralelos. Devolve o número gravado."""
        saved = 0
        size = self.settings.batch_save_size
        workers = max(1, self.settings.batch_save_workers)
        for offset in range(0, len(results), size):
            sub_batch = results[offset:offset + size]
            with ThreadPoolExecutor(max_workers=min(workers, len(sub_batch)), thread_name_prefix="min-stock-save") as pool:
                futures = {pool.submit(self.store.save_result, r): r for r in sub_batch}
                for future in as_completed(futures):
                    r = futures[future]
                    try:
                        future.result()
                        saved += 1
                    except Exception as e:
                        logger.error(f"Failed to save minimum stock for {r.product_code}@{r.branch_code}: {e}")
        return saved

    def _execute(self) -> None:
        s = self.settings
        started = time.monotonic()
        try:
            today = self.clock()
            branches = s.destination_branches()

            products = self.source.candidate_products(rolling_window(today, s.sales_window_days), branches)
            if not products:
                self.jobs.fail(f"No products with sales in the last {s.sales_window_days} days")
                logger.warning("Batch minimum stock: no candidate products")
                return
            self.jobs.set_total(len(products), f"{len(products)} products found, pre-aggregating sales")
            logger.info(f"Batch minimum stock: {len(products)} products found")

            tables = self.prepare(today, branches)
            logger.info(f"Pre-aggregation finished in {time.monotonic() - started:.1f}s")
            self.jobs.set_message("Calculating minimum stock")

            processed = 0
            saved = 0
            chunk_size = s.batch_chunk_size
            for offset in range(0, len(products), chunk_size):
                chunk = products[offset:offset + chunk_size]
                saved += self._save(self._process_chunk(chunk, branches, tables))
                processed += len(chunk)

                elapsed = time.monotonic() - started
                rate = processed / elapsed if elapsed > 0 else 0.0
                remaining = len(products) - processed
                eta = format_eta(remaining / rate) if rate > 0 else None
                self.jobs.record_progress(processed, eta)
                if processed % s.batch_log_every < chunk_size or remaining == 0:
                    logger.info(f"Batch minimum stock: {processed}/{len(products)} - {eta or '?'} remaining")

            elapsed = time.monotonic() - started
            state = self.jobs.status()
            self.jobs.complete(
                f"Completed in {elapsed:.1f}s - {state.succeeded} products calculated, {saved} records saved"
            )
            logger.info(f"Batch minimum stock completed in {elapsed:.1f}s ({state.failed} failures)")
        except Exception as e:
            logger.exception("Batch minimum stock failed")
            self.jobs.fail(f"Calculation failed: {e}")
