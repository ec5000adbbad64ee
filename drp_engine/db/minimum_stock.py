"""
Minimum-stock store.

One row per (product, branch) in `drp_minimum_stock`, upserted on every
calculation, plus an append-only row in `drp_minimum_stock_history`.
A manual override is never overwritten by a recalculation: the calculated
value is refreshed but `active_value` stays on the manual value.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from drp_engine.db.models import MinimumStockHistoryModel, MinimumStockModel, SessionLocal, StockModel, utcnow
from drp_engine.errors import MinimumStockNotFoundError
from drp_engine.min_stock.abc_classification import ABCClass
from drp_engine.min_stock.calculator import CalculationMethod, MinimumStockResult

logger = logging.getLogger(__name__)


def variation_pct(previous: Optional[float], new: float) -> Optional[float]:
    """Percent change; None when there is no usable previous value."""
    if previous is None or previous == 0:
        return None
    return round((new - previous) / previous * 100.0, 2)


class MinimumStockRepository:
    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    # ═══════════════════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _find(session: Session, product_code: str, branch_code: str) -> Optional[MinimumStockModel]:
        return session.execute(
            select(MinimumStockModel).where(
                MinimumStockModel.product_code == product_code,
                MinimumStockModel.branch_code == branch_code,
            )
        ).scalar_one_or_none()

    def get(self, product_code: str, branch_code: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            record = self._find(session, product_code, branch_code)
            return record.to_dict() if record else None

    def active_minimum(self, product_code: str, branch_code: str) -> Optional[float]:
        """Active dynamic minimum, or None when the pair was never calculated."""
        with self._session_factory() as session:
            value = session.execute(
                select(MinimumStockModel.active_value).where(
                    MinimumStockModel.product_code == product_code,
                    MinimumStockModel.branch_code == branch_code,
                )
            ).scalar_one_or_none()
        return float(value) if value is not None else None

    def history(self, product_code: str, branch_code: str, limit: int = 10) -> List[Dict[str, Any]]:
        h = MinimumStockHistoryModel
        with self._session_factory() as session:
            rows = session.execute(
                select(h)
                .where(h.product_code == product_code, h.branch_code == branch_code)
                .order_by(h.recorded_at.desc(), h.id.desc())
                .limit(limit)
            ).scalars().all()
            return [row.to_dict() for row in rows]

    def below_minimum(self, branch_code: Optional[str] = None, abc_class: Optional[str] = None) -> List[Dict[str, Any]]:
        """Pairs whose on-hand stock is below the active minimum, class A first then largest gap."""
        ms = MinimumStockModel
        on_hand = func.coalesce(StockModel.on_hand, 0.0)
        gap = (ms.active_value - on_hand).label("gap")
        query = (
            select(ms, on_hand.label("on_hand"), gap)
            .outerjoin(
                StockModel,
                and_(StockModel.product_code == ms.product_code, StockModel.branch_code == ms.branch_code),
            )
            .where(ms.active_value > on_hand)
        )
        if branch_code:
            query = query.where(ms.branch_code == branch_code)
        if abc_class:
            query = query.where(ms.abc_class == ABCClass(abc_class).value)
        query = query.order_by(ms.abc_class, gap.desc(), ms.product_code)

        with self._session_factory() as session:
            rows = session.execute(query).all()
            result = []
            for record, stock_on_hand, shortfall in rows:
                item = record.to_dict()
                item["on_hand"] = float(stock_on_hand or 0.0)
                item["gap"] = float(shortfall or 0.0)
                result.append(item)
            return result

    def branch_summary(self, branch_code: str) -> Dict[str, Any]:
        ms = MinimumStockModel
        query = select(
            func.count(ms.id),
            func.sum(case((ms.abc_class == "A", 1), else_=0)),
            func.sum(case((ms.abc_class == "B", 1), else_=0)),
            func.sum(case((ms.abc_class == "C", 1), else_=0)),
            func.sum(case((ms.manual_value.is_not(None), 1), else_=0)),
            func.coalesce(func.sum(ms.active_value), 0),
        ).where(ms.branch_code == branch_code)
        with self._session_factory() as session:
            total, a, b, c, manual, active_sum = session.execute(query).one()
        return {
            "branch_code": branch_code,
            "products": int(total or 0),
            "class_a": int(a or 0),
            "class_b": int(b or 0),
            "class_c": int(c or 0),
            "manual_overrides": int(manual or 0),
            "total_active_minimum": int(active_sum or 0),
        }

    # ═══════════════════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════════════════

    def save_result(self, result: MinimumStockResult) -> MinimumStockResult:
        """
        Upsert the calculation and append a history row, in one transaction.

        Returns the result enriched with previous value, variation, manual and
        active values as stored.
        """
        now = utcnow()
        with self._session_factory() as session:
            try:
                record = self._find(session, result.product_code, result.branch_code)
                previous = record.active_value if record is not None else None

                if record is None:
                    record = MinimumStockModel(product_code=result.product_code, branch_code=result.branch_code)
                    session.add(record)

                self._apply(record, result, now)
                manual = record.manual_value
                record.active_value = manual if manual is not None else result.calculated_value
                record.method = (CalculationMethod.MANUAL if manual is not None else CalculationMethod.AUTOMATIC).value

                variation = variation_pct(previous, result.calculated_value)
                session.add(MinimumStockHistoryModel(
                    product_code=result.product_code,
                    branch_code=result.branch_code,
                    previous_value=previous,
                    new_value=result.calculated_value,
                    variation_pct=variation,
                    abc_class=record.abc_class,
                    trend_factor=result.trend_factor,
                    seasonal_factor=result.seasonal_factor,
                    avg_daily_sales=result.avg_daily_sales,
                    method=CalculationMethod.AUTOMATIC.value,
                    recorded_at=now,
                ))
                session.commit()
            except Exception:
                session.rollback()
                raise

            active = record.active_value

        result.previous_value = previous
        result.variation_pct = variation
        result.manual_value = manual
        result.active_value = active
        result.calculated_at = now
        return result

    @staticmethod
    def _apply(record: MinimumStockModel, result: MinimumStockResult, now) -> None:
        record.calculated_value = result.calculated_value
        record.abc_class = ABCClass(result.abc_class).value
        record.avg_daily_sales = result.avg_daily_sales
        record.lead_time_days = result.lead_time_days
        record.buffer_days = result.buffer_days
        record.safety_factor = result.safety_factor
        record.trend_factor = result.trend_factor
        record.seasonal_factor = result.seasonal_factor
        record.sales_180 = result.sales.sales_180
        record.sales_90 = result.sales.sales_90
        record.sales_90_180 = result.sales.sales_90_180
        record.calculated_at = now

    def set_manual_override(
        self,
        product_code: str,
        branch_code: str,
        value: int,
        user: str,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._session_factory() as session:
            try:
                record = self._find(session, product_code, branch_code)
                if record is None:
                    raise MinimumStockNotFoundError(product_code, branch_code)
                previous = record.active_value
                record.manual_value = value
                record.active_value = value
                record.method = CalculationMethod.MANUAL.value
                record.adjusted_by = user
                record.note = note
                session.add(MinimumStockHistoryModel(
                    product_code=product_code,
                    branch_code=branch_code,
                    previous_value=previous,
                    new_value=value,
                    variation_pct=variation_pct(previous, value),
                    abc_class=record.abc_class,
                    trend_factor=record.trend_factor,
                    seasonal_factor=record.seasonal_factor,
                    avg_daily_sales=record.avg_daily_sales,
                    method=CalculationMethod.MANUAL.value,
                    adjusted_by=user,
                    note=note,
                    recorded_at=utcnow(),
                ))
                session.commit()
            except Exception:
                session.rollback()
                raise
            return record.to_dict()

    def clear_manual_override(self, product_code: str, branch_code: str, user: str) -> Dict[str, Any]:
        """Drop the override; the active value reverts to the calculated one."""
        with self._session_factory() as session:
            try:
                record = self._find(session, product_code, branch_code)
                if record is None:
                    raise MinimumStockNotFoundError(product_code, branch_code)
                previous = record.active_value
                record.manual_value = None
                record.active_value = record.calculated_value
                record.method = CalculationMethod.AUTOMATIC.value
                record.adjusted_by = user
                session.add(MinimumStockHistoryModel(
                    product_code=product_code,
                    branch_code=branch_code,
                    previous_value=previous,
                    new_value=record.calculated_value,
                    variation_pct=variation_pct(previous, record.calculated_value),
                    abc_class=record.abc_class,
                    method=CalculationMethod.AUTOMATIC.value,
                    adjusted_by=user,
                    note="manual override removed",
                    recorded_at=utcnow(),
                ))
                session.commit()
            except Exception:
                session.rollback()
                raise
            return record.to_dict()
