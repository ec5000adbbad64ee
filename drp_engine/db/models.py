"""
════════════════════════════════════════════════════════════════════════════════
DRP MODELS - Tabelas de catálogo, stock, movimentos e estoque mínimo
════════════════════════════════════════════════════════════════════════════════

Tabelas:
- drp_products: Catálogo de produtos
- drp_product_config: Múltiplo de venda por produto
- drp_stock: Stock por (produto, filial)
- drp_movements: Movimentos (vendas, entradas por NF)
- drp_combined_groups: Pertença a grupos de produtos combinados
- drp_minimum_stock: Estoque mínimo dinâmico, único por (produto, filial)
- drp_minimum_stock_history: Auditoria append-only dos recálculos/ajustes

As tabelas não são criadas no import; chamar `init_db()`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from drp_engine.settings import Settings

DATABASE_URL = Settings.get().database_url

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
Base = declarative_base()


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def utcnow() -> datetime:
    """Naive UTC timestamp (stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
# CATALOG & STOCK
# ═══════════════════════════════════════════════════════════════════════════════

class ProductModel(Base):
    __tablename__ = "drp_products"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), unique=True, index=True, nullable=False)
    description = Column(String(255), nullable=False, default="")
    catalog_group = Column(String(100), nullable=True, index=True)
    manufacturer_reference = Column(String(100), nullable=True)
    active = Column(Boolean, default=True, nullable=False)


class ProductConfigModel(Base):
    __tablename__ = "drp_product_config"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), unique=True, index=True, nullable=False)
    sales_multiple = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class StockModel(Base):
    __tablename__ = "drp_stock"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), nullable=False)
    branch_code = Column(String(10), nullable=False)
    on_hand = Column(Float, nullable=False, default=0.0)
    reserved = Column(Float, nullable=False, default=0.0)
    configured_minimum = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("product_code", "branch_code", name="uq_drp_stock_product_branch"),
        Index("ix_drp_stock_branch", "branch_code"),
    )


class MovementModel(Base):
    """
    Linha de movimento.

    Uma venda pode aparecer repetida na origem (reprocessamento de integrações);
    as agregações deduplicam por (documento, produto, filial, dia, sequência,
    quantidade, preço).
    """
    __tablename__ = "drp_movements"

    id = Column(Integer, primary_key=True, index=True)
    document_number = Column(String(50), nullable=False)
    product_code = Column(String(50), nullable=False)
    branch_code = Column(String(10), nullable=False)
    kind = Column(String(5), nullable=False)
    moved_at = Column(DateTime, nullable=False)
    sequence = Column(Integer, nullable=False, default=1)
    quantity = Column(Float, nullable=False)
    unit_price = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        Index("ix_drp_movements_lookup", "product_code", "branch_code", "kind", "moved_at"),
        Index("ix_drp_movements_branch_date", "branch_code", "kind", "moved_at"),
    )


class CombinedGroupMemberModel(Base):
    __tablename__ = "drp_combined_groups"

    id = Column(Integer, primary_key=True, index=True)
    group_code = Column(String(50), nullable=False, index=True)
    product_code = Column(String(50), unique=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════════════════════
# MINIMUM STOCK
# ═══════════════════════════════════════════════════════════════════════════════

class MinimumStockModel(Base):
    """
    Estoque mínimo dinâmico.

    active_value = manual_value quando existe override, senão calculated_value.
    """
    __tablename__ = "drp_minimum_stock"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), nullable=False)
    branch_code = Column(String(10), nullable=False)

    calculated_value = Column(Integer, nullable=False, default=0)
    manual_value = Column(Integer, nullable=True)
    active_value = Column(Integer, nullable=False, default=0)

    abc_class = Column(String(1), nullable=False, default="C")
    avg_daily_sales = Column(Float, nullable=False, default=0.0)
    lead_time_days = Column(Integer, nullable=False, default=30)
    buffer_days = Column(Integer, nullable=False, default=0)
    safety_factor = Column(Float, nullable=False, default=1.0)
    trend_factor = Column(Float, nullable=False, default=1.0)
    seasonal_factor = Column(Float, nullable=False, default=1.0)

    sales_180 = Column(Float, nullable=False, default=0.0)
    sales_90 = Column(Float, nullable=False, default=0.0)
    sales_90_180 = Column(Float, nullable=False, default=0.0)

    method = Column(String(20), nullable=False, default="automatic")
    adjusted_by = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)

    calculated_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("product_code", "branch_code", name="uq_drp_minimum_stock_product_branch"),
        Index("ix_drp_minimum_stock_branch_class", "branch_code", "abc_class"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product_code,
            "branch_code": self.branch_code,
            "calculated_value": self.calculated_value,
            "manual_value": self.manual_value,
            "active_value": self.active_value,
            "abc_class": self.abc_class,
            "avg_daily_sales": self.avg_daily_sales,
            "lead_time_days": self.lead_time_days,
            "buffer_days": self.buffer_days,
            "safety_factor": self.safety_factor,
            "trend_factor": self.trend_factor,
            "seasonal_factor": self.seasonal_factor,
            "sales_180": self.sales_180,
            "sales_90": self.sales_90,
            "sales_90_180": self.sales_90_180,
            "method": self.method,
            "adjusted_by": self.adjusted_by,
            "note": self.note,
            "calculated_at": self.calculated_at.isoformat() if self.calculated_at else None,
        }


class MinimumStockHistoryModel(Base):
    """Auditoria append-only. Nunca atualizada nem apagada."""
    __tablename__ = "drp_minimum_stock_history"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), nullable=False)
    branch_code = Column(String(10), nullable=False)
    previous_value = Column(Integer, nullable=True)
    new_value = Column(Integer, nullable=False)
    variation_pct = Column(Float, nullable=True)
    abc_class = Column(String(1), nullable=True)
    trend_factor = Column(Float, nullable=True)
    seasonal_factor = Column(Float, nullable=True)
    avg_daily_sales = Column(Float, nullable=True)
    method = Column(String(20), nullable=False, default="automatic")
    adjusted_by = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_drp_minimum_stock_history_pair", "product_code", "branch_code", "recorded_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product_code,
            "branch_code": self.branch_code,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "variation_pct": self.variation_pct,
            "abc_class": self.abc_class,
            "trend_factor": self.trend_factor,
            "seasonal_factor": self.seasonal_factor,
            "avg_daily_sales": self.avg_daily_sales,
            "method": self.method,
            "adjusted_by": self.adjusted_by,
            "note": self.note,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
