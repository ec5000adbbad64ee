"""
════════════════════════════════════════════════════════════════════════════════
DRP SCHEMAS - Pydantic Models para pedidos de alocação e ajustes manuais
════════════════════════════════════════════════════════════════════════════════

Schemas:
- AllocationFilters: filtros de catálogo (grupo, pesquisa, filiais)
- AllocationRequest: pedido de cálculo de alocação
- ManualAdjustment: override manual do estoque mínimo
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from drp_engine.settings import Settings


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

class AllocationFilters(BaseModel):
    """Filtros aplicados quando o pedido não traz lista explícita de produtos."""

    catalog_group: Optional[str] = Field(None, description="Grupo de catálogo")
    search: Optional[str] = Field(None, description="Pesquisa por código ou descrição")
    branches: Optional[List[str]] = Field(None, description="Filiais destino (default: todas)")

    @field_validator('catalog_group', 'search', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class AllocationRequest(BaseModel):
    """
    Pedido de cálculo de alocação.

    - period_days: janela de vendas (validada contra os limites configurados)
    - origin_branch: nó de origem do stock
    - product_codes: lista explícita; se vazia, usa o catálogo com stock na origem
    """

    period_days: int = Field(
        default_factory=lambda: Settings.get().default_period_days,
        description="Período de análise (dias)",
    )
    origin_branch: str = Field(
        default_factory=lambda: Settings.get().origin_branch,
        description="Filial de origem",
    )
    product_codes: Optional[List[str]] = Field(None, description="Produtos a calcular")
    filters: AllocationFilters = Field(default_factory=AllocationFilters)
    limit: int = Field(default_factory=lambda: Settings.get().product_limit, gt=0, description="Máximo de produtos")
    include_exit_frequency: bool = Field(False, description="Calcular frequência de saída por filial")

    @field_validator('period_days')
    @classmethod
    def validate_period(cls, v: int) -> int:
        return Settings.get().validate_period(v)

    @field_validator('product_codes', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        codes = [str(code).strip() for code in v if str(code).strip()]
        return list(dict.fromkeys(codes)) or None


class ManualAdjustment(BaseModel):
    """Override manual do estoque mínimo."""

    product_code: str = Field(..., min_length=1, description="Código do produto")
    branch_code: str = Field(..., min_length=1, description="Código da filial")
    value: int = Field(..., ge=0, description="Estoque mínimo manual (>= 0)")
    user: str = Field(..., min_length=1, description="Utilizador responsável")
    note: Optional[str] = Field(None, description="Observação")

    @field_validator('user', mode='before')
    @classmethod
    def strip_user(cls, v):
        return v.strip() if isinstance(v, str) else v
