"""
DRP Engine - Settings
=====================

Configuração central do motor de redistribuição (DRP).

A rede de filiais é pequena e fixa, por isso é modelada como enum tipado
(`Branch`) mais um mapa de nomes. Os restantes parâmetros (janelas de vendas,
lead time, parâmetros por classe ABC, dimensionamento do batch) têm defaults
conservadores e podem ser sobrepostos por variáveis de ambiente.

Uso:
    from drp_engine.settings import Settings

    settings = Settings.get()
    settings.validate_period(90)
    settings.destination_branches()   # ['00', '01', '02', '05', '06']

Configuração via variáveis de ambiente (ou ficheiro .env):
    DRP_DATABASE_URL=postgresql://...
    DRP_ORIGIN_BRANCH=04
    DRP_BRANCH_PRIORITY=00,01,02,05,06
    DRP_LEAD_TIME_DAYS=30
"""

from __future__ import annotations

import os
import logging
from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional, Tuple

from dotenv import load_dotenv

from drp_engine.errors import InvalidPeriodError

load_dotenv()

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# BRANCHES & MOVEMENT KINDS
# ═══════════════════════════════════════════════════════════════════════════════

class Branch(str, Enum):
    """Nós da rede de distribuição."""
    PETROLINA = "00"
    JUAZEIRO = "01"
    SALGUEIRO = "02"
    WARRANTY = "03"             # Garantia: nunca participa
    DISTRIBUTION_CENTER = "04"  # CD: origem por omissão
    BONFIM = "05"
    PICOS = "06"


BRANCH_NAMES: Dict[str, str] = {
    Branch.PETROLINA.value: "Petrolina",
    Branch.JUAZEIRO.value: "Juazeiro",
    Branch.SALGUEIRO.value: "Salgueiro",
    Branch.WARRANTY.value: "Garantia",
    Branch.DISTRIBUTION_CENTER.value: "CD",
    Branch.BONFIM.value: "Bonfim",
    Branch.PICOS.value: "Picos",
}


class MovementKind(str, Enum):
    """Tipos de movimento relevantes para o DRP."""
    SALE = "55"            # Saída por venda


@dataclass(frozen=True)
class ClassParameters:
    """Parâmetros de estoque de segurança por classe ABC."""
    safety_factor: float
    buffer_days: int


def _default_class_parameters() -> Dict[str, ClassParameters]:
    return {
        "A": ClassParameters(safety_factor=2.0, buffer_days=5),
        "B": ClassParameters(safety_factor=1.5, buffer_days=3),
        "C": ClassParameters(safety_factor=1.2, buffer_days=0),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DRPSettings:
    """
    Configuração do motor DRP.

    Attributes:
        origin_branch: Nó que detém o stock a redistribuir
        excluded_branch: Nó excluído de toda a análise (garantia)
        branch_priority: Ordem fixa de desempate e de rateio
        min_period_days / max_period_days: Limites do período de análise
        sales_window_days: Janela de vendas do estoque mínimo (180 dias)
        trend_window_days: Janela recente usada na tendência (90 dias)
        lead_time_days: Lead time fixo antes do buffer da classe
        batch_chunk_size: Produtos por chunk no batch (fan-out)
        batch_save_size: Registos por sub-batch de gravação
    """
    database_url: str = "sqlite:///drp.db"

    origin_branch: str = Branch.DISTRIBUTION_CENTER.value
    excluded_branch: str = Branch.WARRANTY.value
    branch_priority: Tuple[str, ...] = ("00", "01", "02", "05", "06")
    branch_names: Dict[str, str] = field(default_factory=lambda: dict(BRANCH_NAMES))

    # Período de análise (dias)
    min_period_days: int = 7
    max_period_days: int = 365
    default_period_days: int = 90

    # Estoque mínimo
    sales_window_days: int = 180
    trend_window_days: int = 90
    lead_time_days: int = 30
    factor_min: float = 0.5
    factor_max: float = 2.0
    abc_a_threshold: float = 0.80
    abc_b_threshold: float = 0.95
    class_parameters: Dict[str, ClassParameters] = field(default_factory=_default_class_parameters)
    variation_alert_pct: float = 50.0

    # Batch
    batch_chunk_size: int = 50
    batch_save_size: int = 20
    batch_save_workers: int = 20
    batch_max_error_ids: int = 50
    batch_log_every: int = 500

    product_limit: int = 10000

    def destination_branches(self, origin_branch: Optional[str] = None) -> List[str]:
        """Filiais destino, por ordem de prioridade (sem origem nem garantia)."""
        origin = origin_branch or self.origin_branch
        codes = [
            code for code in self.branch_names
            if code not in (origin, self.excluded_branch)
        ]
        return self.sort_by_priority(codes)

    def priority_index(self, branch_code: str) -> int:
        """Posição na lista de prioridade; filiais fora da lista vão para o fim."""
        try:
            return self.branch_priority.index(branch_code)
        except ValueError:
            return len(self.branch_priority)

    def sort_by_priority(self, branch_codes: List[str]) -> List[str]:
        # sorted() is stable: unlisted branches keep their input order
        return sorted(branch_codes, key=self.priority_index)

    def branch_name(self, branch_code: str) -> str:
        return self.branch_names.get(branch_code, f"Filial {branch_code}")

    def class_params(self, abc_class: str) -> ClassParameters:
        return self.class_parameters[str(getattr(abc_class, "value", abc_class))]

    def validate_period(self, period_days: int) -> int:
        """
        Valida o período de análise.

        Raises:
            InvalidPeriodError: período fora de [min_period_days, max_period_days]
        """
        if period_days is None or not (self.min_period_days <= period_days <= self.max_period_days):
            raise InvalidPeriodError(period_days, self.min_period_days, self.max_period_days)
        return int(period_days)

    def to_dict(self) -> Dict[str, Any]:
        """Exporta configuração (sem credenciais)."""
        return {
            "origin_branch": self.origin_branch,
            "excluded_branch": self.excluded_branch,
            "branch_priority": list(self.branch_priority),
            "period_days": {
                "min": self.min_period_days,
                "max": self.max_period_days,
                "default": self.default_period_days,
            },
            "minimum_stock": {
                "sales_window_days": self.sales_window_days,
                "trend_window_days": self.trend_window_days,
                "lead_time_days": self.lead_time_days,
                "factor_bounds": [self.factor_min, self.factor_max],
                "classes": {
                    name: {"safety_factor": p.safety_factor, "buffer_days": p.buffer_days}
                    for name, p in self.class_parameters.items()
                },
            },
            "batch": {
                "chunk_size": self.batch_chunk_size,
                "save_size": self.batch_save_size,
                "save_workers": self.batch_save_workers,
            },
        }


class Settings:
    """
    Singleton para a configuração DRP.

    Carrega configuração de variáveis de ambiente ou usa defaults.

    Uso:
        settings = Settings.get()
        Settings.override(lead_time_days=45)   # testes
        Settings.reset()
    """

    _instance: Optional[DRPSettings] = None

    @classmethod
    def _load_from_env(cls) -> DRPSettings:
        """Carrega configuração de variáveis de ambiente."""
        config = DRPSettings()

        str_mapping = {
            "DRP_DATABASE_URL": "database_url",
            "DRP_ORIGIN_BRANCH": "origin_branch",
            "DRP_EXCLUDED_BRANCH": "excluded_branch",
        }
        for env_var, attr_name in str_mapping.items():
            value = os.environ.get(env_var)
            if value:
                setattr(config, attr_name, value.strip())

        int_mapping = {
            "DRP_LEAD_TIME_DAYS": "lead_time_days",
            "DRP_MIN_PERIOD_DAYS": "min_period_days",
            "DRP_MAX_PERIOD_DAYS": "max_period_days",
            "DRP_DEFAULT_PERIOD_DAYS": "default_period_days",
            "DRP_BATCH_CHUNK_SIZE": "batch_chunk_size",
            "DRP_BATCH_SAVE_SIZE": "batch_save_size",
            "DRP_BATCH_SAVE_WORKERS": "batch_save_workers",
            "DRP_PRODUCT_LIMIT": "product_limit",
        }
        for env_var, attr_name in int_mapping.items():
            value = os.environ.get(env_var)
            if not value:
                continue
            try:
                parsed = int(value)
            except ValueError:
                logger.warning(f"Invalid value for {env_var}: {value}")
                continue
            if parsed <= 0:
                logger.warning(f"Invalid value for {env_var}: {value} (must be > 0)")
                continue
            setattr(config, attr_name, parsed)
            logger.info(f"DRP setting {attr_name} = {parsed}")

        priority = os.environ.get("DRP_BRANCH_PRIORITY")
        if priority:
            codes = tuple(code.strip() for code in priority.split(",") if code.strip())
            if codes:
                config.branch_priority = codes
                logger.info(f"DRP branch priority = {', '.join(codes)}")

        return config

    @classmethod
    def get(cls) -> DRPSettings:
        """Obtém configuração atual."""
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def override(cls, **changes: Any) -> DRPSettings:
        """Substitui campos da configuração atual (útil em testes)."""
        cls._instance = replace(cls.get(), **changes)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset para recarregar config."""
        cls._instance = None
