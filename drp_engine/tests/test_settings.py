"""
Testes da configuração DRP (defaults, variáveis de ambiente, filiais).
"""
import pytest

from drp_engine.errors import InvalidPeriodError
from drp_engine.settings import DRPSettings, Settings


class TestDefaults:
    def test_destination_branches(self):
        """Destinos excluem a origem e a garantia, por prioridade."""
        settings = DRPSettings()
        assert settings.destination_branches() == ["00", "01", "02", "05", "06"]
        # origem alternativa: o CD passa a destino, fora da lista de prioridade
        assert settings.destination_branches("00") == ["01", "02", "05", "06", "04"]

    def test_unlisted_branch_sorted_last(self):
        settings = DRPSettings()
        assert settings.sort_by_priority(["99", "02", "00"]) == ["00", "02", "99"]
        assert settings.branch_name("99") == "Filial 99"

    @pytest.mark.parametrize("period", [7, 90, 365])
    def test_valid_periods(self, period):
        assert DRPSettings().validate_period(period) == period

    @pytest.mark.parametrize("period", [0, 6, 366, None])
    def test_invalid_periods(self, period):
        with pytest.raises(InvalidPeriodError):
            DRPSettings().validate_period(period)

    def test_class_parameters(self):
        settings = DRPSettings()
        assert settings.class_params("A").safety_factor == 2.0
        assert settings.class_params("A").buffer_days == 5
        assert settings.class_params("C").safety_factor == 1.2


class TestEnvironment:
    def test_env_overrides(self, monkeypatch):
        """DRP_* sobrepõem os defaults."""
        monkeypatch.setenv("DRP_LEAD_TIME_DAYS", "45")
        monkeypatch.setenv("DRP_ORIGIN_BRANCH", "00")
        monkeypatch.setenv("DRP_BRANCH_PRIORITY", "01, 00,02")

        settings = Settings.get()

        assert settings.lead_time_days == 45
        assert settings.origin_branch == "00"
        assert settings.branch_priority == ("01", "00", "02")

    def test_invalid_values_ignored(self, monkeypatch):
        """Valores inválidos ficam com o default e não levantam exceção."""
        monkeypatch.setenv("DRP_BATCH_CHUNK_SIZE", "many")
        monkeypatch.setenv("DRP_PRODUCT_LIMIT", "-5")

        settings = Settings.get()

        assert settings.batch_chunk_size == 50
        assert settings.product_limit == 10000

    def test_singleton_override_and_reset(self, monkeypatch):
        first = Settings.get()
        assert Settings.get() is first

        overridden = Settings.override(lead_time_days=60)
        assert overridden.lead_time_days == 60
        assert Settings.get() is overridden

        Settings.reset()
        assert Settings.get().lead_time_days == 30

    def test_to_dict(self):
        exported = DRPSettings().to_dict()
        assert exported["origin_branch"] == "04"
        assert exported["period_days"] == {"min": 7, "max": 365, "default": 90}
        assert "database_url" not in exported
