"""
Testes end-to-end do serviço de alocação sobre SQLite.
"""
import pytest
from pydantic import ValidationError

from conftest import days_ago

from drp_engine.allocation.engine import AllocationStatus
from drp_engine.allocation.service import AllocationService
from drp_engine.db.minimum_stock import MinimumStockRepository
from drp_engine.db.repository import SqlDataSource
from drp_engine.errors import InvalidPeriodError
from drp_engine.min_stock.calculator import MinimumStockCalculator
from drp_engine.sales.aggregator import SalesAggregator
from drp_engine.schemas import AllocationRequest


@pytest.fixture
def service(session_factory, clock, settings):
    source = SqlDataSource(session_factory)
    return AllocationService(
        catalog=source,
        stock=source,
        sales=source,
        groups=source,
        product_config=source,
        minimums=MinimumStockRepository(session_factory),
        settings=settings,
        clock=clock,
    )


def by_code(result):
    return {b.branch_code: b for b in result.branches}


class TestAllocationService:
    def test_proportional_split(self, seed, service):
        """Origem 10, vendas 6/4 -> 6/4, status ok."""
        seed.product("P1").stock("P1", "04", 10)
        seed.sale("P1", "00", days_ago(10), 6).sale("P1", "01", days_ago(10), 4)

        [result] = service.calculate(AllocationRequest(period_days=90, product_codes=["P1"]))

        assert result.status == AllocationStatus.OK
        assert result.outcome.allocations == {"00": 6, "01": 4, "02": 0, "05": 0, "06": 0}
        assert [b.branch_code for b in result.branches] == ["00", "01", "02", "05", "06"]
        assert by_code(result)["00"].allocation == 6
        assert not any(b.zero_stock_tie_in for b in result.branches)

    def test_deficit_lists_alternatives(self, seed, service):
        """Sem stock na origem: défice e combinados com stock como alternativa."""
        seed.product("P2").product("P3", description="Variante azul")
        seed.group("G1", "P2", "P3")
        seed.stock("P3", "04", 5)
        seed.sale("P2", "00", days_ago(3), 3)

        [result] = service.calculate(AllocationRequest(period_days=30, product_codes=["P2"]))

        assert result.status == AllocationStatus.DEFICIT
        assert result.deficit == 3
        assert result.combined_group == "G1"
        assert [(a.product_code, a.origin_stock) for a in result.alternatives] == [("P3", 5)]
        assert result.alternatives[0].description == "Variante azul"
        assert result.outcome.total_allocated == 0

    def test_sales_multiple_with_tie_in(self, seed, service):
        """Múltiplo 6: base em múltiplos, sobra por fração e tie-in nas filiais sem stock."""
        seed.product("P5").stock("P5", "04", 100).multiple("P5", 6)
        seed.sale("P5", "00", days_ago(5), 13).sale("P5", "01", days_ago(5), 7)

        [result] = service.calculate(AllocationRequest(period_days=90, product_codes=["P5"]))
        branches = by_code(result)

        assert result.sales_multiple == 6
        assert all(branches[code].zero_stock_tie_in for code in ("02", "05", "06"))
        assert all(branches[code].need == 1 for code in ("02", "05", "06"))
        assert all(value % 6 == 0 for value in result.outcome.base_allocations.values())
        assert result.outcome.allocations == {"00": 13, "01": 7, "02": 1, "05": 1, "06": 1}
        assert result.outcome.total_allocated == 23

    def test_minimum_stock_fallback(self, seed, session_factory, service, clock, settings):
        """Sem vendas no período, o estoque mínimo dinâmico gera necessidade."""
        seed.product("P7").stock("P7", "04", 1)
        seed.sale("P7", "00", days_ago(120), 10)
        source = SqlDataSource(session_factory)
        MinimumStockCalculator(
            SalesAggregator(source, clock=clock), source, MinimumStockRepository(session_factory), settings
        ).calculate_and_save("P7", "00")

        [result] = service.calculate(AllocationRequest(period_days=90, product_codes=["P7"]))
        branch = by_code(result)["00"]

        assert branch.used_minimum_stock
        assert branch.minimum_stock == 1
        assert branch.need == 1
        assert result.outcome.allocations["00"] == 1
        assert result.outcome.total_allocated == 1

    def test_catalog_filters(self, seed, service):
        """Sem lista explícita: produtos com stock na origem, filtrados por grupo."""
        seed.product("P1", catalog_group="Ferragens").stock("P1", "04", 4)
        seed.product("P8", catalog_group="Tintas").stock("P8", "04", 4)
        seed.product("P9", catalog_group="Ferragens").stock("P9", "04", 0)

        results = service.calculate({"period_days": 30, "filters": {"catalog_group": "Ferragens"}})

        assert [r.product.product_code for r in results] == ["P1"]
        assert results[0].product.catalog_group == "Ferragens"

    def test_branch_filter_and_exit_frequency(self, seed, service):
        seed.product("P1").stock("P1", "04", 10)
        seed.sale("P1", "01", days_ago(1), 2)

        [result] = service.calculate({
            "period_days": 30,
            "product_codes": "P1",
            "filters": {"branches": ["01"]},
            "include_exit_frequency": True,
        })

        assert [b.branch_code for b in result.branches] == ["01"]
        assert result.branches[0].exit_frequency.days_with_sales == 1
        assert result.outcome.allocations == {"01": 2}

    def test_no_products(self, service):
        assert service.calculate({"period_days": 30}) == []

    def test_summary_and_serialization(self, seed, service):
        """Resumo do lote e to_dict por produto."""
        seed.product("P1").stock("P1", "04", 10)
        seed.sale("P1", "00", days_ago(10), 6).sale("P1", "01", days_ago(10), 4)
        seed.product("P2")
        seed.sale("P2", "00", days_ago(3), 3)

        results = service.calculate({"period_days": 90, "product_codes": ["P1", "P2"]})
        summary = AllocationService.summarize(results)

        assert summary["products"] == 2
        assert summary["total_allocated"] == 10
        assert summary["total_deficit"] == 3
        assert summary["by_status"] == {"ok": 1, "rationed": 0, "deficit": 1}

        payload = results[0].to_dict()
        assert payload["product_code"] == "P1"
        assert payload["status"] == "ok"
        assert payload["branches"][0]["allocation"] == 6

    def test_parallel_products_match_sequential(self, source, clock, settings):
        source.add_product("P1").set_stock("P1", "04", 10).add_sale("P1", "00", days_ago(10), 6)
        source.add_product("P2").set_stock("P2", "04", 3).add_sale("P2", "01", days_ago(10), 5)
        source.add_product("P3").set_stock("P3", "04", 7)

        def run(workers):
            service = AllocationService(source, source, source, source, source,
                                        settings=settings, clock=clock, max_workers=workers)
            return [r.outcome.allocations for r in service.calculate({"period_days": 30})]

        assert run(1) == run(4)


class TestRequestValidation:
    def test_period_out_of_range(self):
        """Período fora de [7, 365] é rejeitado na validação do pedido."""
        with pytest.raises(ValidationError):
            AllocationRequest(period_days=3)

    def test_service_revalidates_period(self, service):
        request = AllocationRequest.model_construct(period_days=400)
        with pytest.raises(InvalidPeriodError) as exc:
            service.calculate(request)
        assert exc.value.period_days == 400

    def test_product_codes_normalized(self):
        request = AllocationRequest(product_codes=" P1, P2 ,P1,, ")
        assert request.product_codes == ["P1", "P2"]
        assert AllocationRequest(product_codes=[]).product_codes is None

    def test_defaults_from_settings(self):
        request = AllocationRequest()
        assert request.period_days == 90
        assert request.origin_branch == "04"
        assert request.filters.branches is None
