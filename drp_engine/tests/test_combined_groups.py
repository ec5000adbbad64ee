"""
Testes do Combined-Group Resolver.
"""
import pytest

from conftest import days_ago

from drp_engine.combined.resolver import CombinedGroupMap, CombinedGroupResolver
from drp_engine.errors import GroupsNotLoadedError
from drp_engine.sales.aggregator import SalesAggregator


@pytest.fixture
def resolver(source, clock):
    return CombinedGroupResolver(source, SalesAggregator(source, clock=clock), stock=source)


class TestCombinedGroupMap:
    def test_bidirectional_mapping(self):
        """Produto -> grupo e grupo -> membros, pela ordem recebida."""
        mapping = CombinedGroupMap.from_rows([("G1", "P1"), ("G1", "P2"), ("G2", "P3")])

        assert mapping.product_to_group == {"P1": "G1", "P2": "G1", "P3": "G2"}
        assert mapping.group_to_products == {"G1": ["P1", "P2"], "G2": ["P3"]}
        assert len(mapping) == 2

    def test_product_in_two_groups_keeps_first(self):
        """Um produto pertence no máximo a um grupo."""
        mapping = CombinedGroupMap.from_rows([("G1", "P1"), ("G2", "P1"), ("G2", "P2")])

        assert mapping.product_to_group["P1"] == "G1"
        assert mapping.group_to_products["G2"] == ["P2"]

    def test_duplicate_rows_collapsed(self):
        mapping = CombinedGroupMap.from_rows([("G1", "P1"), ("G1", "P1"), ("G1", "P2")])
        assert mapping.group_to_products["G1"] == ["P1", "P2"]


class TestCombinedGroupResolver:
    def test_requires_load(self, resolver):
        """Consultas antes de load() falham explicitamente."""
        with pytest.raises(GroupsNotLoadedError):
            resolver.group_of("P1")

    def test_no_group_returns_zero(self, source, resolver):
        """Produto sem grupo: vendas/stock de grupo = 0."""
        source.add_sale("P1", "00", days_ago(1), 10)
        resolver.load()

        assert resolver.group_of("P1") is None
        assert resolver.members("P1") == []
        assert resolver.group_sales("P1", "00", 90) == 0
        assert resolver.group_stock("P1", "00") == 0

    def test_group_sales_sum_all_members(self, source, resolver):
        """Soma as vendas de todos os membros do grupo."""
        source.add_group("G1", "P1", "P2", "P3")
        source.add_sale("P1", "00", days_ago(1), 2)
        source.add_sale("P2", "00", days_ago(1), 5)
        source.add_sale("P3", "00", days_ago(1), 7)
        source.add_sale("P3", "01", days_ago(1), 100)
        resolver.load()

        assert resolver.group_sales("P1", "00", 90) == 14
        assert resolver.group_sales("P1", "00", 90, include_self=False) == 12

    def test_self_listed_twice_not_double_counted(self, source, resolver):
        """Produto repetido na enumeração do grupo conta uma vez."""
        source.add_group("G1", "P1", "P1", "P2")
        source.add_sale("P1", "00", days_ago(1), 4)
        resolver.load()

        assert resolver.members("P1") == ["P1", "P2"]
        assert resolver.group_sales("P1", "00", 90) == 4

    def test_group_stock_excludes_self_by_default(self, source, resolver):
        source.add_group("G1", "P1", "P2")
        source.set_stock("P1", "00", 10).set_stock("P2", "00", 3)
        resolver.load()

        assert resolver.group_stock("P1", "00") == 3
        assert resolver.group_stock("P1", "00", include_self=True) == 13

    def test_siblings_with_stock(self, source, resolver):
        """Só irmãos com stock positivo, maior primeiro."""
        source.add_group("G1", "P1", "P2", "P3", "P4")
        source.set_stock("P2", "04", 1).set_stock("P3", "04", 6).set_stock("P1", "04", 50)
        resolver.load()

        assert resolver.siblings_with_stock("P1", "04") == [("P3", 6), ("P2", 1)]
