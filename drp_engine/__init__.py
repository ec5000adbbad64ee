"""
DRP Engine
==========

Inventory redistribution from a central origin to destination branches:

- sales: deduplicated sales aggregation and exit frequency
- combined: combined (substitution) product groups
- min_stock: ABC / trend / seasonal minimum stock, interactive and batch
- allocation: demand fallback waterfall and supply-constrained allocation
- db: SQLAlchemy tables and repositories
"""

__version__ = "1.0.0"
