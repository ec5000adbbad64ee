"""Demand resolution and supply-constrained allocation."""

from .engine import AllocationOutcome, AllocationStatus, allocate, allocation_summary
from .demand import BranchDemand, DemandResolver, ProductDemand
from .multiples import SalesMultipleTable
from .service import AllocationService, AlternativeProduct, ProductAllocation

__all__ = [
    "AllocationOutcome",
    "AllocationStatus",
    "allocate",
    "allocation_summary",
    "BranchDemand",
    "DemandResolver",
    "ProductDemand",
    "SalesMultipleTable",
    "AllocationService",
    "AlternativeProduct",
    "ProductAllocation",
]
