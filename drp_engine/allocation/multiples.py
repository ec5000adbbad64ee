"""Run-scoped sales-multiple lookup, loaded once per allocation run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Sequence

from drp_engine.sources import ProductConfigReader

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLE = 1


@dataclass(frozen=True)
class SalesMultipleTable:
    """Product -> sales multiple; products without config ship in units."""
    multiples: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def load(cls, reader: ProductConfigReader, product_codes: Sequence[str]) -> "SalesMultipleTable":
        codes = list(dict.fromkeys(product_codes))
        found = reader.sales_multiples(codes) if codes else {}
        multiples = {}
        for code in codes:
            value = found.get(code)
            if value is None or int(value) < 1:
                value = DEFAULT_MULTIPLE
            multiples[code] = int(value)
        logger.debug(f"Loaded sales multiples for {len(codes)} products ({len(found)} configured)")
        return cls(multiples=multiples)

    def get(self, product_code: str) -> int:
        return self.multiples.get(product_code, DEFAULT_MULTIPLE)
