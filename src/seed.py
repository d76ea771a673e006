"""Loads the nursery price list into the pricing matrix."""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from sqlalchemy.orm import Session

from src.models import PriceGroup, PricingMatrixEntry

logger = logging.getLogger(__name__)

# Catalogue price list per group and plant age; pot size grows with age
DEFAULT_PRICE_LIST: Dict[PriceGroup, Dict[int, str]] = {
    PriceGroup.COMMON: {3: "21.00", 4: "32.00", 5: "47.00", 6: "59.00"},
    PriceGroup.MEDIUM: {3: "28.00", 4: "39.00", 5: "59.00", 6: "69.00"},
    PriceGroup.RARE: {3: "37.00", 4: "53.00", 5: "69.00", 6: "79.00"},
}
DEFAULT_POT_SIZES: Dict[int, str] = {3: "3L", 4: "5L", 5: "7.5L", 6: "10L"}


def default_price_rows() -> List[Dict[str, Any]]:
    rows = []
    for group, prices in DEFAULT_PRICE_LIST.items():
        for age, price in prices.items():
            rows.append(
                {
                    "price_group": group.value,
                    "age_years": age,
                    "pot_size": DEFAULT_POT_SIZES[age],
                    "base_price_euros": price,
                    "is_available": True,
                }
            )
    return rows


def load_price_rows(path: Path | str) -> List[Dict[str, Any]]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of pricing rows")
    return data


def seed_pricing_matrix(db_session: Session, rows: Iterable[Mapping[str, Any]]) -> int:
    """
    Insert or update matrix rows keyed by (group, age, pot size).
    Returns the number of rows written.
    """
    written = 0
    for row in rows:
        group = PriceGroup.parse(row.get("price_group"))
        if group is None:
            raise ValueError(f"Unknown price group in row {dict(row)!r}")
        age = int(row["age_years"])
        pot_size = str(row["pot_size"])
        price = Decimal(str(row["base_price_euros"]))
        if age < 0 or price < 0:
            raise ValueError(f"Age and price must not be negative in row {dict(row)!r}")

        entry = (
            db_session.query(PricingMatrixEntry)
            .filter_by(price_group=group, age_years=age, pot_size=pot_size)
            .first()
        )
        if entry is None:
            entry = PricingMatrixEntry(price_group=group, age_years=age, pot_size=pot_size)
            db_session.add(entry)
        entry.base_price_euros = price
        entry.is_available = bool(row.get("is_available", True))
        written += 1

    db_session.commit()
    logger.info("Seeded %d pricing matrix rows", written)
    return written
