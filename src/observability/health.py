from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from src.database import engine
from src.models import PricingMatrixEntry


def check_database_health() -> Dict[str, Any]:
    """
    Run a trivial query and count offered matrix rows.

    With the database down the storefront still prices carts from the fallback
    formula, so the pricing source is reported alongside the status.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            available_prices = connection.execute(
                select(func.count()).select_from(PricingMatrixEntry).where(PricingMatrixEntry.is_available.is_(True))
            ).scalar_one()
        return {"status": "UP", "pricing_source": "matrix", "available_prices": available_prices}
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "pricing_source": "fallback", "detail": str(exc)}
