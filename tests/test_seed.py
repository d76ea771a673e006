import json
from decimal import Decimal

import pytest

from src.models import PriceGroup, PricingMatrixEntry
from src.seed import default_price_rows, load_price_rows, seed_pricing_matrix


def test_default_price_list_seeds_twelve_rows(db_session):
    assert seed_pricing_matrix(db_session, default_price_rows()) == 12
    assert db_session.query(PricingMatrixEntry).count() == 12


def test_reseeding_updates_rows_in_place(db_session):
    seed_pricing_matrix(db_session, default_price_rows())
    seed_pricing_matrix(
        db_session,
        [{"price_group": "rare", "age_years": 3, "pot_size": "3L", "base_price_euros": "41.00", "is_available": False}],
    )

    entry = db_session.query(PricingMatrixEntry).filter_by(price_group=PriceGroup.RARE, age_years=3).one()
    assert entry.base_price_euros == Decimal("41.00")
    assert entry.is_available is False
    assert db_session.query(PricingMatrixEntry).count() == 12


@pytest.mark.parametrize(
    "row",
    [
        {"price_group": "Z", "age_years": 3, "pot_size": "3L", "base_price_euros": "1.00"},
        {"price_group": "A", "age_years": 3, "pot_size": "3L", "base_price_euros": "-1.00"},
    ],
)
def test_invalid_rows_are_rejected(db_session, row):
    with pytest.raises(ValueError):
        seed_pricing_matrix(db_session, [row])


def test_load_price_rows_from_file(tmp_path):
    path = tmp_path / "prices.json"
    path.write_text(json.dumps(default_price_rows()[:2]), encoding="utf-8")
    assert len(load_price_rows(path)) == 2

    path.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_price_rows(path)
