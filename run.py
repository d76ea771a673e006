# run.py
import sys

from src.config import Config
from src.main import app


def seed(argv):
    from src.database import SessionLocal
    from src.seed import default_price_rows, load_price_rows, seed_pricing_matrix

    rows = load_price_rows(argv[0]) if argv else default_price_rows()
    db = SessionLocal()
    try:
        count = seed_pricing_matrix(db, rows)
    finally:
        db.close()
    print(f"Seeded {count} pricing rows.")


if __name__ == "__main__":
    # `python run.py seed-pricing [rows.json]` loads the price list instead of serving
    if len(sys.argv) > 1 and sys.argv[1] == "seed-pricing":
        seed(sys.argv[2:])
    else:
        app.run(
            debug=Config.DEBUG,
            host=Config.FLASK_RUN_HOST,
            port=Config.FLASK_RUN_PORT,
        )
