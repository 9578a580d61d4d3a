# seed_dispatch.py (run once: python -m seed_dispatch)
from data_utils.seed_loader import load_orders, load_riders, seed
from src.config import ORDERS_CSV_PATH, RIDERS_CSV_PATH
from src.database import SessionLocal, init_db
from src.stores import rules as rule_store

init_db()
with SessionLocal() as db:
    with db.begin():
        seed(db, load_riders(RIDERS_CSV_PATH), load_orders(ORDERS_CSV_PATH))
        rule_store.ensure_default(db)
print("✅ seeded riders / orders / default rule")
