# src/main.py
from src.database import SessionLocal, init_db
from src.services import build_services
from src.stores import rules as rule_store


def main() -> None:
    init_db()
    with SessionLocal() as db:
        with db.begin():
            rule = rule_store.ensure_default(db)

    services = build_services(SessionLocal)
    result = services.scheduler.tick()

    print("\n===== auto-assign tick =====")
    print(f"rule: {rule.name} (scope={rule.scope}, active={rule.is_active})")
    print(f"state: {result.state}" + (f" ({result.reason})" if result.reason else ""))
    print(f"assigned: {result.assigned}")
    print(f"failed: {result.failed}")
    for order_id, code in sorted(result.failures.items()):
        print(f" - {order_id}: {code}")


if __name__ == "__main__":
    main()
