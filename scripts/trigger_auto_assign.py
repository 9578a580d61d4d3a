# scripts/trigger_auto_assign.py
"""
Operator helper: page through the unassigned queue of a running dispatch
service and push it through POST /auto-assign in chunks.
"""

import argparse
from typing import List

from src.api.client import DispatchApiError, auto_assign, unassigned_orders
from utils.logger import get_logger

logger = get_logger("trigger_auto_assign")


def fetch_all_unassigned(priority: str | None = None, zone: str | None = None, size: int = 100) -> List[str]:
    page = 1
    order_ids: List[str] = []

    while True:
        res = unassigned_orders(page=page, limit=size, priority=priority, zone=zone)
        order_ids += [o["id"] for o in res.get("orders", [])]
        if page >= res.get("totalPages", 1):
            break
        page += 1

    return order_ids


def run(priority: str | None = None, zone: str | None = None, chunk: int = 50) -> dict:
    order_ids = fetch_all_unassigned(priority=priority, zone=zone)
    logger.info(f"{len(order_ids)} unassigned orders (priority={priority or 'all'}, zone={zone or 'all'})")

    totals = {"assigned": 0, "failed": 0}
    for i in range(0, len(order_ids), chunk):
        part = order_ids[i : i + chunk]
        try:
            res = auto_assign(part)
        except DispatchApiError as e:
            logger.warning(f"chunk {i // chunk + 1} failed: {e}")
            totals["failed"] += len(part)
            continue
        totals["assigned"] += int(res.get("assigned", 0))
        totals["failed"] += int(res.get("failed", 0))

    logger.info(f"auto-assign done: assigned={totals['assigned']} failed={totals['failed']}")
    return totals


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Push the unassigned queue through auto-assign")
    parser.add_argument("--priority", choices=["high", "medium", "low"])
    parser.add_argument("--zone")
    parser.add_argument("--chunk", type=int, default=50)
    args = parser.parse_args()
    run(priority=args.priority, zone=args.zone, chunk=args.chunk)
