# src/workflows/delivery_events.py
"""
Effects of the delivery-progress and rider-telemetry feeds.

    assigned   → in_transit
    in_transit → delivered   (rider load - 1)
    unassigned | assigned | in_transit → cancelled   (rider load - 1 if held, riderId cleared)

Order status change and rider load change commit in one transaction, under
the same order → rider locks the coordinator uses.
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from src.domain import DispatchOrder, DispatchRider
from src.errors import InvalidTransition, NotFound
from src.model import Order, Rider
from src.pipelines.locks import DispatchLocks
from src.stores import orders as order_store
from src.stores import riders as rider_store
from utils.logger import get_logger

logger = get_logger("delivery_events")

TRANSITIONS = {
    "in_transit": ("assigned",),
    "delivered": ("in_transit",),
    "cancelled": ("unassigned", "assigned", "in_transit"),
}

# transitions that hand the order back from the rider
RELEASES_RIDER = ("delivered", "cancelled")


class DeliveryEvents:
    def __init__(self, session_factory: sessionmaker, *, locks: Optional[DispatchLocks] = None):
        self.session_factory = session_factory
        self.locks = locks or DispatchLocks()

    def advance(self, order_id: str, new_status: str) -> DispatchOrder:
        if new_status not in TRANSITIONS:
            raise InvalidTransition(f"unsupported target status {new_status}", orderId=order_id)

        with self.locks.orders.hold(order_id):
            with self.session_factory() as db:
                order = db.get(Order, order_id)
                if order is None:
                    raise NotFound(f"order {order_id} not found", orderId=order_id)
                # stable while the order lock is held: only the coordinator sets it
                rider_id = order.rider_id
                db.rollback()

            rider_lock = self.locks.riders.hold(rider_id) if rider_id else nullcontext()
            with rider_lock:
                with self.session_factory() as db:
                    with db.begin():
                        order = db.get(Order, order_id)
                        if order.status not in TRANSITIONS[new_status]:
                            raise InvalidTransition(
                                f"order {order_id}: {order.status} → {new_status} not allowed",
                                orderId=order_id,
                                status=order.status,
                            )

                        if new_status in RELEASES_RIDER and order.rider_id:
                            db.execute(
                                update(Rider)
                                .where(Rider.rider_id == order.rider_id, Rider.active_orders_count > 0)
                                .values(active_orders_count=Rider.active_orders_count - 1)
                                .execution_options(synchronize_session=False)
                            )

                        order.status = new_status
                        if new_status == "cancelled":
                            order.rider_id = None
                        db.flush()
                        result = order_store.to_domain(order)

        logger.info(f"order={order_id} → {new_status} (rider={rider_id or '-'})")
        return result

    def update_telemetry(
        self,
        rider_id: str,
        *,
        status: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        zone: Optional[str] = None,
    ) -> DispatchRider:
        """Status / position / zone updates. Load is left to the coordinator and advance()."""
        with self.locks.riders.hold(rider_id):
            with self.session_factory() as db:
                with db.begin():
                    rider = db.get(Rider, rider_id)
                    if rider is None:
                        raise NotFound(f"rider {rider_id} not found", riderId=rider_id)
                    if status is not None:
                        rider.status = status
                    if lat is not None:
                        rider.lat = lat
                    if lng is not None:
                        rider.lng = lng
                    if zone is not None:
                        rider.zone = zone
                    db.flush()
                    result = rider_store.to_domain(rider)

        logger.debug(f"telemetry rider={rider_id} status={result.status} zone={result.zone}")
        return result
