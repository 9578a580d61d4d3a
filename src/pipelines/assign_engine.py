# src/pipelines/assign_engine.py
"""
Assignment coordinator: the only code path that moves an order to
"assigned" and raises a rider's load.

1) take the per-order and per-rider critical sections (same process)
2) open one transaction and re-read order + rider
3) check preconditions against that fresh state
   - order.status == unassigned            else OrderAlreadyAssigned
   - rider.status != offline               else RiderOffline
   - rider.load < rider.capacity           else RiderFull
   - now <= order.slaDeadline (no override) else SLABreached
4) compare-and-swap UPDATEs guarded by the same conditions (other processes
   sharing the database), then append the Assignment fact
5) any failure rolls the whole transaction back
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from src.domain import AssignmentFact, utcnow
from src.errors import NotFound, OrderAlreadyAssigned, RiderFull, RiderOffline, SLABreached
from src.model import Order, Rider
from src.pipelines.locks import DispatchLocks
from src.stores import assignments as assignment_log
from utils.logger import get_logger

logger = get_logger("assign_engine")


class AssignmentCoordinator:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        locks: Optional[DispatchLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks or DispatchLocks()
        self.clock = clock

    def assign(
        self,
        order_id: str,
        rider_id: str,
        override_sla: bool = False,
        actor: str = "operator",
        *,
        score: Optional[float] = None,
    ) -> AssignmentFact:
        with self.locks.hold(order_id, rider_id):
            with self.session_factory() as db:
                with db.begin():
                    fact = self._commit(db, order_id, rider_id, override_sla, actor, score)

        logger.info(
            f"order={order_id} → rider={rider_id} by={actor} "
            f"override_sla={override_sla}" + (f" score={score:.3f}" if score is not None else "")
        )
        return fact

    # ---------------------------------------------------------------

    def _commit(
        self,
        db: Session,
        order_id: str,
        rider_id: str,
        override_sla: bool,
        actor: str,
        score: Optional[float],
    ) -> AssignmentFact:
        order = db.get(Order, order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found", orderId=order_id)
        rider = db.get(Rider, rider_id)
        if rider is None:
            raise NotFound(f"rider {rider_id} not found", riderId=rider_id)

        if order.status != "unassigned":
            raise OrderAlreadyAssigned(
                f"order {order_id} is {order.status}", orderId=order_id, riderId=order.rider_id
            )
        self._check_rider(rider)

        now = self.clock()
        if not override_sla and now > order.sla_deadline:
            raise SLABreached(
                f"order {order_id} SLA deadline {order.sla_deadline.isoformat()} has passed",
                orderId=order_id,
                slaDeadline=order.sla_deadline.isoformat(),
            )

        # CAS: the row must still look the way it did when we checked it
        order_cond = [Order.order_id == order_id, Order.status == "unassigned"]
        if not override_sla:
            order_cond.append(Order.sla_deadline >= now)
        res = db.execute(
            update(Order)
            .where(*order_cond)
            .values(status="assigned", rider_id=rider_id)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise OrderAlreadyAssigned(f"order {order_id} was taken concurrently", orderId=order_id)

        res = db.execute(
            update(Rider)
            .where(
                Rider.rider_id == rider_id,
                Rider.status != "offline",
                Rider.active_orders_count < Rider.max_capacity,
            )
            .values(active_orders_count=Rider.active_orders_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.refresh(rider)
            self._check_rider(rider)
            raise RiderFull(f"rider {rider_id} filled concurrently", riderId=rider_id)

        fact = AssignmentFact(
            order_id=order_id,
            rider_id=rider_id,
            assigned_at=now,
            override_sla=override_sla,
            assigned_by=actor,
            score=score,
        )
        assignment_log.append(db, fact)
        return fact

    @staticmethod
    def _check_rider(rider: Rider) -> None:
        if rider.status == "offline":
            raise RiderOffline(f"rider {rider.rider_id} is offline", riderId=rider.rider_id)
        if rider.active_orders_count >= rider.max_capacity:
            raise RiderFull(
                f"rider {rider.rider_id} is at capacity "
                f"({rider.active_orders_count}/{rider.max_capacity})",
                riderId=rider.rider_id,
            )
