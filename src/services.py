# src/services.py
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from .config import AUTO_ASSIGN_INTERVAL_SEC, TICK_TIMEOUT_SEC
from .domain import utcnow
from .pipelines.assign_engine import AssignmentCoordinator
from .pipelines.batch import BatchAssignmentHandler
from .pipelines.locks import DispatchLocks
from .workflows.auto_assign import AutoAssignScheduler
from .workflows.delivery_events import DeliveryEvents


@dataclass
class DispatchServices:
    session_factory: sessionmaker
    coordinator: AssignmentCoordinator
    batch: BatchAssignmentHandler
    scheduler: AutoAssignScheduler
    events: DeliveryEvents


def build_services(
    session_factory: sessionmaker,
    *,
    clock: Callable[[], datetime] = utcnow,
    interval_sec: float = AUTO_ASSIGN_INTERVAL_SEC,
    tick_timeout_sec: float = TICK_TIMEOUT_SEC,
) -> DispatchServices:
    # one lock table for every path that touches order/rider state
    locks = DispatchLocks()
    coordinator = AssignmentCoordinator(session_factory, locks=locks, clock=clock)
    return DispatchServices(
        session_factory=session_factory,
        coordinator=coordinator,
        batch=BatchAssignmentHandler(coordinator),
        scheduler=AutoAssignScheduler(
            session_factory,
            coordinator,
            interval_sec=interval_sec,
            tick_timeout_sec=tick_timeout_sec,
        ),
        events=DeliveryEvents(session_factory, locks=locks),
    )
