# src/workflows/auto_assign.py
"""
Background auto-assignment.

Tick: idle → fetching (unassigned orders, rider pool, active rule) →
evaluating / committing per order → idle.

- the rule is read once per tick; an update mid-tick applies from the next one
- orders go high → medium → low, oldest first within a priority
- only the top candidate is tried; a lost race or an empty ranking counts as
  one failed order and the tick moves on
- no eligible rider at all ends the tick early; the loop then sleeps for the
  full interval
- a store error on one commit fails that order only; a tick past its
  deadline or a store error while fetching fails the whole tick, which is
  logged and retried on the next interval
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.config import (
    AUTO_ASSIGN_INTERVAL_SEC, DEFAULT_SCOPE, PRIORITY_RANK, SCHEDULER_ACTOR, TICK_TIMEOUT_SEC,
)
from src.domain import AutoAssignRule, DispatchOrder, DispatchRider, utcnow
from src.errors import STORE_ERROR, DispatchError, TickTimeout
from src.pipelines import scoring
from src.pipelines.assign_engine import AssignmentCoordinator
from src.stores import orders as order_store
from src.stores import riders as rider_store
from src.stores import rules as rule_store
from utils.logger import get_logger

logger = get_logger("auto_assign")


@dataclass
class TickResult:
    assigned: int = 0
    failed: int = 0
    skipped: bool = False
    state: str = "completed"  # completed | skipped | failed | cancelled
    reason: Optional[str] = None
    rule_version: Optional[int] = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    failures: Dict[str, str] = field(default_factory=dict)


def tick_order(order: DispatchOrder):
    return (PRIORITY_RANK[order.priority], order.created_at, order.id)


def has_capacity(rider: DispatchRider, rule: AutoAssignRule) -> bool:
    return (
        rider.status != "offline"
        and rider.active_orders_count < rider.max_capacity
        and rider.active_orders_count < rule.criteria.max_orders_per_rider
    )


class AutoAssignScheduler:
    def __init__(
        self,
        session_factory: sessionmaker,
        coordinator: AssignmentCoordinator,
        *,
        interval_sec: float = AUTO_ASSIGN_INTERVAL_SEC,
        tick_timeout_sec: float = TICK_TIMEOUT_SEC,
        scope: str = DEFAULT_SCOPE,
        actor: str = SCHEDULER_ACTOR,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.interval_sec = interval_sec
        self.tick_timeout_sec = tick_timeout_sec
        self.scope = scope
        self.actor = actor
        self.monotonic = monotonic

        self.state = "idle"
        self._stop = threading.Event()
        self._paused = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._stats_lock = threading.Lock()
        self.ticks = 0
        self.failed_ticks = 0
        self.total_assigned = 0
        self.total_failed = 0
        self.last_result: Optional[TickResult] = None

    # ===========================
    #  lifecycle
    # ===========================
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="auto-assign-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"scheduler started: every {self.interval_sec}s, tick timeout {self.tick_timeout_sec}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("scheduler stopped")

    def pause(self) -> None:
        self._paused.set()
        logger.info("scheduler paused")

    def resume(self) -> None:
        self._paused.clear()
        logger.info("scheduler resumed")

    def _loop(self) -> None:
        # wait first: a tick never fires back-to-back, whatever the previous outcome
        while not self._stop.wait(self.interval_sec):
            if self._paused.is_set():
                continue
            try:
                self.tick()
            except Exception:
                logger.exception("❌ unexpected error in auto-assign tick; retrying next interval")

    def status(self) -> dict:
        with self._stats_lock:
            last = self.last_result
            attempted = self.total_assigned + self.total_failed
            return {
                "status": "paused" if self.paused else ("running" if self.running else "stopped"),
                "interval_sec": self.interval_sec,
                "last_tick_at": last.finished_at if last else None,
                "last_tick_state": last.state if last else None,
                "last_tick_assigned": last.assigned if last else 0,
                "last_tick_failed": last.failed if last else 0,
                "ticks": self.ticks,
                "failed_ticks": self.failed_ticks,
                "total_assigned": self.total_assigned,
                "total_failed": self.total_failed,
                "success_rate": round(self.total_assigned / attempted, 4) if attempted else 0.0,
            }

    # ===========================
    #  ticks
    # ===========================
    def tick(self) -> TickResult:
        """One scheduled pass over every unassigned order; no-op while the rule is inactive."""
        return self._run(order_ids=None, require_active=True)

    def run_once(self, order_ids: Iterable[str]) -> TickResult:
        """Operator-triggered pass over a subset of orders; runs whether or not the rule is active."""
        return self._run(order_ids=list(order_ids), require_active=False)

    def _run(self, order_ids: Optional[List[str]], require_active: bool) -> TickResult:
        result = TickResult()
        deadline = self.monotonic() + self.tick_timeout_sec
        try:
            self._execute(result, order_ids, require_active, deadline)
        except TickTimeout as e:
            result.state, result.reason = "failed", "timeout"
            logger.error(f"⏱️ tick timed out after {self.tick_timeout_sec}s: {e.message}")
        except SQLAlchemyError as e:
            result.state, result.reason = "failed", "store_error"
            logger.error(f"❌ tick failed on store access: {type(e).__name__}: {e}")
        finally:
            self.state = "idle"
            result.finished_at = utcnow()
            self._record(result)
        return result

    def _execute(
        self,
        result: TickResult,
        order_ids: Optional[List[str]],
        require_active: bool,
        deadline: float,
    ) -> None:
        self.state = "fetching"
        with self.session_factory() as db:
            rule = rule_store.get_active(db, self.scope)
            result.rule_version = rule.version
            if require_active and not rule.is_active:
                result.skipped, result.state, result.reason = True, "skipped", "rule_inactive"
                return
            orders = order_store.list_unassigned(db, order_ids)
            pool = rider_store.list_pool(db)
        self._check_deadline(deadline)

        if not orders:
            return
        orders.sort(key=tick_order)

        riders: Dict[str, DispatchRider] = {r.id: r for r in pool}
        if not any(has_capacity(r, rule) for r in riders.values()):
            result.failed = len(orders)
            result.reason = "no_eligible_riders"
            logger.info(f"no eligible riders for {len(orders)} unassigned orders; waiting for next tick")
            return

        for order in orders:
            if self._stop.is_set():
                result.state, result.reason = "cancelled", "shutdown"
                return
            self._check_deadline(deadline)
            self._assign_one(order, riders, rule, result)

        logger.info(
            f"tick done (rule v{rule.version}): assigned={result.assigned} failed={result.failed}"
        )

    def _assign_one(
        self,
        order: DispatchOrder,
        riders: Dict[str, DispatchRider],
        rule: AutoAssignRule,
        result: TickResult,
    ) -> None:
        self.state = "evaluating"
        ranked = scoring.rank(order, riders.values(), rule)
        if not ranked:
            result.failed += 1
            result.failures[order.id] = "NO_CANDIDATES"
            logger.debug(f"order={order.id}: no candidates")
            return

        top = ranked[0]
        self.state = "committing"
        try:
            self.coordinator.assign(
                order.id, top.rider.id, override_sla=False, actor=self.actor, score=top.score
            )
        except DispatchError as e:
            result.failed += 1
            result.failures[order.id] = e.code
            logger.info(f"order={order.id} → rider={top.rider.id} not committed: {e.code}")
            return
        except SQLAlchemyError as e:
            result.failed += 1
            result.failures[order.id] = STORE_ERROR
            logger.error(f"order={order.id} → rider={top.rider.id} store error: {type(e).__name__}: {e}")
            return

        result.assigned += 1
        # keep the local snapshot honest for the rest of this tick
        riders[top.rider.id] = top.rider.with_load(top.rider.active_orders_count + 1)

    def _check_deadline(self, deadline: float) -> None:
        if self.monotonic() > deadline:
            raise TickTimeout("tick deadline exceeded")

    def _record(self, result: TickResult) -> None:
        with self._stats_lock:
            self.ticks += 1
            if result.state == "failed":
                self.failed_ticks += 1
            self.total_assigned += result.assigned
            self.total_failed += result.failed
            self.last_result = result
