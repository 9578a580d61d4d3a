import time
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from src.errors import OrderAlreadyAssigned
from src.stores import assignments as assignment_log
from src.stores import rules as rule_store
from src.workflows.auto_assign import AutoAssignScheduler, tick_order

from conftest import NOW, make_order, make_rider, north_of, rule_payload


@pytest.fixture
def scheduler(session_factory, coordinator):
    s = AutoAssignScheduler(session_factory, coordinator, interval_sec=0.05, tick_timeout_sec=30)
    yield s
    s.stop(timeout=2)


class FakeMonotonic:
    def __init__(self, step=0.0):
        self.t = 0.0
        self.step = step

    def __call__(self):
        self.t += self.step
        return self.t


def test_inactive_rule_skips_tick(scheduler, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1")], rule={**rule_payload(), "isActive": False})

    result = scheduler.tick()

    assert result.skipped is True
    assert result.state == "skipped"
    assert result.reason == "rule_inactive"
    assert read.order("O1").status == "unassigned"


def test_tick_assigns_with_scheduler_actor_and_score(scheduler, seed, read, session_factory):
    seed(riders=[make_rider("R1")], orders=[make_order("O1")], rule=rule_payload())

    result = scheduler.tick()

    assert (result.assigned, result.failed, result.state) == (1, 0, "completed")
    assert result.rule_version == 1
    assert read.order("O1").rider_id == "R1"
    with session_factory() as db:
        (fact,) = assignment_log.history_for_order(db, "O1")
    assert fact.assigned_by == "auto-scheduler"
    assert fact.override_sla is False
    assert fact.score is not None and fact.score > 0


def test_orders_go_by_priority_then_age(seed, read, scheduler):
    seed(
        riders=[make_rider("R1", max_capacity=1)],
        orders=[
            make_order("OLD-LOW", priority="low", created_at=NOW - timedelta(minutes=20)),
            make_order("NEW-HIGH", priority="high", created_at=NOW - timedelta(minutes=1)),
            make_order("OLD-HIGH", priority="high", created_at=NOW - timedelta(minutes=9)),
        ],
        rule=rule_payload(),
    )

    result = scheduler.tick()

    assert result.assigned == 1
    assert result.failed == 2
    assert read.order("OLD-HIGH").status == "assigned"
    assert read.order("NEW-HIGH").status == "unassigned"


def test_tick_order_key():
    orders = [
        make_order("b", priority="medium", created_at=NOW),
        make_order("a", priority="medium", created_at=NOW),
        make_order("c", priority="low", created_at=NOW - timedelta(hours=1)),
        make_order("d", priority="high", created_at=NOW + timedelta(minutes=1)),
    ]
    assert [o.id for o in sorted(orders, key=tick_order)] == ["d", "a", "b", "c"]


def test_local_snapshot_sees_committed_load(seed, read, scheduler):
    # R1 is nearer and wins every ranking until its snapshot load hits the rule cap
    seed(
        riders=[
            make_rider("R1", location=north_of(0.2), max_capacity=5),
            make_rider("R2", location=north_of(2.0), max_capacity=5),
        ],
        orders=[make_order(f"O{i}", created_at=NOW - timedelta(minutes=10 - i)) for i in range(4)],
        rule=rule_payload(maxOrdersPerRider=2),
    )

    result = scheduler.tick()

    assert result.assigned == 4
    assert read.rider("R1").active_orders_count == 2
    assert read.rider("R2").active_orders_count == 2


def test_no_eligible_riders_ends_tick_early(session_factory, seed, read):
    seed(
        riders=[make_rider("R1", status="offline"), make_rider("R2", active_orders_count=3, max_capacity=3)],
        orders=[make_order("O1"), make_order("O2")],
        rule=rule_payload(),
    )

    class ExplodingCoordinator:
        def assign(self, *a, **kw):
            raise AssertionError("must not be called")

    s = AutoAssignScheduler(session_factory, ExplodingCoordinator())
    result = s.tick()

    assert result.failed == 2
    assert result.assigned == 0
    assert result.reason == "no_eligible_riders"
    assert result.state == "completed"


def test_lost_race_counts_as_failure_and_tick_continues(session_factory, coordinator, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1"), make_order("O2")], rule=rule_payload())

    class FlakyCoordinator:
        def __init__(self):
            self.calls = []

        def assign(self, order_id, rider_id, **kw):
            self.calls.append(order_id)
            if len(self.calls) == 1:
                raise OrderAlreadyAssigned("taken", orderId=order_id)
            return coordinator.assign(order_id, rider_id, **kw)

    flaky = FlakyCoordinator()
    result = AutoAssignScheduler(session_factory, flaky).tick()

    assert len(flaky.calls) == 2
    assert result.assigned == 1
    assert result.failed == 1
    assert list(result.failures.values()) == ["ORDER_ALREADY_ASSIGNED"]


def test_rule_is_read_once_per_tick(session_factory, coordinator, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1"), make_order("O2")], rule=rule_payload())

    class RuleChangingCoordinator:
        def assign(self, order_id, rider_id, **kw):
            fact = coordinator.assign(order_id, rider_id, **kw)
            with session_factory() as db:
                with db.begin():
                    rule_store.update(db, rule_payload(maxOrdersPerRider=1))
            return fact

    result = AutoAssignScheduler(session_factory, RuleChangingCoordinator()).tick()

    # the cap change lands mid-tick; the second order still sees the old cap of 3
    assert result.assigned == 2
    assert result.rule_version == 1
    assert read.rule().version == 3


def test_timeout_fails_the_tick(session_factory, coordinator, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1")], rule=rule_payload())
    s = AutoAssignScheduler(
        session_factory, coordinator, tick_timeout_sec=1.0, monotonic=FakeMonotonic(step=5.0)
    )

    result = s.tick()

    assert result.state == "failed"
    assert result.reason == "timeout"
    assert read.order("O1").status == "unassigned"
    assert s.status()["failed_ticks"] == 1


def test_store_error_fails_the_tick(session_factory, coordinator, monkeypatch):
    def boom(*a, **kw):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(rule_store, "get_active", boom)
    result = AutoAssignScheduler(session_factory, coordinator).tick()

    assert result.state == "failed"
    assert result.reason == "store_error"


def test_store_error_on_one_commit_fails_only_that_order(session_factory, coordinator, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1"), make_order("O2")], rule=rule_payload())

    class LockedOnO1:
        def assign(self, order_id, rider_id, **kw):
            if order_id == "O1":
                raise OperationalError("UPDATE orders", {}, Exception("database is locked"))
            return coordinator.assign(order_id, rider_id, **kw)

    s = AutoAssignScheduler(session_factory, LockedOnO1())
    result = s.tick()

    assert result.state == "completed"
    assert (result.assigned, result.failed) == (1, 1)
    assert result.failures == {"O1": "STORE_ERROR"}
    assert read.order("O1").status == "unassigned"
    assert read.order("O2").rider_id == "R1"
    assert s.status()["failed_ticks"] == 0


def test_run_once_ignores_inactive_rule_and_other_orders(scheduler, seed, read):
    seed(
        riders=[make_rider("R1")],
        orders=[make_order("O1"), make_order("O2"), make_order("O3", status="assigned", rider_id="R1")],
        rule={**rule_payload(), "isActive": False},
    )

    result = scheduler.run_once(["O1", "O3", "MISSING"])

    assert result.assigned == 1
    assert result.failed == 0
    assert read.order("O1").status == "assigned"
    assert read.order("O2").status == "unassigned"


def test_status_counters(scheduler, seed):
    seed(
        riders=[make_rider("R1", max_capacity=1)],
        orders=[make_order("O1"), make_order("O2")],
        rule=rule_payload(),
    )
    scheduler.tick()

    st = scheduler.status()
    assert st["status"] == "stopped"
    assert st["ticks"] == 1
    assert (st["total_assigned"], st["total_failed"]) == (1, 1)
    assert st["success_rate"] == 0.5
    assert st["last_tick_state"] == "completed"


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_background_loop_assigns_and_stops(scheduler, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1")], rule=rule_payload())

    scheduler.start()
    assert scheduler.running
    assert _wait_for(lambda: read.order("O1").status == "assigned")

    scheduler.stop(timeout=2)
    assert not scheduler.running
    assert scheduler.status()["status"] == "stopped"


def test_paused_loop_does_not_tick(scheduler, seed, read):
    seed(riders=[make_rider("R1")], orders=[make_order("O1")], rule=rule_payload())

    scheduler.pause()
    scheduler.start()
    time.sleep(0.3)
    assert scheduler.status()["status"] == "paused"
    assert scheduler.ticks == 0
    assert read.order("O1").status == "unassigned"

    scheduler.resume()
    assert _wait_for(lambda: scheduler.ticks > 0)
    assert scheduler.status()["status"] == "running"


def test_stop_before_start_is_harmless(session_factory, coordinator):
    s = AutoAssignScheduler(session_factory, coordinator)
    s.stop()
    assert not s.running
