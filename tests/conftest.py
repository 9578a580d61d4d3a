# tests/conftest.py
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from src.database import init_db, make_engine
from src.domain import DispatchOrder, DispatchRider, Location
from src.pipelines.assign_engine import AssignmentCoordinator
from src.stores import orders as order_store
from src.stores import riders as rider_store
from src.stores import rules as rule_store

NOW = datetime(2026, 3, 2, 12, 0, 0)

# reference pickup point; 1 km north ≈ 0.0089932 deg latitude
BASE = (25.2860, 51.5310)
KM_LAT = 1 / 111.19492664455873


def north_of(km: float, base=BASE) -> Location:
    return Location(base[0] + km * KM_LAT, base[1])


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now = self.now + timedelta(**kw)


def make_order(order_id: str = "O1", **kw) -> DispatchOrder:
    fields = dict(
        id=order_id,
        priority="medium",
        pickup=Location(BASE[0], BASE[1], "Dark store"),
        drop=north_of(3.0),
        zone="A",
        sla_deadline=NOW + timedelta(minutes=30),
        created_at=NOW - timedelta(minutes=5),
        distance_km=3.0,
        eta_minutes=12.0,
    )
    fields.update(kw)
    return DispatchOrder(**fields)


def make_rider(rider_id: str = "R1", **kw) -> DispatchRider:
    fields = dict(
        id=rider_id,
        name=f"Rider {rider_id}",
        status="online",
        location=north_of(1.0),
        zone="A",
        max_capacity=3,
        active_orders_count=0,
        avg_eta_minutes=0.0,
    )
    fields.update(kw)
    return DispatchRider(**fields)


def rule_payload(**criteria) -> dict:
    c = {
        "maxRadiusKm": 5.0,
        "maxOrdersPerRider": 3,
        "preferSameZone": True,
        "priorityWeight": 5.0,
        "distanceWeight": 5.0,
        "etaWeight": 5.0,
    }
    c.update(criteria)
    return {"name": "Test Rule", "scope": "default", "isActive": True, "criteria": c}


@pytest.fixture
def session_factory(tmp_path):
    # file-backed so every thread gets its own connection
    engine = make_engine(f"sqlite:///{tmp_path / 'dispatch_test.db'}")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def coordinator(session_factory, clock):
    return AssignmentCoordinator(session_factory, clock=clock)


@pytest.fixture
def seed(session_factory):
    def _seed(riders=(), orders=(), rule=None):
        with session_factory() as db:
            with db.begin():
                for r in riders:
                    rider_store.save_rider(db, r)
                for o in orders:
                    order_store.save_order(db, o)
                if rule is not None:
                    rule_store.update(db, rule)
    return _seed


@pytest.fixture
def read(session_factory):
    class Reader:
        def order(self, order_id):
            with session_factory() as db:
                return order_store.get_order(db, order_id)

        def rider(self, rider_id):
            with session_factory() as db:
                return rider_store.get_rider(db, rider_id)

        def rule(self, scope="default"):
            with session_factory() as db:
                return rule_store.get_active(db, scope)

    return Reader()
