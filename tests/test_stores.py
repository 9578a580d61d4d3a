from datetime import timedelta

import pytest

from src.domain import Page
from src.errors import NotFound
from src.stores import orders as order_store
from src.stores import riders as rider_store

from conftest import NOW, make_order, make_rider


@pytest.fixture
def populated(seed):
    seed(
        riders=[
            make_rider("R1", name="Amal", zone="A"),
            make_rider("R2", name="Basil", zone="B", status="busy"),
            make_rider("R3", name="Carla", zone="B", status="offline", active_orders_count=2, max_capacity=2),
        ],
        orders=[
            make_order(f"O{i}", zone="AB"[i % 2], priority=("high", "medium", "low")[i % 3],
                       created_at=NOW - timedelta(minutes=i), distance_km=float(i),
                       customer_name=f"Customer {i}")
            for i in range(7)
        ],
    )


def test_order_round_trip_keeps_supplementary_fields(seed, session_factory):
    order = make_order(
        "O1", order_type="express", customer_name="Noor", customer_phone="+974 5555", items=("milk", "bread")
    )
    seed(orders=[order])
    with session_factory() as db:
        assert order_store.get_order(db, "O1") == order


def test_get_missing_raises(session_factory):
    with session_factory() as db:
        with pytest.raises(NotFound):
            order_store.get_order(db, "NOPE")
        with pytest.raises(NotFound):
            rider_store.get_rider(db, "NOPE")


def test_order_filters_and_search(populated, session_factory):
    with session_factory() as db:
        zone_b = order_store.list_orders(db, zone="B", limit=100)
        assert {o.id for o in zone_b.items} == {"O1", "O3", "O5"}

        high = order_store.list_orders(db, priority="high")
        assert {o.id for o in high.items} == {"O0", "O3", "O6"}
        assert order_store.list_orders(db, priority="all").total == 7

        found = order_store.list_orders(db, search="customer 4")
        assert [o.id for o in found.items] == ["O4"]


def test_order_sorting_and_paging(populated, session_factory):
    with session_factory() as db:
        by_distance = order_store.list_orders(db, sort_by="distanceKm", sort_order="desc", limit=3)
        assert [o.id for o in by_distance.items] == ["O6", "O5", "O4"]
        assert by_distance.total == 7
        assert by_distance.total_pages == 3

        last = order_store.list_orders(db, sort_by="distanceKm", page=3, limit=3)
        assert [o.id for o in last.items] == ["O6"]

        # unknown sort key falls back to createdAt
        oldest = order_store.list_orders(db, sort_by="bogus", limit=1)
        assert oldest.items[0].id == "O6"


def test_limit_is_clamped(populated, session_factory):
    with session_factory() as db:
        page = order_store.list_orders(db, limit=10_000, page=0)
    assert page.limit == order_store.MAX_LIMIT
    assert page.page == 1


def test_page_math():
    assert Page(items=[], total=0, page=1, limit=50).total_pages == 1
    assert Page(items=[], total=101, page=1, limit=50).total_pages == 3


def test_counts(populated, session_factory):
    with session_factory() as db:
        assert order_store.count_orders(db, status="unassigned") == 7
        assert order_store.status_counts(db) == {"unassigned": 7}
        assert rider_store.status_counts(db) == {"online": 1, "busy": 1, "offline": 1}


def test_list_unassigned_subset(populated, session_factory):
    with session_factory() as db:
        subset = order_store.list_unassigned(db, ["O1", "O2", "NOPE"])
        everything = order_store.list_unassigned(db)
    assert {o.id for o in subset} == {"O1", "O2"}
    assert len(everything) == 7


def test_rider_pool_excludes_offline(populated, session_factory):
    with session_factory() as db:
        assert [r.id for r in rider_store.list_pool(db)] == ["R1", "R2"]


def test_rider_filters(populated, session_factory):
    with session_factory() as db:
        assert [r.id for r in rider_store.list_riders(db, zone="B").items] == ["R2", "R3"]
        assert [r.id for r in rider_store.list_riders(db, search="carl").items] == ["R3"]
        assert [r.id for r in rider_store.list_riders(db, zone="B", has_capacity=True).items] == ["R2"]


def test_domain_invariants_are_enforced():
    with pytest.raises(ValueError):
        make_rider("R1", active_orders_count=4, max_capacity=3)
    with pytest.raises(ValueError):
        make_rider("R1", status="sleeping")
    with pytest.raises(ValueError):
        make_order("O1", status="assigned")  # no rider
    with pytest.raises(ValueError):
        make_order("O1", rider_id="R1")  # unassigned but held
    with pytest.raises(ValueError):
        make_order("O1", priority="urgent")
