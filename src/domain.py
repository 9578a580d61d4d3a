"""
Core dispatch entities.

Persistence rows (src/model.py) are converted into these frozen dataclasses
before they reach the scoring / scheduling code, so ranking always works on a
point-in-time snapshot that cannot be mutated behind its back.

All timestamps are naive UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Generic, List, Optional, Tuple, TypeVar

ORDER_STATUSES = ("unassigned", "assigned", "in_transit", "delivered", "cancelled")
RIDER_STATUSES = ("online", "offline", "busy", "idle")
PRIORITIES = ("high", "medium", "low")
ORDER_TYPES = ("standard", "express")

# statuses in which an order is held by a rider
HELD_STATUSES = ("assigned", "in_transit", "delivered")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    address: str = ""


@dataclass(frozen=True)
class DispatchOrder:
    id: str
    priority: str
    pickup: Location
    drop: Location
    zone: str
    sla_deadline: datetime
    created_at: datetime
    status: str = "unassigned"
    distance_km: float = 0.0
    eta_minutes: float = 0.0
    rider_id: Optional[str] = None
    order_type: str = "standard"
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.status not in ORDER_STATUSES:
            raise ValueError(f"unknown order status: {self.status}")
        if self.priority not in PRIORITIES:
            raise ValueError(f"unknown priority: {self.priority}")
        if self.distance_km < 0 or self.eta_minutes < 0:
            raise ValueError("distance_km and eta_minutes must be >= 0")
        if (self.rider_id is not None) != (self.status in HELD_STATUSES):
            raise ValueError(
                f"order {self.id}: rider_id must be set iff status is one of {HELD_STATUSES}"
            )


@dataclass(frozen=True)
class DispatchRider:
    id: str
    name: str
    status: str
    location: Location
    zone: str
    max_capacity: int
    active_orders_count: int = 0
    avg_eta_minutes: float = 0.0

    def __post_init__(self):
        if self.status not in RIDER_STATUSES:
            raise ValueError(f"unknown rider status: {self.status}")
        if self.max_capacity < 1:
            raise ValueError("max_capacity must be >= 1")
        if not 0 <= self.active_orders_count <= self.max_capacity:
            raise ValueError("active_orders_count must be within [0, max_capacity]")
        if self.avg_eta_minutes < 0:
            raise ValueError("avg_eta_minutes must be >= 0")

    @property
    def remaining_capacity(self) -> int:
        return self.max_capacity - self.active_orders_count

    def with_load(self, active_orders_count: int) -> "DispatchRider":
        return replace(self, active_orders_count=active_orders_count)


@dataclass(frozen=True)
class RuleCriteria:
    max_radius_km: float
    max_orders_per_rider: int
    prefer_same_zone: bool
    priority_weight: float
    distance_weight: float
    eta_weight: float


@dataclass(frozen=True)
class AutoAssignRule:
    id: str
    name: str
    is_active: bool
    criteria: RuleCriteria
    updated_at: datetime
    scope: str = "default"
    version: int = 1
    created_by: str = "system"


@dataclass(frozen=True)
class AssignmentFact:
    order_id: str
    rider_id: str
    assigned_at: datetime
    override_sla: bool
    assigned_by: str
    score: Optional[float] = None


@dataclass(frozen=True)
class Candidate:
    rider: DispatchRider
    score: float
    distance_km: float
    estimated_pickup_minutes: float


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 1
        return max(1, -(-self.total // self.limit))


@dataclass(frozen=True)
class BatchFailure:
    order_id: str
    reason: str


@dataclass
class BatchResult:
    assigned_count: int = 0
    failed_order_ids: List[str] = field(default_factory=list)
    # one entry per failed attempt, in request order; duplicates are kept
    failures: List[BatchFailure] = field(default_factory=list)
    assignments: List[AssignmentFact] = field(default_factory=list)
