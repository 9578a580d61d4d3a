from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .domain import (
    AssignmentFact, AutoAssignRule, Candidate, DispatchOrder, DispatchRider, RuleCriteria, to_naive_utc,
)

OrderStatus = Literal["unassigned", "assigned", "in_transit", "delivered", "cancelled"]
RiderStatus = Literal["online", "offline", "busy", "idle"]
Priority = Literal["high", "medium", "low"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===========================
#  Rule config
# ===========================
class RuleCriteriaIn(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_radius_km: float = Field(gt=0)
    max_orders_per_rider: int = Field(ge=1)
    prefer_same_zone: bool
    priority_weight: float = Field(ge=0, le=10)
    distance_weight: float = Field(ge=0, le=10)
    eta_weight: float = Field(ge=0, le=10)

    def to_domain(self) -> RuleCriteria:
        return RuleCriteria(
            max_radius_km=self.max_radius_km,
            max_orders_per_rider=self.max_orders_per_rider,
            prefer_same_zone=self.prefer_same_zone,
            priority_weight=self.priority_weight,
            distance_weight=self.distance_weight,
            eta_weight=self.eta_weight,
        )


class AutoAssignRuleIn(CamelModel):
    # read-only fields sent back by the console (updatedAt, version, ...) are ignored
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str = Field(min_length=1)
    scope: str = "default"
    is_active: bool
    criteria: RuleCriteriaIn
    created_by: Optional[str] = None


class AutoAssignRuleOut(CamelModel):
    id: str
    name: str
    scope: str
    is_active: bool
    criteria: RuleCriteriaIn
    version: int
    created_by: str
    updated_at: datetime

    @classmethod
    def from_domain(cls, rule: AutoAssignRule) -> "AutoAssignRuleOut":
        c = rule.criteria
        return cls(
            id=rule.id,
            name=rule.name,
            scope=rule.scope,
            is_active=rule.is_active,
            criteria=RuleCriteriaIn(
                max_radius_km=c.max_radius_km,
                max_orders_per_rider=c.max_orders_per_rider,
                prefer_same_zone=c.prefer_same_zone,
                priority_weight=c.priority_weight,
                distance_weight=c.distance_weight,
                eta_weight=c.eta_weight,
            ),
            version=rule.version,
            created_by=rule.created_by,
            updated_at=rule.updated_at,
        )


# ===========================
#  Orders / riders
# ===========================
class LocationOut(CamelModel):
    lat: float
    lng: float
    address: str = ""


class OrderOut(CamelModel):
    id: str
    status: OrderStatus
    priority: Priority
    order_type: str
    pickup_location: LocationOut
    drop_location: LocationOut
    zone: str
    distance_km: float
    eta_minutes: float
    sla_deadline: datetime
    created_at: datetime
    rider_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[str] = []

    @classmethod
    def from_domain(cls, o: DispatchOrder) -> "OrderOut":
        return cls(
            id=o.id,
            status=o.status,
            priority=o.priority,
            order_type=o.order_type,
            pickup_location=LocationOut(lat=o.pickup.lat, lng=o.pickup.lng, address=o.pickup.address),
            drop_location=LocationOut(lat=o.drop.lat, lng=o.drop.lng, address=o.drop.address),
            zone=o.zone,
            distance_km=o.distance_km,
            eta_minutes=o.eta_minutes,
            sla_deadline=o.sla_deadline,
            created_at=o.created_at,
            rider_id=o.rider_id,
            customer_name=o.customer_name,
            customer_phone=o.customer_phone,
            items=list(o.items),
        )


class RiderLoad(CamelModel):
    current: int
    max: int


class RiderOut(CamelModel):
    id: str
    name: str
    status: RiderStatus
    location: LocationOut
    zone: str
    load: RiderLoad
    avg_eta_mins: float

    @classmethod
    def from_domain(cls, r: DispatchRider) -> "RiderOut":
        return cls(
            id=r.id,
            name=r.name,
            status=r.status,
            location=LocationOut(lat=r.location.lat, lng=r.location.lng),
            zone=r.zone,
            load=RiderLoad(current=r.active_orders_count, max=r.max_capacity),
            avg_eta_mins=r.avg_eta_minutes,
        )


class PointIn(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str = ""


class OrderCreate(CamelModel):
    id: Optional[str] = None
    priority: Priority = "medium"
    order_type: Literal["standard", "express"] = "standard"
    pickup_location: PointIn
    drop_location: PointIn
    zone: str = Field(min_length=1)
    distance_km: float = Field(ge=0)
    eta_minutes: float = Field(ge=0)
    sla_deadline: datetime
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[str] = []

    @field_validator("sla_deadline", "created_at")
    @classmethod
    def _naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else v


class ManualOrderRequest(OrderCreate):
    customer_name: str = Field(min_length=1)
    rider_id: Optional[str] = None
    override_sla: bool = False
    actor: str = "operator"

    @field_validator("items")
    @classmethod
    def _non_empty_items(cls, v: List[str]) -> List[str]:
        items = [i.strip() for i in v if i and i.strip()]
        if not items:
            raise ValueError("add at least one item")
        return items


class ManualOrderResult(CamelModel):
    order_id: str
    status: OrderStatus
    rider_id: Optional[str] = None
    message: str


class OrdersPage(CamelModel):
    orders: List[OrderOut]
    total: int
    page: int
    limit: int
    total_pages: int


class RidersPage(CamelModel):
    riders: List[RiderOut]
    total: int
    page: int
    limit: int
    total_pages: int


class ProgressRequest(CamelModel):
    status: Literal["in_transit", "delivered", "cancelled"]


class TelemetryRequest(CamelModel):
    status: Optional[RiderStatus] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    zone: Optional[str] = None


# ===========================
#  Assignment
# ===========================
class AssignRequest(CamelModel):
    order_id: str
    rider_id: str
    override_sla: bool = False
    actor: str = "operator"


class AssignmentOut(CamelModel):
    order_id: str
    rider_id: str
    assigned_at: datetime
    override_sla: bool
    assigned_by: str
    score: Optional[float] = None

    @classmethod
    def from_domain(cls, a: AssignmentFact) -> "AssignmentOut":
        return cls(
            order_id=a.order_id,
            rider_id=a.rider_id,
            assigned_at=a.assigned_at,
            override_sla=a.override_sla,
            assigned_by=a.assigned_by,
            score=a.score,
        )


class BatchAssignRequest(CamelModel):
    order_ids: List[str] = Field(min_length=1)
    rider_id: str
    actor: str = "operator"


class BatchFailureOut(CamelModel):
    order_id: str
    reason: str


class BatchAssignResult(CamelModel):
    assigned_count: int
    failed_order_ids: List[str]
    failures: List[BatchFailureOut]


class AutoAssignRequest(CamelModel):
    order_ids: List[str] = Field(min_length=1)


class AutoAssignResult(CamelModel):
    assigned: int
    failed: int


class RecommendedRider(CamelModel):
    id: str
    name: str
    zone: str
    status: RiderStatus
    load: RiderLoad
    estimated_pickup_minutes: float
    distance: float
    score: float
    is_recommended: bool

    @classmethod
    def from_candidate(cls, c: Candidate, *, is_recommended: bool) -> "RecommendedRider":
        r = c.rider
        return cls(
            id=r.id,
            name=r.name,
            zone=r.zone,
            status=r.status,
            load=RiderLoad(current=r.active_orders_count, max=r.max_capacity),
            estimated_pickup_minutes=c.estimated_pickup_minutes,
            distance=c.distance_km,
            score=c.score,
            is_recommended=is_recommended,
        )


class RecommendedRidersResponse(CamelModel):
    riders: List[RecommendedRider]
    order_details: OrderOut


class AssignmentDetails(CamelModel):
    order: OrderOut
    rider: Optional[RiderOut] = None
    history: List[AssignmentOut]


class MapData(CamelModel):
    riders: List[RiderOut]
    orders: List[OrderOut]
    status_counts: Dict[str, Dict[str, int]]


class EngineStatus(CamelModel):
    status: Literal["running", "paused", "stopped"]
    interval_sec: float
    last_tick_at: Optional[datetime] = None
    last_tick_state: Optional[str] = None
    last_tick_assigned: int = 0
    last_tick_failed: int = 0
    ticks: int = 0
    failed_ticks: int = 0
    total_assigned: int = 0
    total_failed: int = 0
    success_rate: float = 0.0
