import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import schemas
from .domain import DispatchOrder, Location
from .errors import DispatchError, NotFound
from .model import Order
from .pipelines import scoring
from .services import DispatchServices
from .stores import assignments as assignment_log
from .stores import orders as order_store
from .stores import riders as rider_store
from .stores import rules as rule_store
from utils.logger import get_logger

logger = get_logger("dispatch_api")

router = APIRouter(prefix="/api/v1/rider/dispatch", tags=["dispatch"])
health_router = APIRouter(prefix="/api", tags=["health"])


def get_services(request: Request) -> DispatchServices:
    return request.app.state.services


def get_db(services: DispatchServices = Depends(get_services)):
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()


def _http_error(e: DispatchError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


@health_router.get("/health", summary="API health", status_code=status.HTTP_200_OK)
def health_check():
    return {"status": "ok", "message": "Dispatch assignment engine is running."}


# ===========================
#  Orders
# ===========================
def _new_order(body: schemas.OrderCreate, now) -> DispatchOrder:
    return DispatchOrder(
        id=body.id or f"ORD-{uuid.uuid4().hex[:8].upper()}",
        status="unassigned",
        priority=body.priority,
        order_type=body.order_type,
        pickup=Location(body.pickup_location.lat, body.pickup_location.lng, body.pickup_location.address),
        drop=Location(body.drop_location.lat, body.drop_location.lng, body.drop_location.address),
        zone=body.zone,
        distance_km=body.distance_km,
        eta_minutes=body.eta_minutes,
        sla_deadline=body.sla_deadline,
        created_at=body.created_at or now,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        items=tuple(body.items),
    )


def _order_exists(order_id: str) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "ORDER_EXISTS", "message": f"order {order_id} already exists"},
    )


def _insert_order(services: DispatchServices, order: DispatchOrder) -> DispatchOrder:
    try:
        with services.session_factory() as db:
            with db.begin():
                if db.get(Order, order.id) is not None:
                    raise _order_exists(order.id)
                return order_store.save_order(db, order)
    except IntegrityError:
        # lost an insert race on the same id
        with services.session_factory() as db:
            if db.get(Order, order.id) is None:
                raise
        logger.warning(f"order {order.id} was created concurrently")
        raise _order_exists(order.id)


@router.post("/orders", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED, summary="Order intake")
def create_order(body: schemas.OrderCreate, services: DispatchServices = Depends(get_services)):
    order = _insert_order(services, _new_order(body, services.coordinator.clock()))
    logger.info(f"📦 order created: {order.id} ({order.priority}, zone={order.zone})")
    return schemas.OrderOut.from_domain(order)


@router.post("/manual-order", response_model=schemas.ManualOrderResult, summary="Operator-created order")
def create_manual_order(body: schemas.ManualOrderRequest, services: DispatchServices = Depends(get_services)):
    order = _insert_order(services, _new_order(body, services.coordinator.clock()))

    if not body.rider_id:
        return schemas.ManualOrderResult(
            order_id=order.id, status="unassigned", rider_id=None, message="Order created"
        )

    # pre-assignment goes through the same commit path as POST /assign
    try:
        services.coordinator.assign(order.id, body.rider_id, body.override_sla, body.actor)
    except DispatchError as e:
        logger.warning(f"manual order {order.id} created but not assigned: {e.code}")
        return schemas.ManualOrderResult(
            order_id=order.id,
            status="unassigned",
            rider_id=None,
            message=f"Order created; assignment failed: {e.code} ({e.message})",
        )
    return schemas.ManualOrderResult(
        order_id=order.id, status="assigned", rider_id=body.rider_id, message="Order created and assigned"
    )


@router.get("/unassigned-orders", response_model=schemas.OrdersPage, summary="Unassigned order queue")
def list_unassigned_orders(
    priority: Optional[str] = None,
    zone: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=order_store.MAX_LIMIT),
    db: Session = Depends(get_db),
):
    result = order_store.list_orders(
        db,
        status="unassigned",
        zone=zone,
        priority=priority,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return schemas.OrdersPage(
        orders=[schemas.OrderOut.from_domain(o) for o in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/unassigned-orders/count", summary="Unassigned order count")
def count_unassigned_orders(
    priority: Optional[str] = None,
    zone: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return {"count": order_store.count_orders(db, status="unassigned", priority=priority, zone=zone)}


@router.post("/orders/{order_id}/progress", response_model=schemas.OrderOut, summary="Delivery progress event")
def order_progress(
    order_id: str,
    body: schemas.ProgressRequest,
    services: DispatchServices = Depends(get_services),
):
    try:
        order = services.events.advance(order_id, body.status)
    except DispatchError as e:
        raise _http_error(e)
    return schemas.OrderOut.from_domain(order)


@router.get(
    "/order/{order_id}/assignment-details",
    response_model=schemas.AssignmentDetails,
    summary="Order with its assignment history",
)
def assignment_details(order_id: str, db: Session = Depends(get_db)):
    try:
        order = order_store.get_order(db, order_id)
        rider = rider_store.get_rider(db, order.rider_id) if order.rider_id else None
    except NotFound as e:
        raise _http_error(e)
    history = assignment_log.history_for_order(db, order_id)
    return schemas.AssignmentDetails(
        order=schemas.OrderOut.from_domain(order),
        rider=schemas.RiderOut.from_domain(rider) if rider else None,
        history=[schemas.AssignmentOut.from_domain(a) for a in history],
    )


# ===========================
#  Riders
# ===========================
@router.get("/riders", response_model=schemas.RidersPage, summary="Rider list")
def list_riders(
    status_: Optional[str] = Query(None, alias="status"),
    zone: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=rider_store.MAX_LIMIT),
    db: Session = Depends(get_db),
):
    result = rider_store.list_riders(db, status=status_, zone=zone, search=search, page=page, limit=limit)
    return schemas.RidersPage(
        riders=[schemas.RiderOut.from_domain(r) for r in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.put("/riders/{rider_id}/telemetry", response_model=schemas.RiderOut, summary="Rider telemetry update")
def rider_telemetry(
    rider_id: str,
    body: schemas.TelemetryRequest,
    services: DispatchServices = Depends(get_services),
):
    try:
        rider = services.events.update_telemetry(
            rider_id, status=body.status, lat=body.lat, lng=body.lng, zone=body.zone
        )
    except DispatchError as e:
        raise _http_error(e)
    return schemas.RiderOut.from_domain(rider)


def _map_riders(db: Session) -> List[schemas.RiderOut]:
    riders = rider_store.list_riders(db, limit=rider_store.MAX_LIMIT).items
    return [schemas.RiderOut.from_domain(r) for r in riders]


def _map_orders(db: Session) -> List[schemas.OrderOut]:
    open_orders: List[DispatchOrder] = []
    for st in ("unassigned", "assigned", "in_transit"):
        open_orders += order_store.list_orders(db, status=st, limit=order_store.MAX_LIMIT).items
    return [schemas.OrderOut.from_domain(o) for o in open_orders]


@router.get("/map-data", response_model=schemas.MapData, summary="Riders and open orders with status counts")
def map_data(db: Session = Depends(get_db)):
    return schemas.MapData(
        riders=_map_riders(db),
        orders=_map_orders(db),
        status_counts={
            "riders": rider_store.status_counts(db),
            "orders": order_store.status_counts(db),
        },
    )


@router.get("/map-data/riders", response_model=List[schemas.RiderOut], summary="Map layer: all riders")
def map_riders(db: Session = Depends(get_db)):
    return _map_riders(db)


@router.get("/map-data/orders", response_model=List[schemas.OrderOut], summary="Map layer: open orders")
def map_orders(db: Session = Depends(get_db)):
    return _map_orders(db)


# ===========================
#  Assignment
# ===========================
@router.post("/assign", response_model=schemas.AssignmentOut, summary="Assign one order to a rider")
def assign_order(body: schemas.AssignRequest, services: DispatchServices = Depends(get_services)):
    try:
        fact = services.coordinator.assign(body.order_id, body.rider_id, body.override_sla, body.actor)
    except DispatchError as e:
        logger.info(f"assign {body.order_id} → {body.rider_id} rejected: {e.code}")
        raise _http_error(e)
    return schemas.AssignmentOut.from_domain(fact)


@router.post("/batch-assign", response_model=schemas.BatchAssignResult, summary="Assign many orders to one rider")
def batch_assign(body: schemas.BatchAssignRequest, services: DispatchServices = Depends(get_services)):
    result = services.batch.assign_batch(body.order_ids, body.rider_id, body.actor)
    return schemas.BatchAssignResult(
        assigned_count=result.assigned_count,
        failed_order_ids=result.failed_order_ids,
        failures=[schemas.BatchFailureOut(order_id=f.order_id, reason=f.reason) for f in result.failures],
    )


@router.post("/auto-assign", response_model=schemas.AutoAssignResult, summary="Run one auto-assign pass over given orders")
def auto_assign(body: schemas.AutoAssignRequest, services: DispatchServices = Depends(get_services)):
    result = services.scheduler.run_once(body.order_ids)
    if result.state == "failed":
        raise HTTPException(
            status_code=503,
            detail={"code": "AUTO_ASSIGN_FAILED", "message": result.reason, "assigned": result.assigned},
        )
    # orders that were not unassigned at fetch time never reached the ranking
    not_processed = len(set(body.order_ids)) - result.assigned - result.failed
    return schemas.AutoAssignResult(assigned=result.assigned, failed=result.failed + max(0, not_processed))


@router.get(
    "/recommended-riders/{order_id}",
    response_model=schemas.RecommendedRidersResponse,
    summary="Ranked candidate riders for an order",
)
def recommended_riders(
    order_id: str,
    search: Optional[str] = None,
    scope: str = "default",
    db: Session = Depends(get_db),
):
    try:
        order = order_store.get_order(db, order_id)
    except NotFound as e:
        raise _http_error(e)
    rule = rule_store.get_active(db, scope)
    ranked = scoring.rank(order, rider_store.list_pool(db), rule, search=search)
    return schemas.RecommendedRidersResponse(
        riders=[schemas.RecommendedRider.from_candidate(c, is_recommended=(i == 0)) for i, c in enumerate(ranked)],
        order_details=schemas.OrderOut.from_domain(order),
    )


# ===========================
#  Rule config
# ===========================
@router.get("/auto-assign-rules", response_model=List[schemas.AutoAssignRuleOut], summary="All auto-assign rules")
def list_auto_assign_rules(db: Session = Depends(get_db)):
    rules = rule_store.list_rules(db) or [rule_store.default_rule()]
    return [schemas.AutoAssignRuleOut.from_domain(r) for r in rules]


@router.get("/rule-config", response_model=schemas.AutoAssignRuleOut, summary="Active rule for a scope")
def get_rule_config(scope: str = "default", db: Session = Depends(get_db)):
    return schemas.AutoAssignRuleOut.from_domain(rule_store.get_active(db, scope))


@router.put("/auto-assign-rules", response_model=schemas.AutoAssignRuleOut, summary="Update an auto-assign rule")
@router.put("/rule-config", response_model=schemas.AutoAssignRuleOut, summary="Update an auto-assign rule")
def update_rule_config(
    payload: Dict[str, Any] = Body(...),
    actor: str = "operator",
    services: DispatchServices = Depends(get_services),
):
    try:
        rule = rule_store.save(services.session_factory, payload, actor=actor)
    except DispatchError as e:
        raise _http_error(e)
    return schemas.AutoAssignRuleOut.from_domain(rule)


# ===========================
#  Engine
# ===========================
@router.get("/engine/status", response_model=schemas.EngineStatus, summary="Auto-assign scheduler status")
def engine_status(services: DispatchServices = Depends(get_services)):
    return schemas.EngineStatus(**services.scheduler.status())


@router.post("/engine/pause", response_model=schemas.EngineStatus, summary="Pause auto-assign scheduler")
def engine_pause(services: DispatchServices = Depends(get_services)):
    services.scheduler.pause()
    return schemas.EngineStatus(**services.scheduler.status())


@router.post("/engine/resume", response_model=schemas.EngineStatus, summary="Resume auto-assign scheduler")
def engine_resume(services: DispatchServices = Depends(get_services)):
    services.scheduler.resume()
    return schemas.EngineStatus(**services.scheduler.status())
