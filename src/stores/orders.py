# src/stores/orders.py
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from src.domain import DispatchOrder, Location, Page, to_naive_utc
from src.errors import NotFound
from src.model import Order

SORTABLE = {
    "createdAt": Order.created_at,
    "slaDeadline": Order.sla_deadline,
    "distanceKm": Order.distance_km,
    "priority": case({"high": 0, "medium": 1, "low": 2}, value=Order.priority),
}

MAX_LIMIT = 200


def to_domain(row: Order) -> DispatchOrder:
    return DispatchOrder(
        id=row.order_id,
        status=row.status,
        priority=row.priority,
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_address),
        drop=Location(row.drop_lat, row.drop_lng, row.drop_address),
        zone=row.zone,
        distance_km=row.distance_km,
        eta_minutes=row.eta_minutes,
        sla_deadline=row.sla_deadline,
        created_at=row.created_at,
        rider_id=row.rider_id,
        order_type=row.order_type,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        items=tuple(row.items or ()),
    )


def _apply_filters(stmt, *, status=None, zone=None, priority=None, search=None):
    if status:
        stmt = stmt.where(Order.status == status)
    if zone:
        stmt = stmt.where(Order.zone == zone)
    if priority and priority != "all":
        stmt = stmt.where(Order.priority == priority)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Order.order_id.ilike(like),
                Order.zone.ilike(like),
                Order.pickup_address.ilike(like),
                Order.drop_address.ilike(like),
                Order.customer_name.ilike(like),
            )
        )
    return stmt


def list_orders(
    db: Session,
    *,
    status: Optional[str] = None,
    zone: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 50,
) -> Page[DispatchOrder]:
    """
    Paginated order query.
    sort_by: createdAt | slaDeadline | distanceKm | priority (high first on asc)
    """
    page = max(1, page)
    limit = max(1, min(limit, MAX_LIMIT))
    filters = dict(status=status, zone=zone, priority=priority, search=search)

    total = db.scalar(_apply_filters(select(func.count()).select_from(Order), **filters))

    column = SORTABLE.get(sort_by, Order.created_at)
    ordering = column.desc() if sort_order == "desc" else column.asc()
    stmt = (
        _apply_filters(select(Order), **filters)
        .order_by(ordering, Order.order_id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = db.scalars(stmt).all()
    return Page(items=[to_domain(r) for r in rows], total=int(total or 0), page=page, limit=limit)


def count_orders(db: Session, **filters) -> int:
    stmt = _apply_filters(select(func.count()).select_from(Order), **filters)
    return int(db.scalar(stmt) or 0)


def status_counts(db: Session) -> Dict[str, int]:
    rows = db.execute(select(Order.status, func.count()).group_by(Order.status)).all()
    return {status: int(n) for status, n in rows}


def get_order(db: Session, order_id: str) -> DispatchOrder:
    row = db.get(Order, order_id)
    if row is None:
        raise NotFound(f"order {order_id} not found", orderId=order_id)
    return to_domain(row)


def list_unassigned(db: Session, order_ids: Optional[Iterable[str]] = None) -> List[DispatchOrder]:
    stmt = select(Order).where(Order.status == "unassigned")
    if order_ids is not None:
        stmt = stmt.where(Order.order_id.in_(list(order_ids)))
    return [to_domain(r) for r in db.scalars(stmt).all()]


def save_order(db: Session, order: DispatchOrder) -> DispatchOrder:
    """Insert or overwrite an order row. Callers own the transaction."""
    row = db.get(Order, order.id) or Order(order_id=order.id)
    row.status = order.status
    row.priority = order.priority
    row.order_type = order.order_type
    row.pickup_lat, row.pickup_lng, row.pickup_address = order.pickup.lat, order.pickup.lng, order.pickup.address
    row.drop_lat, row.drop_lng, row.drop_address = order.drop.lat, order.drop.lng, order.drop.address
    row.zone = order.zone
    row.distance_km = order.distance_km
    row.eta_minutes = order.eta_minutes
    row.sla_deadline = to_naive_utc(order.sla_deadline)
    row.created_at = to_naive_utc(order.created_at)
    row.rider_id = order.rider_id
    row.customer_name = order.customer_name
    row.customer_phone = order.customer_phone
    row.items = list(order.items)
    db.add(row)
    db.flush()
    return to_domain(row)
