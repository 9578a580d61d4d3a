# src/stores/riders.py
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from src.domain import DispatchRider, Location, Page
from src.errors import NotFound
from src.model import Rider

MAX_LIMIT = 200


def to_domain(row: Rider) -> DispatchRider:
    return DispatchRider(
        id=row.rider_id,
        name=row.name,
        status=row.status,
        location=Location(row.lat, row.lng),
        zone=row.zone,
        max_capacity=row.max_capacity,
        active_orders_count=row.active_orders_count,
        avg_eta_minutes=row.avg_eta_minutes,
    )


def _apply_filters(stmt, *, status=None, zone=None, search=None, has_capacity=None):
    if status:
        stmt = stmt.where(Rider.status == status)
    if zone:
        stmt = stmt.where(Rider.zone == zone)
    if has_capacity:
        stmt = stmt.where(Rider.active_orders_count < Rider.max_capacity)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Rider.rider_id.ilike(like), Rider.name.ilike(like), Rider.zone.ilike(like)))
    return stmt


def list_riders(
    db: Session,
    *,
    status: Optional[str] = None,
    zone: Optional[str] = None,
    search: Optional[str] = None,
    has_capacity: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
) -> Page[DispatchRider]:
    page = max(1, page)
    limit = max(1, min(limit, MAX_LIMIT))
    filters = dict(status=status, zone=zone, search=search, has_capacity=has_capacity)

    total = db.scalar(_apply_filters(select(func.count()).select_from(Rider), **filters))
    stmt = (
        _apply_filters(select(Rider), **filters)
        .order_by(Rider.rider_id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = db.scalars(stmt).all()
    return Page(items=[to_domain(r) for r in rows], total=int(total or 0), page=page, limit=limit)


def list_pool(db: Session) -> List[DispatchRider]:
    """Every rider that is not offline; the scoring engine applies the rest of the filters."""
    stmt = select(Rider).where(Rider.status != "offline").order_by(Rider.rider_id.asc())
    return [to_domain(r) for r in db.scalars(stmt).all()]


def status_counts(db: Session) -> Dict[str, int]:
    rows = db.execute(select(Rider.status, func.count()).group_by(Rider.status)).all()
    return {status: int(n) for status, n in rows}


def get_rider(db: Session, rider_id: str) -> DispatchRider:
    row = db.get(Rider, rider_id)
    if row is None:
        raise NotFound(f"rider {rider_id} not found", riderId=rider_id)
    return to_domain(row)


def save_rider(db: Session, rider: DispatchRider) -> DispatchRider:
    """Insert or overwrite a rider row. Callers own the transaction."""
    row = db.get(Rider, rider.id) or Rider(rider_id=rider.id)
    row.name = rider.name
    row.status = rider.status
    row.lat, row.lng = rider.location.lat, rider.location.lng
    row.zone = rider.zone
    row.active_orders_count = rider.active_orders_count
    row.max_capacity = rider.max_capacity
    row.avg_eta_minutes = rider.avg_eta_minutes
    db.add(row)
    db.flush()
    return to_domain(row)
