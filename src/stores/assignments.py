# src/stores/assignments.py
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.domain import AssignmentFact
from src.model import Assignment


def to_domain(row: Assignment) -> AssignmentFact:
    return AssignmentFact(
        order_id=row.order_id,
        rider_id=row.rider_id,
        assigned_at=row.assigned_at,
        override_sla=row.override_sla,
        assigned_by=row.assigned_by,
        score=row.score,
    )


def append(db: Session, fact: AssignmentFact) -> AssignmentFact:
    """Append-only: rows are never updated or deleted by the engine."""
    db.add(
        Assignment(
            order_id=fact.order_id,
            rider_id=fact.rider_id,
            assigned_at=fact.assigned_at,
            override_sla=fact.override_sla,
            assigned_by=fact.assigned_by,
            score=fact.score,
        )
    )
    return fact


def history_for_order(db: Session, order_id: str) -> List[AssignmentFact]:
    stmt = (
        select(Assignment)
        .where(Assignment.order_id == order_id)
        .order_by(Assignment.assigned_at.asc(), Assignment.id.asc())
    )
    return [to_domain(r) for r in db.scalars(stmt).all()]
