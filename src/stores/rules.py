# src/stores/rules.py
"""
Rule config store.

One auto-assign rule per dispatch scope. Reads fall back to the "default"
scope, then to the seeded default rule. Updates are validated as a whole
before anything is written and bump the rule's version in SQL.
"""

from __future__ import annotations

import uuid
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.config import DEFAULT_RULE_CRITERIA, DEFAULT_RULE_NAME, DEFAULT_SCOPE
from src.domain import AutoAssignRule, RuleCriteria, utcnow
from src.errors import InvalidRuleConfig
from src.model import AssignRule
from src.pipelines.locks import KeyedLocks
from src.schemas import AutoAssignRuleIn
from utils.logger import get_logger

logger = get_logger("rule_config")

# rule writes through save() take turns per scope
_scope_locks = KeyedLocks()


def to_domain(row: AssignRule) -> AutoAssignRule:
    return AutoAssignRule(
        id=row.rule_id,
        name=row.name,
        scope=row.scope,
        is_active=row.is_active,
        criteria=RuleCriteria(
            max_radius_km=row.max_radius_km,
            max_orders_per_rider=row.max_orders_per_rider,
            prefer_same_zone=row.prefer_same_zone,
            priority_weight=row.priority_weight,
            distance_weight=row.distance_weight,
            eta_weight=row.eta_weight,
        ),
        updated_at=row.updated_at,
        version=row.version,
        created_by=row.created_by,
    )


def default_rule(scope: str = DEFAULT_SCOPE) -> AutoAssignRule:
    c = DEFAULT_RULE_CRITERIA
    return AutoAssignRule(
        id="default",
        name=DEFAULT_RULE_NAME,
        scope=scope,
        is_active=False,
        criteria=RuleCriteria(
            max_radius_km=float(c["maxRadiusKm"]),
            max_orders_per_rider=int(c["maxOrdersPerRider"]),
            prefer_same_zone=bool(c["preferSameZone"]),
            priority_weight=float(c["priorityWeight"]),
            distance_weight=float(c["distanceWeight"]),
            eta_weight=float(c["etaWeight"]),
        ),
        updated_at=utcnow(),
        version=0,
    )


def _row_for_scope(db: Session, scope: str) -> Optional[AssignRule]:
    return db.scalars(select(AssignRule).where(AssignRule.scope == scope)).first()


def get_active(db: Session, scope: str = DEFAULT_SCOPE) -> AutoAssignRule:
    row = _row_for_scope(db, scope)
    if row is None and scope != DEFAULT_SCOPE:
        row = _row_for_scope(db, DEFAULT_SCOPE)
    if row is None:
        return default_rule(scope)
    return to_domain(row)


def list_rules(db: Session) -> List[AutoAssignRule]:
    rows = db.scalars(select(AssignRule).order_by(AssignRule.scope.asc())).all()
    return [to_domain(r) for r in rows]


def validate(data: Union[Mapping[str, Any], AutoAssignRuleIn]) -> AutoAssignRuleIn:
    if isinstance(data, AutoAssignRuleIn):
        data = data.model_dump(by_alias=True)
    try:
        return AutoAssignRuleIn.model_validate(data)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidRuleConfig("invalid auto-assign rule", errors=errors) from e


def _field_values(rule_in: AutoAssignRuleIn) -> dict:
    c = rule_in.criteria
    return dict(
        name=rule_in.name,
        is_active=rule_in.is_active,
        max_radius_km=c.max_radius_km,
        max_orders_per_rider=c.max_orders_per_rider,
        prefer_same_zone=c.prefer_same_zone,
        priority_weight=c.priority_weight,
        distance_weight=c.distance_weight,
        eta_weight=c.eta_weight,
    )


def update(
    db: Session,
    data: Union[Mapping[str, Any], AutoAssignRuleIn],
    *,
    actor: str = "operator",
) -> AutoAssignRule:
    """
    Validate and store a rule. All-or-nothing: a rejected payload raises
    InvalidRuleConfig before the session is touched, and the write happens in
    the caller's transaction.

    The version is bumped in SQL, so two writers never publish the same
    version. Two first-time writers for one scope race on the unique scope
    column; the loser gets IntegrityError (see ``save``).
    """
    rule_in = validate(data)
    values = _field_values(rule_in)

    row = _row_for_scope(db, rule_in.scope)
    if row is None:
        rule_id = rule_in.id
        if not rule_id or db.get(AssignRule, rule_id) is not None:
            rule_id = f"rule-{uuid.uuid4().hex[:8]}"
        row = AssignRule(
            rule_id=rule_id,
            scope=rule_in.scope,
            version=1,
            created_by=rule_in.created_by or actor,
            updated_at=utcnow(),
            **values,
        )
        db.add(row)
        db.flush()
    else:
        db.execute(
            sql_update(AssignRule)
            .where(AssignRule.scope == rule_in.scope)
            .values(version=AssignRule.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        db.refresh(row)

    logger.info(
        f"rule '{row.name}' scope={row.scope} v{row.version} active={row.is_active} "
        f"radius={row.max_radius_km}km weights(d/e/p)={row.distance_weight}/{row.eta_weight}/{row.priority_weight}"
    )
    return to_domain(row)


def save(
    session_factory: sessionmaker,
    data: Union[Mapping[str, Any], AutoAssignRuleIn],
    *,
    actor: str = "operator",
) -> AutoAssignRule:
    """
    ``update`` in a transaction of its own. Writers for one scope take turns in
    this process; a unique-scope clash with another process is retried once,
    by which time the row exists and the write becomes a plain update.
    """
    rule_in = validate(data)
    with _scope_locks.hold(rule_in.scope):
        for attempt in (1, 2):
            try:
                with session_factory() as db:
                    with db.begin():
                        return update(db, rule_in, actor=actor)
            except IntegrityError as e:
                if attempt == 2:
                    raise
                logger.warning(f"rule scope={rule_in.scope} created concurrently, retrying as update: {e.orig}")


def ensure_default(db: Session) -> AutoAssignRule:
    """Seed the default scope once; existing rules are left alone."""
    row = _row_for_scope(db, DEFAULT_SCOPE)
    if row is not None:
        return to_domain(row)
    rule = default_rule()
    c = rule.criteria
    return update(
        db,
        {
            "id": "default",
            "name": rule.name,
            "scope": DEFAULT_SCOPE,
            "isActive": rule.is_active,
            "criteria": {
                "maxRadiusKm": c.max_radius_km,
                "maxOrdersPerRider": c.max_orders_per_rider,
                "preferSameZone": c.prefer_same_zone,
                "priorityWeight": c.priority_weight,
                "distanceWeight": c.distance_weight,
                "etaWeight": c.eta_weight,
            },
        },
        actor="system",
    )
