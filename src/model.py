from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String,
)
from sqlalchemy.orm import relationship
from .database import Base


# rider table
class Rider(Base):
    __tablename__ = "riders"

    rider_id = Column(String, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    status = Column(String, index=True, nullable=False, default="offline")
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    zone = Column(String, index=True, nullable=False)

    active_orders_count = Column(Integer, nullable=False, default=0)
    max_capacity = Column(Integer, nullable=False, default=1)
    avg_eta_minutes = Column(Float, nullable=False, default=0.0)

    orders = relationship("Order", back_populates="rider")

    __table_args__ = (
        CheckConstraint(
            "status IN ('online', 'offline', 'busy', 'idle')", name="ck_riders_status"
        ),
        CheckConstraint("max_capacity >= 1", name="ck_riders_capacity_min"),
        CheckConstraint(
            "active_orders_count >= 0 AND active_orders_count <= max_capacity",
            name="ck_riders_load_range",
        ),
        CheckConstraint("avg_eta_minutes >= 0", name="ck_riders_eta_nonneg"),
    )


# order table
class Order(Base):
    __tablename__ = "orders"

    order_id = Column(String, primary_key=True, index=True)
    status = Column(String, index=True, nullable=False, default="unassigned")
    priority = Column(String, index=True, nullable=False, default="medium")
    order_type = Column(String, nullable=False, default="standard")

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String, nullable=False, default="")
    drop_lat = Column(Float, nullable=False)
    drop_lng = Column(Float, nullable=False)
    drop_address = Column(String, nullable=False, default="")

    zone = Column(String, index=True, nullable=False)
    distance_km = Column(Float, nullable=False, default=0.0)
    eta_minutes = Column(Float, nullable=False, default=0.0)
    sla_deadline = Column(DateTime, nullable=False)
    created_at = Column(DateTime, index=True, nullable=False)

    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    items = Column(JSON, nullable=False, default=list)

    rider_id = Column(
        String,
        ForeignKey("riders.rider_id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )

    rider = relationship("Rider", back_populates="orders")
    assignments = relationship(
        "Assignment",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('unassigned', 'assigned', 'in_transit', 'delivered', 'cancelled')",
            name="ck_orders_status",
        ),
        CheckConstraint("priority IN ('high', 'medium', 'low')", name="ck_orders_priority"),
        CheckConstraint("distance_km >= 0", name="ck_orders_distance_nonneg"),
        CheckConstraint("eta_minutes >= 0", name="ck_orders_eta_nonneg"),
        # rider_id is set iff the order is held by a rider
        CheckConstraint(
            "(status IN ('assigned', 'in_transit', 'delivered') AND rider_id IS NOT NULL) "
            "OR (status IN ('unassigned', 'cancelled') AND rider_id IS NULL)",
            name="ck_orders_rider_matches_status",
        ),
        Index("ix_orders_status_priority_created", "status", "priority", "created_at"),
    )


# auto-assign rule table (one row per dispatch scope)
class AssignRule(Base):
    __tablename__ = "auto_assign_rules"

    rule_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    scope = Column(String, nullable=False, unique=True, default="default")
    is_active = Column(Boolean, nullable=False, default=False)

    max_radius_km = Column(Float, nullable=False)
    max_orders_per_rider = Column(Integer, nullable=False)
    prefer_same_zone = Column(Boolean, nullable=False, default=True)
    priority_weight = Column(Float, nullable=False)
    distance_weight = Column(Float, nullable=False)
    eta_weight = Column(Float, nullable=False)

    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String, nullable=False, default="system")
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("max_radius_km > 0", name="ck_rules_radius_pos"),
        CheckConstraint("max_orders_per_rider >= 1", name="ck_rules_orders_min"),
        CheckConstraint(
            "priority_weight BETWEEN 0 AND 10 AND distance_weight BETWEEN 0 AND 10 "
            "AND eta_weight BETWEEN 0 AND 10",
            name="ck_rules_weights_range",
        ),
    )


# append-only assignment history
class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        String,
        ForeignKey("orders.order_id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    rider_id = Column(
        String,
        ForeignKey("riders.rider_id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )
    assigned_at = Column(DateTime, nullable=False)
    override_sla = Column(Boolean, nullable=False, default=False)
    assigned_by = Column(String, nullable=False)
    score = Column(Float, nullable=True)

    order = relationship("Order", back_populates="assignments")

    __table_args__ = (
        Index("ix_assignments_order_assigned_at", "order_id", "assigned_at"),
    )
