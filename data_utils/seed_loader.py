# data_utils/seed_loader.py
"""
CSV → riders / orders.

Required columns are enforced; only the optional ones get defaults, so a
missing number never quietly turns into 0.
"""

from pathlib import Path
from typing import List, Union

import pandas as pd
from sqlalchemy.orm import Session

from src.domain import DispatchOrder, DispatchRider, Location, to_naive_utc, utcnow
from src.stores import orders as order_store
from src.stores import riders as rider_store
from utils.logger import get_logger

logger = get_logger("seed_loader")

RIDER_REQUIRED = ["rider_id", "name", "status", "lat", "lng", "zone", "max_capacity"]
RIDER_DEFAULTS = {"active_orders_count": 0, "avg_eta_minutes": 0.0}

ORDER_REQUIRED = [
    "order_id", "priority", "pickup_lat", "pickup_lng", "drop_lat", "drop_lng",
    "zone", "distance_km", "eta_minutes", "sla_deadline",
]
ORDER_DEFAULTS = {
    "pickup_address": "",
    "drop_address": "",
    "order_type": "standard",
    "customer_name": None,
    "customer_phone": None,
    "items": "",
    "created_at": None,
}


def _read(source: Union[str, Path, pd.DataFrame], required: List[str], defaults: dict) -> pd.DataFrame:
    df = source.copy() if isinstance(source, pd.DataFrame) else pd.read_csv(source, dtype={"zone": str})
    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"seed file is missing required columns: {missing}")
    if df[required].isna().any().any():
        bad = df[required].columns[df[required].isna().any()].tolist()
        raise ValueError(f"seed file has empty values in required columns: {bad}")

    for col, value in defaults.items():
        if col not in df.columns:
            df[col] = value
    return df


def _opt_str(v):
    return None if v is None or pd.isna(v) or str(v).strip() == "" else str(v).strip()


def load_riders(source: Union[str, Path, pd.DataFrame]) -> List[DispatchRider]:
    df = _read(source, RIDER_REQUIRED, RIDER_DEFAULTS)
    df["active_orders_count"] = df["active_orders_count"].fillna(0).astype(int)
    df["avg_eta_minutes"] = df["avg_eta_minutes"].fillna(0.0).astype(float)

    return [
        DispatchRider(
            id=str(row["rider_id"]),
            name=str(row["name"]),
            status=str(row["status"]).strip().lower(),
            location=Location(float(row["lat"]), float(row["lng"])),
            zone=str(row["zone"]),
            max_capacity=int(row["max_capacity"]),
            active_orders_count=int(row["active_orders_count"]),
            avg_eta_minutes=float(row["avg_eta_minutes"]),
        )
        for _, row in df.iterrows()
    ]


def load_orders(source: Union[str, Path, pd.DataFrame]) -> List[DispatchOrder]:
    df = _read(source, ORDER_REQUIRED, ORDER_DEFAULTS)
    df["sla_deadline"] = pd.to_datetime(df["sla_deadline"], utc=True)
    df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
    now = utcnow()

    out: List[DispatchOrder] = []
    for _, row in df.iterrows():
        created = row["created_at"]
        created_at = now if pd.isna(created) else to_naive_utc(created.to_pydatetime())
        items = tuple(i.strip() for i in (_opt_str(row["items"]) or "").split("|") if i.strip())
        out.append(
            DispatchOrder(
                id=str(row["order_id"]),
                priority=str(row["priority"]).strip().lower(),
                order_type=str(row["order_type"]),
                pickup=Location(float(row["pickup_lat"]), float(row["pickup_lng"]), _opt_str(row["pickup_address"]) or ""),
                drop=Location(float(row["drop_lat"]), float(row["drop_lng"]), _opt_str(row["drop_address"]) or ""),
                zone=str(row["zone"]),
                distance_km=float(row["distance_km"]),
                eta_minutes=float(row["eta_minutes"]),
                sla_deadline=to_naive_utc(row["sla_deadline"].to_pydatetime()),
                created_at=created_at,
                customer_name=_opt_str(row["customer_name"]),
                customer_phone=_opt_str(row["customer_phone"]),
                items=items,
            )
        )
    return out


def seed(db: Session, riders: List[DispatchRider], orders: List[DispatchOrder]) -> tuple[int, int]:
    """Upsert riders first (orders may reference them). Callers own the transaction."""
    for r in riders:
        rider_store.save_rider(db, r)
    for o in orders:
        order_store.save_order(db, o)
    logger.info(f"seeded {len(riders)} riders, {len(orders)} orders")
    return len(riders), len(orders)
