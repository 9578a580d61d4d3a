import numpy as np
import pandas as pd
from datetime import datetime, timedelta, timezone
from pathlib import Path

from utils.logger import get_logger

logger = get_logger("dummy_generator")

# zone name → (lat, lng) centre
ZONES = {
    "north": (25.3300, 51.5100),
    "central": (25.2860, 51.5310),
    "south": (25.2400, 51.5500),
}
RIDER_STATUSES = ["online", "idle", "busy", "offline"]
PRIORITIES = ["high", "medium", "low"]


def generate_dummy_data(
    num_riders: int = 12,
    num_orders: int = 40,
    out_dir: str = "data/seed",
    seed: int = 42,
    now: datetime | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    now = now or datetime.now(timezone.utc)
    zone_names = list(ZONES)

    riders = []
    for i in range(1, num_riders + 1):
        zone = zone_names[(i - 1) % len(zone_names)]
        lat, lng = ZONES[zone]
        cap = int(rng.integers(2, 5))
        riders.append(
            {
                "rider_id": f"R{i:03d}",
                "name": f"Rider {i:03d}",
                "status": RIDER_STATUSES[int(rng.choice(len(RIDER_STATUSES), p=[0.45, 0.25, 0.2, 0.1]))],
                # ~1-2 km jitter around the zone centre
                "lat": round(lat + rng.normal(0, 0.012), 6),
                "lng": round(lng + rng.normal(0, 0.012), 6),
                "zone": zone,
                "active_orders_count": int(rng.integers(0, cap)),
                "max_capacity": cap,
                "avg_eta_minutes": round(float(rng.uniform(4, 15)), 1),
            }
        )

    orders = []
    for i in range(1, num_orders + 1):
        zone = zone_names[int(rng.integers(0, len(zone_names)))]
        lat, lng = ZONES[zone]
        distance = round(float(rng.gamma(2.0, 1.5)), 2)
        created = now - timedelta(minutes=int(rng.integers(0, 30)))
        orders.append(
            {
                "order_id": f"ORD-{i:05d}",
                "priority": PRIORITIES[int(rng.choice(3, p=[0.2, 0.5, 0.3]))],
                "pickup_lat": round(lat + rng.normal(0, 0.008), 6),
                "pickup_lng": round(lng + rng.normal(0, 0.008), 6),
                "pickup_address": f"Dark store {zone}",
                "drop_lat": round(lat + rng.normal(0, 0.02), 6),
                "drop_lng": round(lng + rng.normal(0, 0.02), 6),
                "drop_address": f"Customer {i} {zone}",
                "zone": zone,
                "distance_km": distance,
                "eta_minutes": round(distance / 20 * 60 + 5, 1),
                "sla_deadline": (created + timedelta(minutes=int(rng.integers(20, 60)))).isoformat(),
                "created_at": created.isoformat(),
                "customer_name": f"Customer {i}",
                "items": "|".join(f"item-{int(x)}" for x in rng.integers(1, 50, size=int(rng.integers(1, 4)))),
            }
        )

    riders_df, orders_df = pd.DataFrame(riders), pd.DataFrame(orders)
    if out_dir:
        out = Path(out_dir)
        out.mkdir(parents=True, exist_ok=True)
        riders_df.to_csv(out / "riders.csv", index=False)
        orders_df.to_csv(out / "orders.csv", index=False)
        logger.info(f"wrote {len(riders_df)} riders, {len(orders_df)} orders → {out}")
    return riders_df, orders_df


if __name__ == "__main__":
    generate_dummy_data()
