# src/pipelines/scoring.py
"""
Candidate ranking

1) hard filters (the rider is dropped, not down-ranked)
   - offline
   - load >= rider capacity, or >= rule.maxOrdersPerRider
   - haversine(rider, pickup) > rule.maxRadiusKm,
     waived when rule.preferSameZone and rider.zone == order.zone
2) soft score, every signal normalised into [0, 1]
   score = distanceWeight * 1/(1+distanceKm)
         + etaWeight      * 1/(1+estimatedPickupMinutes)
         + priorityWeight * PRIORITY_SCORES[order.priority]
         + zoneBonus (1 when preferSameZone and same zone)
3) ties: lower load, then shorter distance, then rider id

The function only reads its arguments; the same inputs always give the same
ordered output.
"""

from __future__ import annotations

from math import atan2, cos, radians, sin, sqrt
from typing import Iterable, List, Optional

from src.config import AVG_SPEED_KMH, PRIORITY_SCORES
from src.domain import AutoAssignRule, Candidate, DispatchOrder, DispatchRider, Location


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = 6371.0
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lon2 - lon1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * R * atan2(sqrt(a), sqrt(1 - a))


def distance_km(a: Location, b: Location) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def estimate_pickup_minutes(rider: DispatchRider, distance: float, speed_kmh: float = AVG_SPEED_KMH) -> float:
    # travel to the pickup, plus the drops the rider still has to finish
    travel = distance / speed_kmh * 60.0
    return round(travel + rider.active_orders_count * rider.avg_eta_minutes, 2)


def priority_score(priority: str) -> float:
    return PRIORITY_SCORES[priority]


def is_eligible(order: DispatchOrder, rider: DispatchRider, rule: AutoAssignRule, distance: float) -> bool:
    c = rule.criteria
    if rider.status == "offline":
        return False
    if rider.active_orders_count >= rider.max_capacity:
        return False
    if rider.active_orders_count >= c.max_orders_per_rider:
        return False
    if distance > c.max_radius_km:
        return c.prefer_same_zone and rider.zone == order.zone
    return True


def score_candidate(
    order: DispatchOrder,
    rider: DispatchRider,
    rule: AutoAssignRule,
    distance: float,
    speed_kmh: float = AVG_SPEED_KMH,
) -> Candidate:
    c = rule.criteria
    pickup_minutes = estimate_pickup_minutes(rider, distance, speed_kmh)
    zone_bonus = 1.0 if (c.prefer_same_zone and rider.zone == order.zone) else 0.0

    score = (
        c.distance_weight * (1.0 / (1.0 + distance))
        + c.eta_weight * (1.0 / (1.0 + pickup_minutes))
        + c.priority_weight * priority_score(order.priority)
        + zone_bonus
    )
    return Candidate(
        rider=rider,
        score=round(score, 6),
        distance_km=round(distance, 3),
        estimated_pickup_minutes=pickup_minutes,
    )


def _sort_key(cand: Candidate):
    return (-cand.score, cand.rider.active_orders_count, cand.distance_km, cand.rider.id)


def matches_search(rider: DispatchRider, search: Optional[str]) -> bool:
    if not search:
        return True
    s = search.strip().lower()
    return s in rider.id.lower() or s in rider.name.lower() or s in rider.zone.lower()


def rank(
    order: DispatchOrder,
    rider_pool: Iterable[DispatchRider],
    rule: AutoAssignRule,
    *,
    search: Optional[str] = None,
    speed_kmh: float = AVG_SPEED_KMH,
) -> List[Candidate]:
    candidates: List[Candidate] = []
    for rider in rider_pool:
        if not matches_search(rider, search):
            continue
        d = distance_km(rider.location, order.pickup)
        if not is_eligible(order, rider, rule, d):
            continue
        candidates.append(score_candidate(order, rider, rule, d, speed_kmh))

    # score is rounded so float noise cannot break the tie-break chain
    return sorted(candidates, key=_sort_key)
