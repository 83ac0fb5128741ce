import math
from typing import Iterable, List, Optional, Tuple

from ..core.constants import EARTH_RADIUS_M, MAX_NEARBY_RESULTS, RED_ZONE_DECIMALS
from ..core.models import AnchorRecord

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))

def radius_km_for(radius_m: float) -> int:
    """Whole kilometers, floored at 1 (degenerate radii are normalized, not rejected)."""
    try:
        km = int(float(radius_m) / 1000.0)
    except (TypeError, ValueError):
        km = 0
    return max(1, km)

def within_radius(
    records: Iterable[AnchorRecord],
    lat: float,
    lon: float,
    radius_m: float,
    limit: Optional[int] = MAX_NEARBY_RESULTS,
) -> List[AnchorRecord]:
    """
    Exact filter over a candidate set: keep records with Haversine distance
    <= radius_m, nearest first, at most `limit` (None = no cap).
    """
    scored: List[Tuple[float, int, AnchorRecord]] = []
    for i, r in enumerate(records):
        d = haversine_m(lat, lon, r.latitude, r.longitude)
        if d <= radius_m:
            scored.append((d, i, r))
    scored.sort(key=lambda t: (t[0], t[1]))
    if limit is not None:
        scored = scored[:limit]
    return [r for _, _, r in scored]

def zone_key(lat: float, lon: float, decimals: int = RED_ZONE_DECIMALS) -> str:
    """Coordinate rounded to ~110m (3 decimals), used to group red zones."""
    return f"{lat:.{decimals}f},{lon:.{decimals}f}"
