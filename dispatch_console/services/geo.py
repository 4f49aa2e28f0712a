from __future__ import annotations

import math
from typing import Iterable, List, Optional

from dispatch_console.models.dispatch import RankedServiceman, Serviceman
from dispatch_console.services.geocoder import Coordinates

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def rank_servicemen(candidates: Iterable[Serviceman], origin: Optional[Coordinates]) -> List[RankedServiceman]:
    """Attach distances (2 decimals) and sort ascending; unknown distances go last."""
    ranked: List[RankedServiceman] = []
    for candidate in candidates:
        distance: Optional[float] = None
        if origin is not None and candidate.current_lat is not None and candidate.current_lng is not None:
            distance = round(haversine_km(origin.lat, origin.lng, candidate.current_lat, candidate.current_lng), 2)
        ranked.append(RankedServiceman(**candidate.model_dump(), distance_km=distance))

    ranked.sort(key=lambda sm: (sm.distance_km is None, sm.distance_km or 0.0))
    return ranked
