"""Address -> coordinate lookup (Nominatim-compatible search API)."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

import httpx

from dispatch_console.core.config import get_settings

logger = logging.getLogger(__name__)


class GeocoderError(RuntimeError):
    pass


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def as_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


class Geocoder:
    def __init__(
        self,
        base_url: str,
        *,
        user_agent: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_cache_entries: int = 512,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._transport = transport
        self.max_cache_entries = max_cache_entries
        self._cache: "OrderedDict[str, Optional[Coordinates]]" = OrderedDict()

    async def geocode(self, query: str) -> Optional[Coordinates]:
        """Best single match for a free-text address, or None."""
        key = (query or "").strip()
        if not key:
            return None
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        params = {"q": key, "format": "json", "limit": 1}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": self.user_agent},
            ) as client:
                response = await client.get(f"{self.base_url}/search", params=params)
                response.raise_for_status()
                results = response.json()
        except httpx.HTTPError as exc:
            raise GeocoderError(f"Geocoding failed for {key!r}: {exc}") from exc
        except ValueError as exc:
            raise GeocoderError("Geocoder response is not valid JSON") from exc

        coords: Optional[Coordinates] = None
        if isinstance(results, list) and results:
            best = results[0]
            try:
                coords = Coordinates(lat=float(best["lat"]), lng=float(best["lon"]))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Geocoder returned an unusable match for {key!r}: {best}")
                return None
        self._remember(key, coords)
        return coords

    def _remember(self, key: str, coords: Optional[Coordinates]) -> None:
        self._cache[key] = coords
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_cache_entries:
            self._cache.popitem(last=False)


@lru_cache
def get_geocoder() -> Geocoder:
    settings = get_settings()
    return Geocoder(
        settings.geocoder_base_url,
        user_agent=settings.geocoder_user_agent,
        timeout=settings.geocoder_timeout_seconds,
        max_cache_entries=settings.geocoder_cache_size,
    )
