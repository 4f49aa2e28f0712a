from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from dispatch_console.models.dispatch import RankedServiceman, Serviceman
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient
from dispatch_console.services.dispatch.errors import UpstreamError
from dispatch_console.services.geo import rank_servicemen
from dispatch_console.services.geocoder import Coordinates, Geocoder, GeocoderError

logger = logging.getLogger(__name__)


class ServicemanSelector:
    """Available servicemen for a service, ranked by distance from the request address."""

    def __init__(self, backend: CallCenterBackendClient, geocoder: Geocoder) -> None:
        self.backend = backend
        self.geocoder = geocoder

    async def candidates(self, service: str, request_address: Optional[str]) -> Tuple[List[RankedServiceman], Optional[Coordinates]]:
        try:
            rows = await self.backend.available_servicemen(service)
        except BackendClientError as e:
            logger.error(f"Serviceman availability failed for {service!r}: {e}")
            raise UpstreamError(f"Could not load servicemen: {e}")

        servicemen = [Serviceman.from_backend(row) for row in rows if isinstance(row, dict) and row.get("user_id")]

        origin: Optional[Coordinates] = None
        if request_address:
            try:
                origin = await self.geocoder.geocode(request_address)
            except GeocoderError as e:
                # Distances are informational; list unranked
                logger.warning(f"Geocoding failed for {request_address!r}: {e}")
            if origin is None:
                logger.info(f"No coordinates for request address {request_address!r}")

        return rank_servicemen(servicemen, origin), origin
