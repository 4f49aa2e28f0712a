"""Identity-provider uid to internal admin id resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient, get_backend_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminIdResolution:
    value: Optional[str] = None
    error: Optional[str] = None
    loading: bool = False

    @property
    def is_ready(self) -> bool:
        return bool(self.value) and not self.error and not self.loading


class IdentityService:
    def __init__(self, backend: CallCenterBackendClient) -> None:
        self.backend = backend
        self._cache: Dict[str, str] = {}

    async def resolve_admin_id(self, firebase_uid: str) -> AdminIdResolution:
        """Admin id for an authenticated agent. Misses are not cached."""
        cached = self._cache.get(firebase_uid)
        if cached:
            return AdminIdResolution(value=cached)

        try:
            admin_id = await self.backend.get_admin_id(firebase_uid)
        except BackendClientError as e:
            logger.error(f"Admin id lookup failed for {firebase_uid}: {e}")
            return AdminIdResolution(error=f"Could not resolve admin id: {e}")

        if not admin_id:
            return AdminIdResolution(error="Admin id not found for this agent")

        self._cache[firebase_uid] = admin_id
        return AdminIdResolution(value=admin_id)

    def forget(self, firebase_uid: str) -> None:
        self._cache.pop(firebase_uid, None)


@lru_cache
def get_identity_service() -> IdentityService:
    return IdentityService(get_backend_client())
