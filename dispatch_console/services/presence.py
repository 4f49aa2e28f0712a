from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict

from dispatch_console.models.agent import AgentPresence, AgentStatus
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient, get_backend_client

logger = logging.getLogger(__name__)


class PresenceService:
    """Agent availability, mirrored to the call-center backend on every transition."""

    def __init__(self, backend: CallCenterBackendClient) -> None:
        self.backend = backend
        self._presence: Dict[str, AgentStatus] = {}

    def get(self, agent_id: str) -> AgentPresence:
        return AgentPresence(agent_id=agent_id, status=self._presence.get(agent_id, AgentStatus.OFFLINE))

    async def set_status(self, agent_id: str, status: AgentStatus) -> AgentPresence:
        previous = self._presence.get(agent_id, AgentStatus.OFFLINE)
        self._presence[agent_id] = status
        if previous != status:
            logger.info(f"Agent {agent_id} presence {previous.value} -> {status.value}")
        try:
            await self.backend.set_agent_status(agent_id, status.value)
        except BackendClientError as e:
            # Local presence stands; the next transition re-sends it
            logger.error(f"Presence sync failed for agent {agent_id}: {e}")
        return self.get(agent_id)

    async def sign_in(self, agent_id: str) -> AgentPresence:
        return await self.set_status(agent_id, AgentStatus.ONLINE)

    async def sign_out(self, agent_id: str) -> AgentPresence:
        presence = await self.set_status(agent_id, AgentStatus.OFFLINE)
        self._presence.pop(agent_id, None)
        return presence

    async def mark_busy(self, agent_id: str) -> AgentPresence:
        return await self.set_status(agent_id, AgentStatus.BUSY)

    async def mark_available(self, agent_id: str) -> AgentPresence:
        if self._presence.get(agent_id) == AgentStatus.OFFLINE:
            return self.get(agent_id)
        return await self.set_status(agent_id, AgentStatus.ONLINE)


@lru_cache
def get_presence_service() -> PresenceService:
    return PresenceService(get_backend_client())
