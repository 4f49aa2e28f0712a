from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class AgentStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"


class AgentBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AgentPresence(AgentBase):
    agent_id: str = Field(alias="agentId")
    status: AgentStatus = AgentStatus.OFFLINE


class PresenceUpdateRequest(AgentBase):
    status: AgentStatus


class AgentRegisterRequest(AgentBase):
    agent_id: str = Field(alias="agentId")
    admin_id: str = Field(alias="adminId")
    email: Optional[str] = None


class SignInResponse(AgentBase):
    agent_id: str = Field(alias="agentId")
    status: AgentStatus
    queue_total: int = Field(alias="queueTotal")
