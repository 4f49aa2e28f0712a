import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from dispatch_console.api.deps import require_admin_id
from dispatch_console.core.auth import AuthAgent, get_tab_id, require_agent
from dispatch_console.models.agent import AgentPresence, AgentRegisterRequest, PresenceUpdateRequest, SignInResponse
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient, get_backend_client
from dispatch_console.services.identity import IdentityService, get_identity_service
from dispatch_console.services.presence import PresenceService, get_presence_service
from dispatch_console.services.work_queue import WorkQueueRegistry, get_work_queue_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


@router.post("/sign-in", response_model=SignInResponse, response_model_by_alias=True)
async def sign_in(
    tab_id: str = Depends(get_tab_id),
    admin_id: str = Depends(require_admin_id),
    presence: PresenceService = Depends(get_presence_service),
    registry: WorkQueueRegistry = Depends(get_work_queue_registry),
) -> SignInResponse:
    current = await presence.sign_in(admin_id)
    aggregator = await registry.watch(tab_id, admin_id)
    return SignInResponse(agent_id=admin_id, status=current.status, queue_total=aggregator.snapshot().total)


@router.post("/sign-out", response_model=AgentPresence, response_model_by_alias=True)
async def sign_out(
    tab_id: str = Depends(get_tab_id),
    admin_id: str = Depends(require_admin_id),
    presence: PresenceService = Depends(get_presence_service),
    registry: WorkQueueRegistry = Depends(get_work_queue_registry),
) -> AgentPresence:
    await registry.release(tab_id)
    return await presence.sign_out(admin_id)


@router.get("/presence", response_model=AgentPresence, response_model_by_alias=True)
async def read_presence(
    admin_id: str = Depends(require_admin_id),
    presence: PresenceService = Depends(get_presence_service),
) -> AgentPresence:
    return presence.get(admin_id)


@router.post("/presence", response_model=AgentPresence, response_model_by_alias=True)
async def update_presence(
    payload: PresenceUpdateRequest,
    admin_id: str = Depends(require_admin_id),
    presence: PresenceService = Depends(get_presence_service),
) -> AgentPresence:
    return await presence.set_status(admin_id, payload.status)


@router.post("/register", status_code=201)
async def register_agent(
    payload: AgentRegisterRequest,
    agent: AuthAgent = Depends(require_agent),
    backend: CallCenterBackendClient = Depends(get_backend_client),
    identity: IdentityService = Depends(get_identity_service),
) -> Dict[str, Any]:
    try:
        result = await backend.register_agent(
            firebase_uid=agent.uid,
            email=payload.email or agent.email,
            agent_id=payload.agent_id,
            admin_id=payload.admin_id,
        )
    except BackendClientError as exc:
        logger.error(f"Agent registration failed for {agent.uid}: {exc}")
        raise HTTPException(status_code=exc.status_code, detail=exc.details)
    identity.forget(agent.uid)
    return {"registered": True, "agentId": payload.agent_id, "adminId": payload.admin_id, "backend": result}
