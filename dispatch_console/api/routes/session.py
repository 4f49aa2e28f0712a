from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from dispatch_console.api.deps import get_admin_resolution, get_session_state, get_workflow
from dispatch_console.core.auth import require_agent
from dispatch_console.models.dispatch import WorkflowOutcome
from dispatch_console.models.session import (
    NavigationDecisionResponse,
    NavigationView,
    SessionDetailResponse,
    SessionStartRequest,
    StepUpdateRequest,
)
from dispatch_console.services import navigation
from dispatch_console.services.dispatch import DispatchWorkflow
from dispatch_console.services.identity import AdminIdResolution
from dispatch_console.services.presence import PresenceService, get_presence_service
from dispatch_console.services.session_state import SessionState

router = APIRouter(prefix="/session", tags=["session"], dependencies=[Depends(require_agent)])


def _detail(session: SessionState) -> SessionDetailResponse:
    return SessionDetailResponse(
        tab_id=session.tab_id,
        call_session=session.call_session,
        session_data=session.session_data,
    )


@router.get("", response_model=SessionDetailResponse, response_model_by_alias=True)
async def read_session(session: SessionState = Depends(get_session_state)) -> SessionDetailResponse:
    return _detail(session)


@router.post("/start", response_model=SessionDetailResponse, response_model_by_alias=True, status_code=201)
async def start_session(
    payload: SessionStartRequest,
    session: SessionState = Depends(get_session_state),
) -> SessionDetailResponse:
    await session.start_call_session(payload.initial_data)
    return _detail(session)


@router.patch("/steps/{step}")
async def update_step(
    step: str,
    payload: StepUpdateRequest,
    session: SessionState = Depends(get_session_state),
) -> Dict[str, Any]:
    if not session.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No active call session")
    try:
        merged = await session.update_step_data(step, payload.data)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return {"step": step, "data": merged}


@router.delete("", response_model=WorkflowOutcome, response_model_by_alias=True)
async def end_session(
    confirm: bool = Query(False),
    workflow: DispatchWorkflow = Depends(get_workflow),
    admin: AdminIdResolution = Depends(get_admin_resolution),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Ending the call session requires confirmation; all unsaved data will be lost",
        )
    outcome = await workflow.abandon()
    if admin.is_ready:
        await presence.mark_available(admin.value)
    return outcome


@router.get("/navigation", response_model=NavigationView, response_model_by_alias=True)
async def read_navigation(
    path: Optional[str] = Query(None),
    session: SessionState = Depends(get_session_state),
) -> NavigationView:
    session_id = session.call_session.session_id if session.call_session else None
    return navigation.build_view(session.is_active, session.session_data, path, session_id)


@router.post("/navigation/{step_id}", response_model=NavigationDecisionResponse, response_model_by_alias=True)
async def navigate_to_step(
    step_id: str,
    path: Optional[str] = Query(None),
    session: SessionState = Depends(get_session_state),
) -> NavigationDecisionResponse:
    if not session.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No active call session")
    try:
        return navigation.request_step(step_id, session.session_data, path)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
