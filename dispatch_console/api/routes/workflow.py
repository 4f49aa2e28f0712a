import logging

from fastapi import APIRouter, Depends

from dispatch_console.api.deps import get_admin_resolution, get_workflow, workflow_http_error
from dispatch_console.models.dispatch import (
    AddressSelectionRequest,
    CallNotesRequest,
    DispatchRequest,
    ScheduleRequest,
    ServicemenResponse,
    ServiceSelectionRequest,
    SubscriberSearchRequest,
    SubscriberSearchResponse,
    WorkflowOutcome,
)
from dispatch_console.services.dispatch import DispatchWorkflow, WorkflowError
from dispatch_console.services.identity import AdminIdResolution
from dispatch_console.services.presence import PresenceService, get_presence_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.post("/subscriber/search", response_model=SubscriberSearchResponse, response_model_by_alias=True)
async def search_subscriber(
    payload: SubscriberSearchRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
) -> SubscriberSearchResponse:
    try:
        return await workflow.search_subscriber(payload.phone_number)
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/address", response_model=WorkflowOutcome, response_model_by_alias=True)
async def select_address(
    payload: AddressSelectionRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
) -> WorkflowOutcome:
    try:
        return await workflow.select_address(payload.address_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/services", response_model=WorkflowOutcome, response_model_by_alias=True)
async def select_services(
    payload: ServiceSelectionRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
) -> WorkflowOutcome:
    try:
        return await workflow.select_services(payload.selected_services)
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/notes", response_model=WorkflowOutcome, response_model_by_alias=True)
async def save_notes(
    payload: CallNotesRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
) -> WorkflowOutcome:
    try:
        return await workflow.save_notes(payload.notes, payload.category)
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/schedule", response_model=WorkflowOutcome, response_model_by_alias=True)
async def schedule_order(
    payload: ScheduleRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
    admin: AdminIdResolution = Depends(get_admin_resolution),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    try:
        outcome = await workflow.schedule(payload.selected_date, payload.selected_time)
    except WorkflowError as exc:
        raise workflow_http_error(exc)
    await presence.mark_available(admin.value)
    return outcome


@router.get("/servicemen", response_model=ServicemenResponse, response_model_by_alias=True)
async def list_servicemen(workflow: DispatchWorkflow = Depends(get_workflow)) -> ServicemenResponse:
    try:
        return await workflow.list_servicemen()
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/dispatch", response_model=WorkflowOutcome, response_model_by_alias=True)
async def dispatch_serviceman(
    payload: DispatchRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
    admin: AdminIdResolution = Depends(get_admin_resolution),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    try:
        outcome = await workflow.dispatch(payload.serviceman_id)
    except WorkflowError as exc:
        logger.warning(f"Dispatch rejected: {exc.message}")
        raise workflow_http_error(exc)
    await presence.mark_available(admin.value)
    return outcome
