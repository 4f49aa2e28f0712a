from fastapi import APIRouter, Depends, HTTPException, status

from dispatch_console.api.deps import get_workflow, require_admin_id, workflow_http_error
from dispatch_console.core.auth import get_tab_id
from dispatch_console.models.dispatch import WorkflowOutcome
from dispatch_console.models.queue import WorkQueueSnapshot
from dispatch_console.services.dispatch import DispatchWorkflow, WorkflowError
from dispatch_console.services.presence import PresenceService, get_presence_service
from dispatch_console.services.work_queue import WorkQueueAggregator, WorkQueueRegistry, get_work_queue_registry

router = APIRouter(prefix="/queue", tags=["queue"])


async def get_aggregator(
    tab_id: str = Depends(get_tab_id),
    admin_id: str = Depends(require_admin_id),
    registry: WorkQueueRegistry = Depends(get_work_queue_registry),
) -> WorkQueueAggregator:
    return await registry.watch(tab_id, admin_id)


def _ensure_idle(workflow: DispatchWorkflow) -> None:
    if workflow.session.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Finish or end the current call session first",
        )


@router.get("", response_model=WorkQueueSnapshot, response_model_by_alias=True)
async def read_queue(aggregator: WorkQueueAggregator = Depends(get_aggregator)) -> WorkQueueSnapshot:
    return aggregator.snapshot()


@router.post("/calls/{call_id}/accept", response_model=WorkflowOutcome, response_model_by_alias=True)
async def accept_call(
    call_id: str,
    admin_id: str = Depends(require_admin_id),
    aggregator: WorkQueueAggregator = Depends(get_aggregator),
    workflow: DispatchWorkflow = Depends(get_workflow),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    _ensure_idle(workflow)
    call = aggregator.take_call(call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Call is no longer waiting")
    await presence.mark_busy(admin_id)
    return await workflow.begin_from_call(call, dispatch_link=call.dispatch_details_ref)


@router.post("/calls/{call_id}/reject")
async def reject_call(call_id: str, aggregator: WorkQueueAggregator = Depends(get_aggregator)) -> dict:
    if aggregator.take_call(call_id) is None:
        raise HTTPException(status_code=404, detail="Call is no longer waiting")
    return {"rejected": call_id}


@router.post("/placed/{order_id}/start", response_model=WorkflowOutcome, response_model_by_alias=True)
async def start_placed_order(
    order_id: str,
    admin_id: str = Depends(require_admin_id),
    aggregator: WorkQueueAggregator = Depends(get_aggregator),
    workflow: DispatchWorkflow = Depends(get_workflow),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    _ensure_idle(workflow)
    order = aggregator.get_placed(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Placed order {order_id} is not in the queue")
    try:
        outcome = await workflow.begin_from_placed_order(order)
    except WorkflowError as exc:
        raise workflow_http_error(exc)
    await presence.mark_busy(admin_id)
    return outcome


@router.post("/scheduled/{order_id}/start", response_model=WorkflowOutcome, response_model_by_alias=True)
async def start_scheduled_order(
    order_id: str,
    admin_id: str = Depends(require_admin_id),
    aggregator: WorkQueueAggregator = Depends(get_aggregator),
    workflow: DispatchWorkflow = Depends(get_workflow),
    presence: PresenceService = Depends(get_presence_service),
) -> WorkflowOutcome:
    _ensure_idle(workflow)
    order = aggregator.get_scheduled(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Scheduled order {order_id} is not visible in the queue")
    try:
        outcome = await workflow.begin_from_scheduled_order(order)
    except WorkflowError as exc:
        raise workflow_http_error(exc)
    await presence.mark_busy(admin_id)
    return outcome
