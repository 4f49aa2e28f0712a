from fastapi import APIRouter, Depends, HTTPException, Query, status

from dispatch_console.api.deps import get_helpdesk, get_workflow, workflow_http_error
from dispatch_console.core.auth import require_agent
from dispatch_console.models.dispatch import CancelDispatchRequest, EmployeeDispatchResponse, WorkflowOutcome
from dispatch_console.services.dispatch import DispatchWorkflow, EmployeeHelpdesk, WorkflowError

router = APIRouter(prefix="/helpdesk", tags=["helpdesk"], dependencies=[Depends(require_agent)])


@router.get("/employee", response_model=EmployeeDispatchResponse, response_model_by_alias=True)
async def lookup_employee(
    mobile_number: str = Query(..., alias="mobileNumber"),
    helpdesk: EmployeeHelpdesk = Depends(get_helpdesk),
) -> EmployeeDispatchResponse:
    try:
        return await helpdesk.lookup(mobile_number)
    except WorkflowError as exc:
        raise workflow_http_error(exc)


@router.post("/cancel", response_model=WorkflowOutcome, response_model_by_alias=True)
async def cancel_and_redispatch(
    payload: CancelDispatchRequest,
    workflow: DispatchWorkflow = Depends(get_workflow),
    helpdesk: EmployeeHelpdesk = Depends(get_helpdesk),
) -> WorkflowOutcome:
    if workflow.session.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Finish or end the current call session first",
        )
    try:
        return await helpdesk.cancel_and_redispatch(workflow, payload.order_id, payload.cancellation_reason)
    except WorkflowError as exc:
        raise workflow_http_error(exc)
