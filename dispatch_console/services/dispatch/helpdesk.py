"""Employee helpdesk: a serviceman calls in about their active order."""

from __future__ import annotations

import logging

from dispatch_console.models.dispatch import EmployeeDispatchResponse, WorkflowOutcome
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient
from dispatch_console.services.dispatch.errors import NotFoundError, UpstreamError, WorkflowValidationError
from dispatch_console.services.dispatch.workflow import DispatchWorkflow

logger = logging.getLogger(__name__)


class EmployeeHelpdesk:
    def __init__(self, backend: CallCenterBackendClient) -> None:
        self.backend = backend

    async def lookup(self, mobile_number: str) -> EmployeeDispatchResponse:
        mobile_number = (mobile_number or "").strip()
        if not mobile_number:
            raise WorkflowValidationError("Please enter the employee's mobile number")
        try:
            employee = await self.backend.employee_details(mobile_number)
            if not employee or not employee.get("user_id"):
                raise NotFoundError(f"No employee found for {mobile_number}")
            employee_id = str(employee["user_id"])
            active = await self.backend.active_order(employee_id)
        except BackendClientError as e:
            logger.error(f"Employee lookup failed for {mobile_number}: {e}")
            raise UpstreamError(f"Employee lookup failed: {e}")
        return EmployeeDispatchResponse(employee_id=employee_id, dispatch=active)

    async def cancel_and_redispatch(self, workflow: DispatchWorkflow, order_id: str, reason: str) -> WorkflowOutcome:
        if not reason or not reason.strip():
            raise WorkflowValidationError("Please provide a cancellation reason")
        try:
            await self.backend.cancel_dispatch(order_id, reason)
        except BackendClientError as e:
            logger.error(f"Cancel failed for {order_id}: {e}")
            raise UpstreamError(f"Could not cancel order {order_id}: {e}")
        logger.info(f"Order {order_id} cancelled: {reason}")
        return await workflow.begin_redispatch(order_id, reason)
