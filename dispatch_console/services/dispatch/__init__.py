# Dispatch workflow package
from dispatch_console.services.dispatch.errors import (
    AddressNotFoundError,
    DispatchFailedError,
    NoActiveSessionError,
    NotFoundError,
    OrderNotFoundError,
    SubscriberNotFoundError,
    UpstreamError,
    WorkflowError,
    WorkflowValidationError,
)
from dispatch_console.services.dispatch.helpdesk import EmployeeHelpdesk
from dispatch_console.services.dispatch.order_ids import generate_order_id
from dispatch_console.services.dispatch.serviceman_selection import ServicemanSelector
from dispatch_console.services.dispatch.workflow import DispatchWorkflow

__all__ = [
    "AddressNotFoundError",
    "DispatchFailedError",
    "DispatchWorkflow",
    "EmployeeHelpdesk",
    "NoActiveSessionError",
    "NotFoundError",
    "OrderNotFoundError",
    "ServicemanSelector",
    "SubscriberNotFoundError",
    "UpstreamError",
    "WorkflowError",
    "WorkflowValidationError",
    "generate_order_id",
]
