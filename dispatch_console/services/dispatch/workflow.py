"""
Dispatch workflow

search_subscriber -> select_address -> select_service -> [scheduling]
-> select_serviceman -> dispatched

The current step lives in the call session (`workflowStep`) and every
selection is merged into the tab's step data, so a reloaded tab resumes where
it stopped. Entry paths: a new call, a placed app order, a scheduled order,
or a re-dispatch of a cancelled order.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from dispatch_console.core.config import Settings
from dispatch_console.models.dispatch import (
    Address,
    DispatchPath,
    DispatchRecord,
    OrderStatus,
    ServicemenResponse,
    SubscriberSearchResponse,
    WorkflowOutcome,
)
from dispatch_console.models.queue import IncomingCall, PlacedOrder, ScheduledOrder
from dispatch_console.models.session import WorkflowStep
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient
from dispatch_console.services.dispatch.errors import (
    DispatchFailedError,
    NoActiveSessionError,
    OrderNotFoundError,
    UpstreamError,
    WorkflowValidationError,
)
from dispatch_console.services.dispatch.order_ids import generate_distinct_order_id, generate_order_id
from dispatch_console.services.dispatch.scheduling import validate_schedule_selection
from dispatch_console.services.dispatch.serviceman_selection import ServicemanSelector
from dispatch_console.services.dispatch.subscriber_search import SubscriberDirectory
from dispatch_console.services.identity import AdminIdResolution
from dispatch_console.services.record_store import RecordStore, RecordStoreError
from dispatch_console.services.session_state import SessionState

logger = logging.getLogger(__name__)

ROOT_PATH = "/"


def _field(row: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = row.get(name)
        if value not in (None, ""):
            return value
    return None


def redispatch_note(prior_note: Optional[str], reason: str) -> str:
    return f"{prior_note or ''} (Re-dispatch Reason: {reason})"


class DispatchWorkflow:
    def __init__(
        self,
        session: SessionState,
        *,
        backend: CallCenterBackendClient,
        store: RecordStore,
        selector: ServicemanSelector,
        settings: Settings,
        admin: Optional[AdminIdResolution] = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self.store = store
        self.selector = selector
        self.settings = settings
        self.admin = admin or AdminIdResolution(loading=True)
        self.directory = SubscriberDirectory(backend, store, settings)

    # =========================================================================
    # Entry paths
    # =========================================================================

    async def begin_from_call(self, call: IncomingCall, *, dispatch_link: Optional[str] = None) -> WorkflowOutcome:
        dashboard = {
            "dispatchPath": DispatchPath.NEW_CALL.value,
            "phoneNumber": call.caller,
            "callerName": call.caller_name,
            "callId": call.id,
        }
        if call.subscription_status:
            dashboard["subscriptionStatus"] = call.subscription_status
        await self.session.start_call_session(dashboard)
        logger.info(f"Workflow started from call {call.id} ({call.caller})")
        return self._outcome("Call accepted", redirect=dispatch_link or self._dashboard_path())

    async def begin_from_placed_order(self, order: PlacedOrder) -> WorkflowOutcome:
        await self._mark_source(
            self.settings.table_placed_orders,
            {"status": OrderStatus.PLACING.value},
            {"order_id": order.order_id},
        )
        service = order.service_category or "General"
        await self.session.start_call_session(
            {
                "dispatchPath": DispatchPath.PLACED_ORDER.value,
                "sourceOrderId": order.order_id,
                "orderId": order.order_id,
                "ticketId": order.order_id,
                "phoneNumber": order.customer_phone,
                "customerName": order.customer_name,
                "requestAddress": order.address,
                "requestDetails": order.work_description,
                "category": service,
            },
            step=WorkflowStep.SELECT_SERVICEMAN,
        )
        await self.session.update_step_data(
            "services",
            {"selectedServices": {service: [order.work_description] if order.work_description else []}, "serviceName": service},
        )
        return self._outcome(f"Order {order.order_id} is now Placing", order_id=order.order_id, status=OrderStatus.PLACING, redirect="/user/servicemen")

    async def begin_from_scheduled_order(self, order: ScheduledOrder) -> WorkflowOutcome:
        await self._mark_source(
            self.settings.table_dispatch,
            {"order_status": OrderStatus.SCHEDULING.value},
            {"order_id": order.order_id},
        )
        service = order.category or "General"
        selected_date, _, selected_time = order.scheduled_time.partition(" ")
        await self.session.start_call_session(
            {
                "dispatchPath": DispatchPath.SCHEDULED_ORDER.value,
                "sourceOrderId": order.order_id,
                "orderId": order.order_id,
                "ticketId": order.ticket_id,
                "phoneNumber": order.customer_phone,
                "customerName": order.customer_name,
                "requestAddress": order.address,
                "requestDetails": order.order_request,
                "category": service,
            },
            step=WorkflowStep.SELECT_SERVICEMAN,
        )
        await self.session.update_step_data(
            "services",
            {"selectedServices": {service: [order.order_request] if order.order_request else []}, "serviceName": service},
        )
        await self.session.update_step_data(
            "scheduling",
            {"selectedDate": selected_date, "selectedTime": selected_time.strip(), "scheduledTime": order.scheduled_time},
        )
        return self._outcome(f"Order {order.order_id} is now Scheduling", order_id=order.order_id, status=OrderStatus.SCHEDULING, redirect="/user/servicemen")

    async def begin_redispatch(self, previous_order_id: str, cancellation_reason: str) -> WorkflowOutcome:
        if not cancellation_reason or not cancellation_reason.strip():
            raise WorkflowValidationError("Please provide a cancellation reason")
        try:
            details = await self.backend.dispatch_details(previous_order_id)
        except BackendClientError as e:
            raise UpstreamError(f"Could not load order {previous_order_id}: {e}")
        if not details:
            raise OrderNotFoundError(f"Order {previous_order_id} not found")

        order_id = generate_distinct_order_id(previous_order_id)
        note = redispatch_note(_field(details, "order_request", "orderRequest"), cancellation_reason)
        service = _field(details, "category") or "General"
        await self.session.start_call_session(
            {
                "dispatchPath": DispatchPath.REDISPATCH.value,
                "orderId": order_id,
                "previousOrderId": previous_order_id,
                "cancellationReason": cancellation_reason,
                "ticketId": _field(details, "ticket_id", "ticketId"),
                "phoneNumber": _field(details, "phone_number", "phoneNumber"),
                "customerName": _field(details, "customer_name", "customerName"),
                "requestAddress": _field(details, "request_address", "requestAddress"),
                "requestDetails": note,
                "category": service,
            },
            step=WorkflowStep.SELECT_SERVICEMAN,
        )
        await self.session.update_step_data("services", {"selectedServices": {service: [note]}, "serviceName": service})
        logger.info(f"Re-dispatch of {previous_order_id} started as {order_id}")
        return self._outcome(f"Re-dispatching {previous_order_id} as {order_id}", order_id=order_id, redirect="/user/servicemen")

    # =========================================================================
    # Steps
    # =========================================================================

    async def search_subscriber(self, phone_number: str) -> SubscriberSearchResponse:
        self._require_session()
        result = await self.directory.search(phone_number)
        await self.session.update_step_data(
            "dashboard",
            {
                "phoneNumber": phone_number.strip(),
                "memberId": result.member_id,
                "customerName": result.customer_name,
                "addresses": [a.model_dump(by_alias=True) for a in result.addresses],
            },
        )
        await self.session.set_workflow_step(WorkflowStep.SELECT_ADDRESS)
        return result

    async def select_address(self, address_id: str) -> WorkflowOutcome:
        self._require_session()
        known = [Address.model_validate(a) for a in self.session.get_step_data("dashboard").get("addresses") or []]
        address_line = await self.directory.resolve_address(address_id, known)
        await self.session.update_step_data("dashboard", {"selectedAddressId": address_id, "requestAddress": address_line})
        await self.session.set_workflow_step(WorkflowStep.SELECT_SERVICE)
        return self._outcome(f"Address selected: {address_line}")

    async def save_notes(self, notes: str, category: str = "support") -> WorkflowOutcome:
        self._require_session()
        if not notes or not notes.strip():
            raise WorkflowValidationError("Please enter some notes before saving.")
        dashboard = self.session.get_step_data("dashboard")
        phone = dashboard.get("phoneNumber")
        if not phone:
            raise WorkflowValidationError("No phone number for this call")

        try:
            result = await self.backend.save_call_log(
                phone=phone, category=category, notes=notes, agent_name=self.settings.agent_display_name
            )
        except BackendClientError as e:
            raise UpstreamError(f"Could not save notes: {e}")
        if not result.get("success", True):
            raise UpstreamError(result.get("message") or "Notes were not saved")

        ticket_id = _field(result, "ticketId", "ticket_id") or dashboard.get("ticketId") or f"TKT-{uuid4().hex[:8].upper()}"
        await self.session.update_step_data(
            "dashboard", {"ticketId": ticket_id, "requestDetails": notes, "category": category}
        )
        return self._outcome("Notes saved", ticket_id=ticket_id, redirect="/user/services")

    async def select_services(self, selected_services: Dict[str, List[Any]]) -> WorkflowOutcome:
        self._require_session()
        selected = {key: list(values) for key, values in (selected_services or {}).items() if key}
        if not selected:
            raise WorkflowValidationError("Please select at least one service")
        service_name = next(iter(selected))
        await self.session.update_step_data("services", {"selectedServices": selected, "serviceName": service_name})
        await self.session.set_workflow_step(WorkflowStep.SCHEDULING)
        return self._outcome(f"Service selected: {service_name}")

    async def schedule(self, selected_date: Optional[str], selected_time: Optional[str]) -> WorkflowOutcome:
        self._require_session()
        today = datetime.now(ZoneInfo(self.settings.timezone)).date()
        scheduled_time = validate_schedule_selection(
            selected_date, selected_time, slots=self.settings.schedule_time_slots, today=today
        )
        self._require_admin()
        dashboard = self.session.get_step_data("dashboard")
        if not dashboard.get("customerName"):
            raise WorkflowValidationError("Customer name is not resolved")
        self._require_request_context()

        order_id = generate_order_id()
        record = self._record(order_id, OrderStatus.SCHEDULED, user_id=None, scheduled_time=scheduled_time)
        await self._write_dispatch(record, is_scheduled_update=False)

        await self.session.update_step_data(
            "scheduling",
            {"selectedDate": selected_date, "selectedTime": selected_time, "scheduledTime": scheduled_time, "orderId": order_id},
        )
        await self.session.end_call_session()
        logger.info(f"Order {order_id} scheduled for {scheduled_time}")
        return self._outcome(
            f"Order {order_id} scheduled for {scheduled_time}",
            order_id=order_id,
            ticket_id=record.ticket_id,
            status=OrderStatus.SCHEDULED,
            redirect=ROOT_PATH,
            delay=self.settings.dispatch_redirect_delay_seconds,
        )

    async def list_servicemen(self) -> ServicemenResponse:
        self._require_session()
        service = self.session.get_step_data("services").get("serviceName")
        if not service:
            raise WorkflowValidationError("Please select a service first")
        order_id = await self._ensure_order_id()
        request_address = self.session.get_step_data("dashboard").get("requestAddress")

        ranked, origin = await self.selector.candidates(service, request_address)
        await self.session.set_workflow_step(WorkflowStep.SELECT_SERVICEMAN)
        return ServicemenResponse(
            order_id=order_id,
            service=service,
            request_address=request_address,
            coordinates=origin.as_dict() if origin else None,
            servicemen=ranked,
            status="ok" if ranked else "No servicemen available",
        )

    async def dispatch(self, serviceman_id: Optional[str]) -> WorkflowOutcome:
        self._require_session()
        serviceman_id = serviceman_id or self.session.get_step_data("serviceman").get("servicemanId")
        order_id = self._order_id()
        if not serviceman_id:
            raise WorkflowValidationError("Please select a serviceman")
        if not order_id:
            raise WorkflowValidationError("Order id is not resolved")
        self._require_admin()

        path = self._path()
        record = self._record(order_id, OrderStatus.ASSIGNED, user_id=serviceman_id)
        await self.session.update_step_data("serviceman", {"servicemanId": serviceman_id, "orderId": order_id})
        response = await self._write_dispatch(record, is_scheduled_update=path == DispatchPath.SCHEDULED_ORDER)

        if path == DispatchPath.PLACED_ORDER:
            source = self.session.get_step_data("dashboard").get("sourceOrderId")
            await self._mark_source(
                self.settings.table_placed_orders,
                {"status": OrderStatus.ASSIGNED.value},
                {"order_id": source},
                strict=False,
            )

        ticket_id = _field(response, "ticketId", "ticket_id") or record.ticket_id
        await self.session.set_workflow_step(WorkflowStep.DISPATCHED)
        await self.session.end_call_session()
        logger.info(f"Order {order_id} assigned to serviceman {serviceman_id}")
        return self._outcome(
            f"Dispatch successful: order {order_id} assigned",
            order_id=order_id,
            ticket_id=ticket_id,
            status=OrderStatus.ASSIGNED,
            redirect=ROOT_PATH,
            delay=self.settings.dispatch_redirect_delay_seconds,
        )

    async def abandon(self) -> WorkflowOutcome:
        """End the session; a source order still held by this workflow goes back to its queue."""
        dashboard = self.session.get_step_data("dashboard")
        path = self._path()
        source = dashboard.get("sourceOrderId")
        if self.session.is_active and source:
            if path == DispatchPath.PLACED_ORDER:
                await self._mark_source(
                    self.settings.table_placed_orders,
                    {"status": OrderStatus.PLACED.value},
                    {"order_id": source, "status": OrderStatus.PLACING.value},
                    strict=False,
                )
            elif path == DispatchPath.SCHEDULED_ORDER:
                await self._mark_source(
                    self.settings.table_dispatch,
                    {"order_status": OrderStatus.SCHEDULED.value},
                    {"order_id": source, "order_status": OrderStatus.SCHEDULING.value},
                    strict=False,
                )
        await self.session.end_call_session()
        return self._outcome("Call session ended", redirect=ROOT_PATH)

    # =========================================================================
    # Internal
    # =========================================================================

    def _require_session(self) -> None:
        if not self.session.is_active:
            raise NoActiveSessionError()

    def _require_admin(self) -> None:
        if self.admin.loading:
            raise WorkflowValidationError("Admin id is still loading")
        if not self.admin.is_ready:
            raise WorkflowValidationError(self.admin.error or "Admin id is not available")

    def _require_request_context(self) -> None:
        if not self.session.get_step_data("dashboard").get("requestAddress"):
            raise WorkflowValidationError("Please select an address")
        if not self.session.get_step_data("services").get("selectedServices"):
            raise WorkflowValidationError("Please select at least one service")

    def _path(self) -> DispatchPath:
        raw = self.session.get_step_data("dashboard").get("dispatchPath")
        try:
            return DispatchPath(raw)
        except ValueError:
            return DispatchPath.NEW_CALL

    def _order_id(self) -> Optional[str]:
        return (
            self.session.get_step_data("dashboard").get("orderId")
            or self.session.get_step_data("serviceman").get("orderId")
        )

    async def _ensure_order_id(self) -> str:
        order_id = self._order_id()
        if not order_id:
            order_id = generate_order_id()
            await self.session.update_step_data("serviceman", {"orderId": order_id})
        return order_id

    def _record(self, order_id: str, order_status: OrderStatus, *, user_id: Optional[str], scheduled_time: Optional[str] = None) -> DispatchRecord:
        dashboard = self.session.get_step_data("dashboard")
        services = self.session.get_step_data("services")
        scheduling = self.session.get_step_data("scheduling")
        return DispatchRecord(
            order_id=order_id,
            ticket_id=dashboard.get("ticketId"),
            admin_id=self.admin.value,
            user_id=user_id,
            category=services.get("serviceName") or dashboard.get("category"),
            request_address=dashboard.get("requestAddress"),
            order_request=dashboard.get("requestDetails"),
            order_status=order_status,
            scheduled_time=scheduled_time or scheduling.get("scheduledTime"),
            previous_order_id=dashboard.get("previousOrderId"),
            customer_name=dashboard.get("customerName"),
            phone_number=dashboard.get("phoneNumber"),
        )

    async def _write_dispatch(self, record: DispatchRecord, *, is_scheduled_update: bool) -> Dict[str, Any]:
        try:
            return await self.backend.dispatch(record.to_payload(is_scheduled_update=is_scheduled_update))
        except BackendClientError as e:
            logger.error(f"Dispatch write failed for {record.order_id}: {e}")
            raise DispatchFailedError(f"Dispatch failed: {e}")

    async def _mark_source(
        self, table: str, values: Dict[str, Any], filters: Dict[str, Any], *, strict: bool = True
    ) -> None:
        try:
            await self.store.update(table, values, filters)
        except RecordStoreError as e:
            # Not reconciled; the record needs manual correction
            logger.error(f"Status update on {table} {filters} failed: {e}")
            if strict:
                raise UpstreamError(f"Could not update order status: {e}")

    def _dashboard_path(self) -> str:
        phone = self.session.get_step_data("dashboard").get("phoneNumber") or ""
        return f"/dashboard/new?phoneNumber={phone}"

    def _outcome(
        self,
        message: str,
        *,
        order_id: Optional[str] = None,
        ticket_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        redirect: Optional[str] = None,
        delay: int = 0,
    ) -> WorkflowOutcome:
        return WorkflowOutcome(
            order_id=order_id,
            ticket_id=ticket_id,
            status=status,
            message=message,
            redirect=redirect,
            redirect_delay_seconds=delay,
            state=dict(self.session.session_data) if self.session.is_active else {},
        )
