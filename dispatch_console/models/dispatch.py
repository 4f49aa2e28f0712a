"""Dispatch workflow models (records, servicemen, request/response bodies)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class OrderStatus(str, Enum):
    PLACED = "Placed"
    PLACING = "Placing"
    SCHEDULED = "Scheduled"
    SCHEDULING = "Scheduling"
    ASSIGNED = "Assigned"
    CANCELLED = "Cancelled"


class DispatchPath(str, Enum):
    NEW_CALL = "new_call"
    PLACED_ORDER = "placed_order"
    SCHEDULED_ORDER = "scheduled_order"
    REDISPATCH = "redispatch"


class DispatchBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DispatchRecord(DispatchBase):
    """One service request lifecycle as written to the backend."""

    order_id: str = Field(alias="orderId")
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    admin_id: Optional[str] = Field(default=None, alias="adminId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    category: Optional[str] = None
    request_address: Optional[str] = Field(default=None, alias="requestAddress")
    order_request: Optional[str] = Field(default=None, alias="orderRequest")
    order_status: OrderStatus = Field(alias="orderStatus")
    scheduled_time: Optional[str] = Field(default=None, alias="scheduledTime")
    previous_order_id: Optional[str] = Field(default=None, alias="previousOrderId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    def to_payload(self, *, is_scheduled_update: bool = False) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        payload["isScheduledUpdate"] = is_scheduled_update
        return payload


class Address(DispatchBase):
    address_id: str = Field(alias="addressId")
    address_line: str = Field(alias="addressLine")


class Serviceman(DispatchBase):
    user_id: str = Field(alias="userId")
    full_name: str = Field(alias="fullName")
    current_lat: Optional[float] = Field(default=None, alias="currentLat")
    current_lng: Optional[float] = Field(default=None, alias="currentLng")
    rating: Optional[float] = None
    vehicle: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_backend(cls, row: Dict[str, Any]) -> "Serviceman":
        return cls(
            userId=str(row.get("user_id")),
            fullName=row.get("full_name") or "Unknown",
            currentLat=_as_float(row.get("current_lat")),
            currentLng=_as_float(row.get("current_lng")),
            rating=_as_float(row.get("rating")),
            vehicle=row.get("vehicle"),
            category=row.get("category"),
        )


class RankedServiceman(Serviceman):
    distance_km: Optional[float] = Field(default=None, alias="distanceKm")


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Request / Response bodies
# =============================================================================

class SubscriberSearchRequest(DispatchBase):
    phone_number: str = Field(alias="phoneNumber")


class SubscriberSearchResponse(DispatchBase):
    member_id: str = Field(alias="memberId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    addresses: List[Address] = Field(default_factory=list)


class AddressSelectionRequest(DispatchBase):
    address_id: str = Field(alias="addressId")


class ServiceSelectionRequest(DispatchBase):
    selected_services: Dict[str, List[Any]] = Field(alias="selectedServices")


class CallNotesRequest(DispatchBase):
    notes: str
    category: str = "support"


class ScheduleRequest(DispatchBase):
    selected_date: Optional[str] = Field(default=None, alias="selectedDate")
    selected_time: Optional[str] = Field(default=None, alias="selectedTime")


class DispatchRequest(DispatchBase):
    serviceman_id: Optional[str] = Field(default=None, alias="servicemanId")


class WorkflowOutcome(DispatchBase):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    status: Optional[OrderStatus] = None
    message: str
    redirect: Optional[str] = None
    redirect_delay_seconds: int = Field(default=0, alias="redirectDelaySeconds")
    state: Dict[str, Any] = Field(default_factory=dict)


class ServicemenResponse(DispatchBase):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    service: Optional[str] = None
    request_address: Optional[str] = Field(default=None, alias="requestAddress")
    coordinates: Optional[Dict[str, float]] = None
    servicemen: List[RankedServiceman] = Field(default_factory=list)
    status: str


class CancelDispatchRequest(DispatchBase):
    order_id: str = Field(alias="orderId")
    cancellation_reason: str = Field(alias="cancellationReason")


class EmployeeDispatchResponse(DispatchBase):
    employee_id: str = Field(alias="employeeId")
    dispatch: Dict[str, Any] = Field(default_factory=dict)
