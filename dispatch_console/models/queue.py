"""Work queue item models.

The queue is a tagged union over three item shapes. `kind` is the tag the
console renders on; the identity key of an item is `(kind, item_id)`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class QueueItemBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @property
    def identity(self) -> Tuple[str, str]:
        # Each item shape defines `kind` and `item_id`.
        return (self.kind, self.item_id)  # type: ignore[attr-defined]


class IncomingCall(QueueItemBase):
    kind: Literal["incoming_call"] = "incoming_call"
    id: str
    caller: str
    caller_name: Optional[str] = Field(default=None, alias="callerName")
    dispatch_details_ref: Optional[str] = Field(default=None, alias="dispatchDetailsRef")
    subscription_status: Optional[str] = Field(default=None, alias="subscriptionStatus")
    received_at: datetime = Field(alias="receivedAt")

    @property
    def item_id(self) -> str:
        return self.id


class PlacedOrder(QueueItemBase):
    kind: Literal["placed_order"] = "placed_order"
    order_id: str = Field(alias="orderId")
    customer_name: str = Field(alias="customerName")
    customer_phone: str = Field(alias="customerPhone")
    address: str
    service_category: Optional[str] = Field(default=None, alias="serviceCategory")
    work_description: Optional[str] = Field(default=None, alias="workDescription")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @property
    def item_id(self) -> str:
        return self.order_id


class ScheduledOrder(QueueItemBase):
    kind: Literal["scheduled_order"] = "scheduled_order"
    order_id: str = Field(alias="orderId")
    customer_name: str = Field(alias="customerName")
    customer_phone: str = Field(alias="customerPhone")
    address: str
    scheduled_time: str = Field(alias="scheduledTime")
    category: Optional[str] = None
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    order_request: Optional[str] = Field(default=None, alias="orderRequest")

    @property
    def item_id(self) -> str:
        return self.order_id


WorkQueueItem = Annotated[
    Union[IncomingCall, PlacedOrder, ScheduledOrder],
    Field(discriminator="kind"),
]


class QueueCounts(BaseModel):
    calls: int = 0
    placed: int = 0
    scheduled: int = 0


class WorkQueueSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId")
    items: List[WorkQueueItem] = Field(default_factory=list)
    total: int = 0
    counts: QueueCounts = Field(default_factory=QueueCounts)
    refreshed_at: Optional[datetime] = Field(default=None, alias="refreshedAt")
