from __future__ import annotations

import logging
from typing import List, Optional

from dispatch_console.core.config import Settings
from dispatch_console.models.dispatch import Address, SubscriberSearchResponse
from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient
from dispatch_console.services.dispatch.errors import AddressNotFoundError, SubscriberNotFoundError, UpstreamError, WorkflowValidationError
from dispatch_console.services.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)


class SubscriberDirectory:
    def __init__(self, backend: CallCenterBackendClient, store: RecordStore, settings: Settings) -> None:
        self.backend = backend
        self.store = store
        self.settings = settings

    async def search(self, phone_number: str) -> SubscriberSearchResponse:
        phone_number = (phone_number or "").strip()
        if not phone_number:
            raise WorkflowValidationError("Please enter a phone number")

        try:
            member = await self.backend.lookup_member(phone_number)
        except BackendClientError as e:
            logger.error(f"Member lookup failed for {phone_number}: {e}")
            raise UpstreamError(f"Subscriber lookup failed: {e}")
        if member is None:
            raise SubscriberNotFoundError(f"No subscriber found for {phone_number}")

        member_id = str(member["member_id"])
        return SubscriberSearchResponse(
            member_id=member_id,
            customer_name=member.get("customer_name"),
            addresses=await self.addresses_for(member_id),
        )

    async def addresses_for(self, member_id: str) -> List[Address]:
        try:
            rows = await self.store.select(self.settings.table_addresses, {"member_id": member_id})
        except RecordStoreError as e:
            logger.error(f"Address list failed for member {member_id}: {e}")
            return []
        return [
            Address(address_id=str(row["address_id"]), address_line=row.get("address_line") or "")
            for row in rows
            if row.get("address_id") is not None
        ]

    async def resolve_address(self, address_id: str, known: Optional[List[Address]] = None) -> str:
        try:
            line = await self.backend.lookup_address(address_id)
        except BackendClientError as e:
            logger.warning(f"Address lookup failed for {address_id}: {e}")
            line = None
        if line:
            return line
        for address in known or []:
            if address.address_id == address_id and address.address_line:
                return address.address_line
        raise AddressNotFoundError("Address not found")
