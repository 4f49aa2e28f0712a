"""
Call-center backend HTTP client

Agent presence, identity lookups, subscriber/address lookups, serviceman
availability and dispatch writes all go through the call-center backend.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from fastapi import status

from dispatch_console.core.config import get_settings

logger = logging.getLogger(__name__)


class BackendClientError(Exception):
    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {"error": message}

    @property
    def is_not_found(self) -> bool:
        return self.status_code == status.HTTP_404_NOT_FOUND


class CallCenterBackendClient:
    """HTTP client for the call-center backend (connection pooled, lazily opened)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Agent
    # =========================================================================

    async def set_agent_status(self, agent_id: str, agent_status: str) -> Dict[str, Any]:
        return await self._request("POST", "/agent/status", json={"status": agent_status, "admin_id": agent_id})

    async def get_admin_id(self, firebase_uid: str) -> Optional[str]:
        """Resolve the identity-provider uid to the internal admin id."""
        try:
            payload = await self._request("GET", f"/agent/adminid/{firebase_uid}")
        except BackendClientError as exc:
            if exc.is_not_found:
                return None
            raise
        admin_id = payload.get("admin_id")
        return str(admin_id) if admin_id is not None else None

    async def register_agent(self, *, firebase_uid: str, email: Optional[str], agent_id: str, admin_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/agent/register",
            json={"firebase_uid": firebase_uid, "email": email, "agent_id": agent_id, "admin_id": admin_id},
        )

    # =========================================================================
    # Subscriber / address
    # =========================================================================

    async def lookup_member(self, phone_number: str) -> Optional[Dict[str, Any]]:
        """Membership lookup by phone. Returns None when the subscriber is unknown."""
        try:
            payload = await self._request("POST", "/call/memberid/lookup", json={"phoneNumber": phone_number})
        except BackendClientError as exc:
            if exc.is_not_found:
                return None
            raise
        if not payload.get("member_id"):
            return None
        return payload

    async def lookup_address(self, address_id: str) -> Optional[str]:
        try:
            payload = await self._request("GET", f"/call/address/lookup/{address_id}")
        except BackendClientError as exc:
            if exc.is_not_found:
                return None
            raise
        return payload.get("address_line")

    # =========================================================================
    # Servicemen / dispatch
    # =========================================================================

    async def available_servicemen(self, service: str) -> List[Dict[str, Any]]:
        payload = await self._request("POST", "/call/servicemen/available", json={"service": service})
        if isinstance(payload, dict):
            return payload.get("servicemen") or []
        return payload or []

    async def dispatch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create (or, with isScheduledUpdate, update) a dispatch record."""
        return await self._request("POST", "/call/dispatch", json=payload)

    async def dispatch_details(self, order_id: str) -> Optional[Dict[str, Any]]:
        try:
            payload = await self._request("GET", f"/call/dispatch/details/{order_id}")
        except BackendClientError as exc:
            if exc.is_not_found:
                return None
            raise
        return payload.get("dispatchData", payload) if isinstance(payload, dict) else None

    async def cancel_dispatch(self, order_id: str, reason: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/call/dispatch/cancel",
            json={"order_id": order_id, "cancellation_reason": reason},
        )

    # =========================================================================
    # Employee helpdesk / call notes
    # =========================================================================

    async def employee_details(self, mobile_number: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._request("GET", "/call/employee/details", params={"mobile_number": mobile_number})
        except BackendClientError as exc:
            if exc.is_not_found:
                return None
            raise

    async def active_order(self, employee_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", "/call/dispatch/active-order", params={"user_id": employee_id})
        return payload.get("dispatchData") or {}

    async def save_call_log(self, *, phone: str, category: str, notes: str, agent_name: str) -> Dict[str, Any]:
        payload = await self._request(
            "POST",
            "/api/logs/save",
            json={"phone": phone, "category": category, "notes": notes, "agentName": agent_name},
        )
        # Serverless deployments answer 201/204 with an empty body on success.
        if not payload:
            return {"success": True}
        return payload

    # =========================================================================
    # Internal
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json, params=params)
        except httpx.RequestError as exc:
            logger.error(f"Backend request failed: {method} {path} - {exc}")
            raise BackendClientError(status.HTTP_502_BAD_GATEWAY, f"Cannot reach call-center backend: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": response.text or response.reason_phrase}
            if not isinstance(payload, dict):
                payload = {"error": str(payload)}
            message = payload.get("message") or payload.get("error") or response.reason_phrase or "Backend request failed"
            logger.warning(f"Backend {method} {path} returned {response.status_code}: {message}")
            raise BackendClientError(response.status_code, message, payload)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BackendClientError(status.HTTP_502_BAD_GATEWAY, "Backend response is not valid JSON") from exc


@lru_cache
def get_backend_client() -> CallCenterBackendClient:
    settings = get_settings()
    return CallCenterBackendClient(settings.backend_base_url, timeout=settings.backend_timeout_seconds)
