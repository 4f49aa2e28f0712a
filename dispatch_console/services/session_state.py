from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import redis.asyncio as redis

from dispatch_console.core.config import get_settings
from dispatch_console.models.session import STEP_NAMES, CallSession, WorkflowStep

logger = logging.getLogger(__name__)

SESSION_KEY = "activeCallSession"
DATA_KEY = "callSessionData"

StepData = Dict[str, Dict[str, Any]]


def empty_step_data() -> StepData:
    return {step: {} for step in STEP_NAMES}


def step_key(step: str) -> str:
    return f"{DATA_KEY}:{step}"


# =============================================================================
# Storage adapters (tab-scoped)
# =============================================================================

class SessionStorage(ABC):
    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def get(self, tab_id: str, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, tab_id: str, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove(self, tab_id: str, key: str) -> None:
        ...


class InMemorySessionStorage(SessionStorage):
    def __init__(self, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self._data: Dict[str, str] = {}
        self._expires: Dict[str, datetime] = {}

    def _purge(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [key for key, exp in self._expires.items() if exp <= now]
        for key in expired:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    async def get(self, tab_id: str, key: str) -> Optional[str]:
        self._purge()
        return self._data.get(f"{tab_id}:{key}")

    async def set(self, tab_id: str, key: str, value: str) -> None:
        self._purge()
        full_key = f"{tab_id}:{key}"
        self._data[full_key] = value
        self._expires[full_key] = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

    async def remove(self, tab_id: str, key: str) -> None:
        full_key = f"{tab_id}:{key}"
        self._data.pop(full_key, None)
        self._expires.pop(full_key, None)


class RedisSessionStorage(SessionStorage):
    def __init__(self, redis_client: redis.Redis, prefix: str, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self.client = redis_client
        self.prefix = prefix

    def _key(self, tab_id: str, key: str) -> str:
        return f"{self.prefix}:{tab_id}:{key}"

    async def get(self, tab_id: str, key: str) -> Optional[str]:
        return await self.client.get(self._key(tab_id, key))

    async def set(self, tab_id: str, key: str, value: str) -> None:
        await self.client.setex(self._key(tab_id, key), self.ttl_seconds, value)

    async def remove(self, tab_id: str, key: str) -> None:
        await self.client.delete(self._key(tab_id, key))


_storage_instance: Optional[SessionStorage] = None


async def get_session_storage() -> SessionStorage:
    global _storage_instance
    if _storage_instance:
        return _storage_instance

    settings = get_settings()
    ttl_seconds = settings.session_ttl_minutes * 60
    if settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        _storage_instance = RedisSessionStorage(client, settings.redis_session_prefix, ttl_seconds)
    else:
        _storage_instance = InMemorySessionStorage(ttl_seconds)
    return _storage_instance


# =============================================================================
# Session state
# =============================================================================

class SessionState:
    """
    Active call/order workflow of one console tab.

    Mutations are applied in memory first, then persisted through the storage
    adapter, so a reload can restore the workflow mid-way.
    """

    _last_session_id = 0

    def __init__(self, storage: SessionStorage, tab_id: str) -> None:
        self.storage = storage
        self.tab_id = tab_id
        self.call_session: Optional[CallSession] = None
        self.session_data: StepData = empty_step_data()

    @classmethod
    def _next_session_id(cls) -> int:
        candidate = int(time.time() * 1000)
        if candidate <= cls._last_session_id:
            candidate = cls._last_session_id + 1
        cls._last_session_id = candidate
        return candidate

    @classmethod
    async def restore(cls, storage: SessionStorage, tab_id: str) -> "SessionState":
        state = cls(storage, tab_id)
        saved_session = await storage.get(tab_id, SESSION_KEY)

        if saved_session:
            try:
                state.call_session = CallSession.model_validate(json.loads(saved_session))
                logger.debug(f"Restored call session for tab {tab_id}: {state.call_session.session_id}")
            except ValueError as e:
                logger.warning(f"Discarding unreadable call session for tab {tab_id}: {e}")
        for step in STEP_NAMES:
            saved_step = await storage.get(tab_id, step_key(step))
            if not saved_step:
                continue
            try:
                state.session_data[step] = json.loads(saved_step)
            except ValueError as e:
                logger.warning(f"Discarding unreadable {step} data for tab {tab_id}: {e}")
        return state

    @property
    def is_active(self) -> bool:
        return bool(self.call_session and self.call_session.is_active)

    @property
    def workflow_step(self) -> Optional[WorkflowStep]:
        return self.call_session.workflow_step if self.call_session else None

    async def start_call_session(
        self,
        initial_data: Dict[str, Any],
        *,
        step: WorkflowStep = WorkflowStep.SEARCH_SUBSCRIBER,
    ) -> CallSession:
        self.call_session = CallSession(
            sessionId=self._next_session_id(),
            startTime=datetime.now(timezone.utc).isoformat(),
            isActive=True,
            workflowStep=step,
        )
        self.session_data = empty_step_data()
        self.session_data["dashboard"] = dict(initial_data)
        await self._persist_session()
        for name in STEP_NAMES:
            await self._persist_step(name)
        logger.info(f"Call session started: tab={self.tab_id} session={self.call_session.session_id}")
        return self.call_session

    async def update_step_data(self, step: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if step not in STEP_NAMES:
            raise ValueError(f"unknown step: {step}")
        merged = {**self.session_data.get(step, {}), **data}
        self.session_data[step] = merged
        await self._persist_step(step)
        logger.debug(f"Updated {step} data for tab {self.tab_id}: {sorted(data)}")
        return merged

    def get_step_data(self, step: str) -> Dict[str, Any]:
        return self.session_data.get(step) or {}

    async def set_workflow_step(self, step: WorkflowStep) -> None:
        if self.call_session is None:
            return
        self.call_session = self.call_session.model_copy(update={"workflow_step": step})
        await self._persist_session()

    async def end_call_session(self) -> None:
        logger.info(f"Call session ended: tab={self.tab_id}")
        self.call_session = None
        self.session_data = empty_step_data()
        await self.storage.remove(self.tab_id, SESSION_KEY)
        for step in STEP_NAMES:
            await self.storage.remove(self.tab_id, step_key(step))

    async def _persist_session(self) -> None:
        if self.call_session is None:
            return
        await self.storage.set(self.tab_id, SESSION_KEY, self.call_session.model_dump_json(by_alias=True))

    async def _persist_step(self, step: str) -> None:
        # One key per step: a write never carries another step's snapshot.
        await self.storage.set(self.tab_id, step_key(step), json.dumps(self.session_data.get(step) or {}))


class SessionRegistry:
    """One live `SessionState` per tab, shared by every request of that tab."""

    def __init__(self, storage: SessionStorage) -> None:
        self.storage = storage
        self._states: Dict[str, SessionState] = {}

    async def get(self, tab_id: str) -> SessionState:
        state = self._states.get(tab_id)
        if state is not None:
            return state
        restored = await SessionState.restore(self.storage, tab_id)
        # A concurrent first request may have registered the tab meanwhile.
        return self._states.setdefault(tab_id, restored)


_registry_instance: Optional[SessionRegistry] = None


async def get_session_registry() -> SessionRegistry:
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = SessionRegistry(await get_session_storage())
    return _registry_instance
