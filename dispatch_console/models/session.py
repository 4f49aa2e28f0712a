from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


STEP_NAMES = ("dashboard", "services", "scheduling", "serviceman")


class WorkflowStep(str, Enum):
    SEARCH_SUBSCRIBER = "search_subscriber"
    SELECT_ADDRESS = "select_address"
    SELECT_SERVICE = "select_service"
    SCHEDULING = "scheduling"
    SELECT_SERVICEMAN = "select_serviceman"
    DISPATCHED = "dispatched"


class SessionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CallSession(SessionBase):
    session_id: int = Field(alias="sessionId")
    start_time: str = Field(alias="startTime")
    is_active: bool = Field(default=True, alias="isActive")
    workflow_step: WorkflowStep = Field(default=WorkflowStep.SEARCH_SUBSCRIBER, alias="workflowStep")


class SessionStartRequest(SessionBase):
    initial_data: Dict[str, Any] = Field(default_factory=dict, alias="initialData")


class StepUpdateRequest(SessionBase):
    data: Dict[str, Any] = Field(default_factory=dict)


class SessionDetailResponse(SessionBase):
    tab_id: str = Field(alias="tabId")
    call_session: Optional[CallSession] = Field(default=None, alias="callSession")
    session_data: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="sessionData")


class NavigationStepView(SessionBase):
    id: str
    label: str
    path: str
    is_completed: bool = Field(alias="isCompleted")
    is_optional: bool = Field(default=False, alias="isOptional")
    is_current: bool = Field(default=False, alias="isCurrent")


class NavigationView(SessionBase):
    active: bool
    steps: List[NavigationStepView] = Field(default_factory=list)
    current_index: int = Field(alias="currentIndex")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    session_label: Optional[str] = Field(default=None, alias="sessionLabel")


class NavigationDecisionResponse(SessionBase):
    allowed: bool
    path: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None
