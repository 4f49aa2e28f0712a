"""Call navigation bar: step list, current step and forward-navigation gate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from dispatch_console.models.session import NavigationDecisionResponse, NavigationStepView, NavigationView

StepData = Dict[str, Dict[str, Any]]


@dataclass(frozen=True)
class StepDefinition:
    id: str
    label: str
    is_completed: Callable[[StepData], bool]
    is_optional: bool = False


STEPS: List[StepDefinition] = [
    StepDefinition("dashboard", "Notes", lambda data: bool(data.get("dashboard", {}).get("ticketId"))),
    StepDefinition("services", "Services", lambda data: bool(data.get("services", {}).get("selectedServices"))),
    StepDefinition(
        "scheduling",
        "Schedule",
        lambda data: bool(data.get("scheduling", {}).get("selectedDate")),
        is_optional=True,
    ),
    StepDefinition("serviceman", "Dispatch", lambda data: False),
]


def step_path(step_id: str, data: StepData) -> str:
    if step_id == "dashboard":
        dashboard = data.get("dashboard", {})
        user_id = dashboard.get("userId") or dashboard.get("memberId") or "new"
        phone = quote(str(dashboard.get("phoneNumber") or ""))
        return f"/dashboard/{user_id}?phoneNumber={phone}"
    return {
        "services": "/user/services",
        "scheduling": "/user/scheduling",
        "serviceman": "/user/servicemen",
    }[step_id]


def current_step_index(path: Optional[str], data: StepData) -> int:
    """Index of the step whose path prefix the route contains, -1 when none does."""
    if not path:
        return -1
    for index, step in enumerate(STEPS):
        prefix = step_path(step.id, data).split("?")[0]
        if step.id == "dashboard":
            prefix = "/dashboard"
        if prefix in path:
            return index
    return -1


def navigation_state(step_id: str, data: StepData) -> Dict[str, Any]:
    dashboard = data.get("dashboard", {})
    services = data.get("services", {})
    scheduling = data.get("scheduling", {})
    base = {
        "ticketId": dashboard.get("ticketId"),
        "requestDetails": dashboard.get("requestDetails"),
        "selectedAddressId": dashboard.get("selectedAddressId"),
        "phoneNumber": dashboard.get("phoneNumber"),
    }
    if step_id == "dashboard":
        # Phone number travels in the query string
        return {}
    if step_id == "services":
        return base
    if step_id == "scheduling":
        return {**base, "selectedServices": services.get("selectedServices")}
    if step_id == "serviceman":
        return {
            **base,
            "selectedServices": services.get("selectedServices"),
            "scheduledDate": scheduling.get("selectedDate"),
            "scheduledTime": scheduling.get("selectedTime"),
        }
    return {}


def build_view(active: bool, data: StepData, path: Optional[str], session_id: Optional[int] = None) -> NavigationView:
    if not active:
        return NavigationView(active=False, steps=[], current_index=-1)
    current = current_step_index(path, data)
    steps = [
        NavigationStepView(
            id=step.id,
            label=step.label,
            path=step_path(step.id, data),
            is_completed=step.is_completed(data),
            is_optional=step.is_optional,
            is_current=index == current,
        )
        for index, step in enumerate(STEPS)
    ]
    return NavigationView(
        active=True,
        steps=steps,
        current_index=current,
        phone_number=data.get("dashboard", {}).get("phoneNumber"),
        session_label=f"Session #{session_id}" if session_id else None,
    )


def request_step(step_id: str, data: StepData, path: Optional[str]) -> NavigationDecisionResponse:
    ids = [step.id for step in STEPS]
    if step_id not in ids:
        raise ValueError(f"unknown step: {step_id}")
    index = ids.index(step_id)
    current = current_step_index(path, data)

    if index > 0 and index > current + 1:
        previous = STEPS[index - 1]
        if not previous.is_completed(data) and not previous.is_optional:
            return NavigationDecisionResponse(
                allowed=False,
                message=f'Please complete "{previous.label}" step first',
            )

    return NavigationDecisionResponse(
        allowed=True,
        path=step_path(step_id, data),
        state=navigation_state(step_id, data),
    )
