from dispatch_console.services import navigation


def session_data(**overrides):
    data = {
        "dashboard": {"phoneNumber": "9990001111", "memberId": "M-1"},
        "services": {},
        "scheduling": {},
        "serviceman": {},
    }
    for step, values in overrides.items():
        data[step].update(values)
    return data


def test_current_step_follows_route_prefix():
    data = session_data()
    assert navigation.current_step_index("/dashboard/M-1", data) == 0
    assert navigation.current_step_index("/user/services/9990001111", data) == 1
    assert navigation.current_step_index("/user/scheduling", data) == 2
    assert navigation.current_step_index("/user/servicemen", data) == 3
    assert navigation.current_step_index("/", data) == -1


def test_view_reports_completion_rules():
    data = session_data(dashboard={"ticketId": "TKT-1"}, services={"selectedServices": {"Plumbing": []}})

    view = navigation.build_view(True, data, "/user/services", session_id=1700000000000)

    completed = {step.id: step.is_completed for step in view.steps}
    assert completed == {"dashboard": True, "services": True, "scheduling": False, "serviceman": False}
    assert view.steps[2].is_optional
    assert view.current_index == 1
    assert view.steps[0].path == "/dashboard/M-1?phoneNumber=9990001111"
    assert view.session_label == "Session #1700000000000"


def test_empty_selected_services_is_not_complete():
    data = session_data(services={"selectedServices": {}})
    view = navigation.build_view(True, data, "/user/services")
    assert not view.steps[1].is_completed


def test_skipping_ahead_is_blocked_until_previous_step_completes():
    data = session_data()

    decision = navigation.request_step("scheduling", data, "/dashboard/M-1")

    assert not decision.allowed
    assert decision.message == 'Please complete "Services" step first'


def test_optional_scheduling_does_not_block_dispatch_step():
    data = session_data(dashboard={"ticketId": "TKT-1"}, services={"selectedServices": {"Plumbing": ["Leak"]}})

    decision = navigation.request_step("serviceman", data, "/user/services")

    assert decision.allowed
    assert decision.path == "/user/servicemen"
    assert decision.state["selectedServices"] == {"Plumbing": ["Leak"]}
    assert decision.state["ticketId"] == "TKT-1"


def test_next_step_is_always_reachable():
    decision = navigation.request_step("services", session_data(), "/dashboard/M-1")
    assert decision.allowed
    assert decision.state["phoneNumber"] == "9990001111"


def test_inactive_session_has_no_steps():
    view = navigation.build_view(False, session_data(), "/")
    assert not view.active
    assert view.steps == []
