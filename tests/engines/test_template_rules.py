"""Tests for workflow_engines.template_rules -- parse_steps and validate_template."""

import pytest

from workflow_engines.template_rules import parse_steps, validate_template
from workflow_kernel.domain.workflow import MAX_STEPS, StepAction

from tests.conftest import step


def _errors(steps, flow_id="flow", name="Flow", notifications=None):
    return validate_template(flow_id, name, steps, notifications)


class TestParseSteps:
    def test_sorts_by_order(self):
        steps, errors = parse_steps([
            {"step_id": "b", "order": 2, "role": "finance"},
            {"step_id": "a", "order": 1, "role": "manager"},
        ])

        assert errors == []
        assert [s.step_id for s in steps] == ["a", "b"]

    def test_passes_step_definitions_through(self):
        original = step("a", 0, "manager")
        steps, errors = parse_steps([original])
        assert steps == (original,)
        assert errors == []

    def test_collects_one_message_per_bad_record(self):
        steps, errors = parse_steps([
            {"step_id": "a", "order": 0},
            {"step_id": "b", "order": 1, "role": "r", "actions": ["forward"]},
            "not-a-step",
            {"step_id": "c", "order": 2, "role": "r"},
        ])

        assert [s.step_id for s in steps] == ["c"]
        assert len(errors) == 3
        assert errors[0] == "Step 0: missing field 'role'"
        assert errors[2] == "Step 2: expected a mapping, got str"


class TestValidateTemplate:
    def test_valid_template(self):
        steps = (step("a", 1, "manager", sla_hours=48, escalate_to="admin"), step("b", 2, "admin"))
        assert _errors(steps, notifications={"onSubmit": ["manager"]}) == []

    def test_zero_based_order_is_valid(self):
        assert _errors((step("a", 0, "manager"), step("b", 1, "admin"))) == []

    def test_identity_required(self):
        errors = _errors((step("a", 0, "manager"),), flow_id=" ", name="")
        assert "Flow ID is required" in errors
        assert "Workflow name is required" in errors

    def test_at_least_one_step(self):
        assert _errors(()) == ["At least one step is required"]

    def test_step_cap(self):
        steps = tuple(step(f"s{i}", i, "r") for i in range(MAX_STEPS + 1))
        assert f"Maximum {MAX_STEPS} steps allowed, got {MAX_STEPS + 1}" in _errors(steps)

    def test_exactly_max_steps_is_valid(self):
        steps = tuple(step(f"s{i}", i, "r") for i in range(MAX_STEPS))
        assert _errors(steps) == []

    def test_duplicate_step_id(self):
        assert "Duplicate step_id: a" in _errors((step("a", 0, "r"), step("a", 1, "r")))

    def test_missing_role(self):
        assert "Step a: role is required" in _errors((step("a", 0, ""),))

    def test_empty_actions(self):
        assert "Step a: at least one action is required" in _errors((step("a", 0, "r", actions=()),))

    def test_duplicate_actions(self):
        errors = _errors((step("a", 0, "r", actions=(StepAction.APPROVE, StepAction.APPROVE)),))
        assert "Step a: duplicate actions" in errors

    def test_non_positive_sla(self):
        assert "Step a: sla_hours must be positive" in _errors((step("a", 0, "r", sla_hours=0),))

    def test_blank_escalation_target(self):
        errors = _errors((step("a", 0, "r", escalate_to=" "),))
        assert "Step a: on_timeout.escalate_to must not be empty" in errors

    @pytest.mark.parametrize("orders", [(0, 2), (2, 3), (1, 1)])
    def test_non_contiguous_order(self, orders):
        steps = tuple(step(f"s{i}", order, "r") for i, order in enumerate(orders))
        assert any(e.startswith("Step order must be contiguous") for e in _errors(steps))

    def test_unknown_notification_event(self):
        errors = _errors((step("a", 0, "r"),), notifications={"onDelegate": ["r"]})
        assert errors == ["Unknown notification event: onDelegate"]

    def test_notification_recipients_must_be_list(self):
        errors = _errors((step("a", 0, "r"),), notifications={"onSubmit": "manager"})
        assert errors == ["Notification 'onSubmit': recipients must be a list of roles"]
