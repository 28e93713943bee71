"""Tests for workflow_batch.domain.types -- sweep result aggregation."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_batch.domain.types import SweepItemResult, SweepItemStatus, SweepResult
from workflow_kernel.domain.workflow import EscalationOutcome


def _result(*statuses):
    return SweepResult(
        sweep_id=uuid4(),
        as_of=datetime(2024, 1, 1, tzinfo=timezone.utc),
        items=tuple(SweepItemResult(uuid4(), s) for s in statuses),
    )


class TestSweepItemStatus:
    def test_mirrors_escalation_outcomes(self):
        for outcome in EscalationOutcome:
            assert SweepItemStatus(outcome.value).value == outcome.value

    @pytest.mark.parametrize(
        "status",
        [SweepItemStatus.NOT_PENDING, SweepItemStatus.NOT_DUE, SweepItemStatus.SUPERSEDED],
    )
    def test_no_ops_are_success(self, status):
        assert status.is_success
        assert not status.changed_state

    @pytest.mark.parametrize(
        "status",
        [SweepItemStatus.FAILED, SweepItemStatus.TIMED_OUT, SweepItemStatus.SKIPPED],
    )
    def test_failures(self, status):
        assert not status.is_success


class TestSweepResult:
    def test_counts(self):
        result = _result(
            SweepItemStatus.ESCALATED,
            SweepItemStatus.OVERDUE_REPORTED,
            SweepItemStatus.NOT_DUE,
            SweepItemStatus.SUPERSEDED,
            SweepItemStatus.FAILED,
            SweepItemStatus.TIMED_OUT,
        )

        assert result.total == 6
        assert result.succeeded == 4
        assert result.changed == 2
        assert result.failed == 1
        assert result.timed_out == 1

    def test_by_status(self):
        result = _result(SweepItemStatus.NOT_DUE, SweepItemStatus.NOT_DUE, SweepItemStatus.ESCALATED)
        assert result.by_status() == {
            SweepItemStatus.NOT_DUE: 2,
            SweepItemStatus.ESCALATED: 1,
        }

    def test_empty(self):
        result = _result()
        assert result.total == 0
        assert result.by_status() == {}

    def test_frozen(self):
        result = _result()
        with pytest.raises(FrozenInstanceError):
            result.duration_ms = 5
