"""
Tests for RequestSelector -- read-side queries.

Covers:
- list_requests(): status, type, submitter, pending-for-role (including
  escalated requests), SLA-breached, template, ordering and paging
- find_overdue(): strict lapse, untimed steps, overdue already reported
- sla_warnings(): warning window
- history(): version order
- analytics(): counts and average completion hours
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from workflow_kernel.domain.workflow import RequestStatus, StepAction

from tests.conftest import step


@pytest.fixture
def leave(make_template):
    return make_template(
        [step("mgr", 1, "manager", sla_hours=48, escalate_to="admin")],
        flow_id="leave",
    )


@pytest.fixture
def expense(make_template):
    return make_template(
        [step("mgr", 1, "manager", sla_hours=24), step("fin", 2, "finance", sla_hours=72)],
        flow_id="expense",
    )


class TestGet:
    def test_get(self, leave, submit, selector):
        request = submit(leave)
        assert selector.get(request.request_id).request_id == request.request_id

    def test_get_missing(self, selector):
        assert selector.get(uuid4()) is None


class TestListRequests:
    def test_newest_first(self, leave, submit, selector, clock):
        first = submit(leave)
        clock.advance_hours(1)
        second = submit(leave)

        assert [r.request_id for r in selector.list_requests()] == [
            second.request_id,
            first.request_id,
        ]

    def test_status_filter(self, leave, submit, selector, progression, manager):
        approved = submit(leave)
        pending = submit(leave)
        progression.decide(approved.request_id, StepAction.APPROVE, manager)

        assert [r.request_id for r in selector.list_requests(status=RequestStatus.APPROVED)] == [
            approved.request_id,
        ]
        assert [r.request_id for r in selector.list_requests(status="pending")] == [
            pending.request_id,
        ]

    def test_type_submitter_and_template_filters(self, leave, expense, submit, selector):
        other_user = uuid4()
        mine = submit(leave, request_type="leave")
        theirs = submit(expense, request_type="expense", submitter=other_user)

        assert [r.request_id for r in selector.list_requests(request_type="expense")] == [
            theirs.request_id,
        ]
        assert [r.request_id for r in selector.list_requests(submitter_id=other_user)] == [
            theirs.request_id,
        ]
        assert [r.request_id for r in selector.list_requests(template_id=leave.template_id)] == [
            mine.request_id,
        ]

    def test_pending_for_role_follows_progression(self, expense, submit, selector, progression, manager):
        request = submit(expense)
        assert [r.request_id for r in selector.list_requests(pending_for_role="manager")] == [
            request.request_id,
        ]

        progression.decide(request.request_id, StepAction.APPROVE, manager)

        assert selector.list_requests(pending_for_role="manager") == []
        assert [r.request_id for r in selector.list_requests(pending_for_role="finance")] == [
            request.request_id,
        ]

    def test_pending_for_role_uses_escalation_target(self, leave, submit, selector, progression, clock):
        request = submit(leave)
        clock.advance_hours(49)
        progression.escalate(request.request_id)

        assert selector.list_requests(pending_for_role="manager") == []
        assert [r.request_id for r in selector.list_requests(pending_for_role="admin")] == [
            request.request_id,
        ]

    def test_terminal_requests_are_not_pending_for_anyone(
        self, leave, submit, selector, progression, manager,
    ):
        request = submit(leave)
        progression.decide(request.request_id, StepAction.REJECT, manager)
        assert selector.list_requests(pending_for_role="manager") == []

    def test_sla_breached(self, leave, expense, submit, selector, clock):
        leave_request = submit(leave)
        submit(expense)

        as_of = clock.now() + timedelta(hours=20)
        assert [r.request_id for r in selector.list_requests(sla_breached_as_of=as_of)] == []

        as_of = clock.now() + timedelta(hours=49)
        breached = selector.list_requests(sla_breached_as_of=as_of)
        assert len(breached) == 2
        assert leave_request.request_id in {r.request_id for r in breached}

    def test_paging(self, leave, submit, selector, clock):
        ids = []
        for _ in range(5):
            ids.append(submit(leave).request_id)
            clock.advance(60)
        newest_first = list(reversed(ids))

        page = selector.list_requests(limit=2, offset=2)
        assert [r.request_id for r in page] == newest_first[2:4]


class TestFindOverdue:
    def test_strictly_lapsed_only(self, leave, submit, selector, clock):
        request = submit(leave)
        deadline = request.sla_deadline

        assert selector.find_overdue(deadline) == []
        assert selector.find_overdue(deadline + timedelta(seconds=1)) == [request.request_id]

    def test_oldest_deadline_first(self, leave, expense, submit, selector, clock):
        slow = submit(leave)
        fast = submit(expense)

        as_of = clock.now() + timedelta(hours=50)
        assert selector.find_overdue(as_of) == [fast.request_id, slow.request_id]

    def test_limit(self, leave, submit, selector, clock):
        for _ in range(3):
            submit(leave)
        assert len(selector.find_overdue(clock.now() + timedelta(hours=49), limit=2)) == 2

    def test_excludes_reported_and_terminal(
        self, make_template, submit, selector, progression, manager, clock,
    ):
        template = make_template([step("mgr", 1, "manager", sla_hours=8)])
        reported = submit(template)
        approved = submit(template)
        clock.advance_hours(9)
        progression.escalate(reported.request_id)
        progression.decide(approved.request_id, StepAction.APPROVE, manager)

        assert selector.find_overdue(clock.now() + timedelta(hours=100)) == []

    def test_untimed_never_overdue(self, make_template, submit, selector, clock):
        submit(make_template([step("mgr", 1, "manager")]))
        assert selector.find_overdue(clock.now() + timedelta(days=3650)) == []


class TestSLAWarnings:
    def test_window(self, leave, expense, submit, selector, clock):
        submit(leave)  # due in 48h
        soon = submit(expense)  # due in 24h

        warnings = selector.sla_warnings(clock.now() + timedelta(hours=21), hours_before=4)

        assert [w.request.request_id for w in warnings] == [soon.request_id]
        assert warnings[0].hours_remaining == 3.0

    def test_breached_requests_are_not_warnings(self, expense, submit, selector, clock):
        submit(expense)
        assert selector.sla_warnings(clock.now() + timedelta(hours=25)) == []


class TestHistory:
    def test_version_order(self, expense, submit, selector, progression, manager, finance):
        request = submit(expense)
        progression.decide(request.request_id, StepAction.APPROVE, manager)
        progression.decide(request.request_id, StepAction.REJECT, finance)

        entries = selector.history(request.request_id)
        assert [e.request_version for e in entries] == [1, 2, 3]
        assert [e.action.value for e in entries] == ["submit", "approve", "reject"]

    def test_unknown_request_has_no_history(self, selector):
        assert selector.history(uuid4()) == []


class TestAnalytics:
    def test_counts_and_average(self, leave, submit, selector, progression, manager, admin, clock):
        start = clock.now()
        approved = submit(leave)
        rejected = submit(leave)
        cancelled = submit(leave)
        submit(leave)

        clock.advance_hours(2)
        progression.decide(approved.request_id, StepAction.APPROVE, manager)
        clock.advance_hours(2)
        progression.decide(rejected.request_id, StepAction.REJECT, manager)
        progression.cancel(cancelled.request_id, admin)

        stats = selector.analytics(start, clock.now())

        assert stats.total_requests == 4
        assert stats.pending_count == 1
        assert stats.approved_count == 1
        assert stats.rejected_count == 1
        assert stats.cancelled_count == 1
        assert stats.completed_count == 3
        assert stats.avg_completion_hours == pytest.approx((2 + 4 + 4) / 3, abs=0.01)

    def test_template_filter(self, leave, expense, submit, selector, clock):
        start = clock.now()
        submit(leave)
        submit(expense)

        assert selector.analytics(start, clock.now(), template_id=expense.template_id).total_requests == 1

    def test_empty_window(self, selector, clock):
        stats = selector.analytics(clock.now(), clock.now() + timedelta(days=1))
        assert stats.total_requests == 0
        assert stats.avg_completion_hours is None
