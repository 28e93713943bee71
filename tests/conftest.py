"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- In-memory SQLite sessions for unit and service tests
- File-backed SQLite session factories for multi-threaded scheduler tests
- Deterministic clock, recording notification dispatcher, services
- Template factory and captured structured logs
- Plain builders (``step``, ``make_request``) imported by test modules

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL for tests marked ``postgres``.
  Those tests are skipped when it is not set.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import workflow_kernel.models  # noqa: F401
from workflow_kernel.db.base import Base
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.workflow import (
    ActingContext,
    RequestInstance,
    RequestStatus,
    StepAction,
    StepDefinition,
)
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.services.notifications import InMemoryDispatcher
from workflow_kernel.services.progression_service import RequestProgressionService
from workflow_kernel.services.template_service import TemplateService
from workflow_engines.sla import compute_deadline

START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
T0 = START_TIME


def step(
    step_id: str,
    order: int,
    role: str,
    sla_hours: int | None = None,
    required: bool = True,
    escalate_to: str | None = None,
    actions: tuple[StepAction, ...] = (StepAction.APPROVE, StepAction.REJECT),
) -> StepDefinition:
    """Build a StepDefinition with approve/reject actions by default."""
    return StepDefinition(
        step_id=step_id,
        order=order,
        role=role,
        actions=actions,
        sla_hours=sla_hours,
        required=required,
        escalate_to=escalate_to,
    )


def make_request(
    steps,
    *,
    index: int = 0,
    status: RequestStatus = RequestStatus.PENDING,
    started_at: datetime = T0,
    escalated_to: str | None = None,
    overdue_reported_at: datetime | None = None,
    notifications: dict | None = None,
    sla_deadline: datetime | None = None,
) -> RequestInstance:
    """In-memory RequestInstance for the pure engines.

    The deadline defaults to the one armed for ``steps[index]`` at
    ``started_at``.
    """
    steps = tuple(steps)
    if sla_deadline is None and 0 <= index < len(steps):
        sla_deadline = compute_deadline(started_at, steps[index].sla_hours)
    return RequestInstance(
        request_id=uuid4(),
        request_type="generic",
        template_id=uuid4(),
        template_version=1,
        submitter_id=uuid4(),
        status=status,
        current_step_index=index,
        steps_snapshot=steps,
        notifications=notifications or {},
        submitted_at=started_at,
        step_started_at=started_at,
        sla_deadline=sla_deadline,
        escalated_to=escalated_to,
        overdue_reported_at=overdue_reported_at,
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, progression):
            progression.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "request_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine: every thread sees the same database."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(START_TIME)


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def template_service(session, clock):
    return TemplateService(session, clock)


@pytest.fixture
def progression(session, dispatcher, clock):
    return RequestProgressionService(session, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def selector(session):
    return RequestSelector(session)


@pytest.fixture
def submitter_id():
    return uuid4()


@pytest.fixture
def manager():
    return ActingContext(user_id=uuid4(), role="manager")


@pytest.fixture
def admin():
    return ActingContext(user_id=uuid4(), role="admin")


@pytest.fixture
def finance():
    return ActingContext(user_id=uuid4(), role="finance")


@pytest.fixture
def make_template(template_service, session):
    """Register a template; returns the WorkflowTemplate DTO."""

    def _make(steps, flow_id=None, name="Test Workflow", notifications=None, **kwargs):
        template = template_service.register_template(
            flow_id=flow_id or f"flow-{uuid4().hex[:8]}",
            name=name,
            steps=steps,
            notifications=notifications,
            **kwargs,
        )
        session.commit()
        return template

    return _make


@pytest.fixture
def submit(progression, session, submitter_id):
    """Submit and commit a request; returns the RequestInstance."""

    def _submit(template, payload=None, request_type="generic", submitter=None):
        request = progression.submit(
            template.template_id,
            request_type,
            payload or {},
            submitter or submitter_id,
        )
        session.commit()
        return request

    return _submit
