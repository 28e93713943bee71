"""Tests for scripts/run_deadline_scheduler.py in ``--once`` mode."""

import importlib.util
import textwrap
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from workflow_kernel.db.engine import reset_engine
from workflow_kernel.services.progression_service import RequestProgressionService
from workflow_kernel.services.template_service import TemplateService

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "run_deadline_scheduler.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("run_deadline_scheduler", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    for name in (
        "WORKFLOW_DATABASE_URL",
        "WORKFLOW_SWEEP_INTERVAL_SECONDS",
        "WORKFLOW_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    db_path = tmp_path / "scheduler.db"
    set_dir = tmp_path / "sets" / "local"
    set_dir.mkdir(parents=True)
    (set_dir / "workflow.yaml").write_text(textwrap.dedent(f"""
        config_id: local
        engine:
          max_workers: 2
          record_budget_seconds: 10
        database:
          url: sqlite:///{db_path}
    """))
    (set_dir / "templates.yaml").write_text(textwrap.dedent("""
        templates:
          - flow_id: quick
            name: Quick Approval
            steps:
              - step_id: mgr
                order: 1
                role: manager
                sla_hours: 1
    """))
    yield tmp_path / "sets"
    reset_engine()


def _args(config_dir, *extra):
    return ["--config-dir", str(config_dir), "--config-set", "local", "--once", *extra]


def _sessions(config_dir):
    engine = create_engine(f"sqlite:///{config_dir.parent / 'scheduler.db'}")
    return engine, sessionmaker(bind=engine, expire_on_commit=False)


def test_first_run_creates_tables_and_seeds(script, config_dir, clock):
    assert script.main(_args(config_dir, "--create-tables", "--seed-templates")) == 0

    engine, factory = _sessions(config_dir)
    try:
        with factory() as session:
            template = TemplateService(session, clock).get_by_flow_id("quick")
    finally:
        engine.dispose()
    assert template.steps[0].sla_hours == 1


def test_sweep_reports_lapsed_request(script, config_dir, clock, dispatcher):
    script.main(_args(config_dir, "--create-tables", "--seed-templates"))

    engine, factory = _sessions(config_dir)
    try:
        # submitted at the fixed test clock; long overdue in real time
        with factory() as session:
            template = TemplateService(session, clock).get_by_flow_id("quick")
            request = RequestProgressionService(session, dispatcher=dispatcher, clock=clock).submit(
                template.template_id, "quick", {}, uuid4(),
            )
            session.commit()

        assert script.main(_args(config_dir)) == 0

        with factory() as session:
            current = RequestProgressionService(session).get_request(request.request_id)
    finally:
        engine.dispose()

    assert current.overdue_reported_at is not None
    assert current.status.value == "pending"


def test_bad_config_set_exits_2(script, config_dir):
    assert script.main(["--config-dir", str(config_dir), "--config-set", "missing", "--once"]) == 2
