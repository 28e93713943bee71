"""
Workflow configuration schema.

Defines the human-authored configuration artifact: engine settings for the
progression service and deadline scheduler, database and logging
settings, and the workflow templates to install.  YAML files are parsed
into these types by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Settings for the progression service and the deadline scheduler.

    ``admin_roles`` may cancel any request.  ``override_roles`` may decide
    on any step regardless of its role (empty by default).
    """

    sweep_interval_seconds: float = 60
    record_budget_seconds: float = 30.0
    max_workers: int = 4
    sweep_batch_limit: int = 500
    admin_roles: tuple[str, ...] = ("admin",)
    override_roles: tuple[str, ...] = ()
    sla_warning_hours: float = 4


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///workflow.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Templates (declarative data)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TemplateDefinition:
    """A workflow template as written in templates.yaml.

    ``steps`` keeps the raw step mappings; they are parsed into
    ``StepDefinition`` values (and validated) by the loader.
    """

    flow_id: str
    name: str
    steps: tuple[dict[str, Any], ...]
    description: str = ""
    notifications: dict[str, tuple[str, ...]] = field(default_factory=dict)
    is_active: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """One loaded configuration set."""

    config_id: str
    version: int
    engine: EngineSettings = field(default_factory=EngineSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    templates: tuple[TemplateDefinition, ...] = ()
    checksum: str = ""
