"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads the YAML files of one configuration set and parses them into the
typed ``workflow_config.schema`` dataclasses.  Runtime callers go through
``workflow_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Templates are validated with the same rules the template service
  applies, so a bad templates.yaml fails at load time.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  source files for configuration identity and change detection.
* Environment overrides are applied after the checksum is computed; the
  checksum identifies the files, not the process environment.

Failure modes
-------------
* Missing configuration set directory or workflow.yaml -> ConfigurationError.
* Malformed YAML -> ConfigurationError wrapping ``yaml.YAMLError``.
* Missing required keys / bad values -> ConfigurationError naming the file.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    TemplateDefinition,
    WorkflowConfig,
)
from workflow_engines.template_rules import parse_steps, validate_template
from workflow_kernel.exceptions import ConfigurationError

WORKFLOW_FILE = "workflow.yaml"
TEMPLATES_FILE = "templates.yaml"

ENV_DATABASE_URL = "WORKFLOW_DATABASE_URL"
ENV_SWEEP_INTERVAL = "WORKFLOW_SWEEP_INTERVAL_SECONDS"
ENV_LOG_LEVEL = "WORKFLOW_LOG_LEVEL"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _roles(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"{field_name} must be a list of roles")
    return tuple(str(v) for v in value)


def parse_engine_settings(data: Mapping[str, Any]) -> EngineSettings:
    """Parse the ``engine`` section.  Absent keys keep their defaults."""
    defaults = EngineSettings()
    settings = EngineSettings(
        sweep_interval_seconds=float(
            data.get("sweep_interval_seconds", defaults.sweep_interval_seconds)
        ),
        record_budget_seconds=float(
            data.get("record_budget_seconds", defaults.record_budget_seconds)
        ),
        max_workers=int(data.get("max_workers", defaults.max_workers)),
        sweep_batch_limit=int(data.get("sweep_batch_limit", defaults.sweep_batch_limit)),
        admin_roles=(
            _roles(data["admin_roles"], "admin_roles")
            if "admin_roles" in data
            else defaults.admin_roles
        ),
        override_roles=_roles(data.get("override_roles"), "override_roles"),
        sla_warning_hours=float(data.get("sla_warning_hours", defaults.sla_warning_hours)),
    )
    if settings.sweep_interval_seconds <= 0:
        raise ValueError("sweep_interval_seconds must be positive")
    if settings.record_budget_seconds <= 0:
        raise ValueError("record_budget_seconds must be positive")
    if settings.max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    if settings.sweep_batch_limit < 1:
        raise ValueError("sweep_batch_limit must be at least 1")
    return settings


def parse_database_settings(data: Mapping[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_logging_settings(data: Mapping[str, Any]) -> LoggingSettings:
    level = str(data.get("level", LoggingSettings().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    return LoggingSettings(level=level)


def parse_template(data: Mapping[str, Any]) -> TemplateDefinition:
    """
    Parse and validate one template entry.

    Raises:
        KeyError: if ``flow_id``, ``name`` or ``steps`` is missing.
        ValueError: if the template breaks a template rule.
    """
    flow_id = str(data["flow_id"])
    raw_steps = data["steps"]
    notifications = {
        str(event): _roles(roles, f"notifications.{event}")
        for event, roles in (data.get("notifications") or {}).items()
    }

    steps, errors = parse_steps(raw_steps or [])
    errors.extend(validate_template(flow_id, str(data["name"]), steps, notifications))
    if errors:
        raise ValueError(f"Template '{flow_id}': " + "; ".join(errors))

    return TemplateDefinition(
        flow_id=flow_id,
        name=str(data["name"]),
        description=str(data.get("description", "")),
        steps=tuple(dict(s) for s in raw_steps),
        notifications=notifications,
        is_active=bool(data.get("is_active", True)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def apply_env_overrides(
    config: WorkflowConfig,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """Apply WORKFLOW_* environment variables on top of a loaded config."""
    env = os.environ if environ is None else environ

    database = config.database
    if env.get(ENV_DATABASE_URL):
        database = dataclasses.replace(database, url=env[ENV_DATABASE_URL])

    engine = config.engine
    if env.get(ENV_SWEEP_INTERVAL):
        try:
            interval = float(env[ENV_SWEEP_INTERVAL])
        except ValueError as exc:
            raise ConfigurationError(ENV_SWEEP_INTERVAL, "must be a number") from exc
        if interval <= 0:
            raise ConfigurationError(ENV_SWEEP_INTERVAL, "must be positive")
        engine = dataclasses.replace(engine, sweep_interval_seconds=interval)

    logging_settings = config.logging
    if env.get(ENV_LOG_LEVEL):
        try:
            logging_settings = parse_logging_settings({"level": env[ENV_LOG_LEVEL]})
        except ValueError as exc:
            raise ConfigurationError(ENV_LOG_LEVEL, str(exc)) from exc

    return dataclasses.replace(
        config,
        database=database,
        engine=engine,
        logging=logging_settings,
    )


def load_config_set(directory: Path) -> WorkflowConfig:
    """
    Load one configuration set directory.

    ``workflow.yaml`` is required; ``templates.yaml`` is optional.

    Raises:
        ConfigurationError: on any missing file, YAML error or bad value.
    """
    if not directory.is_dir():
        raise ConfigurationError(str(directory), "configuration set directory not found")

    workflow_path = directory / WORKFLOW_FILE
    templates_path = directory / TEMPLATES_FILE

    try:
        root = load_yaml_file(workflow_path)
    except FileNotFoundError as exc:
        raise ConfigurationError(str(workflow_path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(workflow_path), f"invalid YAML: {exc}") from exc

    try:
        templates_raw = load_yaml_file(templates_path) if templates_path.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(templates_path), f"invalid YAML: {exc}") from exc

    try:
        engine = parse_engine_settings(root.get("engine") or {})
        database = parse_database_settings(root.get("database") or {})
        logging_settings = parse_logging_settings(root.get("logging") or {})
        config_id = str(root.get("config_id", directory.name))
        version = int(root.get("version", 1))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(str(workflow_path), str(exc)) from exc

    try:
        templates = tuple(
            parse_template(t) for t in templates_raw.get("templates") or []
        )
    except KeyError as exc:
        raise ConfigurationError(
            str(templates_path), f"missing field {exc.args[0]!r}",
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(str(templates_path), str(exc)) from exc

    flow_ids = [t.flow_id for t in templates]
    duplicates = sorted({f for f in flow_ids if flow_ids.count(f) > 1})
    if duplicates:
        raise ConfigurationError(
            str(templates_path), f"duplicate flow_id: {', '.join(duplicates)}",
        )

    return WorkflowConfig(
        config_id=config_id,
        version=version,
        engine=engine,
        database=database,
        logging=logging_settings,
        templates=templates,
        checksum=compute_checksum({"workflow": root, "templates": templates_raw}),
    )
