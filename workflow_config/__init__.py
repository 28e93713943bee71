"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the runtime way to obtain configuration through
    ``get_active_config()``: engine settings for the progression service
    and deadline scheduler, database and logging settings, and the
    workflow templates to install.

Architecture position:
    Configuration -- YAML-driven settings.  This package sits above
    ``workflow_kernel`` and ``workflow_engines``.  The kernel MUST NEVER
    import from ``workflow_config``; callers pass settings into kernel
    constructors explicitly.

Invariants enforced:
    - Single entrypoint: runtime config flows through ``get_active_config()``.
    - Load-time validation: settings and templates are validated before a
      config is returned.
    - Deterministic checksum: the same YAML files always produce the same
      checksum.

Failure modes:
    - ``ConfigurationError`` -- missing set, malformed YAML, invalid value
      or template, bad environment override.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``WORKFLOW_CONFIG_TRACE`` log entry with the config id, version,
    checksum and template count.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from workflow_config.loader import apply_env_overrides, load_config_set
from workflow_config.schema import (
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    TemplateDefinition,
    WorkflowConfig,
)
from workflow_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_set: str = "default",
    config_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """The public configuration entrypoint.

    Args:
        config_set: Name of the set directory under ``config_dir``.
        config_dir: Override path to the configuration sets directory.
            Defaults to workflow_config/sets/.
        environ: Environment used for WORKFLOW_* overrides.  Defaults to
            ``os.environ``.

    Raises:
        ConfigurationError: If the set is missing or invalid.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    config = apply_env_overrides(load_config_set(sets_dir / config_set), environ)

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "template_count": len(config.templates),
            "sweep_interval_seconds": config.engine.sweep_interval_seconds,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "WorkflowConfig",
    "EngineSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "TemplateDefinition",
]
