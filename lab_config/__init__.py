"""
lab_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_settings()`` and ``get_directory()`` are the only ways runtime code
    obtains configuration.  ``build_workflow_engine()`` wires the kernel's
    engine facade from them.

Architecture position:
    Configuration -- sits above ``lab_kernel`` and below ``lab_batch`` and
    ``scripts``.  The kernel MUST NEVER import from ``lab_config``.

Invariants enforced:
    - ``DATABASE_URL`` in the environment overrides the configured URL;
      nothing else reads the environment.
    - Every successful load emits a ``config_loaded`` trace with the set
      name and checksum.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with that name.
    - ``ValueError`` / ``KeyError`` -- schema or reference errors.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from lab_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from lab_kernel.domain.clock import Clock
from lab_kernel.domain.ports import NotificationSink
from lab_kernel.logging_config import configure_logging, get_logger
from lab_kernel.services.workflow_engine import WorkflowEngine

from lab_config.directory import (
    StaticResourceDirectory,
    StaticScheduleProvider,
    sync_component_stock,
)
from lab_config.loader import load_yaml_file, parse_directory, parse_settings
from lab_config.schema import EngineSettings, LabDirectoryConfig

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DATABASE_URL_ENV = "DATABASE_URL"


def _set_path(set_name: str, config_dir: Path | None) -> Path:
    return (config_dir or _DEFAULT_CONFIG_DIR) / f"{set_name}.yaml"


def get_settings(set_name: str = "default", config_dir: Path | None = None) -> EngineSettings:
    """Runtime settings from a configuration set."""
    data = load_yaml_file(_set_path(set_name, config_dir))
    settings = parse_settings(data["settings"])
    override = os.environ.get(DATABASE_URL_ENV)
    if override:
        settings = replace(settings, database=replace(settings.database, url=override))
    _logger.info(
        "config_loaded",
        extra={
            "set_name": set_name,
            "section": "settings",
            "checksum": settings.checksum,
            "database_url_overridden": bool(override),
        },
    )
    return settings


def get_directory(set_name: str = "default", config_dir: Path | None = None) -> LabDirectoryConfig:
    """Static lab directory from a configuration set."""
    data = load_yaml_file(_set_path(set_name, config_dir))
    directory = parse_directory(data.get("directory", {}))
    _logger.info(
        "config_loaded",
        extra={
            "set_name": set_name,
            "section": "directory",
            "departments": len(directory.departments),
            "resources": len(directory.resources),
            "timetable_entries": len(directory.schedule),
        },
    )
    return directory


def build_workflow_engine(
    settings: EngineSettings,
    directory: LabDirectoryConfig,
    sink: NotificationSink | None = None,
    clock: Clock | None = None,
    create_schema: bool = False,
) -> WorkflowEngine:
    """Initialise the database engine and return a ready WorkflowEngine."""
    configure_logging(level=settings.logging.level)
    engine = init_engine_from_url(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        pool_recycle=settings.database.pool_recycle,
    )
    if create_schema:
        create_tables(engine)
        with session_scope() as session:
            sync_component_stock(session, directory)

    return WorkflowEngine(
        get_session_factory(),
        StaticResourceDirectory(directory),
        StaticScheduleProvider.from_config(directory),
        sink=sink,
        clock=clock,
        sweep_batch_limit=settings.sweep.batch_limit,
    )


__all__ = [
    "EngineSettings",
    "LabDirectoryConfig",
    "StaticResourceDirectory",
    "StaticScheduleProvider",
    "build_workflow_engine",
    "get_directory",
    "get_settings",
    "sync_component_stock",
]
