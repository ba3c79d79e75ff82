"""
revenue_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.  Returns a frozen ``EngineConfig``.

Architecture position:
    Configuration -- sits above ``revenue_kernel``.  The kernel MUST NEVER
    import from ``revenue_config``; ``revenue_config.bridges`` translates
    the config into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the requested YAML file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``REVENUE_CONFIG_TRACE`` log entry with the source path and checksum, so
    a report can be tied to the exact settings that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from revenue_config.loader import compute_checksum, load_yaml_file, parse_engine_config
from revenue_config.schema import EngineConfig

_logger = logging.getLogger("revenue_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

__all__ = ["DEFAULT_CONFIG_PATH", "EngineConfig", "get_active_config"]


def get_active_config(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``defaults.yaml``.
        overrides: Individual settings applied on top of the file, e.g.
            ``{"database_url": "sqlite://"}`` from a command-line flag.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the configuration is invalid.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    section = dict(data.get("engine", data))
    if overrides:
        section.update(overrides)

    config = parse_engine_config(section)
    checksum = compute_checksum(section)

    _logger.info(
        "REVENUE_CONFIG_TRACE",
        extra={
            "trace_type": "REVENUE_CONFIG_TRACE",
            "config_path": str(path),
            "config_version": config.version,
            "checksum": checksum,
            "spillover_policy": config.spillover_policy,
            "reporting_timezone": config.reporting_timezone,
        },
    )
    return config
