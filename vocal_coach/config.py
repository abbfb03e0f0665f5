"""
Runtime configuration and logging setup.

Defaults cover the analysis window sizes; every field can be overridden
through a ``VOCAL_COACH_<FIELD>`` environment variable.
"""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "VOCAL_COACH_"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class AnalysisConfig(BaseModel):
    hop_sec: float = Field(0.02, gt=0)
    frame_sec: float = Field(0.04, gt=0)
    envelope_step_sec: float = Field(0.05, gt=0)
    max_offset_ms: float = Field(800.0, ge=0)
    live_update_hz: float = Field(15.0, gt=0)
    drill_repeat_count: int = Field(3, ge=1)
    log_level: str = "INFO"


def load_config(environ: Optional[Mapping[str, str]] = None) -> AnalysisConfig:
    """Build an AnalysisConfig from defaults plus environment overrides.

    Args:
        environ: Mapping to read overrides from (defaults to ``os.environ``).

    Returns:
        A validated AnalysisConfig. Invalid values raise pydantic's
        ValidationError.
    """
    env = os.environ if environ is None else environ
    overrides = {}
    for name in AnalysisConfig.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in env:
            overrides[name] = env[key]
    if overrides:
        logger.info("Config overrides from environment: %s", sorted(overrides))
    return AnalysisConfig(**overrides)


def configure_logging(level: Optional[str] = None, config: Optional[AnalysisConfig] = None) -> None:
    """Install the root handler; intended for applications, never called on import.

    The level is *level* when given, else ``config.log_level``, else the
    ``log_level`` of load_config().
    """
    if level is None:
        level = (config or load_config()).log_level
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
