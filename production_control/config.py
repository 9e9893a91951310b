"""Tunable parameters and runtime settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Optional, Tuple, Union

from pydantic import BeforeValidator, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import StageDescriptor, stage_tuple

DEFAULT_STAGE_NAMES: Tuple[str, ...] = (
    "Cutting",
    "Sewing",
    "Packing",
    "Labelling",
    "Quality control",
    "Delivery note",
)

DEFAULT_STAGES: Tuple[StageDescriptor, ...] = stage_tuple(list(DEFAULT_STAGE_NAMES))

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(slots=True)
class AllocationOptions:
    """Weights of the line scoring formula.

    ``score = free_slots * capacity_weight + (1 - rate) * balance_weight
    + priority * priority_weight``
    """

    capacity_weight: float = 10.0
    balance_weight: float = 5.0
    priority_weight: float = 2.0


@dataclass(slots=True)
class SaturationOptions:
    """Occupancy rates above which a line raises alerts."""

    warning_threshold: float = 0.8
    critical_threshold: float = 0.9

    def __post_init__(self) -> None:
        if not 0 < self.warning_threshold < self.critical_threshold <= 1:
            raise ValueError(
                "Thresholds must satisfy 0 < warning < critical <= 1"
            )


def parse_stage_names(value: Any) -> Any:
    if isinstance(value, str) and not value.startswith("["):
        return tuple(name.strip() for name in value.split(",") if name.strip())
    return value


class Settings(BaseSettings):
    """Process level configuration, read from ``PRODUCTION_CONTROL_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="PRODUCTION_CONTROL_",
        env_ignore_empty=True,
        extra="ignore",
    )

    db: Optional[str] = None
    log_level: str = "INFO"
    stages: Annotated[
        Union[Tuple[str, ...], str], BeforeValidator(parse_stage_names)
    ] = DEFAULT_STAGE_NAMES

    @field_validator("log_level", mode="before")
    @classmethod
    def check_log_level(cls, value: Any) -> str:
        level = str(value).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("stages")
    @classmethod
    def check_stages(cls, value: Any) -> Tuple[str, ...]:
        names = (value,) if isinstance(value, str) else tuple(value)
        if not names:
            raise ValueError("at least one stage is required")
        return names

    @property
    def stage_descriptors(self) -> Tuple[StageDescriptor, ...]:
        return stage_tuple(list(self.stages))


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler once; later calls only adjust the level."""

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)


__all__ = [
    "DEFAULT_STAGE_NAMES",
    "DEFAULT_STAGES",
    "AllocationOptions",
    "SaturationOptions",
    "Settings",
    "configure_logging",
]
