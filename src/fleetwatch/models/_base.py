"""Base model and shared types for fleetwatch domain objects.

Every domain model inherits from :class:`FleetBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase keys from configuration stores
  and provider payloads map automatically to snake_case fields, while
  snake_case names still populate by name.
* A ``model_validator(mode="before")`` that strips placeholder values
  (``""``, ``"--"``, NaN) so the field default is used.
* Frozen instances: models are shared between lanes and never mutated in
  place; state changes produce new instances via ``model_copy``.
"""

from __future__ import annotations

import enum
import math
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from fleetwatch.ingestion.normalize import parse_timestamp

_SENTINELS = frozenset({"", "--", "NaN", "nan"})


def _coerce_timestamp(value: Any) -> Any:
    parsed = parse_timestamp(value)
    # Leave unparseable input untouched so pydantic reports a proper error.
    return parsed if parsed is not None else value


UtcTimestamp = Annotated[datetime, BeforeValidator(_coerce_timestamp)]
"""Annotated type that coerces ISO strings and epoch seconds/ms to UTC datetimes."""


class Severity(enum.StrEnum):
    """Alert severity, ordered from least to most urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class FleetBaseModel(BaseModel):
    """Base for fleetwatch domain models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _clean_placeholders(cls, values: Any) -> Any:
        """Drop placeholder values so field defaults apply."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned
