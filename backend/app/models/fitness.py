"""
Fitness Data Schemas
====================
Pydantic shapes for the Google Fit aggregate response (bucket → dataset →
point → value) and the flat per-day record we return to the app.

The raw shapes are lenient: anything optional that is missing
or of the wrong type collapses to an empty list / None so the normaliser
can fall back to its defaults. Only ``startTimeMillis`` is required:
without it there is no bucket.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _objects_only(value: Any) -> list:
    """Keep the mapping/model entries of a list; anything else becomes []."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, BaseModel))]


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _float_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _str_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


_LENIENT = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Provider response (input to the normaliser)
# ---------------------------------------------------------------------------

class FitValue(BaseModel):
    """One typed reading. Google Fit populates either intVal or fpVal."""

    model_config = _LENIENT

    int_val: Annotated[Optional[int], BeforeValidator(_int_or_none)] = Field(None, alias="intVal")
    fp_val: Annotated[Optional[float], BeforeValidator(_float_or_none)] = Field(None, alias="fpVal")


class FitPoint(BaseModel):
    """A single sampled observation within a dataset."""

    model_config = _LENIENT

    values: Annotated[list[FitValue], BeforeValidator(_objects_only)] = Field(
        default_factory=list, alias="value"
    )


class FitDataset(BaseModel):
    """One named metric stream inside a bucket."""

    model_config = _LENIENT

    data_source_id: Annotated[str, BeforeValidator(_str_or_empty)] = Field("", alias="dataSourceId")
    points: Annotated[list[FitPoint], BeforeValidator(_objects_only)] = Field(
        default_factory=list, alias="point"
    )


class RawBucket(BaseModel):
    """One time window of the aggregate response (one calendar day for us).

    Google sends the epoch millis as decimal strings; pydantic coerces them.
    """

    model_config = _LENIENT

    start_time_millis: int = Field(..., alias="startTimeMillis")
    end_time_millis: Optional[int] = Field(None, alias="endTimeMillis")
    datasets: Annotated[list[FitDataset], BeforeValidator(_objects_only)] = Field(
        default_factory=list, alias="dataset"
    )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class DailyRecord(BaseModel):
    """Flat per-day health record, serialised with camelCase keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    date: date
    step_count: int = 0
    # provider units ×10
    glucose_level: float = 0.0
    # (systolic, diastolic)
    blood_pressure: tuple[float, float] = (0.0, 0.0)
    heart_rate: float = 0.0
    weight: float = 0.0
    height_cm: float = 0.0
    sleep_hours: float = 0.0
