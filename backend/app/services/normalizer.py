"""
Daily Metrics Normaliser
========================
Flattens a Google Fit ``dataset:aggregate`` response (one bucket per day)
into one DailyRecord per bucket.

Rules:
- One record per bucket, same order as the input.
- Every field starts at its zero value; a dataset only overwrites the field
  it maps to, and only when it has at least one point.
- Datasets are dispatched on ``dataSourceId`` through SOURCE_EXTRACTORS.
  Unknown identifiers are ignored.
- Each extractor sees the *first* point's value list only.

Pure function: no I/O, no logging, no state between calls.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from app.models.fitness import DailyRecord, FitValue, RawBucket


class MalformedInput(ValueError):
    """The top-level input is not a sequence of bucket-shaped objects."""


# ---------------------------------------------------------------------------
# Source identifiers (Google Fit aggregated / merged streams)
# ---------------------------------------------------------------------------

STEP_COUNT_SOURCE = "derived:com.google.step_count.delta:com.google.android.gms:aggregated"
GLUCOSE_SOURCE = "derived:com.google.blood_glucose.summary:com.google.android.gms:aggregated"
BLOOD_PRESSURE_SOURCE = "derived:com.google.blood_pressure.summary:com.google.android.gms:aggregated"
HEART_RATE_SOURCE = "derived:com.google.heart_rate.summary:com.google.android.gms:aggregated"
WEIGHT_SOURCE = "derived:com.google.weight.summary:com.google.android.gms:aggregated"
HEIGHT_SOURCE = "derived:com.google.height.summary:com.google.android.gms:aggregated"
SLEEP_SOURCE = "derived:com.google.sleep.segment:com.google.android.gms:merged"


# ---------------------------------------------------------------------------
# Extractors: first point's values in, field value out
# ---------------------------------------------------------------------------

def _first_int(values: list[FitValue]) -> int:
    return (values[0].int_val or 0) if values else 0


def _first_float(values: list[FitValue]) -> float:
    return (values[0].fp_val or 0.0) if values else 0.0


def _sum_floats(values: list[FitValue]) -> float:
    return sum((v.fp_val or 0.0 for v in values), 0.0)


def _glucose(values: list[FitValue]) -> float:
    # Same-timestamp readings arrive in one point; the provider sums them
    return _sum_floats(values) * 10


def _blood_pressure(values: list[FitValue]) -> tuple[float, float]:
    # Larger reading is taken as systolic. Not guaranteed by the provider.
    # Values without an fpVal are not counted toward the two readings.
    readings = sorted((v.fp_val for v in values if v.fp_val is not None), reverse=True)
    if len(readings) == 2:
        return (readings[0], readings[1])
    return (0.0, 0.0)


def _height_cm(values: list[FitValue]) -> float:
    return _first_float(values) * 100


SOURCE_EXTRACTORS: Mapping[str, tuple[str, Callable[[list[FitValue]], Any]]] = MappingProxyType({
    STEP_COUNT_SOURCE: ("step_count", _first_int),
    GLUCOSE_SOURCE: ("glucose_level", _glucose),
    BLOOD_PRESSURE_SOURCE: ("blood_pressure", _blood_pressure),
    HEART_RATE_SOURCE: ("heart_rate", _sum_floats),
    WEIGHT_SOURCE: ("weight", _first_float),
    HEIGHT_SOURCE: ("height_cm", _height_cm),
    # Reported as hours; the unit is not cross-checked against the schema
    SLEEP_SOURCE: ("sleep_hours", _first_float),
})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize(buckets: Sequence[RawBucket | Mapping[str, Any]]) -> list[DailyRecord]:
    """Map each bucket to a DailyRecord, preserving order.

    Accepts RawBucket instances or the raw dicts straight out of the
    provider JSON. Raises MalformedInput if ``buckets`` is not a list-like
    sequence or an element has no usable ``startTimeMillis``.
    """
    if buckets is None or isinstance(buckets, (str, bytes, Mapping)) or not isinstance(buckets, Sequence):
        raise MalformedInput(f"Expected a sequence of buckets, got {type(buckets).__name__}")

    return [_normalize_bucket(_parse_bucket(raw, index)) for index, raw in enumerate(buckets)]


def bucket_date(start_time_millis: int) -> date:
    """Calendar day (UTC) of an epoch-millis timestamp."""
    return datetime.fromtimestamp(start_time_millis / 1000, tz=timezone.utc).date()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_bucket(raw: Any, index: int) -> RawBucket:
    if isinstance(raw, RawBucket):
        return raw
    try:
        return RawBucket.model_validate(raw)
    except ValidationError as exc:
        raise MalformedInput(f"Bucket {index} is not bucket-shaped: {exc.error_count()} error(s)") from exc


def _normalize_bucket(bucket: RawBucket) -> DailyRecord:
    try:
        day = bucket_date(bucket.start_time_millis)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedInput(f"startTimeMillis out of range: {bucket.start_time_millis}") from exc

    fields: dict[str, Any] = {}
    for dataset in bucket.datasets:
        handler = SOURCE_EXTRACTORS.get(dataset.data_source_id)
        if handler is None or not dataset.points:
            continue
        field_name, extract = handler
        fields[field_name] = extract(dataset.points[0].values)

    return DailyRecord(date=day, **fields)
