"""
Decoding of Midgard history responses.

Upstream responses look like::

    {"meta": {"startTime": "1700000000", "endTime": "1700003600", ...},
     "intervals": [{"startTime": "...", "endTime": "...", <fields>}, ...]}

Numbers arrive as JSON strings or numbers and are coerced per the dataset
schema (see src.lambdas.shared.utils.conversion). Any value that cannot be
coerced is a schema mismatch and the whole response is rejected, so a bad
page is never partially stored.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from src.lambdas.shared.models.datasets import (
    END_TIME,
    START_TIME,
    DatasetSchema,
)
from src.lambdas.shared.utils.conversion import (
    CoercionError,
    coerce_float,
    coerce_int,
)
from src.lib.timeseries.aggregation import FieldKind


class SchemaMismatchError(ValueError):
    """Raised when a decoded response does not match the dataset schema."""


class EarningsPool(BaseModel):
    """Per-pool earnings inside one earnings interval."""

    pool: str
    assetLiquidityFees: float = 0.0
    runeLiquidityFees: float = 0.0
    totalLiquidityFeesRune: float = 0.0
    saverEarning: float = 0.0
    rewards: float = 0.0
    earnings: float = 0.0

    @field_validator(
        "assetLiquidityFees",
        "runeLiquidityFees",
        "totalLiquidityFeesRune",
        "saverEarning",
        "rewards",
        "earnings",
        mode="before",
    )
    @classmethod
    def coerce_number(cls, v: Any) -> float:
        """Accept numeric strings the same way interval fields do."""
        try:
            return coerce_float(v)
        except CoercionError as e:
            raise ValueError(str(e)) from e


@dataclass
class HistoryBatch:
    """One decoded upstream page: its meta plus the raw samples."""

    dataset: str
    meta: dict[str, Any]
    intervals: list[dict[str, Any]] = field(default_factory=list)

    @property
    def start_time(self) -> int:
        return self.meta[START_TIME]

    @property
    def end_time(self) -> int:
        return self.meta[END_TIME]

    @property
    def last_sample_end(self) -> int | None:
        """Latest sample endTime, or None when no sample carries one."""
        ends = [s[END_TIME] for s in self.intervals if isinstance(s.get(END_TIME), int)]
        return max(ends) if ends else None

    @property
    def is_empty(self) -> bool:
        return not self.intervals


def _coerce(value: Any, kind: FieldKind, name: str) -> int | float:
    try:
        if kind is FieldKind.INT:
            return coerce_int(value)
        return coerce_float(value)
    except CoercionError as e:
        raise SchemaMismatchError(f"Field {name!r}: {e}") from e


def _decode_pools(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SchemaMismatchError(f"Field 'pools' must be a list, got {type(raw).__name__}")
    try:
        return [EarningsPool.model_validate(entry).model_dump() for entry in raw]
    except ValidationError as e:
        raise SchemaMismatchError(f"Invalid earnings pool: {e.error_count()} error(s)") from e


def _decode_meta(schema: DatasetSchema, raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaMismatchError("Response 'meta' must be an object")

    # Unknown meta keys pass through untouched
    meta = dict(raw)
    meta[START_TIME] = _coerce(raw.get(START_TIME), FieldKind.INT, START_TIME)
    meta[END_TIME] = _coerce(raw.get(END_TIME), FieldKind.INT, END_TIME)
    for name, kind in schema.meta_fields.items():
        if name in raw:
            meta[name] = _coerce(raw[name], kind, f"meta.{name}")
    return meta


def _decode_interval(schema: DatasetSchema, raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaMismatchError("Each interval must be an object")

    sample: dict[str, Any] = {
        START_TIME: _coerce(raw.get(START_TIME), FieldKind.INT, START_TIME),
        END_TIME: _coerce(raw.get(END_TIME), FieldKind.INT, END_TIME),
    }
    for rule in schema.fields:
        if rule.kind is FieldKind.NESTED:
            sample[rule.name] = _decode_pools(raw.get(rule.name))
        else:
            sample[rule.name] = _coerce(raw.get(rule.name), rule.kind, rule.name)
    return sample


def decode_history(schema: DatasetSchema, payload: Any) -> HistoryBatch:
    """
    Decode an upstream response body into a HistoryBatch.

    Args:
        schema: Dataset schema the response belongs to
        payload: Parsed JSON body

    Returns:
        HistoryBatch with coerced meta and samples

    Raises:
        SchemaMismatchError: If the body does not match the schema
    """
    if not isinstance(payload, dict):
        raise SchemaMismatchError(
            f"Response body must be an object, got {type(payload).__name__}"
        )

    intervals = payload.get("intervals")
    if intervals is None:
        intervals = []
    if not isinstance(intervals, list):
        raise SchemaMismatchError("Response 'intervals' must be a list")

    return HistoryBatch(
        dataset=schema.name,
        meta=_decode_meta(schema, payload.get("meta")),
        intervals=[_decode_interval(schema, item) for item in intervals],
    )
