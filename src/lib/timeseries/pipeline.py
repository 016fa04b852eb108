"""
Typed aggregation pipeline for history queries.

A query is an ordered tuple of stage descriptors built from validated
request parameters. Stores execute a pipeline through one method; the
in-process executor here implements every stage so any backend only needs
to produce candidate records (optionally pushing RecordRangeMatch down).

Data moves through three phases:

    records  --Unwind-->  samples  --Group-->  buckets

Unwind emits samples in record insertion order (record ids sort by
insertion time), so DedupeSamples can keep the sample of the newest record
when retries stored the same interval more than once.

Record: {"meta": {"startTime", "endTime", ...}, "intervals": [sample, ...]}
Sample: {"startTime", "endTime", <dataset fields>}
Bucket row: {"bucketStart", "startTime", "endTime", "sampleCount", <reduced fields>}
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.lib.timeseries.aggregation import FieldReducer, reduce_group
from src.lib.timeseries.bucket import align_down
from src.lib.timeseries.filters import FilterCondition

BUCKET_START_KEY = "bucketStart"
SAMPLE_COUNT_KEY = "sampleCount"


class PipelineError(ValueError):
    """Raised when a pipeline is built or executed out of order."""


class Phase(str, Enum):
    RECORDS = "records"
    SAMPLES = "samples"
    BUCKETS = "buckets"


@dataclass(frozen=True)
class RecordRangeMatch:
    """Keep records whose meta range intersects [start, end] (inclusive)."""

    start: int
    end: int
    phase = Phase.RECORDS


@dataclass(frozen=True)
class Unwind:
    """Expand each record into its samples."""

    phase = Phase.RECORDS


@dataclass(frozen=True)
class DedupeSamples:
    """Keep one sample per key, taken from the newest record."""

    key: str = "startTime"
    phase = Phase.SAMPLES


@dataclass(frozen=True)
class SampleRangeMatch:
    """Keep samples with start <= startTime <= end."""

    start: int
    end: int
    phase = Phase.SAMPLES


@dataclass(frozen=True)
class FieldFilter:
    """Keep samples matching every condition."""

    conditions: tuple[FilterCondition, ...]
    phase = Phase.SAMPLES


@dataclass(frozen=True)
class Group:
    """Group samples by aligned startTime and reduce each field."""

    interval_seconds: int
    rules: tuple[FieldReducer, ...]
    phase = Phase.SAMPLES


@dataclass(frozen=True)
class Sort:
    """Order bucket rows by one key."""

    key: str = BUCKET_START_KEY
    descending: bool = False
    phase = Phase.BUCKETS


@dataclass(frozen=True)
class Skip:
    count: int
    phase = Phase.BUCKETS


@dataclass(frozen=True)
class Limit:
    count: int
    phase = Phase.BUCKETS


Stage = (
    RecordRangeMatch
    | Unwind
    | DedupeSamples
    | SampleRangeMatch
    | FieldFilter
    | Group
    | Sort
    | Skip
    | Limit
)


@dataclass
class QueryPipeline:
    """
    Builder for an ordered stage list.

    Each method validates that the stage fits the current phase so that a
    pipeline that reaches a store is always executable.

    Example:
        >>> pipeline = (
        ...     QueryPipeline()
        ...     .match_records(0, 7200)
        ...     .unwind()
        ...     .dedupe()
        ...     .match_samples(0, 7200)
        ...     .group(86400, rules)
        ...     .sort()
        ...     .limit(10)
        ... )
    """

    stages: list[Stage] = field(default_factory=list)
    _phase: Phase = Phase.RECORDS

    def _append(self, stage: Stage) -> "QueryPipeline":
        if stage.phase is not self._phase:
            raise PipelineError(
                f"{type(stage).__name__} cannot follow the {self._phase.value} phase"
            )
        self.stages.append(stage)
        if isinstance(stage, Unwind):
            self._phase = Phase.SAMPLES
        elif isinstance(stage, Group):
            self._phase = Phase.BUCKETS
        return self

    def match_records(self, start: int, end: int) -> "QueryPipeline":
        return self._append(RecordRangeMatch(start=start, end=end))

    def unwind(self) -> "QueryPipeline":
        return self._append(Unwind())

    def dedupe(self, key: str = "startTime") -> "QueryPipeline":
        return self._append(DedupeSamples(key=key))

    def match_samples(self, start: int, end: int) -> "QueryPipeline":
        return self._append(SampleRangeMatch(start=start, end=end))

    def filter(self, conditions: Iterable[FilterCondition]) -> "QueryPipeline":
        conditions = tuple(conditions)
        if not conditions:
            return self
        return self._append(FieldFilter(conditions=conditions))

    def group(
        self, interval_seconds: int, rules: Iterable[FieldReducer]
    ) -> "QueryPipeline":
        if interval_seconds <= 0:
            raise PipelineError("Group interval must be positive")
        return self._append(Group(interval_seconds=interval_seconds, rules=tuple(rules)))

    def sort(self, key: str = BUCKET_START_KEY, descending: bool = False) -> "QueryPipeline":
        return self._append(Sort(key=key, descending=descending))

    def skip(self, count: int) -> "QueryPipeline":
        if count <= 0:
            return self
        return self._append(Skip(count=count))

    def limit(self, count: int) -> "QueryPipeline":
        return self._append(Limit(count=max(0, count)))

    def build(self) -> tuple[Stage, ...]:
        """Return the immutable stage tuple."""
        return tuple(self.stages)


def _record_intersects(record: dict[str, Any], stage: RecordRangeMatch) -> bool:
    meta = record.get("meta") or {}
    start = meta.get("startTime")
    end = meta.get("endTime")
    if not isinstance(start, int) or not isinstance(end, int):
        return False
    return start <= stage.end and end >= stage.start


def _sample_start(sample: dict[str, Any]) -> int | None:
    start = sample.get("startTime")
    if isinstance(start, bool) or not isinstance(start, int):
        return None
    return start


def _unwind(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ordered = sorted(records, key=lambda r: str(r.get("id") or ""))
    return [
        sample
        for record in ordered
        for sample in (record.get("intervals") or [])
        if isinstance(sample, dict)
    ]


def _dedupe(
    samples: Iterable[dict[str, Any]], stage: DedupeSamples
) -> list[dict[str, Any]]:
    # Later samples come from newer records and replace earlier ones in place
    latest: dict[Any, dict[str, Any]] = {}
    unkeyed = []
    for sample in samples:
        key = sample.get(stage.key)
        if isinstance(key, bool) or not isinstance(key, int | str):
            unkeyed.append(sample)
        else:
            latest[key] = sample
    return list(latest.values()) + unkeyed


def _group(samples: Iterable[dict[str, Any]], stage: Group) -> list[dict[str, Any]]:
    groups: dict[int, list[dict[str, Any]]] = {}
    for sample in samples:
        start = _sample_start(sample)
        if start is None:
            continue
        groups.setdefault(align_down(start, stage.interval_seconds), []).append(sample)

    rows = []
    for bucket_start, members in groups.items():
        row = reduce_group(members, stage.rules)
        row[BUCKET_START_KEY] = bucket_start
        row["startTime"] = min(_sample_start(s) for s in members)
        row["endTime"] = max(int(s.get("endTime") or 0) for s in members)
        row[SAMPLE_COUNT_KEY] = len(members)
        rows.append(row)
    return rows


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _sort(rows: list[dict[str, Any]], stage: Sort) -> list[dict[str, Any]]:
    # Rows without a numeric sort value go last, in bucket order
    present = [r for r in rows if _is_number(r.get(stage.key))]
    missing = [r for r in rows if not _is_number(r.get(stage.key))]
    present.sort(
        key=lambda r: (r[stage.key], r[BUCKET_START_KEY]), reverse=stage.descending
    )
    missing.sort(key=lambda r: r[BUCKET_START_KEY])
    return present + missing


def execute_pipeline(
    records: Iterable[dict[str, Any]], stages: Sequence[Stage]
) -> list[dict[str, Any]]:
    """
    Run a pipeline over candidate records.

    Args:
        records: Stored batch records
        stages: Stage tuple from QueryPipeline.build()

    Returns:
        Rows of the final phase (records, samples or bucket rows)
    """
    rows: list[dict[str, Any]] = list(records)

    for stage in stages:
        if isinstance(stage, RecordRangeMatch):
            rows = [r for r in rows if _record_intersects(r, stage)]
        elif isinstance(stage, Unwind):
            rows = _unwind(rows)
        elif isinstance(stage, DedupeSamples):
            rows = _dedupe(rows, stage)
        elif isinstance(stage, SampleRangeMatch):
            rows = [
                s
                for s in rows
                if (start := _sample_start(s)) is not None
                and stage.start <= start <= stage.end
            ]
        elif isinstance(stage, FieldFilter):
            rows = [s for s in rows if all(c.matches(s) for c in stage.conditions)]
        elif isinstance(stage, Group):
            rows = _group(rows, stage)
        elif isinstance(stage, Sort):
            rows = _sort(rows, stage)
        elif isinstance(stage, Skip):
            rows = rows[stage.count :]
        elif isinstance(stage, Limit):
            rows = rows[: stage.count]
        else:
            raise PipelineError(f"Unknown stage: {type(stage).__name__}")

    return rows
