"""Property tests for bucket alignment, reduction and pagination invariants.

These tests verify that history query results hold for any stored data,
not only the hand-written fixtures of the unit tests.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from src.lambdas.shared.models.datasets import SWAPS_SCHEMA
from src.lambdas.shared.store import MAX_PAGE_SIZE, InMemorySeriesStore
from src.lib.timeseries.bucket import align_down
from src.lib.timeseries.filters import FilterCondition, FilterOperator, parse_filter
from tests.fixtures.strategies import (
    filter_threshold,
    interval_seconds,
    swaps_batch,
    timestamps,
)

OPEN_END = 2**62


def store_with(*batches) -> InMemorySeriesStore:
    store = InMemorySeriesStore()
    for meta, samples in batches:
        store.insert_batch(SWAPS_SCHEMA, meta, samples)
    return store


class TestAlignment:
    """Bucket boundary invariants."""

    @settings(max_examples=200)
    @given(ts=timestamps(), interval=interval_seconds())
    def test_align_down_bounds(self, ts, interval):
        aligned = align_down(ts, interval)
        assert aligned % interval == 0
        assert aligned <= ts < aligned + interval

    @settings(max_examples=200)
    @given(ts=timestamps(), interval=interval_seconds())
    def test_align_down_idempotent(self, ts, interval):
        once = align_down(ts, interval)
        assert align_down(once, interval) == once


class TestBucketing:
    """Grouping invariants over stored batches."""

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(), interval=interval_seconds())
    def test_buckets_are_aligned_and_contain_their_samples(self, batch, interval):
        store = store_with(batch)

        page = store.query_buckets(SWAPS_SCHEMA, 0, OPEN_END, interval, count=MAX_PAGE_SIZE)

        for bucket in page.buckets:
            assert bucket.bucket_start % interval == 0
            assert bucket.bucket_start <= bucket.start_time < bucket.bucket_start + interval
            assert bucket.start_time < bucket.end_time

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(), interval=interval_seconds())
    def test_sum_is_conserved(self, batch, interval):
        _, samples = batch
        store = store_with(batch)

        page = store.query_buckets(SWAPS_SCHEMA, 0, OPEN_END, interval, count=MAX_PAGE_SIZE)

        assert sum(b.values["totalCount"] for b in page.buckets) == sum(
            s["totalCount"] for s in samples
        )
        assert sum(b.sample_count for b in page.buckets) == len(samples)

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(), interval=interval_seconds())
    def test_retried_batch_does_not_double_count(self, batch, interval):
        _, samples = batch
        store = store_with(batch, batch)

        page = store.query_buckets(SWAPS_SCHEMA, 0, OPEN_END, interval, count=MAX_PAGE_SIZE)

        assert sum(b.values["totalCount"] for b in page.buckets) == sum(
            s["totalCount"] for s in samples
        )
        assert sum(b.sample_count for b in page.buckets) == len(samples)

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(), interval=interval_seconds())
    def test_buckets_ascend_by_default(self, batch, interval):
        store = store_with(batch)

        page = store.query_buckets(SWAPS_SCHEMA, 0, OPEN_END, interval, count=MAX_PAGE_SIZE)

        starts = [b.bucket_start for b in page.buckets]
        assert starts == sorted(starts)
        assert len(set(starts)) == len(starts)


class TestFilters:
    """Filter invariants."""

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(), threshold=filter_threshold())
    def test_greater_equal_includes_greater(self, batch, threshold):
        field, value = threshold
        store = store_with(batch)

        def matched(op: str) -> int:
            page = store.query_buckets(
                SWAPS_SCHEMA,
                0,
                OPEN_END,
                3600,
                filters=[parse_filter(f"{field}{op}{value}")],
                count=MAX_PAGE_SIZE,
            )
            return sum(b.sample_count for b in page.buckets)

        assert matched(">=") >= matched(">")
        assert matched(">=") == matched(">") + matched("=")

    @settings(max_examples=200)
    @given(
        field=st.from_regex(r"[A-Za-z_][A-Za-z0-9_]{0,20}", fullmatch=True),
        operator=st.sampled_from(list(FilterOperator)),
        value=st.integers(min_value=-999_999, max_value=999_999),
    )
    def test_condition_text_parses_back(self, field, operator, value):
        condition = FilterCondition(field=field, operator=operator, value=float(value))
        assert parse_filter(str(condition)) == condition


class TestPagination:
    """Page mode invariants."""

    @settings(max_examples=50, deadline=None)
    @given(batch=swaps_batch(max_size=30), page_size=st.integers(min_value=1, max_value=12))
    def test_pages_concatenate_to_full_result(self, batch, page_size):
        store = store_with(batch)
        full = store.query_buckets(SWAPS_SCHEMA, 0, OPEN_END, 3600, count=MAX_PAGE_SIZE)

        paged = []
        page_number = 1
        while True:
            page = store.query_buckets(
                SWAPS_SCHEMA, 0, OPEN_END, 3600, page=page_number, limit=page_size
            )
            if not page.buckets:
                break
            assert len(page.buckets) <= page_size
            paged.extend(page.buckets)
            page_number += 1

        assert [b.bucket_start for b in paged] == [b.bucket_start for b in full.buckets]
