"""
============================================================================
Property-Based Tests - Merge, Filter, Sort and Pagination
============================================================================

Tests the aggregation engine's pure functions using Hypothesis.

Properties tested:
- Merge yields one record per address and keeps the address set
- Merged numeric activity fields equal the max over all observations
- Merging is associative over batches for addresses and maxima
- Filtering only ever removes records, and every survivor matches
- Sorting is a permutation in the requested order
- Walking every page reproduces the sorted sequence exactly once
============================================================================
"""

from datetime import datetime, timedelta, timezone
from typing import List

from hypothesis import given, settings
from hypothesis import strategies as st

from data_ingestion.schemas import (
    CanonicalRecord,
    FilterSpec,
    PricePeriod,
    ProviderType,
    SortField,
    SortOrder,
    SortSpec,
)
from services.aggregation_service import (
    apply_filters,
    apply_sort,
    merge_records,
    paginate,
)


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

# Small address pool so duplicates are common
address_strategy = st.sampled_from(["A1", "B2", "C3", "D4", "E5"])

amount_strategy = st.floats(min_value=0, max_value=1e9, allow_nan=False, allow_infinity=False)

change_strategy = st.one_of(
    st.none(),
    st.floats(min_value=-100, max_value=1000, allow_nan=False, allow_infinity=False),
)

protocol_strategy = st.sampled_from(["raydium", "orca", "meteora", "Multiple"])

observed_strategy = st.one_of(
    st.none(),
    st.integers(min_value=0, max_value=10000).map(
        lambda minutes: datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    ),
)


@st.composite
def record_strategy(draw) -> CanonicalRecord:
    return CanonicalRecord(
        address=draw(address_strategy),
        name=draw(st.sampled_from(["", "Alpha", "Beta"])),
        ticker=draw(st.sampled_from(["", "ALP", "BET"])),
        price=draw(amount_strategy),
        market_cap=draw(amount_strategy),
        volume=draw(amount_strategy),
        liquidity=draw(amount_strategy),
        tx_count=draw(st.integers(min_value=0, max_value=10 ** 6)),
        protocol=draw(protocol_strategy),
        provenance=draw(st.sampled_from([provider.value for provider in ProviderType])),
        price_change_1h=draw(change_strategy),
        price_change_24h=draw(change_strategy),
        price_change_7d=draw(change_strategy),
        observed_at=draw(observed_strategy),
    )


records_strategy = st.lists(record_strategy(), max_size=30)

filter_strategy = st.builds(
    FilterSpec,
    min_volume=st.one_of(st.none(), amount_strategy),
    max_volume=st.one_of(st.none(), amount_strategy),
    protocol=st.one_of(st.none(), protocol_strategy),
    min_price_change=change_strategy,
    period=st.sampled_from(list(PricePeriod)),
)

sort_strategy = st.builds(
    SortSpec,
    field=st.sampled_from(list(SortField)),
    order=st.sampled_from(list(SortOrder)),
)


def by_address(records: List[CanonicalRecord]):
    return {record.address: record for record in records}


# =============================================================================
# Merge Properties
# =============================================================================

class TestMergeProperties:

    @settings(max_examples=100)
    @given(records=records_strategy)
    def test_one_record_per_address(self, records) -> None:
        merged = merge_records(records)

        addresses = [record.address for record in merged]
        assert len(addresses) == len(set(addresses))
        assert set(addresses) == {record.address for record in records}

    @settings(max_examples=100)
    @given(records=records_strategy)
    def test_activity_fields_are_maxima(self, records) -> None:
        merged = by_address(merge_records(records))

        for address, record in merged.items():
            group = [item for item in records if item.address == address]
            assert record.market_cap == max(item.market_cap for item in group)
            assert record.volume == max(item.volume for item in group)
            assert record.liquidity == max(item.liquidity for item in group)
            assert record.tx_count == max(item.tx_count for item in group)

    @settings(max_examples=100)
    @given(first=records_strategy, second=records_strategy)
    def test_merging_batches_matches_merging_everything(self, first, second) -> None:
        together = by_address(merge_records(first + second))
        staged = by_address(merge_records(merge_records(first) + merge_records(second)))

        assert set(together) == set(staged)
        for address in together:
            assert together[address].volume == staged[address].volume
            assert together[address].market_cap == staged[address].market_cap
            assert together[address].liquidity == staged[address].liquidity
            assert together[address].tx_count == staged[address].tx_count

    @settings(max_examples=100)
    @given(records=records_strategy)
    def test_singletons_keep_their_provenance(self, records) -> None:
        merged = by_address(merge_records(records))

        for address, record in merged.items():
            group = [item for item in records if item.address == address]
            if len(group) == 1:
                assert record == group[0]
            else:
                assert record.is_aggregated


# =============================================================================
# Query Properties
# =============================================================================

class TestQueryProperties:

    @settings(max_examples=100)
    @given(records=records_strategy, filters=filter_strategy)
    def test_filter_is_a_matching_subsequence(self, records, filters) -> None:
        result = apply_filters(records, filters)

        assert all(filters.matches(record) for record in result)
        assert len(result) == sum(1 for record in records if filters.matches(record))

    @settings(max_examples=100)
    @given(records=records_strategy, sort=sort_strategy)
    def test_sort_is_an_ordered_permutation(self, records, sort) -> None:
        result = apply_sort(records, sort)

        assert sorted(map(id, result)) == sorted(map(id, records))

        values = [getattr(record, sort.field.attribute) or 0 for record in result]
        if sort.order == SortOrder.ASC:
            assert values == sorted(values)
        else:
            assert values == sorted(values, reverse=True)

    @settings(max_examples=100)
    @given(records=records_strategy, limit=st.integers(min_value=1, max_value=7))
    def test_walking_pages_covers_the_sequence_once(self, records, limit) -> None:
        collected = []
        cursor = None

        while True:
            page = paginate(records, limit, cursor)
            assert len(page.records) <= limit
            assert page.total == len(records)
            collected.extend(page.records)
            if not page.has_more:
                assert page.next_cursor is None
                break
            cursor = page.next_cursor

        assert collected == list(records)
