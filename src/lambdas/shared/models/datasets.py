"""Dataset schemas for the four Midgard history series.

Each schema lists the interval fields the service consumes, their numeric
kind and how they reduce into buckets. Ingestion, storage and querying are
all driven by these schemas, so adding a field is a one-line change here.
"""

from dataclasses import dataclass, field
from enum import Enum

from src.lib.timeseries.aggregation import FieldKind, FieldReducer, Reducer

START_TIME = "startTime"
END_TIME = "endTime"
POOLS = "pools"


class Dataset(str, Enum):
    """Datasets ingested from Midgard and served by the API."""

    DEPTH = "depth"
    EARNINGS = "earnings"
    SWAPS = "swaps"
    RUNEPOOL = "runepool"


@dataclass(frozen=True)
class DatasetSchema:
    """
    Everything the pipeline needs to know about one dataset.

    Attributes:
        dataset: Dataset identifier
        partition: Store partition (collection) name
        upstream_path: Path below the Midgard history base URL; may contain
            a `{pool}` placeholder
        route: Public API route
        fields: Interval fields and their bucket reducers
        meta_fields: Numeric meta fields and their kind
        nested_field: Name of a nested list field pushed into buckets, if any
    """

    dataset: Dataset
    partition: str
    upstream_path: str
    route: str
    fields: tuple[FieldReducer, ...]
    meta_fields: dict[str, FieldKind] = field(default_factory=dict)
    nested_field: str | None = None

    @property
    def name(self) -> str:
        return self.dataset.value

    @property
    def numeric_fields(self) -> tuple[FieldReducer, ...]:
        """Fields that hold numbers (usable in filters and sorting)."""
        return tuple(f for f in self.fields if f.kind is not FieldKind.NESTED)

    @property
    def filterable_fields(self) -> frozenset[str]:
        return frozenset(f.name for f in self.numeric_fields) | {START_TIME, END_TIME}

    @property
    def sortable_fields(self) -> frozenset[str]:
        return self.filterable_fields

    def path_for(self, pool: str) -> str:
        """Resolve the upstream path for a pool (only depth uses it)."""
        return self.upstream_path.format(pool=pool)


def _sum(name: str, kind: FieldKind = FieldKind.FLOAT) -> FieldReducer:
    return FieldReducer(name=name, reducer=Reducer.SUM, kind=kind)


def _avg(name: str, kind: FieldKind = FieldKind.FLOAT) -> FieldReducer:
    return FieldReducer(name=name, reducer=Reducer.AVG, kind=kind)


INT = FieldKind.INT
FLOAT = FieldKind.FLOAT


# Depth values are pool levels, so buckets report the mean level
DEPTH_SCHEMA = DatasetSchema(
    dataset=Dataset.DEPTH,
    partition="depth_history",
    upstream_path="depths/{pool}",
    route="/api/depth-history",
    fields=(
        _avg("assetDepth"),
        _avg("assetPrice"),
        _avg("assetPriceUSD"),
        _avg("liquidityUnits"),
        _avg("membersCount", INT),
        _avg("runeDepth"),
        _avg("synthSupply"),
        _avg("synthUnits"),
        _avg("units"),
        _avg("luvi"),
    ),
    meta_fields={
        "startAssetDepth": FLOAT,
        "endAssetDepth": FLOAT,
        "startLPUnits": FLOAT,
        "endLPUnits": FLOAT,
        "startMemberCount": INT,
        "endMemberCount": INT,
        "startRuneDepth": FLOAT,
        "endRuneDepth": FLOAT,
        "startSynthUnits": FLOAT,
        "endSynthUnits": FLOAT,
        "luviIncrease": FLOAT,
        "priceShiftLoss": FLOAT,
    },
)

EARNINGS_SCHEMA = DatasetSchema(
    dataset=Dataset.EARNINGS,
    partition="earnings_history",
    upstream_path="earnings",
    route="/api/earnings-history",
    fields=(
        _sum("liquidityFees"),
        _sum("blockRewards"),
        _sum("earnings"),
        _sum("bondingEarnings"),
        _sum("liquidityEarnings"),
        _avg("avgNodeCount"),
        _avg("runePriceUSD"),
        FieldReducer(name=POOLS, reducer=Reducer.PUSH, kind=FieldKind.NESTED),
    ),
    meta_fields={
        "liquidityFees": FLOAT,
        "blockRewards": FLOAT,
        "earnings": FLOAT,
        "bondingEarnings": FLOAT,
        "liquidityEarnings": FLOAT,
        "avgNodeCount": FLOAT,
        "runePriceUSD": FLOAT,
    },
    nested_field=POOLS,
)

SWAPS_SCHEMA = DatasetSchema(
    dataset=Dataset.SWAPS,
    partition="swaps_history",
    upstream_path="swaps",
    route="/api/swaps-history",
    fields=(
        _sum("toAssetCount", INT),
        _sum("toRuneCount", INT),
        _sum("toTradeCount", INT),
        _sum("fromTradeCount", INT),
        _sum("toSecuredCount", INT),
        _sum("fromSecuredCount", INT),
        _sum("synthMintCount", INT),
        _sum("synthRedeemCount", INT),
        _sum("totalCount", INT),
        _sum("toAssetVolume"),
        _sum("toRuneVolume"),
        _sum("toTradeVolume"),
        _sum("fromTradeVolume"),
        _sum("toSecuredVolume"),
        _sum("fromSecuredVolume"),
        _sum("synthMintVolume"),
        _sum("synthRedeemVolume"),
        _sum("totalVolume"),
        _avg("runePriceUSD"),
    ),
    meta_fields={
        "toAssetCount": INT,
        "toRuneCount": INT,
        "toTradeCount": INT,
        "fromTradeCount": INT,
        "toSecuredCount": INT,
        "fromSecuredCount": INT,
        "synthMintCount": INT,
        "synthRedeemCount": INT,
        "totalCount": INT,
        "toAssetVolume": FLOAT,
        "toRuneVolume": FLOAT,
        "toTradeVolume": FLOAT,
        "fromTradeVolume": FLOAT,
        "toSecuredVolume": FLOAT,
        "fromSecuredVolume": FLOAT,
        "synthMintVolume": FLOAT,
        "synthRedeemVolume": FLOAT,
        "totalVolume": FLOAT,
        "runePriceUSD": FLOAT,
    },
)

# `count` is the number of RUNEPool members, so it is averaged
RUNEPOOL_SCHEMA = DatasetSchema(
    dataset=Dataset.RUNEPOOL,
    partition="rune_pool_history",
    upstream_path="runepool",
    route="/api/rune-pool-history",
    fields=(
        _avg("count", INT),
        _sum("units"),
    ),
    meta_fields={
        "startUnits": FLOAT,
        "endUnits": FLOAT,
        "startCount": INT,
        "endCount": INT,
    },
)

SCHEMAS: dict[Dataset, DatasetSchema] = {
    Dataset.DEPTH: DEPTH_SCHEMA,
    Dataset.EARNINGS: EARNINGS_SCHEMA,
    Dataset.SWAPS: SWAPS_SCHEMA,
    Dataset.RUNEPOOL: RUNEPOOL_SCHEMA,
}

# Ingestion order within one cycle
INGESTION_ORDER: tuple[Dataset, ...] = (
    Dataset.DEPTH,
    Dataset.EARNINGS,
    Dataset.SWAPS,
    Dataset.RUNEPOOL,
)


def get_schema(dataset: Dataset | str) -> DatasetSchema:
    """
    Look up a dataset schema.

    Raises:
        ValueError: If the dataset name is unknown
    """
    return SCHEMAS[Dataset(dataset)]
