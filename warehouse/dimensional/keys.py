"""
Surrogate Key Assignment

Dense integer keys for dimension rows. By default keys are recomputed each
run from a deterministic ordering, so they only stay stable while the set of
business keys does not change. A SurrogateKeyRegistry persists assignments
and only ever appends new keys.
"""

from typing import Optional, Sequence

import polars as pl
import structlog

logger = structlog.get_logger(__name__)

REGISTRY_SCHEMA = {"business_key": pl.String, "surrogate_key": pl.Int64}

_LEXICAL = "_lexical_key"


def _ordered(df: pl.DataFrame, key_column: str, order_by: Sequence[str]) -> pl.DataFrame:
    """Deterministic order: ordering columns, then business key as text"""
    return (
        df.with_columns(pl.col(key_column).cast(pl.String).alias(_LEXICAL))
        .sort(list(order_by) + [_LEXICAL], nulls_last=True)
    )


def assign_surrogate_keys(
    df: pl.DataFrame,
    key_column: str,
    surrogate_column: str,
    order_by: Sequence[str] = (),
) -> pl.DataFrame:
    """
    Assign keys 1..n in deterministic order.

    Args:
        df: One row per business key
        key_column: Business key column
        surrogate_column: Name of the generated key column (placed first)
        order_by: Columns ordering the rows before the business key tie-break

    Returns:
        DataFrame sorted by the new surrogate key
    """
    return (
        _ordered(df, key_column, order_by)
        .with_row_index(surrogate_column, offset=1)
        .with_columns(pl.col(surrogate_column).cast(pl.Int64))
        .drop(_LEXICAL)
    )


class SurrogateKeyRegistry:
    """
    Append-only business key to surrogate key assignment table.

    Business keys seen before keep their key; new business keys extend the
    sequence from the current maximum in deterministic order. The updated
    table is available as ``snapshot`` and is persisted by the publisher
    together with the release it belongs to.

    Example:
        registry = SurrogateKeyRegistry("dim_customers", previous_snapshot)
        dim = registry.assign(customers, "customer_id", "customer_key", ["customer_id"])
        registry.snapshot.write_parquet(...)
    """

    def __init__(self, entity: str, previous: Optional[pl.DataFrame] = None):
        self.entity = entity
        if previous is None:
            previous = pl.DataFrame(schema=REGISTRY_SCHEMA)
        self._assignments = previous.select(
            pl.col("business_key").cast(pl.String),
            pl.col("surrogate_key").cast(pl.Int64),
        )
        self.snapshot: pl.DataFrame = self._assignments

    @property
    def max_key(self) -> int:
        if self._assignments.height == 0:
            return 0
        return int(self._assignments["surrogate_key"].max())

    def assign(
        self,
        df: pl.DataFrame,
        key_column: str,
        surrogate_column: str,
        order_by: Sequence[str] = (),
    ) -> pl.DataFrame:
        ordered = (
            _ordered(df, key_column, order_by)
            .join(self._assignments, left_on=_LEXICAL, right_on="business_key", how="left", coalesce=True)
            .sort(list(order_by) + [_LEXICAL], nulls_last=True)
        )
        is_new = pl.col("surrogate_key").is_null()
        new_count = ordered.select(is_new.sum()).item()

        ordered = ordered.with_columns(
            pl.when(is_new)
            .then(is_new.cast(pl.Int64).cum_sum() + self.max_key)
            .otherwise(pl.col("surrogate_key"))
            .alias(surrogate_column)
        )

        additions = ordered.filter(is_new).select(
            pl.col(_LEXICAL).alias("business_key"),
            pl.col(surrogate_column).alias("surrogate_key"),
        )
        self.snapshot = pl.concat([self._assignments, additions], how="vertical")

        logger.info(
            f"Registry assigned keys for {self.entity}",
            reused=ordered.height - new_count,
            added=new_count,
        )
        columns = [surrogate_column] + [c for c in df.columns if c != surrogate_column]
        return ordered.select(columns).sort(surrogate_column)
