"""
Deduplication Module

Collapses multiple versions of a business entity into one record.

Within each business-key group records are ranked by recency, latest first
with missing recency last. Equal recency is broken by the extract row offset:
the record that appears later in the source extract wins. Ranking is one sort
plus a keep-first unique, so a batch costs O(n log n).
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import polars as pl
import structlog

from warehouse.dimensional.schema import SOURCE_ROW
from warehouse.quality.issues import IssueLog, Severity, Stage

logger = structlog.get_logger(__name__)


@dataclass
class DedupStats:
    """Statistics from one deduplication pass"""
    entity: str
    input_rows: int
    output_rows: int
    null_key_rows: int

    @property
    def duplicates_removed(self) -> int:
        return self.input_rows - self.output_rows - self.null_key_rows


class Deduplicator:
    """
    Keeps the authoritative record per business key.

    Example:
        dedup = Deduplicator("crm_cust_info", ["customer_id"], recency=["create_date"])
        customers = dedup.deduplicate(cleansed_customers)
    """

    def __init__(
        self,
        entity: str,
        key_columns: Union[str, Sequence[str]],
        recency: Optional[Sequence[str]] = None,
        issue_log: Optional[IssueLog] = None,
        tie_breaker: str = SOURCE_ROW,
        nullable_keys: Sequence[str] = (),
    ):
        self.entity = entity
        self.key_columns: List[str] = [key_columns] if isinstance(key_columns, str) else list(key_columns)
        self.nullable_keys = set(nullable_keys)
        self.recency: List[str] = list(recency or [])
        self.issue_log = issue_log if issue_log is not None else IssueLog()
        self.tie_breaker = tie_breaker
        self.last_stats: Optional[DedupStats] = None

    def _drop_null_keys(self, df: pl.DataFrame) -> pl.DataFrame:
        null_key = pl.any_horizontal(
            [pl.col(c).is_null() for c in self.key_columns if c not in self.nullable_keys] or [pl.lit(False)]
        )
        orphans = df.filter(null_key)
        for row in orphans.select(self.tie_breaker).iter_rows(named=True):
            self.issue_log.record(
                Stage.DEDUPLICATE,
                self.entity,
                None,
                "missing_business_key",
                Severity.WARNING,
                f"Record at source row {row[self.tie_breaker]} has no business key and was excluded",
            )
        return df.filter(~null_key)

    def deduplicate(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Keep one record per business key.

        Args:
            df: Cleansed records carrying the key, recency and tie-break columns

        Returns:
            One row per business key, in input order of the surviving rows
        """
        input_rows = df.height
        keyed = self._drop_null_keys(df)

        order_by = self.recency + [self.tie_breaker]
        ranked = keyed.sort(by=order_by, descending=True, nulls_last=True)
        deduped = (
            ranked.unique(subset=self.key_columns, keep="first", maintain_order=True)
            .sort(self.tie_breaker)
        )

        self.last_stats = DedupStats(
            entity=self.entity,
            input_rows=input_rows,
            output_rows=deduped.height,
            null_key_rows=input_rows - keyed.height,
        )
        logger.info(
            f"Deduplicated {self.entity}",
            input_rows=input_rows,
            output_rows=deduped.height,
            duplicates_removed=self.last_stats.duplicates_removed,
        )
        return deduped


def deduplicate(
    df: pl.DataFrame,
    entity: str,
    key_columns: Union[str, Sequence[str]],
    recency: Optional[Sequence[str]] = None,
    issue_log: Optional[IssueLog] = None,
) -> pl.DataFrame:
    """Convenience wrapper around Deduplicator"""
    return Deduplicator(entity, key_columns, recency, issue_log).deduplicate(df)
