"""
Cross-Source Reconciliation

Merges the canonical records of one source with enrichment sources keyed by
the same business key, and resolves attributes both sides supply through
per-attribute preference rules.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence

import polars as pl
import structlog

from warehouse.dimensional.schema import SOURCE_ROW
from warehouse.quality.issues import IssueLog, Severity, Stage
from .codes import UNKNOWN_MARKERS

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AttributeRule:
    """
    Preference rule for one overlapping attribute.

    The primary value wins unless it is null or one of ``unknown_markers``;
    then the secondary value is used under the same test; otherwise null.
    """
    name: str
    primary: str
    secondary: str
    unknown_markers: FrozenSet[str] = field(default=UNKNOWN_MARKERS)

    def _known(self, column: str) -> pl.Expr:
        value = pl.col(column)
        return value.is_not_null() & ~value.cast(pl.String).is_in(list(self.unknown_markers))

    def expr(self) -> pl.Expr:
        return (
            pl.when(self._known(self.primary))
            .then(pl.col(self.primary))
            .when(self._known(self.secondary))
            .then(pl.col(self.secondary))
            .otherwise(None)
            .alias(self.name)
        )


@dataclass(frozen=True)
class EnrichmentSource:
    """Secondary source joined by business key"""
    name: str
    frame: Optional[pl.DataFrame]
    key: str
    columns: Sequence[str]
    suffix: str = ""


class Reconciler:
    """
    Builds canonical entities from a primary source and enrichment sources.

    Example:
        reconciler = Reconciler(
            "customer",
            join_key="customer_number",
            rules=[AttributeRule("gender", "gender", "gender_erp")],
            required=["customer_number"],
        )
        merged = reconciler.reconcile(crm, [EnrichmentSource("erp_cust_az12", erp, "customer_number",
                                                             ["birthdate", "gender"], "_erp")])
    """

    def __init__(
        self,
        entity: str,
        join_key: str,
        rules: Sequence[AttributeRule] = (),
        required: Sequence[str] = (),
        key_column: Optional[str] = None,
        issue_log: Optional[IssueLog] = None,
    ):
        self.entity = entity
        self.join_key = join_key
        self.rules = list(rules)
        self.required = list(required)
        self.key_column = key_column or join_key
        self.issue_log = issue_log if issue_log is not None else IssueLog()

    def _join(self, df: pl.DataFrame, source: EnrichmentSource) -> pl.DataFrame:
        renamed = {c: f"{c}{source.suffix}" for c in source.columns}
        if source.frame is None:
            self.issue_log.record(
                Stage.RECONCILE, self.entity, None, "enrichment_source_missing", Severity.WARNING,
                f"Enrichment source '{source.name}' unavailable; its attributes are null",
            )
            return df.with_columns([pl.lit(None).alias(name) for name in renamed.values()])

        right = source.frame.select([source.key] + list(source.columns)).rename(renamed)
        joined = df.join(right, left_on=self.join_key, right_on=source.key, how="left", coalesce=True)
        if joined.height != df.height:
            raise ValueError(f"Enrichment source '{source.name}' is not unique on '{source.key}'")
        return joined

    def _check_required(self, df: pl.DataFrame) -> None:
        for column in self.required:
            missing = df.filter(pl.col(column).is_null())
            for row in missing.select(self.key_column).iter_rows(named=True):
                self.issue_log.record(
                    Stage.RECONCILE, self.entity, row[self.key_column], f"missing_{column}", Severity.WARNING,
                    f"No source supplies a value for required field '{column}'",
                )

    def reconcile(
        self,
        primary: pl.DataFrame,
        enrichments: Sequence[EnrichmentSource] = (),
    ) -> pl.DataFrame:
        """
        Left-join enrichment sources onto the primary records and apply rules.

        Returns:
            One row per primary record; rule inputs from secondary sources are dropped.
        """
        df = primary
        for source in enrichments:
            df = self._join(df, source)

        if self.rules:
            consumed = {r.secondary for r in self.rules} - {r.name for r in self.rules}
            df = df.with_columns([rule.expr() for rule in self.rules]).drop(
                [c for c in consumed if c in df.columns]
            )

        self._check_required(df)
        logger.info(f"Reconciled {self.entity}", rows=df.height, sources=len(enrichments))
        return df.sort(SOURCE_ROW) if SOURCE_ROW in df.columns else df

