"""
Business Rule Module

Entity-specific derivations applied after deduplication.
Includes:
- Product categorization from the composite product key
- Validity windows over versioned product records
- Sales measure reconciliation (amount, quantity, price)
"""

from typing import Optional, Sequence, Tuple

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.dimensional.schema import SOURCE_ROW
from warehouse.errors import StructuralError
from warehouse.quality.issues import IssueLog, Severity, Stage

logger = structlog.get_logger(__name__)

# CC-SS-<product number>: two-character category and subcategory segments
PRODUCT_KEY_PATTERN = r"^[A-Z0-9]{2}-[A-Z0-9]{2}-.+$"
CATEGORY_ID_LENGTH = 5
PRODUCT_NUMBER_OFFSET = 6


class BusinessRuleEngine:
    """
    Applies derivation rules per entity type.

    Example:
        engine = BusinessRuleEngine(issue_log)
        versions, current = engine.apply_product_rules(products_df)
        sales = engine.reconcile_measures(sales_df)
    """

    def __init__(
        self,
        issue_log: Optional[IssueLog] = None,
        amount_tolerance: Optional[float] = None,
        max_issues_per_rule: Optional[int] = None,
    ):
        quality = get_settings().quality
        self.issue_log = issue_log if issue_log is not None else IssueLog()
        self.amount_tolerance = quality.amount_tolerance if amount_tolerance is None else amount_tolerance
        self.max_issues = max_issues_per_rule or quality.max_issues_per_check

    def _require(self, df: pl.DataFrame, entity: str, columns: Sequence[str]) -> None:
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise StructuralError(entity, missing)

    def _report(
        self,
        df: pl.DataFrame,
        condition: pl.Expr,
        entity: str,
        key: str,
        rule: str,
        severity: Severity,
        message: str,
        value_column: Optional[str] = None,
    ) -> int:
        return self.issue_log.record_rows(
            df.filter(condition.fill_null(False)),
            Stage.BUSINESS_RULES,
            entity,
            key,
            rule,
            severity,
            message,
            value_column=value_column,
            limit=self.max_issues,
        )

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def categorize_products(self, df: pl.DataFrame, entity: str = "crm_prd_info") -> pl.DataFrame:
        """
        Split the composite product key into category id and product number.

        ``CO-RF-FR-R92B-58`` yields category id ``CO_RF`` and product number
        ``FR-R92B-58``. Keys that do not match the pattern keep the whole key
        as product number with a null category.
        """
        self._require(df, entity, ["product_key_raw"])
        key = pl.col("product_key_raw")
        parseable = key.str.contains(PRODUCT_KEY_PATTERN).fill_null(False)

        df = df.with_columns(
            pl.when(parseable)
            .then(key.str.slice(0, CATEGORY_ID_LENGTH).str.replace_all("-", "_", literal=True))
            .otherwise(None)
            .alias("category_id"),
            pl.when(parseable)
            .then(key.str.slice(PRODUCT_NUMBER_OFFSET))
            .otherwise(key)
            .alias("product_number"),
        )
        self._report(
            df, ~parseable & key.is_not_null(), entity, "product_key_raw", "unparseable_product_key",
            Severity.WARNING, "Product key {value!r} has no category segments", value_column="product_key_raw",
        )
        return df

    def derive_validity_windows(
        self,
        df: pl.DataFrame,
        key: str = "product_number",
        start: str = "start_date",
        entity: str = "crm_prd_info",
    ) -> pl.DataFrame:
        """
        Compute each version's end date from the next version's start.

        Versions are ordered by start date then extract row; the end date is
        one day before the next version's start, and the last version per key
        stays open (null end date, ``is_current`` true).
        """
        self._require(df, entity, [key, start, SOURCE_ROW])
        ordered = df.sort([key, start, SOURCE_ROW], nulls_last=False)
        windows = ordered.with_columns(
            pl.col(start).shift(-1).over(key).dt.offset_by("-1d").alias("end_date"),
            pl.col(SOURCE_ROW).shift(-1).over(key).is_null().alias("is_current"),
        )
        self._report(
            windows, pl.col(start).is_null(), entity, key, "missing_start_date",
            Severity.WARNING, "Version without start date ordered before dated versions",
        )
        return windows

    def current_versions(self, df: pl.DataFrame) -> pl.DataFrame:
        """Open (current) version per business key"""
        return df.filter(pl.col("is_current")).sort(SOURCE_ROW)

    def apply_product_rules(self, df: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
        """Return all product versions with windows, and the current view"""
        versions = self.derive_validity_windows(self.categorize_products(df))
        current = self.current_versions(versions)
        logger.info("Applied product rules", versions=versions.height, current=current.height)
        return versions, current

    # =========================================================================
    # SALES
    # =========================================================================

    def reconcile_measures(self, df: pl.DataFrame, entity: str = "crm_sales_details") -> pl.DataFrame:
        """
        Reconcile amount, quantity and price of sales lines.

        Rules, in order:
        1. Quantity missing or not positive: row is unrecoverable.
        2. Negative price: absolute value.
        3. Price missing or zero with a known non-zero amount:
           price = |amount| / quantity.
        4. Price still missing or zero: row is unrecoverable.
        5. Amount missing, not positive, or off from quantity * price:
           amount = quantity * price.

        Unrecoverable rows keep their measures and get ``is_unrecoverable``.
        """
        self._require(df, entity, ["order_number", "sales_amount", "quantity", "price"])
        key = "order_number"
        qty = pl.col("quantity")
        price = pl.col("price")
        amount = pl.col("sales_amount")

        bad_quantity = qty.is_null() | (qty <= 0)
        self._report(
            df, bad_quantity, entity, key, "unrecoverable_quantity", Severity.WARNING,
            "Quantity {value} cannot support reconciliation", value_column="quantity",
        )

        negative_price = (price < 0).fill_null(False)
        self._report(df, negative_price, entity, key, "price_sign_corrected", Severity.INFO, "Negative price made positive")
        df = df.with_columns(pl.when(negative_price).then(price.abs()).otherwise(price).alias("price"))

        derive_price = ~bad_quantity & (price.is_null() | (price == 0)) & (amount != 0).fill_null(False)
        self._report(df, derive_price, entity, key, "price_derived", Severity.INFO, "Price derived from |amount| / quantity")
        df = df.with_columns(pl.when(derive_price).then(amount.abs() / qty).otherwise(price).alias("price"))

        missing_price = ~bad_quantity & (price.is_null() | (price == 0))
        self._report(
            df, missing_price, entity, key, "unrecoverable_price", Severity.WARNING,
            "Neither price nor amount can be established",
        )
        df = df.with_columns((bad_quantity | missing_price).alias("is_unrecoverable"))

        expected = qty * price
        fix_amount = ~pl.col("is_unrecoverable") & (
            amount.is_null() | (amount <= 0) | ((amount - expected).abs() > self.amount_tolerance)
        ).fill_null(True)
        self._report(
            df, fix_amount, entity, key, "amount_recomputed", Severity.INFO,
            "Amount {value} replaced by quantity * |price|", value_column="sales_amount",
        )
        df = df.with_columns(
            pl.when(fix_amount).then(expected.cast(pl.Float64)).otherwise(amount).alias("sales_amount")
        )

        logger.info(
            "Reconciled sales measures",
            rows=df.height,
            unrecoverable=df.select(pl.col("is_unrecoverable").sum()).item(),
        )
        return df
