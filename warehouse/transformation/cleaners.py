"""
Data Cleansing Module

Field-level normalization of raw source extracts.
Handles:
- Whitespace trimming
- Code-to-value mapping through explicit lookup tables
- Strict date parsing with range validation
- Numeric parsing
- Source-specific key normalization

Every correction is reported to the run's IssueLog. Data-level problems
never abort cleansing; output cardinality always equals input cardinality.
Only a missing required column raises.
"""

from datetime import date
from typing import Callable, Dict, Optional, Sequence

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.dimensional.schema import (
    CRM_CUSTOMERS,
    CRM_PRODUCTS,
    CRM_SALES,
    ERP_CATEGORIES,
    ERP_CUSTOMERS,
    ERP_LOCATIONS,
    SOURCE_ROW,
    SourceTable,
)
from warehouse.errors import StructuralError
from warehouse.quality.issues import IssueLog, Severity, Stage
from .codes import COUNTRY, CRM_GENDER, ERP_GENDER, MARITAL_STATUS, PRODUCT_LINE, CodeTable

logger = structlog.get_logger(__name__)

ISO_DATE = "%Y-%m-%d"
COMPACT_DATE = "%Y%m%d"
LEGACY_CUSTOMER_PREFIX = "NAS"

_FLAG = "_flag"


def _text(column: str) -> pl.Expr:
    """Trimmed string value, blank as null"""
    trimmed = pl.col(column).cast(pl.String).str.strip_chars()
    return pl.when(trimmed.str.len_chars() > 0).then(trimmed).otherwise(None)


class DataCleaner:
    """
    Cleanser for the CRM and ERP source extracts.

    Example:
        issues = IssueLog(run_id="r1")
        cleaner = DataCleaner(issues)
        customers = cleaner.clean("crm_cust_info", raw_df)
    """

    def __init__(
        self,
        issue_log: Optional[IssueLog] = None,
        run_date: Optional[date] = None,
        min_valid_date: Optional[date] = None,
        max_valid_date: Optional[date] = None,
        max_issues_per_check: Optional[int] = None,
    ):
        quality = get_settings().quality
        self.issue_log = issue_log if issue_log is not None else IssueLog()
        self.run_date = run_date or date.today()
        self.min_valid_date = min_valid_date or quality.min_valid_date
        self.max_valid_date = max_valid_date or quality.max_valid_date
        self.max_issues = max_issues_per_check or quality.max_issues_per_check
        self._cleaners: Dict[str, Callable[[pl.DataFrame], pl.DataFrame]] = {
            CRM_CUSTOMERS.name: self.clean_crm_customers,
            CRM_PRODUCTS.name: self.clean_crm_products,
            CRM_SALES.name: self.clean_crm_sales,
            ERP_CUSTOMERS.name: self.clean_erp_customers,
            ERP_LOCATIONS.name: self.clean_erp_locations,
            ERP_CATEGORIES.name: self.clean_erp_categories,
        }

    # =========================================================================
    # RULE HELPERS
    # =========================================================================

    def _require(self, df: pl.DataFrame, table: SourceTable) -> pl.DataFrame:
        """Fail on missing columns, then tag each row with its extract offset"""
        missing = [c for c in table.required_columns if c not in df.columns]
        if missing:
            raise StructuralError(table.name, missing)
        return df.with_row_index(SOURCE_ROW).with_columns(pl.col(SOURCE_ROW).cast(pl.Int64))

    def _report_rows(
        self,
        df: pl.DataFrame,
        table: str,
        key: Optional[str],
        rule: str,
        severity: Severity,
        message: str,
        value_column: Optional[str] = None,
    ) -> int:
        """Record one issue per row flagged in ``_flag``"""
        return self.issue_log.record_rows(
            df.filter(pl.col(_FLAG)),
            Stage.CLEANSE,
            table,
            key,
            rule,
            severity,
            message,
            value_column=value_column,
            limit=self.max_issues,
        )

    def _trim_strings(self, df: pl.DataFrame, table: str, columns: Sequence[str]) -> pl.DataFrame:
        """Trim whitespace; blank strings become null"""
        for col in columns:
            original = pl.col(col).cast(pl.String)
            changed = df.select(
                (original.is_not_null() & (original != original.str.strip_chars())).sum()
            ).item()
            if changed:
                self.issue_log.record(
                    Stage.CLEANSE, table, None, "whitespace_trimmed", Severity.INFO,
                    f"Trimmed whitespace in {changed} value(s) of '{col}'",
                )
        return df.with_columns([_text(col).alias(col) for col in columns])

    def _map_codes(
        self,
        df: pl.DataFrame,
        table: str,
        column: str,
        output: str,
        codes: CodeTable,
        key: Optional[str],
    ) -> pl.DataFrame:
        """Translate short codes; unknown codes fall back to the table default"""
        normalized = codes.normalized_expr(column)
        df = df.with_columns(codes.translate_expr(column).alias(output))

        df = df.with_columns(normalized.is_null().alias(_FLAG))
        self._report_rows(
            df, table, key, f"missing_{output}", Severity.INFO,
            f"Blank '{column}' defaulted to '{codes.default}'",
        )

        df = df.with_columns((normalized.is_not_null() & ~codes.known_expr(column)).fill_null(False).alias(_FLAG))
        if codes.passthrough:
            self._report_rows(
                df, table, key, f"unmapped_{output}", Severity.INFO,
                f"'{column}' value {{value!r}} kept as is", value_column=column,
            )
        else:
            self._report_rows(
                df, table, key, f"unknown_{output}_code", Severity.WARNING,
                f"Unknown '{column}' code {{value!r}} defaulted to '{codes.default}'", value_column=column,
            )
        return df.drop(_FLAG)

    def _parse_date(
        self,
        df: pl.DataFrame,
        table: str,
        column: str,
        output: str,
        key: Optional[str],
        fmt: str = ISO_DATE,
        min_date: Optional[date] = None,
        max_date: Optional[date] = None,
    ) -> pl.DataFrame:
        """Strict date parse; malformed or out-of-range values become null"""
        raw = _text(column)
        parsed = raw.str.to_date(fmt, strict=False)
        if fmt == COMPACT_DATE:
            parsed = pl.when(raw.str.len_chars() == 8).then(parsed).otherwise(None)
        lower = min_date or self.min_valid_date
        upper = max_date or self.max_valid_date
        valid = pl.when(parsed.is_between(lower, upper)).then(parsed).otherwise(None)

        df = df.with_columns(valid.alias(output))
        df = df.with_columns((raw.is_not_null() & pl.col(output).is_null()).alias(_FLAG))
        self._report_rows(
            df, table, key, f"invalid_{output}", Severity.WARNING,
            f"'{column}' value {{value!r}} is not a valid date in [{lower}, {upper}]",
            value_column=column,
        )
        return df.drop(_FLAG)

    def _parse_number(
        self,
        df: pl.DataFrame,
        table: str,
        column: str,
        output: str,
        key: Optional[str],
        integral: bool = False,
    ) -> pl.DataFrame:
        """Numeric parse; non-numeric values become null"""
        raw = _text(column)
        value = raw.cast(pl.Float64, strict=False)
        value = pl.when(value.is_finite()).then(value).otherwise(None)
        if integral:
            value = pl.when(value == value.round(0)).then(value.cast(pl.Int64, strict=False)).otherwise(None)

        df = df.with_columns(value.alias(output))
        df = df.with_columns((raw.is_not_null() & pl.col(output).is_null()).alias(_FLAG))
        kind = "an integer" if integral else "a number"
        self._report_rows(
            df, table, key, f"invalid_{output}", Severity.WARNING,
            f"'{column}' value {{value!r}} is not {kind}", value_column=column,
        )
        return df.drop(_FLAG)

    # =========================================================================
    # SOURCE CLEANERS
    # =========================================================================

    def clean_crm_customers(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply CRM customer cleansing"""
        table = CRM_CUSTOMERS.name
        df = self._require(df, CRM_CUSTOMERS)
        df = self._trim_strings(df, table, ["cst_key", "cst_firstname", "cst_lastname"])

        df = self._parse_number(df, table, "cst_id", "customer_id", None, integral=True)
        df = self._map_codes(df, table, "cst_marital_status", "marital_status", MARITAL_STATUS, "customer_id")
        df = self._map_codes(df, table, "cst_gndr", "gender", CRM_GENDER, "customer_id")
        df = self._parse_date(
            df, table, "cst_create_date", "create_date", "customer_id", max_date=self.run_date
        )

        return df.select(
            pl.col("customer_id"),
            pl.col("cst_key").alias("customer_number"),
            pl.col("cst_firstname").alias("first_name"),
            pl.col("cst_lastname").alias("last_name"),
            pl.col("marital_status"),
            pl.col("gender"),
            pl.col("create_date"),
            pl.col(SOURCE_ROW),
        )

    def clean_crm_products(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply CRM product cleansing"""
        table = CRM_PRODUCTS.name
        df = self._require(df, CRM_PRODUCTS)
        df = self._trim_strings(df, table, ["prd_key", "prd_nm"])
        key = "prd_key"

        df = self._parse_number(df, table, "prd_id", "product_id", key, integral=True)
        df = self._parse_number(df, table, "prd_cost", "cost", key)
        df = df.with_columns(pl.col("cost").is_null().alias(_FLAG))
        self._report_rows(df, table, key, "cost_defaulted", Severity.INFO, "Missing cost defaulted to 0")
        df = df.drop(_FLAG).with_columns(pl.col("cost").fill_null(0.0))

        df = self._map_codes(df, table, "prd_line", "product_line", PRODUCT_LINE, key)
        df = self._parse_date(df, table, "prd_start_dt", "start_date", key)

        return df.select(
            pl.col("product_id"),
            pl.col("prd_key").alias("product_key_raw"),
            pl.col("prd_nm").alias("product_name"),
            pl.col("cost"),
            pl.col("product_line"),
            pl.col("start_date"),
            pl.col(SOURCE_ROW),
        )

    def clean_crm_sales(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply CRM sales line cleansing"""
        table = CRM_SALES.name
        df = self._require(df, CRM_SALES)
        df = self._trim_strings(df, table, ["sls_ord_num", "sls_prd_key"])
        key = "sls_ord_num"

        df = self._parse_number(df, table, "sls_cust_id", "customer_id", key, integral=True)
        for column, output in (
            ("sls_order_dt", "order_date"),
            ("sls_ship_dt", "shipping_date"),
            ("sls_due_dt", "due_date"),
        ):
            df = self._parse_date(df, table, column, output, key, fmt=COMPACT_DATE)
        df = self._parse_number(df, table, "sls_sales", "sales_amount", key)
        df = self._parse_number(df, table, "sls_quantity", "quantity", key, integral=True)
        df = self._parse_number(df, table, "sls_price", "price", key)

        return df.select(
            pl.col("sls_ord_num").alias("order_number"),
            pl.col("sls_prd_key").alias("product_number"),
            pl.col("customer_id"),
            pl.col("order_date"),
            pl.col("shipping_date"),
            pl.col("due_date"),
            pl.col("sales_amount"),
            pl.col("quantity"),
            pl.col("price"),
            pl.col(SOURCE_ROW),
        )

    def clean_erp_customers(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply ERP customer demographics cleansing"""
        table = ERP_CUSTOMERS.name
        df = self._require(df, ERP_CUSTOMERS)
        df = self._trim_strings(df, table, ["cid"])

        legacy = pl.col("cid").str.starts_with(LEGACY_CUSTOMER_PREFIX).fill_null(False)
        prefixed = df.select(legacy.sum()).item()
        if prefixed:
            self.issue_log.record(
                Stage.CLEANSE, table, None, "legacy_prefix_removed", Severity.INFO,
                f"Removed '{LEGACY_CUSTOMER_PREFIX}' prefix from {prefixed} customer id(s)",
            )
        df = df.with_columns(
            pl.when(legacy)
            .then(pl.col("cid").str.slice(len(LEGACY_CUSTOMER_PREFIX)))
            .otherwise(pl.col("cid"))
            .alias("customer_number")
        )

        df = self._parse_date(df, table, "bdate", "birthdate", "customer_number", max_date=self.run_date)
        df = self._map_codes(df, table, "gen", "gender", ERP_GENDER, "customer_number")

        return df.select("customer_number", "birthdate", "gender", SOURCE_ROW)

    def clean_erp_locations(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply ERP customer location cleansing"""
        table = ERP_LOCATIONS.name
        df = self._require(df, ERP_LOCATIONS)
        df = self._trim_strings(df, table, ["cid"])
        df = df.with_columns(pl.col("cid").str.replace_all("-", "", literal=True).alias("customer_number"))
        df = self._map_codes(df, table, "cntry", "country", COUNTRY, "customer_number")

        return df.select("customer_number", "country", SOURCE_ROW)

    def clean_erp_categories(self, df: pl.DataFrame) -> pl.DataFrame:
        """Apply ERP product category cleansing"""
        table = ERP_CATEGORIES.name
        df = self._require(df, ERP_CATEGORIES)
        df = self._trim_strings(df, table, ["id", "cat", "subcat", "maintenance"])

        return df.select(
            pl.col("id").alias("category_id"),
            pl.col("cat").alias("category"),
            pl.col("subcat").alias("subcategory"),
            pl.col("maintenance"),
            pl.col(SOURCE_ROW),
        )

    def clean(self, table: str, df: pl.DataFrame) -> pl.DataFrame:
        """Cleanse one raw table by name"""
        if table not in self._cleaners:
            raise ValueError(f"No cleanser for table: {table}")

        cleaned = self._cleaners[table](df)
        logger.info(f"Cleansed {table}", rows=cleaned.height)
        return cleaned


def clean_table(table: str, df: pl.DataFrame, issue_log: Optional[IssueLog] = None) -> pl.DataFrame:
    """
    Convenience function to cleanse one raw table.

    Args:
        table: Raw table name, e.g. "crm_cust_info"
        df: Raw DataFrame
        issue_log: Optional issue log receiving corrections

    Returns:
        Cleansed DataFrame
    """
    return DataCleaner(issue_log).clean(table, df)
