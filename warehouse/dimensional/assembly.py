"""
Dimensional Assembly

Composes the star schema from canonical entities:
- dim_customers from reconciled customers
- dim_products from current product versions enriched with ERP categories
- fact_sales from reconciled sales lines, keyed through the dimensions

Fact rows are never dropped: a business key with no dimension row gets the
UNRESOLVED_KEY sentinel and a warning issue.
"""

from typing import Dict, Optional

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.errors import InvariantViolation, StructuralError
from warehouse.quality.issues import IssueLog, Severity, Stage
from .keys import SurrogateKeyRegistry, assign_surrogate_keys
from .schema import (
    DIM_CUSTOMERS,
    DIM_CUSTOMERS_SCHEMA,
    DIM_PRODUCTS,
    DIM_PRODUCTS_SCHEMA,
    FACT_SALES,
    FACT_SALES_SCHEMA,
    SOURCE_ROW,
    UNRESOLVED_KEY,
)

logger = structlog.get_logger(__name__)


def conform(df: pl.DataFrame, schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """Select and cast the columns of a star schema table"""
    missing = [c for c in schema if c not in df.columns]
    if missing:
        raise StructuralError("assembly", missing)
    return df.select([pl.col(name).cast(dtype) for name, dtype in schema.items()])


class DimensionalAssembler:
    """
    Builds dimension and fact tables.

    Example:
        assembler = DimensionalAssembler(issue_log)
        dim_customers = assembler.build_dim_customers(customers)
        dim_products = assembler.build_dim_products(current_products, categories)
        fact_sales = assembler.build_fact_sales(sales, dim_customers, dim_products)
    """

    def __init__(
        self,
        issue_log: Optional[IssueLog] = None,
        registries: Optional[Dict[str, SurrogateKeyRegistry]] = None,
        max_issues_per_rule: Optional[int] = None,
    ):
        self.issue_log = issue_log if issue_log is not None else IssueLog()
        self.registries = registries or {}
        self.max_issues = max_issues_per_rule or get_settings().quality.max_issues_per_check

    def _assign_keys(self, entity: str, df: pl.DataFrame, key_column: str, surrogate: str, order_by) -> pl.DataFrame:
        registry = self.registries.get(entity)
        if registry is not None:
            return registry.assign(df, key_column, surrogate, order_by)
        return assign_surrogate_keys(df, key_column, surrogate, order_by)

    def build_dim_customers(self, customers: pl.DataFrame) -> pl.DataFrame:
        """Customer dimension, keys ordered by customer id"""
        df = customers
        if "birthdate_erp" in df.columns:
            df = df.rename({"birthdate_erp": "birthdate"})
        df = self._assign_keys(DIM_CUSTOMERS, df, "customer_id", "customer_key", ["customer_id"])
        dim = conform(df, DIM_CUSTOMERS_SCHEMA)
        logger.info(f"Assembled {DIM_CUSTOMERS}", rows=dim.height)
        return dim

    def build_dim_products(
        self,
        products: pl.DataFrame,
        categories: Optional[pl.DataFrame] = None,
    ) -> pl.DataFrame:
        """Product dimension over current versions, keys ordered by start date"""
        if categories is None:
            self.issue_log.record(
                Stage.ASSEMBLE, DIM_PRODUCTS, None, "enrichment_source_missing", Severity.WARNING,
                "Category source unavailable; category attributes are null",
            )
            df = products.with_columns(
                [pl.lit(None, dtype=pl.String).alias(c) for c in ("category", "subcategory", "maintenance")]
            )
        else:
            df = products.join(
                categories.select("category_id", "category", "subcategory", "maintenance"),
                on="category_id",
                how="left",
            )
            if df.height != products.height:
                raise InvariantViolation("Category source is not unique on category_id")
            self.issue_log.record_rows(
                df.filter(pl.col("category_id").is_not_null() & pl.col("category").is_null()),
                Stage.ASSEMBLE, DIM_PRODUCTS, "product_number", "unknown_category", Severity.INFO,
                "Category {value!r} has no ERP category entry", value_column="category_id",
                limit=self.max_issues,
            )

        df = self._assign_keys(DIM_PRODUCTS, df, "product_number", "product_key", ["start_date"])
        dim = conform(df, DIM_PRODUCTS_SCHEMA)
        logger.info(f"Assembled {DIM_PRODUCTS}", rows=dim.height)
        return dim

    def _resolve(
        self,
        facts: pl.DataFrame,
        dim: pl.DataFrame,
        business_key: str,
        surrogate_key: str,
        dim_name: str,
    ) -> pl.DataFrame:
        resolved = facts.join(dim.select(business_key, surrogate_key), on=business_key, how="left")
        self.issue_log.record_rows(
            resolved.filter(pl.col(surrogate_key).is_null()),
            Stage.ASSEMBLE, FACT_SALES, "order_number", f"unresolved_{surrogate_key}", Severity.WARNING,
            f"{business_key} {{value!r}} not found in {dim_name}; retained as unresolved",
            value_column=business_key, limit=self.max_issues,
        )
        return resolved.with_columns(pl.col(surrogate_key).fill_null(UNRESOLVED_KEY))

    def build_fact_sales(
        self,
        sales: pl.DataFrame,
        dim_customers: pl.DataFrame,
        dim_products: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Sales fact at sales-line grain.

        Raises:
            InvariantViolation: when the lookups changed the row count
        """
        expected_rows = sales.height
        facts = self._resolve(sales, dim_customers, "customer_id", "customer_key", DIM_CUSTOMERS)
        facts = self._resolve(facts, dim_products, "product_number", "product_key", DIM_PRODUCTS)

        if facts.height != expected_rows:
            raise InvariantViolation(
                f"{FACT_SALES} has {facts.height} rows after key lookup, expected {expected_rows}"
            )
        if SOURCE_ROW in facts.columns:
            facts = facts.sort(SOURCE_ROW)

        fact = conform(facts, FACT_SALES_SCHEMA)
        logger.info(
            f"Assembled {FACT_SALES}",
            rows=fact.height,
            unresolved_customers=fact.filter(pl.col("customer_key") == UNRESOLVED_KEY).height,
            unresolved_products=fact.filter(pl.col("product_key") == UNRESOLVED_KEY).height,
        )
        return fact
