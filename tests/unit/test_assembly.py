"""
Unit Tests - Dimensional Assembly
"""
from datetime import date

import pytest
import polars as pl

from warehouse.dimensional.assembly import DimensionalAssembler, conform
from warehouse.dimensional.schema import FACT_SALES_SCHEMA, UNRESOLVED_KEY
from warehouse.errors import InvariantViolation, StructuralError
from warehouse.quality.issues import Severity


@pytest.fixture
def assembler(issue_log) -> DimensionalAssembler:
    return DimensionalAssembler(issue_log, max_issues_per_rule=100)


@pytest.fixture
def customers() -> pl.DataFrame:
    return pl.DataFrame({
        "customer_id": [11002, 11000],
        "customer_number": ["AW00011002", "AW00011000"],
        "first_name": ["Ruben", "Jon"],
        "last_name": ["Torres", "Yang"],
        "country": ["Australia", "Germany"],
        "marital_status": ["n/a", "Married"],
        "gender": ["Female", "Male"],
        "birthdate_erp": [None, date(1971, 10, 6)],
        "create_date": [date(2025, 10, 6), date(2025, 10, 6)],
        "_source_row": [0, 1],
    })


@pytest.fixture
def current_products() -> pl.DataFrame:
    return pl.DataFrame({
        "product_id": [212, 211],
        "product_key_raw": ["BI-RB-BK-R93R-62", "CO-RF-FR-R92B-58"],
        "product_number": ["BK-R93R-62", "FR-R92B-58"],
        "product_name": ["Road-150 Red 62", "HL Road Frame 58"],
        "category_id": ["BI_RB", "ZZ_ZZ"],
        "cost": [2171.29, 12.5],
        "product_line": ["Road", "Road"],
        "start_date": [date(2011, 7, 1), date(2008, 7, 1)],
        "end_date": [None, None],
        "is_current": [True, True],
        "_source_row": [0, 1],
    })


@pytest.fixture
def categories() -> pl.DataFrame:
    return pl.DataFrame({
        "category_id": ["BI_RB", "CO_RF"],
        "category": ["Bikes", "Components"],
        "subcategory": ["Road Bikes", "Road Frames"],
        "maintenance": ["Yes", "Yes"],
        "_source_row": [0, 1],
    })


@pytest.fixture
def sales() -> pl.DataFrame:
    return pl.DataFrame({
        "order_number": ["SO1", "SO2", "SO3"],
        "product_number": ["BK-R93R-62", "P9", "FR-R92B-58"],
        "customer_id": [11000, 11002, 99999],
        "order_date": [date(2011, 1, 1)] * 3,
        "shipping_date": [date(2011, 1, 8)] * 3,
        "due_date": [date(2011, 1, 13)] * 3,
        "sales_amount": [10.0, 20.0, 30.0],
        "quantity": [1, 2, 3],
        "price": [10.0, 10.0, 10.0],
        "is_unrecoverable": [False, False, False],
        "_source_row": [0, 1, 2],
    })


class TestDimensions:
    """Tests for dimension assembly"""

    def test_dim_customers(self, assembler, customers):
        dim = assembler.build_dim_customers(customers)

        assert dim.columns[0] == "customer_key"
        assert dim["customer_id"].to_list() == [11000, 11002]
        assert dim["customer_key"].to_list() == [1, 2]
        assert dim["birthdate"].to_list() == [date(1971, 10, 6), None]

    def test_dim_products_keys_follow_start_date(self, assembler, current_products, categories):
        dim = assembler.build_dim_products(current_products, categories)

        assert dim["product_number"].to_list() == ["FR-R92B-58", "BK-R93R-62"]
        assert dim["product_key"].to_list() == [1, 2]
        assert dim["category"].to_list() == [None, "Bikes"]
        assert "end_date" not in dim.columns

    def test_unknown_category_reported(self, assembler, issue_log, current_products, categories):
        assembler.build_dim_products(current_products, categories)

        unknown = issue_log.filter(rule="unknown_category")
        assert len(unknown) == 1
        assert unknown[0].business_key == "FR-R92B-58"
        assert unknown[0].severity == Severity.INFO

    def test_missing_categories_source(self, assembler, issue_log, current_products):
        dim = assembler.build_dim_products(current_products, None)

        assert dim["category"].null_count() == dim.height
        assert len(issue_log.filter(rule="enrichment_source_missing")) == 1


class TestFactSales:
    """Tests for fact assembly"""

    def test_unresolved_keys_retained_with_warning(self, assembler, issue_log, customers, current_products, sales):
        dim_customers = assembler.build_dim_customers(customers)
        dim_products = assembler.build_dim_products(current_products)

        fact = assembler.build_fact_sales(sales, dim_customers, dim_products)

        assert fact.height == sales.height
        assert fact["order_number"].to_list() == ["SO1", "SO2", "SO3"]
        assert fact["product_key"].to_list() == [2, UNRESOLVED_KEY, 1]
        assert fact["customer_key"].to_list() == [1, 2, UNRESOLVED_KEY]

        unresolved_products = issue_log.filter(rule="unresolved_product_key")
        assert [i.business_key for i in unresolved_products] == ["SO2"]
        assert unresolved_products[0].severity == Severity.WARNING
        assert len(issue_log.filter(rule="unresolved_customer_key")) == 1

    def test_fact_schema(self, assembler, customers, current_products, sales):
        fact = assembler.build_fact_sales(
            sales,
            assembler.build_dim_customers(customers),
            assembler.build_dim_products(current_products),
        )

        assert list(fact.schema.items()) == list(FACT_SALES_SCHEMA.items())

    def test_duplicate_dimension_keys_break_fact_grain(self, assembler, customers, current_products, sales):
        dim_customers = assembler.build_dim_customers(customers)
        doubled = pl.concat([dim_customers, dim_customers])

        with pytest.raises(InvariantViolation):
            assembler.build_fact_sales(sales, doubled, assembler.build_dim_products(current_products))


class TestConform:
    """Tests for conform"""

    def test_missing_column(self):
        with pytest.raises(StructuralError):
            conform(pl.DataFrame({"a": [1]}), {"a": pl.Int64, "b": pl.String})
