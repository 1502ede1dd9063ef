"""
Unit Tests - Data Cleansing
"""
from datetime import date

import pytest
import polars as pl

from warehouse.errors import StructuralError
from warehouse.quality.issues import IssueLog, Severity
from warehouse.transformation.cleaners import DataCleaner, clean_table


@pytest.fixture
def cleaner(issue_log, run_date) -> DataCleaner:
    return DataCleaner(issue_log, run_date=run_date)


class TestCrmCustomers:
    """Tests for CRM customer cleansing"""

    def test_output_cardinality_equals_input(self, cleaner, crm_customers_df):
        result = cleaner.clean("crm_cust_info", crm_customers_df)

        assert result.height == crm_customers_df.height
        assert result["_source_row"].to_list() == list(range(crm_customers_df.height))

    def test_trims_names_and_reports_once_per_column(self, cleaner, issue_log, crm_customers_df):
        result = cleaner.clean("crm_cust_info", crm_customers_df)

        assert result["first_name"][0] == "Jon"
        assert result["last_name"][0] == "Yang"
        trimmed = issue_log.filter(rule="whitespace_trimmed")
        assert len(trimmed) == 2
        assert all(i.severity == Severity.INFO for i in trimmed)

    def test_maps_codes(self, cleaner, issue_log, crm_customers_df):
        result = cleaner.clean("crm_cust_info", crm_customers_df)

        assert result["marital_status"].to_list() == ["Married", "Single", "Single", "n/a", "Married"]
        assert result["gender"].to_list() == ["Male", "n/a", "n/a", "Female", "Female"]

        unknown = issue_log.filter(rule="unknown_marital_status_code")
        assert len(unknown) == 1
        assert unknown[0].severity == Severity.WARNING
        assert unknown[0].business_key == "11002"

        blank = issue_log.filter(rule="missing_gender")
        assert len(blank) == 2
        assert all(i.severity == Severity.INFO for i in blank)

    def test_parses_ids_and_dates(self, cleaner, crm_customers_df):
        result = cleaner.clean("crm_cust_info", crm_customers_df)

        assert result.schema["customer_id"] == pl.Int64
        assert result["customer_id"].to_list() == [11000, 11001, 11001, 11002, None]
        assert result["create_date"][2] == date(2025, 11, 6)

    def test_missing_column_is_structural(self, cleaner, crm_customers_df):
        with pytest.raises(StructuralError) as exc_info:
            cleaner.clean("crm_cust_info", crm_customers_df.drop("cst_gndr"))

        assert exc_info.value.columns == ["cst_gndr"]


class TestCrmSales:
    """Tests for CRM sales cleansing"""

    def test_compact_dates(self, cleaner, issue_log):
        df = pl.DataFrame({
            "sls_ord_num": ["A", "B", "C", "D"],
            "sls_prd_key": ["P", "P", "P", "P"],
            "sls_cust_id": ["1", "1", "1", "1"],
            "sls_order_dt": ["20110105", "0", "3252", "20111399"],
            "sls_ship_dt": ["20110110", "20110110", "20110110", "20110110"],
            "sls_due_dt": ["20110115", "20110115", "20110115", "20110115"],
            "sls_sales": ["10", "10", "10", "10"],
            "sls_quantity": ["1", "1", "1", "1"],
            "sls_price": ["10", "10", "10", "10"],
        })

        result = cleaner.clean("crm_sales_details", df)

        assert result["order_date"].to_list() == [date(2011, 1, 5), None, None, None]
        invalid = issue_log.filter(rule="invalid_order_date")
        assert [i.business_key for i in invalid] == ["B", "C", "D"]
        assert all(i.severity == Severity.WARNING for i in invalid)

    def test_numeric_parsing(self, cleaner, issue_log, crm_sales_df):
        df = crm_sales_df.with_columns(
            pl.Series("sls_quantity", ["1", "3", "abc", "0", "2", "1.5", "1"])
        )

        result = cleaner.clean("crm_sales_details", df)

        assert result.schema["quantity"] == pl.Int64
        assert result["quantity"].to_list() == [1, 3, None, 0, 2, None, 1]
        assert result["price"].to_list()[4] == -20.0
        assert result["price"].to_list()[5] is None
        assert len(issue_log.filter(rule="invalid_quantity")) == 2


class TestErpSources:
    """Tests for ERP cleansing"""

    def test_customer_prefix_and_future_birthdate(self, cleaner, issue_log, erp_customers_df):
        result = cleaner.clean("erp_cust_az12", erp_customers_df)

        assert result["customer_number"].to_list() == ["AW00011000", "AW00011001", "AW00011002"]
        assert result["birthdate"].to_list() == [date(1971, 10, 6), date(1976, 5, 10), None]
        assert result["gender"].to_list() == ["Male", "Female", "n/a"]
        assert len(issue_log.filter(rule="legacy_prefix_removed")) == 1
        assert len(issue_log.filter(rule="invalid_birthdate")) == 1

    def test_locations(self, cleaner, issue_log, erp_locations_df):
        result = cleaner.clean("erp_loc_a101", erp_locations_df)

        assert result["customer_number"].to_list() == ["AW00011000", "AW00011001", "AW00011002"]
        assert result["country"].to_list() == ["Germany", "United States", "Australia"]
        unmapped = issue_log.filter(rule="unmapped_country")
        assert len(unmapped) == 1
        assert unmapped[0].severity == Severity.INFO


class TestCrmProducts:
    """Tests for CRM product cleansing"""

    def test_cost_defaulted_and_line_mapped(self, cleaner, issue_log, crm_products_df):
        result = cleaner.clean("crm_prd_info", crm_products_df)

        assert result["cost"].to_list()[0] == 0.0
        assert result["product_line"].to_list() == ["Road", "Road", "Road", "Road", "n/a"]
        assert len(issue_log.filter(rule="cost_defaulted")) == 1
        assert "end_date" not in result.columns


class TestCleanTable:
    """Tests for clean_table convenience function"""

    def test_unknown_table(self):
        with pytest.raises(ValueError):
            clean_table("not_a_table", pl.DataFrame({"a": [1]}))

    def test_categories(self, erp_categories_df):
        issues = IssueLog()
        result = clean_table("erp_px_cat_g1v2", erp_categories_df, issues)

        assert result.columns == ["category_id", "category", "subcategory", "maintenance", "_source_row"]
        assert len(issues) == 0
