"""
Unit Tests - Data Quality
"""
from datetime import date

import pytest
import polars as pl

from warehouse.errors import QualityGateError
from warehouse.quality.issues import IssueLog, Severity, Stage
from warehouse.quality.validators import (
    DataValidator,
    ValidationStatus,
    create_fact_sales_validator,
    create_sales_lines_validator,
)


class TestIssueLog:
    """Tests for IssueLog"""

    def test_record_stamps_run_id(self):
        log = IssueLog(run_id="run-1")

        issue = log.record(Stage.CLEANSE, "crm_cust_info", 11000, "unknown_code", Severity.WARNING)

        assert issue.run_id == "run-1"
        assert issue.stage == "cleanse"
        assert issue.business_key == "11000"
        assert len(log) == 1

    def test_record_rows_limit_summarizes(self, issue_log):
        offending = pl.DataFrame({"order_number": [f"SO{i}" for i in range(5)], "quantity": [0] * 5})

        count = issue_log.record_rows(
            offending, Stage.BUSINESS_RULES, "crm_sales_details", "order_number", "zero_quantity",
            Severity.WARNING, "Quantity {value}", value_column="quantity", limit=2,
        )

        issues = issue_log.filter(rule="zero_quantity")
        assert count == 5
        assert len(issues) == 3
        assert [i.business_key for i in issues] == ["SO0", "SO1", None]
        assert issues[0].message == "Quantity 0"
        assert issues[-1].message == "3 further row(s) not itemized"

    def test_totals_and_filter(self, issue_log):
        issue_log.record(Stage.CLEANSE, "a", "1", "r1", Severity.INFO)
        issue_log.record(Stage.CLEANSE, "a", "2", "r1", Severity.WARNING)
        issue_log.record(Stage.ASSEMBLE, "b", None, "r2", Severity.FATAL)

        assert issue_log.totals() == {"info": 1, "warning": 1, "fatal": 1}
        assert len(issue_log.filter(stage=Stage.CLEANSE)) == 2
        assert len(issue_log.filter(entity="b", severity=Severity.FATAL)) == 1

    def test_to_frame(self, issue_log):
        assert issue_log.to_frame().height == 0

        issue_log.record(Stage.CLEANSE, "a", "1", "r1", Severity.INFO, "note")
        frame = issue_log.to_frame()

        assert frame.height == 1
        assert frame["severity"].to_list() == ["info"]
        assert frame["run_id"].to_list() == ["test-run"]


class TestDataValidator:
    """Tests for DataValidator"""

    def test_not_null_check_passes(self):
        df = pl.DataFrame({"id": [1, 2, 3]})

        result = DataValidator("t", "cleanse", ["id"]).add_not_null_check("id").validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_warning_check_is_partial(self, issue_log):
        df = pl.DataFrame({"id": [1, 2, 3], "name": ["a", None, "c"]})

        result = DataValidator("t", "cleanse", ["id"]).add_not_null_check("name").validate(df, issue_log)

        assert result.status == ValidationStatus.PARTIAL
        assert not result.has_fatal
        assert [i.business_key for i in issue_log.filter(rule="not_null_name")] == ["2"]

    def test_composite_unique_check(self):
        df = pl.DataFrame({"k": ["A", "A", "B"], "d": [1, 2, 1]})

        validator = DataValidator("t", "deduplicate", ["k"])
        assert validator.add_unique_check(["k", "d"]).validate(df).status == ValidationStatus.PASSED
        assert DataValidator("t", "deduplicate", ["k"]).add_unique_check("k").validate(df).has_fatal

    def test_missing_column_is_fatal(self):
        result = DataValidator("t", "cleanse").add_required_columns_check(["id", "name"]).validate(
            pl.DataFrame({"id": [1]})
        )

        assert result.status == ValidationStatus.FAILED
        assert "name" in result.checks[0].message

    def test_enforce_raises_on_fatal(self, issue_log):
        df = pl.DataFrame({"id": [1, 1]})

        with pytest.raises(QualityGateError) as exc_info:
            DataValidator("t", "deduplicate", ["id"]).add_unique_check("id").enforce(df, issue_log)

        assert len(exc_info.value.issues) == 2
        assert issue_log.count(Severity.FATAL) == 2

    def test_issues_capped_per_check(self, issue_log):
        df = pl.DataFrame({"id": list(range(10)), "v": [None] * 10})

        DataValidator("t", "cleanse", ["id"], max_issues_per_check=3).add_not_null_check("v").validate(df, issue_log)

        issues = issue_log.filter(rule="not_null_v")
        assert len(issues) == 4
        assert issues[-1].business_key is None


class TestPrebuiltValidators:
    """Tests for the stage validators"""

    def test_fact_referential_integrity_allows_sentinel(self, issue_log):
        fact = pl.DataFrame({
            "order_number": ["SO1", "SO2", "SO3"],
            "customer_key": [1, -1, 7],
            "product_key": [1, 1, -1],
            "order_date": [date(2011, 1, 1)] * 3,
            "shipping_date": [date(2011, 1, 8)] * 3,
            "due_date": [date(2011, 1, 13)] * 3,
        })

        result = create_fact_sales_validator([1, 2], [1], unresolved_key=-1).validate(fact, issue_log)

        orphans = issue_log.filter(rule="ref_integrity_customer_key")
        assert [i.business_key for i in orphans] == ["SO3"]
        assert result.has_fatal

    def test_sales_consistency_skips_unrecoverable(self):
        lines = pl.DataFrame({
            "order_number": ["SO1", "SO2"],
            "sales_amount": [30.0, 10.0],
            "quantity": [3, 0],
            "price": [10.0, 10.0],
            "is_unrecoverable": [False, True],
        })

        result = create_sales_lines_validator().validate(lines)

        assert result.status == ValidationStatus.PASSED
