"""
Unit Tests - Business Rules
"""
from datetime import date

import pytest
import polars as pl

from warehouse.errors import StructuralError
from warehouse.quality.issues import Severity
from warehouse.transformation.rules import BusinessRuleEngine


@pytest.fixture
def engine(issue_log) -> BusinessRuleEngine:
    return BusinessRuleEngine(issue_log, amount_tolerance=1e-6)


def _sales(amount, quantity, price) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "order_number": [f"SO{i}" for i in range(len(amount))],
            "sales_amount": amount,
            "quantity": quantity,
            "price": price,
        },
        schema={"order_number": pl.String, "sales_amount": pl.Float64, "quantity": pl.Int64, "price": pl.Float64},
    )


class TestProductRules:
    """Tests for product categorization and validity windows"""

    def test_categorize(self, engine, issue_log):
        df = pl.DataFrame({"product_key_raw": ["CO-RF-FR-R92B-58", "AC-HE-HL-U509-R", "BADKEY"]})

        result = engine.categorize_products(df)

        assert result["category_id"].to_list() == ["CO_RF", "AC_HE", None]
        assert result["product_number"].to_list() == ["FR-R92B-58", "HL-U509-R", "BADKEY"]
        unparseable = issue_log.filter(rule="unparseable_product_key")
        assert len(unparseable) == 1
        assert unparseable[0].severity == Severity.WARNING

    def test_validity_windows(self, engine):
        df = pl.DataFrame({
            "product_number": ["A", "A", "A", "B"],
            "start_date": [date(2012, 1, 1), date(2010, 1, 1), date(2011, 7, 1), date(2013, 1, 1)],
            "_source_row": [0, 1, 2, 3],
        })

        result = engine.derive_validity_windows(df).sort("product_number", "start_date")

        assert result["end_date"].to_list() == [
            date(2011, 6, 30), date(2011, 12, 31), None, None,
        ]
        assert result["is_current"].to_list() == [False, False, True, True]

    def test_apply_product_rules_current_view(self, engine):
        df = pl.DataFrame({
            "product_key_raw": ["CO-RF-FR-1", "CO-RF-FR-1", "BI-RB-BK-2"],
            "start_date": [date(2003, 7, 1), date(2008, 7, 1), date(2011, 7, 1)],
            "_source_row": [0, 1, 2],
        })

        versions, current = engine.apply_product_rules(df)

        assert versions.height == 3
        assert current["product_number"].to_list() == ["FR-1", "BK-2"]
        assert current["start_date"].to_list() == [date(2008, 7, 1), date(2011, 7, 1)]

    def test_missing_input_column(self, engine):
        with pytest.raises(StructuralError):
            engine.derive_validity_windows(pl.DataFrame({"product_number": ["A"], "_source_row": [0]}))


class TestMeasureReconciliation:
    """Tests for sales measure reconciliation"""

    def test_zero_amount_recomputed(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([0.0], [3], [10.0]))

        assert result["sales_amount"].to_list() == [30.0]
        assert result["is_unrecoverable"].to_list() == [False]
        assert len(issue_log.filter(rule="amount_recomputed", severity=Severity.INFO)) == 1

    def test_zero_quantity_unrecoverable(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([10.0], [0], [10.0]))

        assert result["is_unrecoverable"].to_list() == [True]
        assert result["sales_amount"].to_list() == [10.0]
        assert len(issue_log.filter(rule="unrecoverable_quantity", severity=Severity.WARNING)) == 1

    def test_negative_price_corrected(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([40.0], [2], [-20.0]))

        assert result["price"].to_list() == [20.0]
        assert result["sales_amount"].to_list() == [40.0]
        assert len(issue_log.filter(rule="price_sign_corrected")) == 1
        assert len(issue_log.filter(rule="amount_recomputed")) == 0

    def test_missing_price_derived(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([90.0], [3], [None]))

        assert result["price"].to_list() == [30.0]
        assert result["is_unrecoverable"].to_list() == [False]
        assert len(issue_log.filter(rule="price_derived")) == 1

    def test_price_derived_from_negative_amount(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([-30.0], [3], [None]))

        assert result["price"].to_list() == [10.0]
        assert result["sales_amount"].to_list() == [30.0]
        assert result["is_unrecoverable"].to_list() == [False]
        assert len(issue_log.filter(rule="price_derived")) == 1
        assert len(issue_log.filter(rule="amount_recomputed")) == 1

    def test_price_and_amount_missing(self, engine, issue_log):
        result = engine.reconcile_measures(_sales([None], [2], [None]))

        assert result["is_unrecoverable"].to_list() == [True]
        assert result["sales_amount"].to_list() == [None]
        assert len(issue_log.filter(rule="unrecoverable_price")) == 1

    def test_inconsistent_amount_recomputed(self, engine):
        result = engine.reconcile_measures(_sales([55.0, None], [2, 4], [25.0, 5.0]))

        assert result["sales_amount"].to_list() == [50.0, 20.0]

    def test_invariant_holds_for_recoverable_rows(self, engine):
        df = _sales([0.0, 10.0, 40.0, 90.0, 55.0, 7.0], [3, 0, 2, 3, 2, None], [10.0, 10.0, -20.0, None, 25.0, 7.0])

        result = engine.reconcile_measures(df)

        recoverable = result.filter(~pl.col("is_unrecoverable"))
        assert recoverable.height == 4
        deltas = (recoverable["sales_amount"] - recoverable["quantity"] * recoverable["price"].abs()).abs()
        assert deltas.max() <= 1e-6
