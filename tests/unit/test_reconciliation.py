"""
Unit Tests - Cross-Source Reconciliation
"""
import pytest
import polars as pl

from warehouse.quality.issues import Severity
from warehouse.transformation.reconciliation import AttributeRule, EnrichmentSource, Reconciler


@pytest.fixture
def crm() -> pl.DataFrame:
    return pl.DataFrame({
        "customer_id": [1, 2, 3],
        "customer_number": ["C1", "C2", "C3"],
        "first_name": ["Ann", None, "Cy"],
        "last_name": ["Lee", "Bo", "Ng"],
        "gender": ["n/a", "Male", "n/a"],
        "_source_row": [0, 1, 2],
    })


@pytest.fixture
def erp() -> pl.DataFrame:
    return pl.DataFrame({
        "customer_number": ["C1", "C2", "C3"],
        "gender": ["Female", "Female", "n/a"],
        "birthdate": [None, None, None],
    })


def _reconciler(issue_log) -> Reconciler:
    return Reconciler(
        "customer",
        join_key="customer_number",
        rules=[AttributeRule("gender", "gender", "gender_erp")],
        required=["customer_number", "first_name", "last_name"],
        key_column="customer_id",
        issue_log=issue_log,
    )


class TestAttributeRule:
    """Tests for AttributeRule"""

    def test_preference_order(self):
        df = pl.DataFrame({
            "a": ["x", "n/a", None, "", "n/a"],
            "b": ["y", "z", "w", "v", None],
        })

        result = df.select(AttributeRule("v", "a", "b").expr())

        assert result["v"].to_list() == ["x", "z", "w", "v", None]


class TestReconciler:
    """Tests for Reconciler"""

    def test_secondary_fills_unknown_primary(self, crm, erp, issue_log):
        result = _reconciler(issue_log).reconcile(
            crm, [EnrichmentSource("erp", erp, "customer_number", ["gender", "birthdate"], "_erp")]
        )

        assert result["gender"].to_list() == ["Female", "Male", None]
        assert "gender_erp" not in result.columns
        assert "birthdate_erp" in result.columns
        assert result.height == crm.height

    def test_missing_required_field_warns(self, crm, erp, issue_log):
        _reconciler(issue_log).reconcile(
            crm, [EnrichmentSource("erp", erp, "customer_number", ["gender"], "_erp")]
        )

        missing = issue_log.filter(rule="missing_first_name")
        assert len(missing) == 1
        assert missing[0].business_key == "2"
        assert missing[0].severity == Severity.WARNING

    def test_absent_enrichment_source(self, crm, issue_log):
        result = _reconciler(issue_log).reconcile(
            crm, [EnrichmentSource("erp", None, "customer_number", ["gender", "birthdate"], "_erp")]
        )

        assert result["gender"].to_list() == [None, "Male", None]
        assert result["birthdate_erp"].null_count() == crm.height
        assert len(issue_log.filter(rule="enrichment_source_missing")) == 1

    def test_unmatched_rows_kept(self, crm, erp, issue_log):
        result = _reconciler(issue_log).reconcile(
            crm, [EnrichmentSource("erp", erp.filter(pl.col("customer_number") == "C1"), "customer_number",
                                   ["gender"], "_erp")]
        )

        assert result["customer_number"].to_list() == ["C1", "C2", "C3"]

    def test_non_unique_source_rejected(self, crm, erp, issue_log):
        doubled = pl.concat([erp, erp])

        with pytest.raises(ValueError):
            _reconciler(issue_log).reconcile(
                crm, [EnrichmentSource("erp", doubled, "customer_number", ["gender"], "_erp")]
            )
