"""
Unit Tests - Code Lookup Tables
"""
import polars as pl

from warehouse.transformation.codes import COUNTRY, CRM_GENDER, ERP_GENDER, MARITAL_STATUS, PRODUCT_LINE, UNKNOWN


class TestCodeTable:
    """Tests for CodeTable"""

    def test_lookup_is_case_and_whitespace_insensitive(self):
        assert MARITAL_STATUS.lookup(" s ") == "Single"
        assert PRODUCT_LINE.lookup("m") == "Mountain"

    def test_blank_and_unknown_map_to_default(self):
        assert CRM_GENDER.lookup(None) == UNKNOWN
        assert CRM_GENDER.lookup("  ") == UNKNOWN
        assert CRM_GENDER.lookup("X") == UNKNOWN

    def test_passthrough_keeps_unknown_values(self):
        assert COUNTRY.lookup("USA") == "United States"
        assert COUNTRY.lookup(" Australia ") == "Australia"
        assert COUNTRY.lookup("") == UNKNOWN

    def test_translate_expr_matches_lookup(self):
        values = ["F", "female", "MALE", "", None, "x"]
        df = pl.DataFrame({"gen": values}, schema={"gen": pl.String})

        result = df.select(ERP_GENDER.translate_expr("gen").alias("gender"))

        assert result["gender"].to_list() == [ERP_GENDER.lookup(v) for v in values]

    def test_passthrough_translate_expr(self):
        df = pl.DataFrame({"cntry": ["DE", " Canada", None]}, schema={"cntry": pl.String})

        result = df.select(COUNTRY.translate_expr("cntry").alias("country"))

        assert result["country"].to_list() == ["Germany", "Canada", UNKNOWN]

    def test_known_expr(self):
        df = pl.DataFrame({"code": ["r", "Q", None]}, schema={"code": pl.String})

        result = df.select(PRODUCT_LINE.known_expr("code").alias("known"))

        assert result["known"].to_list()[:2] == [True, False]
        assert PRODUCT_LINE.is_known("t")
        assert not PRODUCT_LINE.is_known(None)
