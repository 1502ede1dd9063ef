"""
Test Suite Configuration
"""
from datetime import date
from typing import Dict

import pytest
import polars as pl

from warehouse.config import Settings
from warehouse.ingestion.raw_store import InMemoryRawStore
from warehouse.quality.issues import IssueLog

RUN_DATE = date(2026, 1, 1)


@pytest.fixture
def run_date() -> date:
    return RUN_DATE


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings writing into a temp directory"""
    settings = Settings(APP_ENV="testing")
    return settings.model_copy(
        update={
            "raw_store": settings.raw_store.model_copy(update={"path": str(tmp_path / "raw")}),
            "warehouse": settings.warehouse.model_copy(update={"output_path": str(tmp_path / "warehouse")}),
        }
    )


@pytest.fixture
def issue_log() -> IssueLog:
    return IssueLog(run_id="test-run")


@pytest.fixture
def crm_customers_df() -> pl.DataFrame:
    """CRM customers: padded names, a re-extracted customer and a keyless row"""
    return pl.DataFrame({
        "cst_id": ["11000", "11001", "11001", "11002", ""],
        "cst_key": ["AW00011000", "AW00011001", "AW00011001", "AW00011002", "AW00011003"],
        "cst_firstname": [" Jon", "Eugene", "Eugene", "Ruben", "Christy"],
        "cst_lastname": ["Yang ", "Huang", "HUANG", "Torres", "Zhu"],
        "cst_marital_status": ["M", "S", "S", "x", "M"],
        "cst_gndr": ["M", "", "", "F", "F"],
        "cst_create_date": ["2025-10-06", "2025-10-06", "2025-11-06", "2025-10-06", "2025-10-06"],
    })


@pytest.fixture
def erp_customers_df() -> pl.DataFrame:
    """ERP demographics: legacy NAS prefixes and a birthdate in the future"""
    return pl.DataFrame({
        "cid": ["NASAW00011000", "AW00011001", "NASAW00011002"],
        "bdate": ["1971-10-06", "1976-05-10", "2999-01-01"],
        "gen": ["Male", "F", " "],
    })


@pytest.fixture
def erp_locations_df() -> pl.DataFrame:
    return pl.DataFrame({
        "cid": ["AW-00011000", "AW-00011001", "AW-00011002"],
        "cntry": ["DE", "USA", "Australia"],
    })


@pytest.fixture
def crm_products_df() -> pl.DataFrame:
    """CRM products: two versions of one product, an exact duplicate version, an unparseable key"""
    return pl.DataFrame({
        "prd_id": ["210", "211", "212", "213", "214"],
        "prd_key": ["CO-RF-FR-R92B-58", "CO-RF-FR-R92B-58", "BI-RB-BK-R93R-62", "BI-RB-BK-R93R-62", "BADKEY"],
        "prd_nm": ["HL Road Frame 58", "HL Road Frame 58 v2", "Road-150 Red 62", "Road-150 Red 62", "Mystery"],
        "prd_cost": ["", "12.5", "2171.29", "2171.29", "3"],
        "prd_line": ["R ", "R", "r", "R", "Z"],
        "prd_start_dt": ["2003-07-01", "2008-07-01", "2011-07-01", "2011-07-01", "2012-01-01"],
        "prd_end_dt": ["2007-12-28", "", "2011-12-28", "2011-12-28", ""],
    })


@pytest.fixture
def erp_categories_df() -> pl.DataFrame:
    return pl.DataFrame({
        "id": ["CO_RF", "BI_RB", "AC_HE"],
        "cat": ["Components", "Bikes", "Accessories"],
        "subcat": ["Road Frames", "Road Bikes", "Helmets"],
        "maintenance": ["Yes", "Yes", "No"],
    })


@pytest.fixture
def crm_sales_df() -> pl.DataFrame:
    """
    CRM sales lines:
    - SO43698: amount 0, quantity 3, price 10
    - SO43699: product P9 has no product record
    - SO43700: quantity 0
    - SO43701: negative price
    - SO43702: missing price
    - SO43703: zero order date and unknown customer
    """
    return pl.DataFrame({
        "sls_ord_num": ["SO43697", "SO43698", "SO43699", "SO43700", "SO43701", "SO43702", "SO43703"],
        "sls_prd_key": ["BK-R93R-62", "FR-R92B-58", "P9", "FR-R92B-58", "BK-R93R-62", "FR-R92B-58", "BK-R93R-62"],
        "sls_cust_id": ["11000", "11001", "11002", "11000", "11001", "11002", "99999"],
        "sls_order_dt": ["20101229", "20110105", "20110110", "20110112", "20110115", "20110120", "0"],
        "sls_ship_dt": ["20110105", "20110112", "20110117", "20110119", "20110122", "20110127", "20110130"],
        "sls_due_dt": ["20110110", "20110117", "20110122", "20110124", "20110127", "20110201", "20110204"],
        "sls_sales": ["3578", "0", "50", "10", "40", "90", "100"],
        "sls_quantity": ["1", "3", "1", "0", "2", "3", "1"],
        "sls_price": ["3578", "10", "50", "10", "-20", "", "100"],
    })


@pytest.fixture
def raw_tables(
    crm_customers_df,
    erp_customers_df,
    erp_locations_df,
    crm_products_df,
    erp_categories_df,
    crm_sales_df,
) -> Dict[str, pl.DataFrame]:
    return {
        "crm_cust_info": crm_customers_df,
        "erp_cust_az12": erp_customers_df,
        "erp_loc_a101": erp_locations_df,
        "crm_prd_info": crm_products_df,
        "erp_px_cat_g1v2": erp_categories_df,
        "crm_sales_details": crm_sales_df,
    }


@pytest.fixture
def raw_store(raw_tables) -> InMemoryRawStore:
    return InMemoryRawStore(raw_tables)
