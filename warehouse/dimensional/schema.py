"""
Table Definitions - Source Contracts and Star Schema

Source tables (Raw Store):
- crm_cust_info, crm_prd_info, crm_sales_details (CRM, required)
- erp_cust_az12, erp_loc_a101, erp_px_cat_g1v2 (ERP, enrichment)

Dimension Tables:
- dim_customers: one row per customer business key
- dim_products: one row per current product version

Fact Tables:
- fact_sales: one row per sales line item
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

import polars as pl

# Surrogate key reference for a fact row whose business key has no dimension row
UNRESOLVED_KEY = -1

SOURCE_ROW = "_source_row"


class EntityFamily(str, Enum):
    """Independent processing chains"""
    CUSTOMER = "customer"
    PRODUCT = "product"
    SALES = "sales"


@dataclass(frozen=True)
class SourceTable:
    """Contract of one Raw Store table"""
    name: str
    family: EntityFamily
    required_columns: Tuple[str, ...]
    enrichment: bool = False


# =============================================================================
# SOURCE CONTRACTS
# =============================================================================

CRM_CUSTOMERS = SourceTable(
    "crm_cust_info",
    EntityFamily.CUSTOMER,
    ("cst_id", "cst_key", "cst_firstname", "cst_lastname", "cst_marital_status", "cst_gndr", "cst_create_date"),
)
CRM_PRODUCTS = SourceTable(
    "crm_prd_info",
    EntityFamily.PRODUCT,
    ("prd_id", "prd_key", "prd_nm", "prd_cost", "prd_line", "prd_start_dt"),
)
CRM_SALES = SourceTable(
    "crm_sales_details",
    EntityFamily.SALES,
    (
        "sls_ord_num", "sls_prd_key", "sls_cust_id", "sls_order_dt", "sls_ship_dt",
        "sls_due_dt", "sls_sales", "sls_quantity", "sls_price",
    ),
)
ERP_CUSTOMERS = SourceTable("erp_cust_az12", EntityFamily.CUSTOMER, ("cid", "bdate", "gen"), enrichment=True)
ERP_LOCATIONS = SourceTable("erp_loc_a101", EntityFamily.CUSTOMER, ("cid", "cntry"), enrichment=True)
ERP_CATEGORIES = SourceTable(
    "erp_px_cat_g1v2", EntityFamily.PRODUCT, ("id", "cat", "subcat", "maintenance"), enrichment=True
)

SOURCE_TABLES: Dict[str, SourceTable] = {
    t.name: t
    for t in (CRM_CUSTOMERS, CRM_PRODUCTS, CRM_SALES, ERP_CUSTOMERS, ERP_LOCATIONS, ERP_CATEGORIES)
}


# =============================================================================
# STAR SCHEMA
# =============================================================================

DIM_CUSTOMERS = "dim_customers"
DIM_PRODUCTS = "dim_products"
FACT_SALES = "fact_sales"

DIM_CUSTOMERS_SCHEMA = {
    "customer_key": pl.Int64,
    "customer_id": pl.Int64,
    "customer_number": pl.String,
    "first_name": pl.String,
    "last_name": pl.String,
    "country": pl.String,
    "marital_status": pl.String,
    "gender": pl.String,
    "birthdate": pl.Date,
    "create_date": pl.Date,
}

DIM_PRODUCTS_SCHEMA = {
    "product_key": pl.Int64,
    "product_id": pl.Int64,
    "product_number": pl.String,
    "product_name": pl.String,
    "category_id": pl.String,
    "category": pl.String,
    "subcategory": pl.String,
    "maintenance": pl.String,
    "cost": pl.Float64,
    "product_line": pl.String,
    "start_date": pl.Date,
}

FACT_SALES_SCHEMA = {
    "order_number": pl.String,
    "product_key": pl.Int64,
    "customer_key": pl.Int64,
    "product_number": pl.String,
    "customer_id": pl.Int64,
    "order_date": pl.Date,
    "shipping_date": pl.Date,
    "due_date": pl.Date,
    "sales_amount": pl.Float64,
    "quantity": pl.Int64,
    "price": pl.Float64,
    "is_unrecoverable": pl.Boolean,
}

STAR_SCHEMA: Dict[str, Dict[str, pl.DataType]] = {
    DIM_CUSTOMERS: DIM_CUSTOMERS_SCHEMA,
    DIM_PRODUCTS: DIM_PRODUCTS_SCHEMA,
    FACT_SALES: FACT_SALES_SCHEMA,
}
