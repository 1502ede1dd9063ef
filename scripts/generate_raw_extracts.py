"""
Raw Extract Generator
Generates messy CRM and ERP extracts for the Raw Store (demo and load tests)

Defects injected on purpose:
- duplicated customers with a later create date
- padded names, lowercase and unknown codes
- legacy NAS / dashed customer ids in the ERP
- zero, malformed and out-of-range YYYYMMDD dates
- sales lines with missing or inconsistent amount, price and quantity
- sales lines referencing unknown products and customers
"""

import argparse
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

fake = Faker()
np.random.seed(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"

CATEGORIES = [
    ("AC_BR", "Accessories", "Bike Racks", "Yes"),
    ("AC_HE", "Accessories", "Helmets", "Yes"),
    ("BI_MB", "Bikes", "Mountain Bikes", "Yes"),
    ("BI_RB", "Bikes", "Road Bikes", "Yes"),
    ("BI_TB", "Bikes", "Touring Bikes", "Yes"),
    ("CL_JE", "Clothing", "Jerseys", "No"),
    ("CL_SO", "Clothing", "Socks", "No"),
    ("CO_RF", "Components", "Road Frames", "Yes"),
]


def _customer_number(customer_id: int) -> str:
    return f"AW{customer_id:08d}"


def _compact(d: date) -> str:
    return d.strftime("%Y%m%d")


# ==========================================
# CUSTOMERS (CRM + ERP)
# ==========================================
def generate_customers(n=1000):
    print(f"📊 Generating {n:,} customers...")

    ids = np.arange(11000, 11000 + n)
    created = [fake.date_between(start_date=date(2015, 1, 1), end_date=date(2024, 12, 31)) for _ in range(n)]

    crm = pl.DataFrame({
        "cst_id": [str(i) for i in ids],
        "cst_key": [_customer_number(int(i)) for i in ids],
        "cst_firstname": [
            f"  {fake.first_name()}" if pad else fake.first_name()
            for pad in np.random.random(n) < 0.1
        ],
        "cst_lastname": [
            f"{fake.last_name()} " if pad else fake.last_name()
            for pad in np.random.random(n) < 0.1
        ],
        "cst_marital_status": np.random.choice(["S", "M", "s", " M", "", "X"], n, p=[0.45, 0.40, 0.05, 0.04, 0.05, 0.01]),
        "cst_gndr": np.random.choice(["F", "M", "", "f"], n, p=[0.40, 0.40, 0.15, 0.05]),
        "cst_create_date": [d.isoformat() for d in created],
    })

    # Re-extracted customers: same id, later create date
    dup_idx = np.random.choice(n, size=max(1, n // 50), replace=False)
    duplicates = crm[dup_idx.tolist()].with_columns(
        pl.col("cst_create_date").map_elements(
            lambda d: (date.fromisoformat(d) + timedelta(days=30)).isoformat(), return_dtype=pl.String
        ),
        pl.col("cst_lastname").str.to_uppercase(),
    )
    crm = pl.concat([crm, duplicates])

    birthdates = [fake.date_of_birth(minimum_age=18, maximum_age=90) for _ in range(n)]
    future = np.random.random(n) < 0.01
    erp = pl.DataFrame({
        "cid": [
            f"NAS{_customer_number(int(i))}" if legacy else _customer_number(int(i))
            for i, legacy in zip(ids, np.random.random(n) < 0.5)
        ],
        "bdate": [
            (date.today() + timedelta(days=365)).isoformat() if f else b.isoformat()
            for b, f in zip(birthdates, future)
        ],
        "gen": np.random.choice(["F", "Female", "M", "Male", "", " "], n, p=[0.2, 0.25, 0.2, 0.25, 0.05, 0.05]),
    })

    locations = pl.DataFrame({
        "cid": [f"AW-{int(i):08d}" for i in ids],
        "cntry": np.random.choice(
            ["DE", "Germany", "US", "USA", "United States", "Canada", "Australia", "France", ""],
            n,
        ),
    })

    crm.write_csv(OUTPUT_DIR / "crm_cust_info.csv")
    erp.write_csv(OUTPUT_DIR / "erp_cust_az12.csv")
    locations.write_csv(OUTPUT_DIR / "erp_loc_a101.csv")
    print(f"   ✅ crm_cust_info.csv: {crm.height:,} rows, erp_cust_az12.csv / erp_loc_a101.csv: {n:,} rows")
    return ids


# ==========================================
# PRODUCTS (CRM versions + ERP categories)
# ==========================================
def generate_products(n=200):
    print(f"📊 Generating {n:,} products...")

    rows = []
    product_numbers = []
    prd_id = 200
    for i in range(n):
        category_id = CATEGORIES[np.random.randint(len(CATEGORIES))][0]
        number = f"{fake.bothify('??-####').upper()}-{i:03d}"
        product_numbers.append(number)
        key = f"{category_id.replace('_', '-')}-{number}"
        start = fake.date_between(start_date=date(2011, 1, 1), end_date=date(2013, 1, 1))
        versions = np.random.choice([1, 2, 3], p=[0.6, 0.3, 0.1])
        cost = float(np.round(np.random.uniform(5, 1500), 2))
        for _ in range(versions):
            prd_id += 1
            rows.append({
                "prd_id": str(prd_id),
                "prd_key": key,
                "prd_nm": f"{fake.word().title()} {number}",
                "prd_cost": "" if np.random.random() < 0.02 else f"{cost:.2f}",
                "prd_line": str(np.random.choice(["M ", "R", "S", "T", "", "m"])),
                "prd_start_dt": start.isoformat(),
                # Overlapping, unreliable end dates as in the source system
                "prd_end_dt": (start - timedelta(days=int(np.random.randint(1, 200)))).isoformat(),
            })
            start = start + timedelta(days=int(np.random.randint(180, 720)))
            cost = float(np.round(cost * np.random.uniform(0.9, 1.2), 2))

    # Exact duplicate versions
    duplicates = [dict(rows[i]) for i in np.random.choice(len(rows), size=max(1, len(rows) // 40), replace=False)]
    products = pl.DataFrame(rows + duplicates)

    categories = pl.DataFrame(
        {
            "id": [c[0] for c in CATEGORIES],
            "cat": [c[1] for c in CATEGORIES],
            "subcat": [c[2] for c in CATEGORIES],
            "maintenance": [c[3] for c in CATEGORIES],
        }
    )

    products.write_csv(OUTPUT_DIR / "crm_prd_info.csv")
    categories.write_csv(OUTPUT_DIR / "erp_px_cat_g1v2.csv")
    print(f"   ✅ crm_prd_info.csv: {products.height:,} rows, erp_px_cat_g1v2.csv: {categories.height} rows")
    return product_numbers


# ==========================================
# SALES (CRM)
# ==========================================
def generate_sales(n=20000, customer_ids=None, product_numbers=None):
    print(f"📊 Generating {n:,} sales lines (vectorized)...")

    base = date(2020, 1, 1)
    order_offsets = np.random.randint(0, 1500, n)
    order_dates = [base + timedelta(days=int(d)) for d in order_offsets]
    ship_dates = [d + timedelta(days=7) for d in order_dates]
    due_dates = [d + timedelta(days=12) for d in order_dates]

    quantity = np.random.randint(1, 4, n)
    price = np.round(np.random.uniform(2, 3500, n), 2)
    amount = np.round(quantity * price, 2)

    # Measure defects
    defect = np.random.random(n)
    amount_str = [f"{a:.2f}" for a in amount]
    price_str = [f"{p:.2f}" for p in price]
    quantity_str = [str(q) for q in quantity]
    for i, r in enumerate(defect):
        if r < 0.02:
            amount_str[i] = "0"
        elif r < 0.03:
            amount_str[i] = ""
        elif r < 0.04:
            amount_str[i] = f"{amount[i] + 10:.2f}"
        elif r < 0.05:
            price_str[i] = f"{-price[i]:.2f}"
        elif r < 0.06:
            price_str[i] = ""
        elif r < 0.062:
            quantity_str[i] = "0"

    order_dt = [_compact(d) for d in order_dates]
    for i in np.random.choice(n, size=max(1, n // 200), replace=False):
        order_dt[i] = str(np.random.choice(["0", "3252", "20251399"]))

    customers = [str(c) for c in np.random.choice(customer_ids, n)]
    products = [str(p) for p in np.random.choice(product_numbers, n)]
    for i in np.random.choice(n, size=max(1, n // 500), replace=False):
        products[i] = "ZZ-9999-UNK"
    for i in np.random.choice(n, size=max(1, n // 500), replace=False):
        customers[i] = "99999"

    df = pl.DataFrame({
        "sls_ord_num": [f"SO{43697 + i}" for i in range(n)],
        "sls_prd_key": products,
        "sls_cust_id": customers,
        "sls_order_dt": order_dt,
        "sls_ship_dt": [_compact(d) for d in ship_dates],
        "sls_due_dt": [_compact(d) for d in due_dates],
        "sls_sales": amount_str,
        "sls_quantity": quantity_str,
        "sls_price": price_str,
    })

    df.write_csv(OUTPUT_DIR / "crm_sales_details.csv")
    print(f"   ✅ crm_sales_details.csv: {n:,} rows")
    return df


def main():
    global OUTPUT_DIR

    parser = argparse.ArgumentParser(description="Generate messy CRM/ERP raw extracts")
    parser.add_argument("--output", default=str(OUTPUT_DIR), help="Raw Store directory")
    parser.add_argument("--customers", type=int, default=1000, help="Number of customers")
    parser.add_argument("--products", type=int, default=200, help="Number of product numbers")
    parser.add_argument("--sales", type=int, default=20000, help="Number of sales lines")
    args = parser.parse_args()

    OUTPUT_DIR = Path(args.output)
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    print("=" * 50)
    print("🚀 RAW EXTRACT GENERATOR")
    print("=" * 50)

    customer_ids = generate_customers(args.customers)
    product_numbers = generate_products(args.products)
    generate_sales(args.sales, customer_ids, product_numbers)

    print("=" * 50)
    print(f"✅ Extracts written to {OUTPUT_DIR}")
    print("=" * 50)


if __name__ == "__main__":
    main()
