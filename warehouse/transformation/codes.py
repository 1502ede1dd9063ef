"""
Source Code Lookup Tables

Source systems encode descriptive attributes as short codes. Each attribute
has one explicit lookup table with a declared default for unrecognized codes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

import polars as pl

UNKNOWN = "n/a"


class Gender(str, Enum):
    FEMALE = "Female"
    MALE = "Male"
    UNKNOWN = UNKNOWN


class MaritalStatus(str, Enum):
    SINGLE = "Single"
    MARRIED = "Married"
    UNKNOWN = UNKNOWN


class ProductLine(str, Enum):
    MOUNTAIN = "Mountain"
    ROAD = "Road"
    OTHER_SALES = "Other Sales"
    TOURING = "Touring"
    UNKNOWN = UNKNOWN


@dataclass(frozen=True)
class CodeTable:
    """
    Mapping from source codes to canonical values.

    Codes are matched after trimming and upper-casing. Blank or null input
    maps to ``default``. Unrecognized codes map to ``default`` as well, unless
    ``passthrough`` is set, in which case the trimmed source value is kept.
    """
    name: str
    mapping: Mapping[str, str]
    default: str = UNKNOWN
    passthrough: bool = False
    codes: Dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self, "codes", {code.strip().upper(): str(value) for code, value in self.mapping.items()}
        )

    def lookup(self, code: Optional[str]) -> str:
        """Translate a single code"""
        if code is None or not str(code).strip():
            return self.default
        normalized = str(code).strip().upper()
        if normalized in self.codes:
            return self.codes[normalized]
        return str(code).strip() if self.passthrough else self.default

    def is_known(self, code: Optional[str]) -> bool:
        return code is not None and str(code).strip().upper() in self.codes

    def normalized_expr(self, column: str) -> pl.Expr:
        """Trimmed, upper-cased source code; blank becomes null"""
        trimmed = pl.col(column).cast(pl.String).str.strip_chars()
        return pl.when(trimmed.str.len_chars() > 0).then(trimmed.str.to_uppercase()).otherwise(None)

    def known_expr(self, column: str) -> pl.Expr:
        return self.normalized_expr(column).is_in(list(self.codes))

    def translate_expr(self, column: str) -> pl.Expr:
        """Expression translating ``column`` through the table"""
        normalized = self.normalized_expr(column)
        if self.passthrough:
            fallback = pl.col(column).cast(pl.String).str.strip_chars()
            unknown = pl.when(normalized.is_null()).then(pl.lit(self.default)).otherwise(fallback)
        else:
            unknown = pl.lit(self.default)
        return (
            pl.when(self.known_expr(column))
            .then(normalized.replace(self.codes))
            .otherwise(unknown)
        )


CRM_GENDER = CodeTable(
    "crm_gender",
    {"F": Gender.FEMALE.value, "M": Gender.MALE.value},
    default=Gender.UNKNOWN.value,
)

ERP_GENDER = CodeTable(
    "erp_gender",
    {
        "F": Gender.FEMALE.value,
        "FEMALE": Gender.FEMALE.value,
        "M": Gender.MALE.value,
        "MALE": Gender.MALE.value,
    },
    default=Gender.UNKNOWN.value,
)

MARITAL_STATUS = CodeTable(
    "marital_status",
    {"S": MaritalStatus.SINGLE.value, "M": MaritalStatus.MARRIED.value},
    default=MaritalStatus.UNKNOWN.value,
)

PRODUCT_LINE = CodeTable(
    "product_line",
    {
        "M": ProductLine.MOUNTAIN.value,
        "R": ProductLine.ROAD.value,
        "S": ProductLine.OTHER_SALES.value,
        "T": ProductLine.TOURING.value,
    },
    default=ProductLine.UNKNOWN.value,
)

# Country names form an open set; only the codes the ERP abbreviates are listed.
COUNTRY = CodeTable(
    "country",
    {"DE": "Germany", "US": "United States", "USA": "United States"},
    default=UNKNOWN,
    passthrough=True,
)

UNKNOWN_MARKERS = frozenset({UNKNOWN, ""})
