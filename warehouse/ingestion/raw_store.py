"""
Raw Store Access

The Raw Store holds one verbatim table per source entity. Parsing and bulk
loading happen upstream; this module only exposes already-materialized
extracts as DataFrames, every value kept as extracted.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Union

import polars as pl
import structlog

from warehouse.config import Settings, get_settings
from warehouse.errors import StructuralError

logger = structlog.get_logger(__name__)


class FileFormat(str, Enum):
    """Supported extract formats"""
    CSV = "csv"
    PARQUET = "parquet"


class RawStore(Protocol):
    """Read-only access to raw source tables"""

    def has(self, table: str) -> bool:
        ...

    def read(self, table: str) -> pl.DataFrame:
        ...


class InMemoryRawStore:
    """
    Raw Store backed by prepared DataFrames.

    Example:
        store = InMemoryRawStore({"crm_cust_info": customers_df})
        df = store.read("crm_cust_info")
    """

    def __init__(self, tables: Optional[Mapping[str, pl.DataFrame]] = None):
        self._tables: Dict[str, pl.DataFrame] = dict(tables or {})

    def has(self, table: str) -> bool:
        return table in self._tables

    def read(self, table: str) -> pl.DataFrame:
        if table not in self._tables:
            raise StructuralError(table)
        return self._tables[table].clone()

    def tables(self) -> List[str]:
        return sorted(self._tables)


class DirectoryRawStore:
    """
    Raw Store laid out as ``<root>/<table>.<format>`` files.

    CSV extracts are read with every column as a string so no value is
    reinterpreted before cleansing.
    """

    def __init__(
        self,
        root: Union[str, Path],
        file_format: Union[str, FileFormat] = FileFormat.CSV,
        delimiter: str = ",",
        encoding: str = "utf8",
    ):
        self.root = Path(root)
        self.file_format = FileFormat(file_format)
        self.delimiter = delimiter
        self.encoding = encoding

    def _path(self, table: str) -> Path:
        return self.root / f"{table}.{self.file_format.value}"

    def has(self, table: str) -> bool:
        return self._path(table).is_file()

    def read(self, table: str) -> pl.DataFrame:
        path = self._path(table)
        if not path.is_file():
            raise StructuralError(table, message=f"Raw table '{table}' not found at {path}")

        if self.file_format == FileFormat.CSV:
            df = pl.read_csv(
                path,
                separator=self.delimiter,
                encoding=self.encoding,
                infer_schema_length=0,
            )
        else:
            df = pl.read_parquet(path)

        logger.debug(f"Read raw table {table}", rows=df.height, path=str(path))
        return df

    def tables(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob(f"*.{self.file_format.value}"))


def open_raw_store(
    location: Union[str, Path, RawStore, None] = None,
    settings: Optional[Settings] = None,
) -> RawStore:
    """
    Resolve a Raw Store location pointer.

    Args:
        location: Directory path, an existing RawStore, or None for the
            configured default.
        settings: Settings to read the store options from
    """
    if location is not None and not isinstance(location, (str, Path)):
        return location

    settings = settings or get_settings()
    root = Path(location) if location is not None else Path(settings.raw_store.path)
    return DirectoryRawStore(
        root,
        file_format=settings.raw_store.file_format,
        delimiter=settings.raw_store.delimiter,
        encoding=settings.raw_store.encoding,
    )
