"""
Raw Store Access Module
"""
from .raw_store import DirectoryRawStore, InMemoryRawStore, RawStore, open_raw_store

__all__ = [
    "DirectoryRawStore",
    "InMemoryRawStore",
    "RawStore",
    "open_raw_store",
]
