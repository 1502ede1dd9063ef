"""
Data Transformation Module
"""
from .cleaners import DataCleaner, clean_table
from .deduplication import Deduplicator, deduplicate
from .reconciliation import AttributeRule, EnrichmentSource, Reconciler
from .rules import BusinessRuleEngine

__all__ = [
    "DataCleaner",
    "clean_table",
    "Deduplicator",
    "deduplicate",
    "AttributeRule",
    "EnrichmentSource",
    "Reconciler",
    "BusinessRuleEngine",
]
