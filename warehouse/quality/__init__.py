"""
Data Quality Module
"""
from .issues import IssueLog, QualityIssue, Severity, Stage
from .validators import DataValidator, ValidationResult

__all__ = [
    "IssueLog",
    "QualityIssue",
    "Severity",
    "Stage",
    "DataValidator",
    "ValidationResult",
]
