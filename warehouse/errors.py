"""
Warehouse Pipeline Errors

Exception hierarchy raised by pipeline stages. The orchestrator's stage
boundary is the only place these are turned into stage outcomes.
"""

from typing import Iterable, List, Optional


class WarehouseError(Exception):
    """Base class for all pipeline errors"""


class StructuralError(WarehouseError):
    """A required table or column is missing from a stage input"""

    def __init__(self, table: str, columns: Optional[Iterable[str]] = None, message: Optional[str] = None):
        self.table = table
        self.columns: List[str] = sorted(columns or [])
        if message is None:
            if self.columns:
                message = f"Table '{table}' is missing required columns: {', '.join(self.columns)}"
            else:
                message = f"Required table '{table}' is not available"
        super().__init__(message)


class QualityGateError(WarehouseError):
    """Validation produced at least one fatal issue"""

    def __init__(self, issues):
        self.issues = list(issues)
        rules = sorted({issue.rule for issue in self.issues})
        super().__init__(f"{len(self.issues)} fatal quality issue(s): {', '.join(rules)}")


class InvariantViolation(WarehouseError):
    """An internal pipeline invariant does not hold"""


class ConcurrentRunError(WarehouseError):
    """Another run holds the exclusive lock on the target"""


class RunCancelled(WarehouseError):
    """The run was cancelled at a stage boundary"""
