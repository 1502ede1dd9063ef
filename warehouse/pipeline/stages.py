"""
Stage Outcomes

Explicit result values for stage and family execution. The orchestrator
converts every stage exception into a StageResult in one place and decides
from these values which chains continue.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import polars as pl

from warehouse.errors import (
    InvariantViolation,
    QualityGateError,
    RunCancelled,
    StructuralError,
)


class StageStatus(str, Enum):
    """Outcome of a stage or family chain"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ErrorKind(str, Enum):
    """Classification of a stage failure"""
    STRUCTURAL = "structural"
    QUALITY_GATE = "quality_gate"
    INVARIANT = "invariant"
    UPSTREAM = "upstream"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, StructuralError):
        return ErrorKind.STRUCTURAL
    if isinstance(exc, QualityGateError):
        return ErrorKind.QUALITY_GATE
    if isinstance(exc, InvariantViolation):
        return ErrorKind.INVARIANT
    if isinstance(exc, RunCancelled):
        return ErrorKind.CANCELLED
    return ErrorKind.UNEXPECTED


@dataclass
class StageResult:
    """Outcome of one stage invocation"""
    family: str
    stage: str
    status: StageStatus
    started_at: datetime
    duration_seconds: float = 0.0
    rows_out: Optional[int] = None
    issue_count: int = 0
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCEEDED


@dataclass
class FamilyResult:
    """Outcome of one entity family chain"""
    family: str
    status: StageStatus = StageStatus.SUCCEEDED
    stages: List[StageResult] = field(default_factory=list)
    tables: Dict[str, pl.DataFrame] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> float:
        return sum(s.duration_seconds for s in self.stages)

    @property
    def failed_stage(self) -> Optional[StageResult]:
        return next((s for s in self.stages if not s.ok), None)

    def add(self, result: StageResult) -> bool:
        """Record a stage result; False once the chain must stop"""
        self.stages.append(result)
        if not result.ok and self.status == StageStatus.SUCCEEDED:
            self.status = StageStatus.FAILED if result.status == StageStatus.FAILED else result.status
        return result.ok
