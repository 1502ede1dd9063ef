"""
Run Report

Structured summary of one orchestrated run: per-family and per-stage
outcomes, issue totals and the published release.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from warehouse.quality.issues import IssueLog
from .stages import FamilyResult, StageResult


class RunStatus(str, Enum):
    """Overall run outcome"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StageReport(BaseModel):
    """Outcome of one stage"""
    family: str
    stage: str
    status: str
    started_at: datetime
    duration_seconds: float
    rows_out: Optional[int] = None
    issue_count: int = 0
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None

    @classmethod
    def from_result(cls, result: StageResult) -> "StageReport":
        return cls(
            family=result.family,
            stage=result.stage,
            status=result.status.value,
            started_at=result.started_at,
            duration_seconds=round(result.duration_seconds, 6),
            rows_out=result.rows_out,
            issue_count=result.issue_count,
            error_kind=result.error_kind.value if result.error_kind else None,
            error_detail=result.error_detail,
        )


class FamilyReport(BaseModel):
    """Outcome of one entity family chain"""
    family: str
    status: str
    duration_seconds: float
    failed_stage: Optional[str] = None
    tables: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: FamilyResult) -> "FamilyReport":
        failed = result.failed_stage
        return cls(
            family=result.family,
            status=result.status.value,
            duration_seconds=round(result.duration_seconds, 6),
            failed_stage=failed.stage if failed else None,
            tables={name: df.height for name, df in result.tables.items()},
        )


class RunReport(BaseModel):
    """Run summary persisted with every release"""
    run_id: str
    status: RunStatus
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    release: Optional[str] = None
    families: List[FamilyReport] = Field(default_factory=list)
    stages: List[StageReport] = Field(default_factory=list)
    issue_totals: Dict[str, int] = Field(default_factory=dict)
    issues: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        run_id: str,
        status: RunStatus,
        started_at: datetime,
        completed_at: datetime,
        families: List[FamilyResult],
        issue_log: IssueLog,
        release: Optional[str] = None,
    ) -> "RunReport":
        return cls(
            run_id=run_id,
            status=status,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=round((completed_at - started_at).total_seconds(), 6),
            release=release,
            families=[FamilyReport.from_result(f) for f in families],
            stages=[StageReport.from_result(s) for f in families for s in f.stages],
            issue_totals=issue_log.totals(),
            issues=[issue.to_dict() for issue in issue_log],
        )

    def family_status(self) -> Dict[str, str]:
        return {f.family: f.status for f in self.families}

    def summary(self) -> Dict[str, Any]:
        """Report without the itemized issues"""
        return self.model_dump(mode="json", exclude={"issues"})
