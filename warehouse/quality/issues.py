"""
Quality Issue Log

Append-only record of every data quality finding produced during a run.
Stages running on worker threads share one IssueLog per run.
"""

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    """Severity levels for quality issues"""
    INFO = "info"  # Informational, e.g. an auto-correction
    WARNING = "warning"  # Recorded, processing continues
    FATAL = "fatal"  # Structural, halts the stage


class Stage(str, Enum):
    """Pipeline stages that report issues"""
    CLEANSE = "cleanse"
    DEDUPLICATE = "deduplicate"
    RECONCILE = "reconcile"
    BUSINESS_RULES = "business_rules"
    ASSEMBLE = "assemble"
    PUBLISH = "publish"


@dataclass(frozen=True)
class QualityIssue:
    """Single quality finding"""
    stage: str
    entity: str
    business_key: Optional[str]
    rule: str
    severity: Severity
    message: str = ""
    run_id: Optional[str] = None
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["observed_at"] = self.observed_at.isoformat()
        return data


ISSUE_SCHEMA = {
    "run_id": pl.String,
    "stage": pl.String,
    "entity": pl.String,
    "business_key": pl.String,
    "rule": pl.String,
    "severity": pl.String,
    "message": pl.String,
    "observed_at": pl.String,
}


class IssueLog:
    """
    Thread-safe, append-only collection of QualityIssues for one run.

    Example:
        issues = IssueLog(run_id="2024-01-01")
        issues.record(Stage.CLEANSE, "crm_cust_info", "11000", "unknown_code", Severity.WARNING)
        issues.count(Severity.WARNING)
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._issues: List[QualityIssue] = []
        self._lock = threading.Lock()

    def record(
        self,
        stage: Any,
        entity: str,
        business_key: Any,
        rule: str,
        severity: Severity,
        message: str = "",
    ) -> QualityIssue:
        """Append one issue and return it"""
        issue = QualityIssue(
            stage=stage.value if isinstance(stage, Stage) else str(stage),
            entity=entity,
            business_key=None if business_key is None else str(business_key),
            rule=rule,
            severity=severity,
            message=message,
            run_id=self.run_id,
        )
        self.add(issue)
        return issue

    def record_rows(
        self,
        offending: pl.DataFrame,
        stage: Any,
        entity: str,
        key: Optional[str],
        rule: str,
        severity: Severity,
        message: str,
        value_column: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        """
        Record one issue per offending row.

        ``message`` may reference ``{value}``, the row's ``value_column``.
        Rows past ``limit`` are summarized in a single keyless issue.
        """
        if offending.height == 0:
            return 0

        head = offending if limit is None else offending.head(limit)
        columns = list(dict.fromkeys(c for c in (key, value_column) if c is not None))
        rows = head.select(columns).iter_rows(named=True) if columns else ({} for _ in range(head.height))
        for row in rows:
            self.record(
                stage,
                entity,
                row.get(key) if key else None,
                rule,
                severity,
                message.format(value=row.get(value_column) if value_column else None),
            )
        if limit is not None and offending.height > limit:
            self.record(
                stage, entity, None, rule, severity,
                f"{offending.height - limit} further row(s) not itemized",
            )
        return offending.height

    def add(self, issue: QualityIssue) -> None:
        with self._lock:
            self._issues.append(issue)
        if issue.severity != Severity.INFO:
            logger.debug(
                "Quality issue recorded",
                stage=issue.stage,
                entity=issue.entity,
                rule=issue.rule,
                severity=issue.severity.value,
                business_key=issue.business_key,
            )

    def extend(self, issues: Iterable[QualityIssue]) -> None:
        for issue in issues:
            self.add(issue)

    @property
    def issues(self) -> List[QualityIssue]:
        """Snapshot of recorded issues"""
        with self._lock:
            return list(self._issues)

    def __len__(self) -> int:
        with self._lock:
            return len(self._issues)

    def __iter__(self) -> Iterator[QualityIssue]:
        return iter(self.issues)

    def count(self, severity: Optional[Severity] = None) -> int:
        if severity is None:
            return len(self)
        return sum(1 for issue in self.issues if issue.severity == severity)

    def filter(
        self,
        stage: Optional[str] = None,
        entity: Optional[str] = None,
        rule: Optional[str] = None,
        severity: Optional[Severity] = None,
    ) -> List[QualityIssue]:
        """Issues matching every given attribute"""
        stage_value = stage.value if isinstance(stage, Stage) else stage
        return [
            issue for issue in self.issues
            if (stage_value is None or issue.stage == stage_value)
            and (entity is None or issue.entity == entity)
            and (rule is None or issue.rule == rule)
            and (severity is None or issue.severity == severity)
        ]

    def totals(self) -> Dict[str, int]:
        """Issue counts keyed by severity value"""
        totals = {severity.value: 0 for severity in Severity}
        for issue in self.issues:
            totals[issue.severity.value] += 1
        return totals

    def to_frame(self) -> pl.DataFrame:
        """Issues as a DataFrame for archiving"""
        rows = [issue.to_dict() for issue in self.issues]
        if not rows:
            return pl.DataFrame(schema=ISSUE_SCHEMA)
        return pl.DataFrame(rows, schema=ISSUE_SCHEMA)
