"""
Data Validation Module

Rule-based quality checks run against the output of every pipeline stage.

Features:
- Required column (structural) checks
- Null and uniqueness checks
- Cross-field arithmetic consistency
- Referential integrity between facts and dimensions
- Date ordering checks

Every failing check is turned into QualityIssues. Only fatal issues halt
the stage that produced the frame.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Collection, Dict, List, Optional, Sequence, Union

import polars as pl
import structlog

from warehouse.errors import QualityGateError
from warehouse.quality.issues import IssueLog, QualityIssue, Severity

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ISSUES_PER_CHECK = 500


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: Severity
    message: str
    failed_keys: List[Optional[str]] = field(default_factory=list)
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    entity: str
    stage: str
    status: ValidationStatus
    checks: List[ValidationCheck] = field(default_factory=list)
    issues: List[QualityIssue] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def total_checks(self) -> int:
        return len(self.checks)

    @property
    def passed_checks(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def fatal_issues(self) -> List[QualityIssue]:
        return [i for i in self.issues if i.severity == Severity.FATAL]

    @property
    def has_fatal(self) -> bool:
        return bool(self.fatal_issues)


def _key_of(row: Dict[str, Any], key_columns: Sequence[str]) -> Optional[str]:
    values = [row.get(c) for c in key_columns]
    if not key_columns or all(v is None for v in values):
        return None
    return "|".join("" if v is None else str(v) for v in values)


class DataValidator:
    """
    Validator for one entity at one stage.

    Checks are registered with a fluent builder and evaluated in order.
    Failures become QualityIssues keyed by the entity's business key.

    Example:
        validator = (
            DataValidator("dim_customers", "assemble", key_columns=["customer_id"])
            .add_unique_check(["customer_key"])
            .add_not_null_check("customer_number")
        )
        result = validator.validate(df, issue_log)
    """

    def __init__(
        self,
        entity: str,
        stage: Any,
        key_columns: Optional[Sequence[str]] = None,
        max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK,
    ):
        self.entity = entity
        self.stage = stage.value if isinstance(stage, Enum) else str(stage)
        self.key_columns = list(key_columns or [])
        self.max_issues_per_check = max_issues_per_check
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def _failed(
        self,
        name: str,
        severity: Severity,
        message: str,
        offending: pl.DataFrame,
        total: int,
    ) -> ValidationCheck:
        key_columns = [c for c in self.key_columns if c in offending.columns]
        keys = [_key_of(row, key_columns) for row in offending.select(key_columns).iter_rows(named=True)] \
            if key_columns else [None] * offending.height
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=message,
            failed_keys=keys,
            failed_rows=offending.height,
            total_rows=total,
        )

    def _missing_column(self, name: str, columns: Collection[str]) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            passed=False,
            severity=Severity.FATAL,
            message=f"Column(s) not found: {', '.join(sorted(columns))}",
            failed_keys=[None],
            failed_rows=0,
        )

    def add_required_columns_check(self, columns: Sequence[str]) -> "DataValidator":
        """Add structural check that every column exists"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = [c for c in columns if c not in df.columns]
            if missing:
                return self._missing_column("required_columns", missing)
            return ValidationCheck("required_columns", True, Severity.FATAL, "All required columns present",
                                   total_rows=df.height)

        self._checks.append(check)
        return self

    def add_not_null_check(
        self,
        column: str,
        severity: Severity = Severity.WARNING,
    ) -> "DataValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return self._missing_column(name, [column])

            offending = df.filter(pl.col(column).is_null())
            if offending.height:
                return self._failed(
                    name, severity, f"Column '{column}' has {offending.height} null values", offending, df.height
                )
            return ValidationCheck(name, True, severity, f"Column '{column}' has no null values", total_rows=df.height)

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: Union[str, Sequence[str]],
        severity: Severity = Severity.FATAL,
    ) -> "DataValidator":
        """Add check for uniqueness of (possibly composite) key values"""
        cols = [columns] if isinstance(columns, str) else list(columns)

        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{'_'.join(cols)}"
            missing = [c for c in cols if c not in df.columns]
            if missing:
                return self._missing_column(name, missing)

            offending = df.filter(pl.struct(cols).is_duplicated())
            if offending.height:
                duplicated = offending.select(cols).unique().height
                return self._failed(
                    name,
                    severity,
                    f"{duplicated} value(s) of {cols} occur more than once",
                    offending,
                    df.height,
                )
            return ValidationCheck(name, True, severity, f"Values of {cols} are unique", total_rows=df.height)

        self._checks.append(check)
        return self

    def add_consistency_check(
        self,
        name: str,
        condition: pl.Expr,
        columns: Sequence[str],
        message: str,
        applies_to: Optional[pl.Expr] = None,
        severity: Severity = Severity.WARNING,
    ) -> "DataValidator":
        """
        Add cross-field check.

        Rows where ``applies_to`` holds (all rows when omitted) must satisfy
        ``condition``. A null condition counts as a violation.
        """
        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = [c for c in columns if c not in df.columns]
            if missing:
                return self._missing_column(name, missing)

            scope = df.filter(applies_to) if applies_to is not None else df
            offending = scope.filter(~condition.fill_null(False))
            if offending.height:
                return self._failed(name, severity, f"{offending.height} row(s) {message}", offending, scope.height)
            return ValidationCheck(name, True, severity, "Consistent", total_rows=scope.height)

        self._checks.append(check)
        return self

    def add_date_order_check(
        self,
        earlier: str,
        later: str,
        severity: Severity = Severity.WARNING,
    ) -> "DataValidator":
        """Add check that ``earlier`` is not after ``later`` where both are known"""
        return self.add_consistency_check(
            name=f"order_{earlier}_before_{later}",
            condition=pl.col(earlier) <= pl.col(later),
            columns=[earlier, later],
            message=f"have '{earlier}' after '{later}'",
            applies_to=pl.col(earlier).is_not_null() & pl.col(later).is_not_null(),
            severity=severity,
        )

    def add_referential_integrity_check(
        self,
        column: str,
        reference_values: Collection[Any],
        sentinel: Optional[Any] = None,
        severity: Severity = Severity.FATAL,
    ) -> "DataValidator":
        """Add check that every non-sentinel reference exists in the reference set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"ref_integrity_{column}"
            if column not in df.columns:
                return self._missing_column(name, [column])

            in_scope = pl.col(column).is_not_null()
            if sentinel is not None:
                in_scope = in_scope & (pl.col(column) != sentinel)
            offending = df.filter(in_scope & ~pl.col(column).is_in(list(reference_values)))
            if offending.height:
                return self._failed(
                    name, severity, f"Column '{column}' has {offending.height} orphan references", offending, df.height
                )
            return ValidationCheck(name, True, severity, "Referential integrity maintained", total_rows=df.height)

        self._checks.append(check)
        return self

    def _issues_for(self, check: ValidationCheck, run_id: Optional[str]) -> List[QualityIssue]:
        issues = [
            QualityIssue(
                stage=self.stage,
                entity=self.entity,
                business_key=key,
                rule=check.name,
                severity=check.severity,
                message=check.message,
                run_id=run_id,
            )
            for key in check.failed_keys[: self.max_issues_per_check]
        ]
        truncated = len(check.failed_keys) - self.max_issues_per_check
        if truncated > 0:
            issues.append(
                QualityIssue(
                    stage=self.stage,
                    entity=self.entity,
                    business_key=None,
                    rule=check.name,
                    severity=check.severity,
                    message=f"{truncated} further row(s) not itemized",
                    run_id=run_id,
                )
            )
        return issues

    def validate(self, df: pl.DataFrame, issue_log: Optional[IssueLog] = None) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate
            issue_log: Run issue log receiving every produced issue

        Returns:
            ValidationResult with all check results and issues
        """
        started_at = datetime.now(timezone.utc)
        run_id = issue_log.run_id if issue_log is not None else None
        checks: List[ValidationCheck] = []
        issues: List[QualityIssue] = []

        for check_func in self._checks:
            check = check_func(df)
            checks.append(check)
            if not check.passed:
                issues.extend(self._issues_for(check, run_id))
                logger.warning(
                    f"Validation failed: {check.name}",
                    entity=self.entity,
                    stage=self.stage,
                    message=check.message,
                    severity=check.severity.value,
                )

        if issue_log is not None:
            issue_log.extend(issues)

        if any(i.severity == Severity.FATAL for i in issues):
            status = ValidationStatus.FAILED
        elif issues:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        result = ValidationResult(
            entity=self.entity,
            stage=self.stage,
            status=status,
            checks=checks,
            issues=issues,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

        logger.debug(
            f"Validation complete: {status.value}",
            entity=self.entity,
            stage=self.stage,
            passed=result.passed_checks,
            total=result.total_checks,
        )
        return result

    def enforce(self, df: pl.DataFrame, issue_log: Optional[IssueLog] = None) -> ValidationResult:
        """Validate and raise QualityGateError when a fatal issue was produced"""
        result = self.validate(df, issue_log)
        if result.has_fatal:
            raise QualityGateError(result.fatal_issues)
        return result


# =============================================================================
# PRE-BUILT VALIDATORS
# =============================================================================

def create_deduplicated_validator(entity: str, key_columns: Sequence[str], stage: Any = "deduplicate",
                                  max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK) -> DataValidator:
    """One record per business key after deduplication"""
    return (
        DataValidator(entity, stage, key_columns=key_columns, max_issues_per_check=max_issues_per_check)
        .add_required_columns_check(list(key_columns))
        .add_unique_check(list(key_columns))
    )


def create_product_versions_validator(max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK) -> DataValidator:
    """Validity windows over product versions"""
    return (
        DataValidator("crm_prd_info", "business_rules", key_columns=["product_number"],
                      max_issues_per_check=max_issues_per_check)
        .add_required_columns_check(["product_number", "start_date", "end_date", "is_current"])
        .add_unique_check(["product_number", "start_date"])
        .add_date_order_check("start_date", "end_date")
    )


def create_sales_lines_validator(
    amount_tolerance: float = 1e-6,
    max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK,
) -> DataValidator:
    """Measure consistency of reconciled sales lines"""
    expected = pl.col("quantity") * pl.col("price").abs()
    return (
        DataValidator("crm_sales_details", "business_rules", key_columns=["order_number"],
                      max_issues_per_check=max_issues_per_check)
        .add_required_columns_check(["order_number", "sales_amount", "quantity", "price", "is_unrecoverable"])
        .add_not_null_check("order_number")
        .add_consistency_check(
            name="amount_equals_quantity_times_price",
            condition=(pl.col("sales_amount") - expected).abs() <= amount_tolerance,
            columns=["sales_amount", "quantity", "price"],
            message="have amount != quantity * |price|",
            applies_to=~pl.col("is_unrecoverable"),
        )
    )


def create_dim_customers_validator(max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK) -> DataValidator:
    """Key integrity of the customer dimension"""
    return (
        DataValidator("dim_customers", "assemble", key_columns=["customer_id"],
                      max_issues_per_check=max_issues_per_check)
        .add_not_null_check("customer_key", severity=Severity.FATAL)
        .add_unique_check("customer_key")
        .add_unique_check("customer_id")
        .add_not_null_check("customer_number")
    )


def create_dim_products_validator(max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK) -> DataValidator:
    """Key integrity of the product dimension"""
    return (
        DataValidator("dim_products", "assemble", key_columns=["product_number"],
                      max_issues_per_check=max_issues_per_check)
        .add_not_null_check("product_key", severity=Severity.FATAL)
        .add_unique_check("product_key")
        .add_unique_check("product_number")
        .add_not_null_check("category_id")
    )


def create_fact_sales_validator(
    customer_keys: Collection[int],
    product_keys: Collection[int],
    unresolved_key: int,
    max_issues_per_check: int = DEFAULT_MAX_ISSUES_PER_CHECK,
) -> DataValidator:
    """Referential soundness and temporal consistency of the sales fact"""
    return (
        DataValidator("fact_sales", "assemble", key_columns=["order_number"],
                      max_issues_per_check=max_issues_per_check)
        .add_not_null_check("customer_key", severity=Severity.FATAL)
        .add_not_null_check("product_key", severity=Severity.FATAL)
        .add_referential_integrity_check("customer_key", customer_keys, sentinel=unresolved_key)
        .add_referential_integrity_check("product_key", product_keys, sentinel=unresolved_key)
        .add_date_order_check("order_date", "shipping_date")
        .add_date_order_check("order_date", "due_date")
    )
