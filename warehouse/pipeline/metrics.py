"""
Pipeline Metrics

Prometheus metrics for stage outcomes, quality issues and published table
sizes. Batch runs are short-lived, so metrics are pushed to a Pushgateway at
the end of a run when one is configured.
"""

from typing import Iterable, Mapping, Optional

import polars as pl
import structlog
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, push_to_gateway

from warehouse.quality.issues import QualityIssue
from .stages import StageResult

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

STAGE_RUNS = Counter(
    "warehouse_stage_runs_total",
    "Stage invocations by outcome",
    ["family", "stage", "status"],
)

STAGE_DURATION = Histogram(
    "warehouse_stage_duration_seconds",
    "Time spent in a stage body",
    ["family", "stage"],
)

ISSUES_RECORDED = Counter(
    "warehouse_quality_issues_total",
    "Quality issues recorded",
    ["stage", "severity"],
)

TABLE_ROWS = Gauge(
    "warehouse_table_rows",
    "Rows in the last assembled star schema table",
    ["table"],
)

RUNS_COMPLETED = Counter(
    "warehouse_runs_total",
    "Completed runs by status",
    ["status"],
)

LAST_PUBLISH = Gauge(
    "warehouse_last_publish_timestamp_seconds",
    "Unix time of the last published release",
)


def observe_stage(result: StageResult, issues: Iterable[QualityIssue]) -> None:
    STAGE_RUNS.labels(family=result.family, stage=result.stage, status=result.status.value).inc()
    if result.ok:
        STAGE_DURATION.labels(family=result.family, stage=result.stage).observe(result.duration_seconds)
    for issue in issues:
        ISSUES_RECORDED.labels(stage=issue.stage, severity=issue.severity.value).inc()


def observe_run(status: str, tables: Mapping[str, pl.DataFrame], published: bool) -> None:
    RUNS_COMPLETED.labels(status=status).inc()
    for name, df in tables.items():
        TABLE_ROWS.labels(table=name).set(df.height)
    if published:
        LAST_PUBLISH.set_to_current_time()


def push_metrics(gateway: Optional[str], job: str) -> None:
    """Push the process metrics to a Pushgateway; push failures are logged, not raised"""
    if not gateway:
        return
    try:
        push_to_gateway(gateway, job=job, registry=REGISTRY)
    except OSError as e:
        logger.warning("Metrics push failed", gateway=gateway, error=str(e))
