"""
Prefect Workflow Orchestration - Warehouse Rebuild

Scheduled full rebuild of the sales star schema with:
- Per-run lock and all-or-nothing publish (handled by the pipeline)
- Alerting on failed entity families
- Quality summary of the published release
"""

from datetime import datetime, timezone
from typing import Optional

import polars as pl
from prefect import flow, get_run_logger, task

from warehouse.config import get_settings
from warehouse.config.logging import configure_logging
from warehouse.errors import ConcurrentRunError
from warehouse.pipeline import Orchestrator, WarehouseTarget

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="rebuild_star_schema",
    description="Run all entity families and publish the release",
    retries=1,
    retry_delay_seconds=120,
)
async def rebuild_star_schema(
    raw_store: str,
    target: str,
    run_id: str,
) -> dict:
    """Run the pipeline and return the run report without itemized issues"""
    logger = get_run_logger()

    orchestrator = Orchestrator(raw_store, target=target, run_id=run_id)
    result = await orchestrator.run()

    logger.info(
        f"Rebuild {result.status.value}: "
        f"{sum(result.family_success.values())}/{len(result.family_success)} families succeeded"
    )
    return result.report.summary()


@task(
    name="summarize_quality",
    description="Summarize quality issues of the published release",
)
async def summarize_quality(target: str) -> dict:
    """Issue counts per rule and severity from the current release"""
    logger = get_run_logger()

    issues = WarehouseTarget(target).read("quality_issues")
    by_rule = (
        issues.group_by("entity", "rule", "severity")
        .agg(pl.len().alias("count"))
        .sort("count", descending=True)
    )
    logger.info(f"Published release carries {issues.height} quality issues")
    return {
        "total": issues.height,
        "top_rules": by_rule.head(10).to_dicts(),
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="warehouse_rebuild",
    description="Full rebuild of the sales star schema from CRM and ERP extracts",
)
async def warehouse_rebuild(
    raw_store: Optional[str] = None,
    target: Optional[str] = None,
    run_id: Optional[str] = None,
) -> dict:
    """
    Warehouse rebuild pipeline.

    Steps:
    1. Run cleansing, reconciliation, rules and assembly per family
    2. Publish the release when every family succeeded
    3. Alert on failed families or a locked target
    4. Summarize quality issues of the published release
    """
    logger = get_run_logger()
    configure_logging()

    raw_store = raw_store or settings.raw_store.path
    target = target or settings.warehouse.output_path
    run_id = run_id or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    logger.info(f"Starting warehouse rebuild {run_id}")

    try:
        report = await rebuild_star_schema(raw_store, target, run_id)
    except ConcurrentRunError as e:
        await send_alert("Rebuild Skipped", str(e), severity="warning")
        return {"run_id": run_id, "status": "locked"}

    failed = [f["family"] for f in report["families"] if f["status"] != "succeeded"]
    if failed:
        await send_alert(
            alert_type="Rebuild Failed",
            message=f"Run {run_id} not published; failed families: {', '.join(failed)}",
            severity="critical",
        )
        return report

    report["quality"] = await summarize_quality(target)
    await send_alert(
        alert_type="Rebuild Complete",
        message=f"Release {report['release']} published",
        severity="info",
    )
    return report


if __name__ == "__main__":
    import asyncio

    asyncio.run(warehouse_rebuild())
