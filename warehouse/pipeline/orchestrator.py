"""
Pipeline Orchestrator

Runs the consolidation as three entity family chains:
- customer: cleanse -> deduplicate -> reconcile -> assemble dim_customers
- product:  cleanse -> deduplicate -> business rules -> assemble dim_products
- sales:    cleanse -> business rules -> (wait for both dimensions) -> assemble fact_sales

Chains run concurrently; stage bodies execute on worker threads. Every stage
goes through one boundary that converts exceptions into StageResults, so a
failing family never stops the others. Output is written to a staging
release and published only when every family succeeded.
"""

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import polars as pl
import structlog

from warehouse.config import Settings, get_settings
from warehouse.dimensional.assembly import DimensionalAssembler
from warehouse.dimensional.keys import SurrogateKeyRegistry
from warehouse.dimensional.schema import (
    CRM_CUSTOMERS,
    CRM_PRODUCTS,
    CRM_SALES,
    DIM_CUSTOMERS,
    DIM_PRODUCTS,
    ERP_CATEGORIES,
    ERP_CUSTOMERS,
    ERP_LOCATIONS,
    FACT_SALES,
    SOURCE_ROW,
    UNRESOLVED_KEY,
    EntityFamily,
    SourceTable,
)
from warehouse.errors import InvariantViolation, RunCancelled, StructuralError
from warehouse.ingestion.raw_store import RawStore, open_raw_store
from warehouse.quality.issues import IssueLog, Severity, Stage
from warehouse.quality.validators import (
    DataValidator,
    create_deduplicated_validator,
    create_dim_customers_validator,
    create_dim_products_validator,
    create_fact_sales_validator,
    create_product_versions_validator,
    create_sales_lines_validator,
)
from warehouse.transformation.cleaners import DataCleaner
from warehouse.transformation.deduplication import Deduplicator
from warehouse.transformation.reconciliation import AttributeRule, EnrichmentSource, Reconciler
from warehouse.transformation.rules import BusinessRuleEngine
from .metrics import observe_run, observe_stage, push_metrics
from .report import RunReport, RunStatus
from .stages import ErrorKind, FamilyResult, StageResult, StageStatus, classify
from .target import StagedRelease, WarehouseTarget

logger = structlog.get_logger(__name__)

QUALITY_ISSUES = "quality_issues"
RUN_REPORT = "run_report"

Frames = Dict[str, Optional[pl.DataFrame]]

# Business key of each cleansed source frame
CLEANSED_KEYS = {
    CRM_CUSTOMERS.name: "customer_id",
    CRM_PRODUCTS.name: "product_key_raw",
    CRM_SALES.name: "order_number",
    ERP_CUSTOMERS.name: "customer_number",
    ERP_LOCATIONS.name: "customer_number",
    ERP_CATEGORIES.name: "category_id",
}


@dataclass
class PipelineRunResult:
    """Outcome of one run: per-family success, report and produced tables"""
    run_id: str
    status: RunStatus
    families: Dict[str, FamilyResult]
    report: RunReport
    issue_log: IssueLog
    release: Optional[str] = None
    archive: Optional[str] = None
    tables: Dict[str, pl.DataFrame] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def family_success(self) -> Dict[str, bool]:
        return {name: result.succeeded for name, result in self.families.items()}


def _rows_of(output: Any) -> Optional[int]:
    """Row count of a stage's primary output"""
    if isinstance(output, pl.DataFrame):
        return output.height
    if isinstance(output, dict):
        primary = next(iter(output.values()), None)
        return primary.height if isinstance(primary, pl.DataFrame) else None
    return None


class Orchestrator:
    """
    Async coordinator of one warehouse rebuild.

    Example:
        orchestrator = Orchestrator("./data/raw", target="./data/warehouse", run_id="2024-06-01")
        result = await orchestrator.run()
        result.family_success  # {"customer": True, "product": True, "sales": True}
    """

    def __init__(
        self,
        raw_store: Union[str, RawStore, None] = None,
        target: Union[str, WarehouseTarget, None] = None,
        run_id: Optional[str] = None,
        settings: Optional[Settings] = None,
        run_date: Optional[date] = None,
    ):
        self.settings = settings or get_settings()
        self.raw_store = open_raw_store(raw_store, self.settings)
        if isinstance(target, WarehouseTarget):
            self.target = target
        else:
            warehouse = self.settings.warehouse
            self.target = WarehouseTarget(
                target if target is not None else warehouse.output_path,
                keep_releases=warehouse.keep_releases,
                lock_filename=warehouse.lock_filename,
            )
        self.run_id = run_id or uuid.uuid4().hex
        self.run_date = run_date or date.today()
        self.issue_log = IssueLog(self.run_id)

        self._cancel_event = threading.Event()
        self._registries: Dict[str, SurrogateKeyRegistry] = {}
        self._dimensions: Dict[EntityFamily, asyncio.Future] = {}

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next stage boundary"""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested", run_id=self.run_id)
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # =========================================================================
    # STAGE BOUNDARY
    # =========================================================================

    async def _run_stage(
        self,
        family: FamilyResult,
        stage: Stage,
        body: Callable[..., Any],
        *args: Any,
    ) -> Tuple[bool, Any]:
        """
        Run one stage body on a worker thread and record its outcome.

        The body receives a stage-local IssueLog as first argument; its issues
        are merged into the run log whatever the outcome.

        Returns:
            (succeeded, output) where output is None unless succeeded
        """
        started_at = datetime.now(timezone.utc)
        if self.cancelled:
            exc = RunCancelled(f"Run cancelled before stage {stage.value}")
            result = StageResult(
                family.family, stage.value, StageStatus.CANCELLED, started_at,
                error_kind=classify(exc), error_detail=str(exc),
            )
            observe_stage(result, ())
            return family.add(result), None

        stage_log = IssueLog(self.run_id)
        clock = time.perf_counter()
        with structlog.contextvars.bound_contextvars(stage=stage.value):
            logger.info(f"Stage {stage.value} started")
            try:
                output = await asyncio.to_thread(body, stage_log, *args)
                result = StageResult(family.family, stage.value, StageStatus.SUCCEEDED, started_at,
                                     rows_out=_rows_of(output))
            except Exception as exc:
                output = None
                kind = classify(exc)
                if isinstance(exc, StructuralError):
                    stage_log.record(stage, exc.table, None, "missing_structure", Severity.FATAL, str(exc))
                elif isinstance(exc, InvariantViolation):
                    stage_log.record(stage, family.family, None, "invariant_violation", Severity.FATAL, str(exc))
                result = StageResult(
                    family.family, stage.value, StageStatus.FAILED, started_at,
                    error_kind=kind, error_detail=f"{type(exc).__name__}: {exc}",
                )
                logger.error(
                    f"Stage {stage.value} failed",
                    error_kind=kind.value,
                    error=str(exc),
                    exc_info=kind == ErrorKind.UNEXPECTED,
                )

            result.duration_seconds = time.perf_counter() - clock
            result.issue_count = len(stage_log)
            self.issue_log.extend(stage_log.issues)
            observe_stage(result, stage_log.issues)
            if result.ok:
                logger.info(
                    f"Stage {stage.value} completed",
                    rows=result.rows_out,
                    issues=result.issue_count,
                    duration_seconds=round(result.duration_seconds, 3),
                )

        return family.add(result), output

    def _gate(self, validator: DataValidator, df: pl.DataFrame, issue_log: IssueLog) -> pl.DataFrame:
        """Validate a stage output; fatal issues halt the stage when configured"""
        if self.settings.quality.fail_on_fatal:
            validator.enforce(df, issue_log)
        else:
            validator.validate(df, issue_log)
        return df

    # =========================================================================
    # SHARED STAGE HELPERS
    # =========================================================================

    def _cleaner(self, issue_log: IssueLog) -> DataCleaner:
        quality = self.settings.quality
        return DataCleaner(
            issue_log,
            run_date=self.run_date,
            min_valid_date=quality.min_valid_date,
            max_valid_date=quality.max_valid_date,
            max_issues_per_check=quality.max_issues_per_check,
        )

    def _cleanse(self, cleaner: DataCleaner, table: SourceTable) -> Optional[pl.DataFrame]:
        """Read and cleanse one raw table; absent enrichment tables yield None"""
        if table.enrichment and not self.raw_store.has(table.name):
            logger.warning(f"Enrichment table {table.name} not in raw store")
            return None
        cleansed = cleaner.clean(table.name, self.raw_store.read(table.name))
        validator = DataValidator(table.name, Stage.CLEANSE).add_required_columns_check(
            [CLEANSED_KEYS[table.name], SOURCE_ROW]
        )
        return self._gate(validator, cleansed, cleaner.issue_log)

    def _deduplicate(
        self,
        issue_log: IssueLog,
        df: Optional[pl.DataFrame],
        entity: str,
        key_columns: List[str],
        recency: Optional[List[str]] = None,
        nullable_keys: Tuple[str, ...] = (),
    ) -> Optional[pl.DataFrame]:
        if df is None:
            return None
        deduped = Deduplicator(
            entity, key_columns, recency=recency, issue_log=issue_log, nullable_keys=nullable_keys
        ).deduplicate(df)
        validator = create_deduplicated_validator(
            entity, key_columns, stage=Stage.DEDUPLICATE,
            max_issues_per_check=self.settings.quality.max_issues_per_check,
        )
        return self._gate(validator, deduped, issue_log)

    def _assembler(self, issue_log: IssueLog) -> DimensionalAssembler:
        return DimensionalAssembler(
            issue_log,
            registries=self._registries,
            max_issues_per_rule=self.settings.quality.max_issues_per_check,
        )

    def _rule_engine(self, issue_log: IssueLog) -> BusinessRuleEngine:
        quality = self.settings.quality
        return BusinessRuleEngine(
            issue_log,
            amount_tolerance=quality.amount_tolerance,
            max_issues_per_rule=quality.max_issues_per_check,
        )

    # =========================================================================
    # CUSTOMER FAMILY
    # =========================================================================

    def _cleanse_customers(self, issue_log: IssueLog) -> Frames:
        cleaner = self._cleaner(issue_log)
        return {t.name: self._cleanse(cleaner, t) for t in (CRM_CUSTOMERS, ERP_CUSTOMERS, ERP_LOCATIONS)}

    def _deduplicate_customers(self, issue_log: IssueLog, frames: Frames) -> Frames:
        return {
            CRM_CUSTOMERS.name: self._deduplicate(
                issue_log, frames[CRM_CUSTOMERS.name], CRM_CUSTOMERS.name, ["customer_id"], recency=["create_date"]
            ),
            ERP_CUSTOMERS.name: self._deduplicate(
                issue_log, frames[ERP_CUSTOMERS.name], ERP_CUSTOMERS.name, ["customer_number"]
            ),
            ERP_LOCATIONS.name: self._deduplicate(
                issue_log, frames[ERP_LOCATIONS.name], ERP_LOCATIONS.name, ["customer_number"]
            ),
        }

    def _reconcile_customers(self, issue_log: IssueLog, frames: Frames) -> pl.DataFrame:
        reconciler = Reconciler(
            "customer",
            join_key="customer_number",
            rules=[AttributeRule("gender", "gender", "gender_erp")],
            required=["customer_number", "first_name", "last_name"],
            key_column="customer_id",
            issue_log=issue_log,
        )
        customers = reconciler.reconcile(
            frames[CRM_CUSTOMERS.name],
            [
                EnrichmentSource(
                    ERP_CUSTOMERS.name, frames[ERP_CUSTOMERS.name], "customer_number", ["birthdate", "gender"], "_erp"
                ),
                EnrichmentSource(ERP_LOCATIONS.name, frames[ERP_LOCATIONS.name], "customer_number", ["country"]),
            ],
        )
        validator = create_deduplicated_validator(
            "customer", ["customer_id"], stage=Stage.RECONCILE,
            max_issues_per_check=self.settings.quality.max_issues_per_check,
        )
        return self._gate(validator, customers, issue_log)

    def _assemble_customers(self, issue_log: IssueLog, customers: pl.DataFrame) -> pl.DataFrame:
        dim = self._assembler(issue_log).build_dim_customers(customers)
        validator = create_dim_customers_validator(self.settings.quality.max_issues_per_check)
        return self._gate(validator, dim, issue_log)

    async def _customer_chain(self, family: FamilyResult) -> None:
        ok, cleansed = await self._run_stage(family, Stage.CLEANSE, self._cleanse_customers)
        if not ok:
            return
        ok, deduped = await self._run_stage(family, Stage.DEDUPLICATE, self._deduplicate_customers, cleansed)
        if not ok:
            return
        ok, customers = await self._run_stage(family, Stage.RECONCILE, self._reconcile_customers, deduped)
        if not ok:
            return
        ok, dim = await self._run_stage(family, Stage.ASSEMBLE, self._assemble_customers, customers)
        if not ok:
            return
        family.tables[DIM_CUSTOMERS] = dim
        self._dimensions[EntityFamily.CUSTOMER].set_result(dim)

    # =========================================================================
    # PRODUCT FAMILY
    # =========================================================================

    def _cleanse_products(self, issue_log: IssueLog) -> Frames:
        cleaner = self._cleaner(issue_log)
        return {t.name: self._cleanse(cleaner, t) for t in (CRM_PRODUCTS, ERP_CATEGORIES)}

    def _deduplicate_products(self, issue_log: IssueLog, frames: Frames) -> Frames:
        return {
            CRM_PRODUCTS.name: self._deduplicate(
                issue_log, frames[CRM_PRODUCTS.name], CRM_PRODUCTS.name,
                ["product_key_raw", "start_date"], nullable_keys=("start_date",),
            ),
            ERP_CATEGORIES.name: self._deduplicate(
                issue_log, frames[ERP_CATEGORIES.name], ERP_CATEGORIES.name, ["category_id"]
            ),
        }

    def _apply_product_rules(self, issue_log: IssueLog, frames: Frames) -> Frames:
        versions, current = self._rule_engine(issue_log).apply_product_rules(frames[CRM_PRODUCTS.name])
        max_issues = self.settings.quality.max_issues_per_check
        self._gate(create_product_versions_validator(max_issues), versions, issue_log)
        current_validator = DataValidator(
            CRM_PRODUCTS.name, Stage.BUSINESS_RULES, key_columns=["product_number"], max_issues_per_check=max_issues
        ).add_unique_check("product_number")
        self._gate(current_validator, current, issue_log)
        return {"current": current, "versions": versions, ERP_CATEGORIES.name: frames[ERP_CATEGORIES.name]}

    def _assemble_products(self, issue_log: IssueLog, frames: Frames) -> pl.DataFrame:
        dim = self._assembler(issue_log).build_dim_products(frames["current"], frames[ERP_CATEGORIES.name])
        validator = create_dim_products_validator(self.settings.quality.max_issues_per_check)
        return self._gate(validator, dim, issue_log)

    async def _product_chain(self, family: FamilyResult) -> None:
        ok, cleansed = await self._run_stage(family, Stage.CLEANSE, self._cleanse_products)
        if not ok:
            return
        ok, deduped = await self._run_stage(family, Stage.DEDUPLICATE, self._deduplicate_products, cleansed)
        if not ok:
            return
        ok, products = await self._run_stage(family, Stage.BUSINESS_RULES, self._apply_product_rules, deduped)
        if not ok:
            return
        ok, dim = await self._run_stage(family, Stage.ASSEMBLE, self._assemble_products, products)
        if not ok:
            return
        family.tables[DIM_PRODUCTS] = dim
        self._dimensions[EntityFamily.PRODUCT].set_result(dim)

    # =========================================================================
    # SALES FAMILY
    # =========================================================================

    def _cleanse_sales(self, issue_log: IssueLog) -> pl.DataFrame:
        return self._cleanse(self._cleaner(issue_log), CRM_SALES)

    def _reconcile_measures(self, issue_log: IssueLog, sales: pl.DataFrame) -> pl.DataFrame:
        reconciled = self._rule_engine(issue_log).reconcile_measures(sales)
        quality = self.settings.quality
        validator = create_sales_lines_validator(quality.amount_tolerance, quality.max_issues_per_check)
        return self._gate(validator, reconciled, issue_log)

    def _assemble_facts(
        self,
        issue_log: IssueLog,
        sales: pl.DataFrame,
        dim_customers: pl.DataFrame,
        dim_products: pl.DataFrame,
    ) -> pl.DataFrame:
        fact = self._assembler(issue_log).build_fact_sales(sales, dim_customers, dim_products)
        validator = create_fact_sales_validator(
            dim_customers["customer_key"].to_list(),
            dim_products["product_key"].to_list(),
            UNRESOLVED_KEY,
            self.settings.quality.max_issues_per_check,
        )
        return self._gate(validator, fact, issue_log)

    async def _await_dimensions(self, family: FamilyResult) -> Optional[Tuple[pl.DataFrame, pl.DataFrame]]:
        """Barrier on both dimension chains; records a skipped assemble stage on upstream failure"""
        dim_customers, dim_products = await asyncio.gather(
            self._dimensions[EntityFamily.CUSTOMER], self._dimensions[EntityFamily.PRODUCT]
        )
        if dim_customers is not None and dim_products is not None:
            return dim_customers, dim_products

        missing = [
            name for name, dim in ((DIM_CUSTOMERS, dim_customers), (DIM_PRODUCTS, dim_products)) if dim is None
        ]
        if self.cancelled:
            status, kind = StageStatus.CANCELLED, ErrorKind.CANCELLED
        else:
            status, kind = StageStatus.SKIPPED, ErrorKind.UPSTREAM
        result = StageResult(
            family.family, Stage.ASSEMBLE.value, status, datetime.now(timezone.utc),
            error_kind=kind, error_detail=f"Upstream dimension(s) unavailable: {', '.join(missing)}",
        )
        observe_stage(result, ())
        family.add(result)
        logger.warning("Sales assembly skipped", missing_dimensions=missing)
        return None

    async def _sales_chain(self, family: FamilyResult) -> None:
        ok, cleansed = await self._run_stage(family, Stage.CLEANSE, self._cleanse_sales)
        if not ok:
            return
        ok, sales = await self._run_stage(family, Stage.BUSINESS_RULES, self._reconcile_measures, cleansed)
        if not ok:
            return
        dims = await self._await_dimensions(family)
        if dims is None:
            return
        ok, fact = await self._run_stage(family, Stage.ASSEMBLE, self._assemble_facts, sales, *dims)
        if not ok:
            return
        family.tables[FACT_SALES] = fact

    # =========================================================================
    # RUN
    # =========================================================================

    async def _run_family(
        self,
        family: EntityFamily,
        chain: Callable[[FamilyResult], Awaitable[None]],
    ) -> FamilyResult:
        result = FamilyResult(family.value)
        with structlog.contextvars.bound_contextvars(family=family.value):
            try:
                await chain(result)
            finally:
                barrier = self._dimensions.get(family)
                if barrier is not None and not barrier.done():
                    barrier.set_result(None)
            logger.info(
                f"Family {family.value} finished",
                status=result.status.value,
                duration_seconds=round(result.duration_seconds, 3),
            )
        return result

    def _load_registries(self) -> None:
        self._registries = {}
        if not self.settings.warehouse.stable_surrogate_keys:
            return
        for entity in (DIM_CUSTOMERS, DIM_PRODUCTS):
            self._registries[entity] = SurrogateKeyRegistry(entity, self.target.load_registry(entity))

    def _status(self, families: List[FamilyResult]) -> RunStatus:
        if self.cancelled or any(f.status == StageStatus.CANCELLED for f in families):
            return RunStatus.CANCELLED
        if all(f.succeeded for f in families):
            return RunStatus.SUCCEEDED
        return RunStatus.FAILED

    def _write_release(self, staged: StagedRelease, families: List[FamilyResult], report: RunReport) -> None:
        for family in families:
            for table, df in family.tables.items():
                staged.write_table(table, df)
        for entity, registry in self._registries.items():
            staged.write_registry(entity, registry.snapshot)
        self._write_run_record(staged, report)

    def _write_run_record(self, staged: StagedRelease, report: RunReport) -> None:
        staged.write_table(QUALITY_ISSUES, self.issue_log.to_frame())
        staged.write_json(RUN_REPORT, report.model_dump_json(indent=2))

    async def run(self) -> PipelineRunResult:
        """
        Execute all family chains and publish when every family succeeded.

        Raises:
            ConcurrentRunError: another run holds the target lock
        """
        started_at = datetime.now(timezone.utc)
        lock = self.target.lock(self.run_id)
        lock.acquire()
        staged: Optional[StagedRelease] = None
        published: Optional[str] = None
        archive: Optional[str] = None

        with structlog.contextvars.bound_contextvars(run_id=self.run_id):
            logger.info("Pipeline run started", target=str(self.target.root))
            try:
                self._load_registries()
                staged = self.target.stage(self.run_id)
                loop = asyncio.get_running_loop()
                self._dimensions = {
                    EntityFamily.CUSTOMER: loop.create_future(),
                    EntityFamily.PRODUCT: loop.create_future(),
                }

                families = list(await asyncio.gather(
                    self._run_family(EntityFamily.CUSTOMER, self._customer_chain),
                    self._run_family(EntityFamily.PRODUCT, self._product_chain),
                    self._run_family(EntityFamily.SALES, self._sales_chain),
                ))
                status = self._status(families)
                report = RunReport.build(
                    self.run_id,
                    status,
                    started_at,
                    datetime.now(timezone.utc),
                    families,
                    self.issue_log,
                    release=staged.name if status == RunStatus.SUCCEEDED else None,
                )
                if status == RunStatus.SUCCEEDED:
                    self._write_release(staged, families, report)
                    published = self.target.publish(staged)
                else:
                    self._write_run_record(staged, report)
                    archive = str(self.target.archive_failed(staged))
            finally:
                if staged is not None and published is None and archive is None:
                    self.target.discard(staged)
                lock.release()

            tables = {name: df for family in families for name, df in family.tables.items()}
            observe_run(status.value, tables, published is not None)
            monitoring = self.settings.monitoring
            push_metrics(monitoring.pushgateway_url, monitoring.metrics_job)

            logger.info(
                "Pipeline run complete",
                status=status.value,
                release=published,
                archive=archive,
                duration_seconds=report.duration_seconds,
                families=report.family_status(),
                issues=report.issue_totals,
            )

        return PipelineRunResult(
            run_id=self.run_id,
            status=status,
            families={f.family: f for f in families},
            report=report,
            issue_log=self.issue_log,
            release=published,
            archive=archive,
            tables=tables,
        )


def run_pipeline(
    raw_store: Union[str, RawStore, None] = None,
    run_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    target: Union[str, WarehouseTarget, None] = None,
    run_date: Optional[date] = None,
) -> PipelineRunResult:
    """
    Synchronous entry point for one warehouse rebuild.

    Args:
        raw_store: Raw Store directory or instance, configured default when None
        run_id: Run identifier, generated when None
        settings: Settings override
        target: Target root or instance, configured default when None
        run_date: Reference date for date plausibility checks

    Returns:
        PipelineRunResult with per-family success, report and tables
    """
    orchestrator = Orchestrator(raw_store, target=target, run_id=run_id, settings=settings, run_date=run_date)
    return asyncio.run(orchestrator.run())
