"""
Pipeline Orchestration Module
"""
from .orchestrator import Orchestrator, PipelineRunResult, run_pipeline
from .report import RunReport, RunStatus
from .target import RunLock, WarehouseTarget

__all__ = [
    "Orchestrator",
    "PipelineRunResult",
    "run_pipeline",
    "RunReport",
    "RunStatus",
    "RunLock",
    "WarehouseTarget",
]
