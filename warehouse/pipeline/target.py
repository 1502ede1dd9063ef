"""
Warehouse Target - Releases, Atomic Publish and Run Lock

Layout under the target root:
    releases/<release>/        one immutable directory per published run
    releases/<release>.staging work-in-progress output of the active run
    failed/<release>/          run report and issues of unpublished runs
    CURRENT                    name of the release readers should use
    .run.lock                  held by the active run

A release becomes visible only when CURRENT is replaced, so readers see
either the previous complete release or the new complete release.
"""

import json
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.errors import ConcurrentRunError

logger = structlog.get_logger(__name__)

CURRENT_POINTER = "CURRENT"
RELEASES_DIR = "releases"
FAILED_DIR = "failed"
REGISTRY_DIR = "registry"
STAGING_SUFFIX = ".staging"

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class RunLock:
    """
    Exclusive per-target run lock backed by an O_EXCL lock file.

    Example:
        with RunLock(target_root / ".run.lock", run_id="r1"):
            ...
    """

    def __init__(self, path: Union[str, Path], run_id: str):
        self.path = Path(path)
        self.run_id = run_id
        self._held = False

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            holder = self.holder()
            raise ConcurrentRunError(
                f"Target {self.path.parent} is locked by run {holder.get('run_id', 'unknown')}"
            ) from None

        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(
                {
                    "run_id": self.run_id,
                    "pid": os.getpid(),
                    "acquired_at": datetime.now(timezone.utc).isoformat(),
                },
                fh,
            )
        self._held = True
        logger.debug("Run lock acquired", path=str(self.path), run_id=self.run_id)

    def release(self) -> None:
        if not self._held:
            return
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("Run lock released", path=str(self.path), run_id=self.run_id)

    def holder(self) -> Dict[str, Any]:
        """Lock file contents, empty when unreadable"""
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class StagedRelease:
    """Output directory of one run before it is published"""

    def __init__(self, path: Path, name: str):
        self.path = path
        self.name = name

    def write_table(self, table: str, df: pl.DataFrame) -> Path:
        path = self.path / f"{table}.parquet"
        df.write_parquet(path)
        logger.debug(f"Staged {table}", rows=df.height, path=str(path))
        return path

    def write_json(self, name: str, payload: Union[str, Dict[str, Any]]) -> Path:
        path = self.path / f"{name}.json"
        text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
        path.write_text(text, encoding="utf-8")
        return path

    def write_registry(self, entity: str, snapshot: pl.DataFrame) -> Path:
        directory = self.path / REGISTRY_DIR
        directory.mkdir(exist_ok=True)
        path = directory / f"{entity}.parquet"
        snapshot.write_parquet(path)
        return path

    def files(self) -> List[str]:
        return sorted(str(p.relative_to(self.path)) for p in self.path.rglob("*") if p.is_file())


class WarehouseTarget:
    """
    File-based dimensional target with release swapping.

    Example:
        target = WarehouseTarget("./data/warehouse")
        staged = target.stage("run-42")
        staged.write_table("dim_customers", dim_customers)
        target.publish(staged)
        target.read("dim_customers")
    """

    def __init__(
        self,
        root: Union[str, Path, None] = None,
        keep_releases: Optional[int] = None,
        lock_filename: Optional[str] = None,
    ):
        settings = get_settings().warehouse
        self.root = Path(root if root is not None else settings.output_path)
        self.keep_releases = keep_releases or settings.keep_releases
        self.lock_filename = lock_filename or settings.lock_filename
        self.releases_dir = self.root / RELEASES_DIR
        self.failed_dir = self.root / FAILED_DIR
        self.pointer = self.root / CURRENT_POINTER

    # =========================================================================
    # LOCKING
    # =========================================================================

    def lock(self, run_id: str) -> RunLock:
        return RunLock(self.root / self.lock_filename, run_id)

    # =========================================================================
    # READING
    # =========================================================================

    def current_release(self) -> Optional[str]:
        """Name of the published release, None before the first publish"""
        if not self.pointer.is_file():
            return None
        name = self.pointer.read_text(encoding="utf-8").strip()
        return name or None

    def release_path(self, release: Optional[str] = None) -> Optional[Path]:
        name = release or self.current_release()
        return self.releases_dir / name if name else None

    def read(self, table: str, release: Optional[str] = None) -> pl.DataFrame:
        """
        Read a table from the published (or a named) release.

        Raises:
            FileNotFoundError: nothing published yet or table absent
        """
        path = self.release_path(release)
        if path is None:
            raise FileNotFoundError(f"No release published under {self.root}")
        return pl.read_parquet(path / f"{table}.parquet")

    def read_json(self, name: str, release: Optional[str] = None) -> Dict[str, Any]:
        path = self.release_path(release)
        if path is None:
            raise FileNotFoundError(f"No release published under {self.root}")
        return json.loads((path / f"{name}.json").read_text(encoding="utf-8"))

    def load_registry(self, entity: str) -> Optional[pl.DataFrame]:
        """Key registry snapshot of the published release"""
        path = self.release_path()
        if path is None:
            return None
        registry = path / REGISTRY_DIR / f"{entity}.parquet"
        return pl.read_parquet(registry) if registry.is_file() else None

    def releases(self) -> List[str]:
        """Published release names, oldest first"""
        if not self.releases_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.releases_dir.iterdir()
            if p.is_dir() and not p.name.endswith(STAGING_SUFFIX)
        )

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def stage(self, run_id: str) -> StagedRelease:
        """Create an empty staging release for a run"""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        name = f"{stamp}-{_UNSAFE.sub('_', run_id)}"
        path = self.releases_dir / f"{name}{STAGING_SUFFIX}"
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
        logger.debug("Staging release created", release=name, path=str(path))
        return StagedRelease(path, name)

    def discard(self, staged: StagedRelease) -> None:
        if staged.path.exists():
            shutil.rmtree(staged.path)
            logger.info("Staging release discarded", release=staged.name)

    def failed_runs(self) -> List[str]:
        """Archived unpublished runs, oldest first"""
        if not self.failed_dir.is_dir():
            return []
        return sorted(p.name for p in self.failed_dir.iterdir() if p.is_dir())

    def archive_failed(self, staged: StagedRelease) -> Path:
        """
        Move an unpublished staging release under failed/.

        CURRENT is left untouched. Only the newest ``keep_releases`` archives
        are retained.
        """
        self.failed_dir.mkdir(parents=True, exist_ok=True)
        final = self.failed_dir / staged.name
        os.replace(staged.path, final)
        staged.path = final
        logger.warning("Unpublished run archived", release=staged.name, path=str(final))

        for name in self.failed_runs()[:-self.keep_releases]:
            shutil.rmtree(self.failed_dir / name, ignore_errors=True)
        return final

    def publish(self, staged: StagedRelease) -> str:
        """
        Make a staged release the current one.

        The staging directory is renamed into place, then the CURRENT pointer
        is swapped with an atomic replace.
        """
        final = self.releases_dir / staged.name
        os.replace(staged.path, final)
        staged.path = final

        tmp = self.root / f"{CURRENT_POINTER}.{staged.name}.tmp"
        tmp.write_text(staged.name, encoding="utf-8")
        os.replace(tmp, self.pointer)

        logger.info("Release published", release=staged.name, path=str(final))
        self.prune()
        return staged.name

    def prune(self) -> List[str]:
        """Remove releases beyond the retention count, never the current one"""
        current = self.current_release()
        releases = self.releases()
        removable = [r for r in releases[:-self.keep_releases] if r != current]
        for name in removable:
            shutil.rmtree(self.releases_dir / name, ignore_errors=True)
        for leftover in self.releases_dir.glob(f"*{STAGING_SUFFIX}"):
            logger.warning("Stale staging release found", path=str(leftover))
        if removable:
            logger.info("Pruned releases", removed=removable)
        return removable
