"""
Support generation: sample grid -> hit planes -> gaps -> support columns.

Rays are cast straight up through a grid of XY samples covering the
printable items. Each sample's crossings are simplified into solid spans and
walked for air gaps; gaps of neighbouring samples are then coalesced into
rectangular support columns and inserted into the scene.

The per-sample work runs on a thread pool. Results are only gathered after
every row has finished, and nothing touches the scene until synthesis is
complete, so a cancelled run leaves the scene exactly as it was.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from hit_planes import HitPlanes
from ray_query import MeshRayQuery, RayQuery
from scene import Scene, SceneItem
from support_columns import (
    SampleGap,
    SampleGrid,
    SupportColumn,
    SupportType,
    coalesce_gaps,
    column_above_bed,
    find_sample_gaps,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


class SupportGenerationError(Exception):
    """Base exception for support generation errors."""
    pass


class SupportConfigError(SupportGenerationError, ValueError):
    """Configuration rejected before the sweep starts."""
    pass


@dataclass
class SupportConfig:
    """Support generation settings."""

    support_type: SupportType = SupportType.FROM_BED
    pillar_size: float = 4.0  # sample grid cell size (mm)
    minimum_support_height: float = 0.05  # shorter gaps get no column
    tolerance: float = 0.05  # planes closer than this are the same surface
    max_workers: Optional[int] = None
    rows_per_task: int = 4
    remove_existing: bool = True

    def validate(self) -> None:
        if not self.tolerance > 0:
            raise SupportConfigError(f"tolerance must be > 0, got {self.tolerance}")
        if not self.pillar_size > 0:
            raise SupportConfigError(f"pillar_size must be > 0, got {self.pillar_size}")
        if self.minimum_support_height < 0:
            raise SupportConfigError(
                f"minimum_support_height must be >= 0, got {self.minimum_support_height}"
            )
        if self.rows_per_task < 1:
            raise SupportConfigError(f"rows_per_task must be >= 1, got {self.rows_per_task}")
        if self.max_workers is not None and self.max_workers < 1:
            raise SupportConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if not isinstance(self.support_type, SupportType):
            raise SupportConfigError(f"Unknown support type: {self.support_type!r}")


@dataclass
class SampleIssue:
    """A sample that could not be used for support."""

    code: str
    severity: str  # "error" or "warning"
    message: str
    ix: int = -1
    iy: int = -1


@dataclass
class SupportResult:
    status: str  # "ok" or "cancelled"
    columns: List[SupportColumn] = field(default_factory=list)
    issues: List[SampleIssue] = field(default_factory=list)
    sample_count: int = 0
    added_items: List[SceneItem] = field(default_factory=list)
    elapsed_s: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


class _Cancelled(Exception):
    pass


class SupportGenerator:
    """Generates support columns for every printable item of a scene.

    ``ray_query`` defaults to a :class:`MeshRayQuery` over the scene's
    printable items (normal output, selection excluded).
    """

    def __init__(
        self,
        scene: Scene,
        config: Optional[SupportConfig] = None,
        ray_query: Optional[RayQuery] = None,
    ):
        self.scene = scene
        self.config = config if config is not None else SupportConfig()
        self._ray_query = ray_query

    def create(
        self,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SupportResult:
        """Generate support and commit it to the scene."""
        started = time.perf_counter()
        try:
            columns, issues, sample_count = self._sweep(progress, cancel_event)
        except _Cancelled:
            logger.info("Support generation cancelled; scene left unchanged")
            return SupportResult(status="cancelled", elapsed_s=time.perf_counter() - started)

        if self.config.remove_existing:
            removed = self.scene.remove_support()
            if removed:
                logger.debug("Removed %d existing support items", removed)
        added = self.scene.add_support(column.to_mesh() for column in columns)
        _report(progress, 1.0, "Done")

        elapsed = time.perf_counter() - started
        logger.info(
            "Generated %d support columns from %d samples in %.2fs (%d issues)",
            len(columns), sample_count, elapsed, len(issues),
        )
        return SupportResult(
            status="ok",
            columns=columns,
            issues=issues,
            sample_count=sample_count,
            added_items=added,
            elapsed_s=elapsed,
        )

    def requires_support(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """True if :meth:`create` would add at least one column."""
        try:
            columns, _, _ = self._sweep(None, cancel_event)
        except _Cancelled:
            return False
        return bool(columns)

    # ─── Sweep ───────────────────────────────────────────────────────────

    def _sweep(
        self,
        progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[SupportColumn], List[SampleIssue], int]:
        config = self.config
        config.validate()

        items = self.scene.printable_items()
        bounds = self.scene.bounds(items)
        if bounds is None:
            logger.debug("No printable items; nothing to support")
            return [], [], 0

        grid = SampleGrid.from_bounds(bounds[0][:2], bounds[1][:2], config.pillar_size)
        query = self._ray_query
        if query is None:
            query = MeshRayQuery([item.mesh for item in items])
        query.prepare()
        logger.debug(
            "Sampling %d x %d grid (%d samples) over %d items",
            grid.nx, grid.ny, grid.sample_count, len(items),
        )

        gaps, issues = self._sample_rows(grid, query, progress, cancel_event)

        _check_cancel(cancel_event)
        _report(progress, 0.9, "Building support columns")
        columns = coalesce_gaps(gaps, grid, config.tolerance)
        _check_cancel(cancel_event)
        return columns, issues, grid.sample_count

    def _sample_rows(
        self,
        grid: SampleGrid,
        query: RayQuery,
        progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[SampleGap], List[SampleIssue]]:
        step = self.config.rows_per_task
        chunks = [range(start, min(start + step, grid.ny)) for start in range(0, grid.ny, step)]
        per_chunk: Dict[int, Tuple[List[SampleGap], List[SampleIssue]]] = {}

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self._sample_chunk, grid, query, rows, cancel_event): n
                for n, rows in enumerate(chunks)
            }
            try:
                for done, future in enumerate(concurrent.futures.as_completed(futures), start=1):
                    per_chunk[futures[future]] = future.result()
                    _report(progress, 0.9 * done / len(chunks), f"Sampled {done}/{len(chunks)} row groups")
            except _Cancelled:
                executor.shutdown(wait=True, cancel_futures=True)
                raise

        gaps: List[SampleGap] = []
        issues: List[SampleIssue] = []
        for n in range(len(chunks)):
            chunk_gaps, chunk_issues = per_chunk[n]
            gaps.extend(chunk_gaps)
            issues.extend(chunk_issues)
        return gaps, issues

    def _sample_chunk(
        self,
        grid: SampleGrid,
        query: RayQuery,
        rows: range,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[SampleGap], List[SampleIssue]]:
        config = self.config
        gaps: List[SampleGap] = []
        issues: List[SampleIssue] = []
        for iy in rows:
            _check_cancel(cancel_event)
            centers = grid.row_centers(iy)
            row_crossings = query.crossings(centers)
            for ix, crossings in enumerate(row_crossings):
                _check_cancel(cancel_event)
                planes = HitPlanes.from_crossings(config.tolerance, crossings).simplify()
                if len(planes) % 2:
                    x, y = centers[ix]
                    message = (
                        f"Ray at ({x:.3f}, {y:.3f}) ends inside solid "
                        f"({len(crossings)} crossings); sample skipped"
                    )
                    logger.warning("Sample (%d, %d): %s", ix, iy, message)
                    issues.append(
                        SampleIssue(
                            code="unclosed_ray",
                            severity="warning",
                            message=message,
                            ix=ix,
                            iy=iy,
                        )
                    )
                    continue
                gaps.extend(
                    find_sample_gaps(
                        column_above_bed(planes),
                        ix,
                        iy,
                        config.support_type,
                        config.minimum_support_height,
                    )
                )
        return gaps, issues


def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise _Cancelled()


def _report(progress: Optional[ProgressCallback], fraction: float, message: str) -> None:
    if progress is not None:
        progress(fraction, message)
