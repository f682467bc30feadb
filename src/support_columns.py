"""
Support column synthesis.

Turns simplified per-sample hit planes into air gaps that need support,
then groups gaps from neighbouring grid cells into rectangular columns.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import trimesh
from shapely.geometry import Polygon, box

from hit_planes import HitPlanes

logger = logging.getLogger(__name__)

BED_Z = 0.0


class SupportType(Enum):
    """Where support columns may start."""
    FROM_BED = "from_bed"      # only gaps rooted on the build plate
    EVERYWHERE = "everywhere"  # any gap, including ones resting on the part


@dataclass(frozen=True)
class SampleGrid:
    """Regular XY grid of sample cells; rays are cast through cell centres."""

    origin_x: float
    origin_y: float
    cell_size: float
    nx: int
    ny: int

    @classmethod
    def from_bounds(
        cls,
        min_xy: Tuple[float, float],
        max_xy: Tuple[float, float],
        cell_size: float,
    ) -> "SampleGrid":
        """Cover the XY bounds with square cells, centred on the bounds."""
        if cell_size <= 0:
            raise ValueError(f"cell_size must be > 0, got {cell_size}")
        width = max(0.0, float(max_xy[0]) - float(min_xy[0]))
        depth = max(0.0, float(max_xy[1]) - float(min_xy[1]))
        nx = max(1, int(math.ceil(width / cell_size - 1e-9)))
        ny = max(1, int(math.ceil(depth / cell_size - 1e-9)))
        cx = (float(min_xy[0]) + float(max_xy[0])) / 2.0
        cy = (float(min_xy[1]) + float(max_xy[1])) / 2.0
        return cls(
            origin_x=cx - nx * cell_size / 2.0,
            origin_y=cy - ny * cell_size / 2.0,
            cell_size=float(cell_size),
            nx=nx,
            ny=ny,
        )

    @property
    def sample_count(self) -> int:
        return self.nx * self.ny

    def row_centers(self, iy: int) -> np.ndarray:
        """(nx, 2) array of cell centres for row *iy*."""
        xs = self.origin_x + (np.arange(self.nx, dtype=float) + 0.5) * self.cell_size
        ys = np.full(self.nx, self.origin_y + (iy + 0.5) * self.cell_size)
        return np.column_stack([xs, ys])

    def cell_bounds(
        self, ix0: int, iy0: int, ix1: int, iy1: int
    ) -> Tuple[float, float, float, float]:
        """XY bounds (min_x, min_y, max_x, max_y) of an inclusive cell range."""
        return (
            self.origin_x + ix0 * self.cell_size,
            self.origin_y + iy0 * self.cell_size,
            self.origin_x + (ix1 + 1) * self.cell_size,
            self.origin_y + (iy1 + 1) * self.cell_size,
        )


@dataclass(frozen=True)
class SampleGap:
    """A Z interval at one grid cell that must be filled with support."""

    ix: int
    iy: int
    z_start: float
    z_end: float
    reaches_bed: bool

    @property
    def height(self) -> float:
        return self.z_end - self.z_start


@dataclass(frozen=True)
class SupportColumn:
    """A rectangular block of support material."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float
    z_start: float
    z_end: float
    reaches_bed: bool
    sample_count: int = 1

    @property
    def height(self) -> float:
        return self.z_end - self.z_start

    @property
    def footprint(self) -> Polygon:
        return box(self.min_x, self.min_y, self.max_x, self.max_y)

    def to_mesh(self) -> trimesh.Trimesh:
        """Closed box mesh spanning exactly the column bounds."""
        return trimesh.creation.box(
            bounds=[
                [self.min_x, self.min_y, self.z_start],
                [self.max_x, self.max_y, self.z_end],
            ]
        )


def column_above_bed(planes: HitPlanes) -> HitPlanes:
    """Clip simplified spans to Z >= 0 and prepend the bed as a top plane.

    The bed acts as the top surface of an infinitely thick solid, so a gap
    between the bed and the first bottom is found like any other gap.
    """
    column = HitPlanes(planes.tolerance)
    column.add(BED_Z, False)
    for i in range(0, len(planes), 2):
        bottom = planes[i].z
        top = planes[i + 1].z if i + 1 < len(planes) else None
        if top is not None and top <= BED_Z:
            continue
        column.add(max(bottom, BED_Z), True)
        if top is not None:
            column.add(top, False)
    return column


def find_sample_gaps(
    column: HitPlanes,
    ix: int,
    iy: int,
    support_type: SupportType,
    minimum_support_height: float = 0.0,
) -> List[SampleGap]:
    """Walk a bed-rooted column and return the gaps that need support.

    *column* must start with the bed top plane (see :func:`column_above_bed`).
    """
    gaps: List[SampleGap] = []
    i = column.get_next_bottom(0)
    while i != -1:
        top = column[i - 1].z
        bottom = column[i].z
        reaches_bed = i == 1
        if support_type is SupportType.FROM_BED and not reaches_bed:
            break
        if bottom - top >= minimum_support_height:
            gaps.append(
                SampleGap(
                    ix=ix,
                    iy=iy,
                    z_start=BED_Z if reaches_bed else top,
                    z_end=bottom,
                    reaches_bed=reaches_bed,
                )
            )
        if support_type is SupportType.FROM_BED:
            break
        i = column.get_next_bottom(i)
    return gaps


def coalesce_gaps(
    gaps: Iterable[SampleGap],
    grid: SampleGrid,
    tolerance: float,
) -> List[SupportColumn]:
    """Group gaps of adjacent cells with matching Z spans into columns.

    Greedy rectangle growth: each unused gap seeds a run along +X, and the
    run is then extended row by row along +Y while every cell in the next row
    has a matching gap. Every covered cell keeps its own span within
    *tolerance*.
    """
    ordered = sorted(gaps, key=lambda g: (g.iy, g.ix, g.z_start))
    by_cell: Dict[Tuple[int, int], List[int]] = {}
    for index, gap in enumerate(ordered):
        by_cell.setdefault((gap.ix, gap.iy), []).append(index)

    used: Set[int] = set()
    columns: List[SupportColumn] = []

    for index, seed in enumerate(ordered):
        if index in used:
            continue
        used.add(index)

        x_end = seed.ix
        while True:
            match = _matching_gap(ordered, by_cell, (x_end + 1, seed.iy), seed, used, tolerance)
            if match is None:
                break
            used.add(match)
            x_end += 1

        y_end = seed.iy
        while True:
            row: List[int] = []
            for ix in range(seed.ix, x_end + 1):
                match = _matching_gap(
                    ordered, by_cell, (ix, y_end + 1), seed, used.union(row), tolerance
                )
                if match is None:
                    break
                row.append(match)
            if len(row) != x_end - seed.ix + 1:
                break
            used.update(row)
            y_end += 1

        min_x, min_y, max_x, max_y = grid.cell_bounds(seed.ix, seed.iy, x_end, y_end)
        columns.append(
            SupportColumn(
                min_x=min_x,
                min_y=min_y,
                max_x=max_x,
                max_y=max_y,
                z_start=seed.z_start,
                z_end=seed.z_end,
                reaches_bed=seed.reaches_bed,
                sample_count=(x_end - seed.ix + 1) * (y_end - seed.iy + 1),
            )
        )

    logger.debug("Coalesced %d gaps into %d columns", len(ordered), len(columns))
    return columns


def _matching_gap(
    ordered: List[SampleGap],
    by_cell: Dict[Tuple[int, int], List[int]],
    cell: Tuple[int, int],
    seed: SampleGap,
    used: Set[int],
    tolerance: float,
) -> Optional[int]:
    for index in by_cell.get(cell, ()):
        if index in used:
            continue
        gap = ordered[index]
        if (
            gap.reaches_bed == seed.reaches_bed
            and abs(gap.z_start - seed.z_start) <= tolerance
            and abs(gap.z_end - seed.z_end) <= tolerance
        ):
            return index
    return None
