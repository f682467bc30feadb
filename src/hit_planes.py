"""
Hit planes: ordered Z crossings of a vertical ray through printed solids.

A vertical ray cast upward through the scene crosses mesh surfaces at a
series of Z heights. Each crossing is a "bottom" (solid starts) or a "top"
(solid ends). This module keeps those crossings in order, collapses noisy
and touching crossings into clean solid spans, merges two columns, and walks
the result to find the air gaps that need support.
"""

from __future__ import annotations

import bisect
import itertools
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HitPlane:
    """One crossing of a vertical ray with a mesh surface."""

    z: float
    is_bottom: bool  # True = solid begins looking upward


class HitPlanes:
    """Z-ascending sequence of hit planes for one sample column.

    Planes closer than ``tolerance`` are treated as the same physical surface.
    """

    def __init__(self, tolerance: float, planes: Iterable[HitPlane] = ()):
        self.tolerance = float(tolerance)
        self._planes: List[HitPlane] = []
        self._keys: List[float] = []
        for plane in planes:
            self.add(plane.z, plane.is_bottom)

    @classmethod
    def from_crossings(
        cls,
        tolerance: float,
        crossings: Iterable[Tuple[float, bool]],
    ) -> "HitPlanes":
        """Build a sequence from unordered ``(z, is_bottom)`` pairs."""
        planes = cls(tolerance)
        for z, is_bottom in crossings:
            planes.add(z, is_bottom)
        return planes

    def add(self, z: float, is_bottom: bool) -> None:
        """Insert a plane keeping Z order; equal Z values keep insertion order."""
        z = float(z)
        index = bisect.bisect_right(self._keys, z)
        self._keys.insert(index, z)
        self._planes.insert(index, HitPlane(z, bool(is_bottom)))

    def same_plane(self, z1: float, z2: float) -> bool:
        return abs(z1 - z2) <= self.tolerance

    def __len__(self) -> int:
        return len(self._planes)

    def __getitem__(self, index: int) -> HitPlane:
        return self._planes[index]

    def __iter__(self) -> Iterator[HitPlane]:
        return iter(self._planes)

    def __repr__(self) -> str:
        body = ", ".join(
            f"{'B' if p.is_bottom else 'T'}@{p.z:g}" for p in self._planes
        )
        return f"HitPlanes(tolerance={self.tolerance:g}, [{body}])"

    # ─── Simplify / merge ────────────────────────────────────────────────

    def simplify(self) -> "HitPlanes":
        """Return the minimal alternating bottom/top sequence of solid spans.

        Planes within the tolerance of a cluster's lowest plane form one
        cluster, swept in stored order. Each run of bottoms in a cluster is a
        single bottom at the cluster's lowest Z and each run of tops a single
        top at its highest Z, except that a run of tops may close nested
        solids, up to as many as were open when the cluster began. Spans
        separated by an air gap no larger than the tolerance are fused, and a
        span thinner than the tolerance collapses onto its bottom Z. If the
        ray never leaves solid the last bottom has no top and the result has
        odd length.
        """
        spans = _fuse_spans(_solid_spans(self._clusters()), self.tolerance)

        result = HitPlanes(self.tolerance)
        for bottom, top in spans:
            result.add(bottom, True)
            if top is None:
                continue
            if top - bottom < self.tolerance:
                top = bottom
            result.add(top, False)

        if len(result) % 2:
            logger.debug("Ray ends inside solid: %r", result)
        return result

    def _clusters(self) -> List[List[HitPlane]]:
        clusters: List[List[HitPlane]] = []
        for plane in self._planes:
            if clusters and self.same_plane(clusters[-1][0].z, plane.z):
                clusters[-1].append(plane)
            else:
                clusters.append([plane])
        return clusters

    def merge(self, other: "HitPlanes") -> "HitPlanes":
        """Return the simplified union of this sequence and *other*.

        The more permissive (larger) tolerance of the two is used.
        """
        merged = HitPlanes(max(self.tolerance, other.tolerance))
        for plane in self._planes:
            merged.add(plane.z, plane.is_bottom)
        for plane in other:
            merged.add(plane.z, plane.is_bottom)
        return merged.simplify()

    # ─── Gap walking ─────────────────────────────────────────────────────

    def get_next_top(self, start: int) -> int:
        """Index of the top that ends the next solid run, or -1.

        A top at ``start`` is the current position and is stepped over.
        Consecutive tops resolve to the highest one in the run.
        """
        count = len(self._planes)
        i = start
        if i < count and not self._planes[i].is_bottom:
            i += 1
        while i < count:
            if not self._planes[i].is_bottom:
                while i + 1 < count and not self._planes[i + 1].is_bottom:
                    i += 1
                return i
            i += 1
        return -1

    def get_next_bottom(self, start: int) -> int:
        """Index of the next bottom that resumes solid after an air gap, or -1.

        The bottom must directly follow a top at or after ``start`` and sit
        more than the tolerance above it; touching planes are not a gap.
        """
        count = len(self._planes)
        i = start
        while i < count:
            plane = self._planes[i]
            if not plane.is_bottom and i + 1 < count:
                above = self._planes[i + 1]
                if above.is_bottom and above.z - plane.z > self.tolerance:
                    return i + 1
            i += 1
        return -1


def _solid_spans(
    clusters: List[List[HitPlane]],
) -> List[Tuple[float, Optional[float]]]:
    spans: List[Tuple[float, Optional[float]]] = []
    depth = 0
    start = 0.0
    for cluster in clusters:
        low, high = cluster[0].z, cluster[-1].z
        open_before = depth
        for is_bottom, run in itertools.groupby(cluster, key=lambda p: p.is_bottom):
            if is_bottom:
                if depth == 0:
                    start = low
                depth += 1
                continue
            # tops at depth 0 close nothing (bed plane or duplicate hit)
            closing = min(len(list(run)), max(open_before, 1), depth)
            if closing:
                depth -= closing
                if depth == 0:
                    spans.append((start, high))

    if depth > 0:
        spans.append((start, None))
    return spans


def _fuse_spans(
    spans: List[Tuple[float, Optional[float]]],
    tolerance: float,
) -> List[Tuple[float, Optional[float]]]:
    fused: List[Tuple[float, Optional[float]]] = []
    for bottom, top in spans:
        if fused:
            prev_bottom, prev_top = fused[-1]
            if prev_top is not None and bottom - prev_top <= tolerance:
                if top is None or top > prev_top:
                    fused[-1] = (prev_bottom, top)
                continue
        fused.append((bottom, top))
    return fused
