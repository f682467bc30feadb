"""
Vertical ray queries against a collection of trimesh meshes.

Each query point is an XY position; a ray is cast straight up (+Z) from
below every mesh and each surface crossing is reported as ``(z, is_bottom)``.
A crossing through a downward-facing triangle enters solid (bottom), one
through an upward-facing triangle leaves it (top).
"""

from __future__ import annotations

import logging
import threading
from typing import List, Protocol, Sequence, Tuple

import numpy as np
import trimesh

logger = logging.getLogger(__name__)

Crossing = Tuple[float, bool]

UP = np.array([0.0, 0.0, 1.0])


class RayQuery(Protocol):
    """Anything that can report Z crossings for a batch of XY points."""

    def prepare(self) -> None:
        ...

    def crossings(self, points: np.ndarray) -> List[List[Crossing]]:
        ...


class MeshRayQuery:
    """Ray query over a fixed list of meshes.

    Meshes must not be modified while queries run. rtree does not promise
    thread-safe queries, so each querying thread casts against its own copy
    of the meshes, with its own ``triangles_tree`` and intersector.
    """

    def __init__(
        self,
        meshes: Sequence[trimesh.Trimesh],
        parallel_epsilon: float = 1e-9,
        edge_merge_mm: float = 1e-6,
    ):
        self.meshes = [m for m in meshes if len(m.faces) > 0]
        self.parallel_epsilon = parallel_epsilon
        self.edge_merge_mm = edge_merge_mm
        self._local = threading.local()

    def prepare(self) -> None:
        for mesh in self.meshes:
            _ = mesh.face_normals
            _ = mesh.bounds
        logger.debug("Prepared ray query over %d meshes", len(self.meshes))

    def _thread_meshes(self) -> List[trimesh.Trimesh]:
        meshes = getattr(self._local, "meshes", None)
        if meshes is None:
            meshes = [mesh.copy() for mesh in self.meshes]
            self._local.meshes = meshes
            logger.debug(
                "Built ray intersectors for %s", threading.current_thread().name
            )
        return meshes

    def crossings(self, points: np.ndarray) -> List[List[Crossing]]:
        """Unordered crossings for each XY point, across all meshes."""
        points = np.asarray(points, dtype=float).reshape(-1, 2)
        result: List[List[Crossing]] = [[] for _ in range(len(points))]
        if len(points) == 0:
            return result

        for mesh in self._thread_meshes():
            for ray, z, is_bottom in self._mesh_crossings(mesh, points):
                result[ray].append((z, is_bottom))
        return result

    def _mesh_crossings(
        self, mesh: trimesh.Trimesh, points: np.ndarray
    ) -> List[Tuple[int, float, bool]]:
        start_z = float(mesh.bounds[0][2]) - 1.0
        origins = np.column_stack([points, np.full(len(points), start_z)])
        directions = np.tile(UP, (len(points), 1))

        locations, index_ray, index_tri = mesh.ray.intersects_location(
            ray_origins=origins,
            ray_directions=directions,
            multiple_hits=True,
        )
        if len(locations) == 0:
            return []

        normal_z = mesh.face_normals[index_tri][:, 2]
        keep = np.abs(normal_z) > self.parallel_epsilon
        rays = index_ray[keep]
        zs = locations[keep][:, 2]
        bottoms = normal_z[keep] < 0.0

        # A ray through an edge shared by two triangles of one mesh hits both.
        order = np.lexsort((zs, bottoms, rays))
        hits: List[Tuple[int, float, bool]] = []
        for k in order:
            ray, z, is_bottom = int(rays[k]), float(zs[k]), bool(bottoms[k])
            if hits:
                prev_ray, prev_z, prev_bottom = hits[-1]
                if (
                    prev_ray == ray
                    and prev_bottom == is_bottom
                    and abs(prev_z - z) <= self.edge_merge_mm
                ):
                    continue
            hits.append((ray, z, is_bottom))
        return hits
