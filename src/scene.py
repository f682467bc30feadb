"""
Minimal scene of printable items.

Holds the meshes that are cast against when looking for overhangs and
receives the generated support bodies. Support bodies are tagged with
``OutputType.SUPPORT`` so they never trigger more support themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import numpy as np
import trimesh

logger = logging.getLogger(__name__)


class OutputType(Enum):
    """How an item is printed."""
    NORMAL = "normal"
    SUPPORT = "support"


@dataclass
class SceneItem:
    """A mesh placed on the build plate."""
    name: str
    mesh: trimesh.Trimesh
    output_type: OutputType = OutputType.NORMAL
    metadata: dict = field(default_factory=dict)

    @property
    def bounds(self) -> np.ndarray:
        """(2, 3) axis-aligned bounds of the item."""
        return np.asarray(self.mesh.bounds, dtype=float)


class Scene:
    """Ordered collection of scene items plus the current selection."""

    def __init__(self, items: Optional[Iterable[SceneItem]] = None):
        self._items: List[SceneItem] = list(items or [])
        self.selected: Optional[SceneItem] = None

    @property
    def items(self) -> List[SceneItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: SceneItem) -> SceneItem:
        self._items.append(item)
        return item

    def add_mesh(
        self,
        name: str,
        mesh: trimesh.Trimesh,
        output_type: OutputType = OutputType.NORMAL,
    ) -> SceneItem:
        return self.add(SceneItem(name=name, mesh=mesh, output_type=output_type))

    def printable_items(self) -> List[SceneItem]:
        """Normal items that should be supported; the selection is excluded."""
        return [
            item for item in self._items
            if item.output_type is OutputType.NORMAL and item is not self.selected
        ]

    def support_items(self) -> List[SceneItem]:
        return [i for i in self._items if i.output_type is OutputType.SUPPORT]

    def bounds(self, items: Optional[Iterable[SceneItem]] = None) -> Optional[np.ndarray]:
        """Combined (2, 3) bounds of *items* (default: printable items)."""
        if items is None:
            items = self.printable_items()
        all_bounds = [item.bounds for item in items if len(item.mesh.faces)]
        if not all_bounds:
            return None
        stacked = np.stack(all_bounds)
        return np.array([stacked[:, 0].min(axis=0), stacked[:, 1].max(axis=0)])

    def add_support(self, meshes: Iterable[trimesh.Trimesh]) -> List[SceneItem]:
        """Insert support bodies as new items tagged with ``OutputType.SUPPORT``."""
        start = len(self.support_items())
        added = [
            SceneItem(
                name=f"support_{start + n:04d}",
                mesh=mesh,
                output_type=OutputType.SUPPORT,
            )
            for n, mesh in enumerate(meshes)
        ]
        self._items.extend(added)
        logger.debug("Added %d support items to scene", len(added))
        return added

    def remove_support(self) -> int:
        """Drop every generated support item; returns how many were removed."""
        before = len(self._items)
        self._items = [i for i in self._items if i.output_type is not OutputType.SUPPORT]
        if self.selected is not None and self.selected not in self._items:
            self.selected = None
        return before - len(self._items)


def translated_box(
    extents: Tuple[float, float, float],
    bottom_z: float,
    center_xy: Tuple[float, float] = (0.0, 0.0),
) -> trimesh.Trimesh:
    """Box mesh with its bottom face at *bottom_z*."""
    mesh = trimesh.creation.box(extents=list(extents))
    mesh.apply_translation(
        [center_xy[0], center_xy[1], bottom_z - float(mesh.bounds[0][2])]
    )
    return mesh
