"""
Shared test fixtures for support generation tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scene import Scene, translated_box
from support_columns import SupportType
from support_generator import SupportConfig


def cube_at(bottom_z: float, size: float = 20.0):
    """A size^3 cube centred on the Z axis with its bottom at *bottom_z*."""
    return translated_box((size, size, size), bottom_z)


def scene_of(*bottoms: float) -> Scene:
    """Scene with one 20mm cube per bottom height."""
    scene = Scene()
    for n, bottom in enumerate(bottoms):
        scene.add_mesh(f"cube_{n}", cube_at(bottom))
    return scene


@pytest.fixture
def floating_cube_scene():
    """A 20mm cube whose bottom is 15mm above the bed.

      _________
      |       |
      |_______|

    _____________
    """
    return scene_of(15.0)


@pytest.fixture
def from_bed_config():
    return SupportConfig(
        support_type=SupportType.FROM_BED,
        pillar_size=4.0,
        minimum_support_height=0.05,
        tolerance=0.05,
        max_workers=2,
        rows_per_task=1,
    )


@pytest.fixture
def everywhere_config():
    return SupportConfig(
        support_type=SupportType.EVERYWHERE,
        pillar_size=4.0,
        minimum_support_height=0.05,
        tolerance=0.05,
        max_workers=2,
        rows_per_task=1,
    )
