"""Tests for sample gaps, grid layout and column coalescing."""
import numpy as np
import pytest
from shapely.ops import unary_union

from hit_planes import HitPlane, HitPlanes
from support_columns import (
    SampleGap,
    SampleGrid,
    SupportColumn,
    SupportType,
    coalesce_gaps,
    column_above_bed,
    find_sample_gaps,
)


def _simplified(tolerance, *spans):
    planes = HitPlanes(tolerance)
    for bottom, top in spans:
        planes.add(bottom, True)
        planes.add(top, False)
    return planes.simplify()


class TestSampleGrid:

    def test_from_bounds_centres_cells(self):
        grid = SampleGrid.from_bounds((-10, -10), (10, 10), 4.0)
        assert (grid.nx, grid.ny) == (5, 5)
        centers = grid.row_centers(0)
        np.testing.assert_allclose(centers[:, 0], [-8, -4, 0, 4, 8])
        np.testing.assert_allclose(centers[:, 1], -8)

    def test_partial_cells_round_up(self):
        grid = SampleGrid.from_bounds((0, 0), (10, 3), 4.0)
        assert (grid.nx, grid.ny) == (3, 1)
        assert grid.sample_count == 3
        min_x, _, max_x, _ = grid.cell_bounds(0, 0, grid.nx - 1, 0)
        assert min_x == pytest.approx(-1.0)
        assert max_x == pytest.approx(11.0)

    def test_degenerate_bounds_give_one_cell(self):
        grid = SampleGrid.from_bounds((2, 2), (2, 2), 1.0)
        assert grid.sample_count == 1

    def test_bad_cell_size(self):
        with pytest.raises(ValueError):
            SampleGrid.from_bounds((0, 0), (1, 1), 0.0)


class TestColumnAboveBed:

    def test_prepends_bed_top(self):
        column = column_above_bed(_simplified(0.05, (15, 35)))
        assert column[0] == HitPlane(0.0, False)
        assert [p.z for p in column] == [0, 15, 35]

    def test_clips_solid_below_bed(self):
        column = column_above_bed(_simplified(0.05, (-5, 15)))
        assert [(p.z, p.is_bottom) for p in column] == [
            (0, False), (0, True), (15, False),
        ]

    def test_drops_solid_entirely_below_bed(self):
        column = column_above_bed(_simplified(0.05, (-10, -2), (5, 8)))
        assert [p.z for p in column] == [0, 5, 8]


class TestFindSampleGaps:

    def test_floating_cube_from_bed(self):
        column = column_above_bed(_simplified(0.05, (15, 35)))
        gaps = find_sample_gaps(column, 2, 3, SupportType.FROM_BED)
        assert gaps == [SampleGap(2, 3, 0.0, 15.0, True)]

    def test_cube_on_bed_needs_nothing(self):
        column = column_above_bed(_simplified(0.05, (0, 20)))
        assert find_sample_gaps(column, 0, 0, SupportType.EVERYWHERE) == []

    def test_from_bed_ignores_gap_above_part(self):
        column = column_above_bed(_simplified(0.05, (0, 20), (25, 45)))
        assert find_sample_gaps(column, 0, 0, SupportType.FROM_BED) == []

    def test_everywhere_finds_gap_above_part(self):
        column = column_above_bed(_simplified(0.05, (0, 20), (25, 45)))
        gaps = find_sample_gaps(column, 0, 0, SupportType.EVERYWHERE)
        assert gaps == [SampleGap(0, 0, 20.0, 25.0, False)]

    def test_everywhere_finds_every_gap(self):
        column = column_above_bed(_simplified(0.05, (5, 25), (30, 50), (60, 70)))
        gaps = find_sample_gaps(column, 0, 0, SupportType.EVERYWHERE)
        assert [(g.z_start, g.z_end, g.reaches_bed) for g in gaps] == [
            (0.0, 5.0, True), (25.0, 30.0, False), (50.0, 60.0, False),
        ]

    def test_from_bed_takes_only_first_gap(self):
        column = column_above_bed(_simplified(0.05, (5, 25), (30, 50)))
        gaps = find_sample_gaps(column, 0, 0, SupportType.FROM_BED)
        assert [(g.z_start, g.z_end) for g in gaps] == [(0.0, 5.0)]

    def test_short_gaps_are_ignored(self):
        column = column_above_bed(_simplified(0.05, (0.5, 10), (10.3, 20)))
        gaps = find_sample_gaps(
            column, 0, 0, SupportType.EVERYWHERE, minimum_support_height=1.0
        )
        assert gaps == []


class TestCoalesceGaps:

    def test_full_grid_becomes_one_column(self):
        grid = SampleGrid.from_bounds((-10, -10), (10, 10), 4.0)
        gaps = [
            SampleGap(ix, iy, 0.0, 15.0, True)
            for iy in range(grid.ny) for ix in range(grid.nx)
        ]
        columns = coalesce_gaps(gaps, grid, 0.05)
        assert len(columns) == 1
        column = columns[0]
        assert column.sample_count == 25
        assert (column.min_x, column.min_y) == pytest.approx((-10, -10))
        assert (column.max_x, column.max_y) == pytest.approx((10, 10))
        assert (column.z_start, column.z_end) == (0.0, 15.0)
        assert column.reaches_bed

    def test_different_heights_stay_apart(self):
        grid = SampleGrid(0.0, 0.0, 1.0, 4, 1)
        gaps = [
            SampleGap(0, 0, 0.0, 5.0, True),
            SampleGap(1, 0, 0.0, 5.02, True),
            SampleGap(2, 0, 0.0, 8.0, True),
            SampleGap(3, 0, 0.0, 8.0, True),
        ]
        columns = coalesce_gaps(gaps, grid, 0.05)
        assert sorted((c.sample_count, c.z_end) for c in columns) == [(2, 5.0), (2, 8.0)]

    def test_non_adjacent_cells_stay_apart(self):
        grid = SampleGrid(0.0, 0.0, 1.0, 3, 1)
        gaps = [SampleGap(0, 0, 0.0, 5.0, True), SampleGap(2, 0, 0.0, 5.0, True)]
        assert len(coalesce_gaps(gaps, grid, 0.05)) == 2

    def test_stacked_gaps_in_same_cells(self):
        grid = SampleGrid(0.0, 0.0, 1.0, 2, 2)
        gaps = []
        for iy in range(2):
            for ix in range(2):
                gaps.append(SampleGap(ix, iy, 0.0, 5.0, True))
                gaps.append(SampleGap(ix, iy, 25.0, 30.0, False))
        columns = coalesce_gaps(gaps, grid, 0.05)
        assert len(columns) == 2
        assert {c.reaches_bed for c in columns} == {True, False}

    def test_l_shape_covers_every_cell_once(self):
        grid = SampleGrid(0.0, 0.0, 1.0, 3, 3)
        cells = [(0, 0), (1, 0), (2, 0), (0, 1), (0, 2)]
        gaps = [SampleGap(ix, iy, 0.0, 4.0, True) for ix, iy in cells]
        columns = coalesce_gaps(gaps, grid, 0.05)

        assert sum(c.sample_count for c in columns) == len(cells)
        covered = unary_union([c.footprint for c in columns])
        assert covered.area == pytest.approx(len(cells))
        assert sum(c.footprint.area for c in columns) == pytest.approx(len(cells))

    def test_empty(self):
        grid = SampleGrid(0.0, 0.0, 1.0, 1, 1)
        assert coalesce_gaps([], grid, 0.05) == []


class TestSupportColumnMesh:

    def test_mesh_matches_bounds(self):
        column = SupportColumn(-2, -3, 2, 3, 0.0, 15.0, True)
        mesh = column.to_mesh()
        np.testing.assert_allclose(mesh.bounds, [[-2, -3, 0], [2, 3, 15]])
        assert mesh.is_watertight
        assert mesh.volume == pytest.approx(4 * 6 * 15)

    def test_footprint_and_height(self):
        column = SupportColumn(0, 0, 4, 2, 20.0, 25.0, False)
        assert column.height == pytest.approx(5.0)
        assert column.footprint.area == pytest.approx(8.0)
