import math

import numpy as np
import pytest

from scanmap2d.frame import Frame, Scan2d
from scanmap2d.occupancy_map import GridMethod, OccupancyMap
from scanmap2d.pose import SE2


def single_beam_scan(r):
    return Scan2d(angle_min=0.0, angle_max=0.0, angle_increment=0.01, range_min=0.1, range_max=20.0, ranges=[r])


@pytest.fixture
def stepped_scan():
    return Scan2d(
        angle_min=0.0,
        angle_max=0.5,
        angle_increment=0.1,
        range_min=0.1,
        range_max=10.0,
        ranges=[1.0, 1.2, 5.0, 5.1, 0.0, 2.0],
    )


def test_new_map_is_unknown():
    m = OccupancyMap()
    assert m.grid.shape == (1000, 1000)
    assert np.all(m.grid == 127)
    assert m.resolution == 20.0
    assert m.has_outside_points is False


def test_world_to_image():
    m = OccupancyMap()
    assert m.world_to_image((0.0, 0.0)) == (500, 500)
    assert m.world_to_image((1.0, 0.0)) == (520, 500)
    m.pose = SE2(1.0, 0.0, 0.0)
    assert m.world_to_image((1.0, 0.0)) == (500, 500)


def test_set_point_limits():
    m = OccupancyMap()
    for _ in range(30):
        m.set_point((10, 20), True)
    assert m.grid[20, 10] == 117
    for _ in range(30):
        m.set_point((30, 40), False)
    assert m.grid[40, 30] == 137


def test_set_point_outside():
    m = OccupancyMap()
    m.set_point((-1, 5), False)
    assert m.has_outside_points is False
    m.set_point((1000, 5), True)
    assert m.has_outside_points is True


def test_black_white_image():
    m = OccupancyMap()
    m.set_point((1, 1), True)
    m.set_point((2, 2), False)
    img = m.black_white_image()
    assert img.shape == (1000, 1000, 3)
    assert list(img[1, 1]) == [0, 0, 0]
    assert list(img[2, 2]) == [255, 255, 255]
    assert list(img[3, 3]) == [127, 127, 127]


def test_bresenham_excludes_ends():
    m = OccupancyMap()
    m.bresenham_filling((10, 10), (15, 10))
    assert m.grid[10, 10] == 127
    assert m.grid[10, 15] == 127
    assert all(m.grid[10, x] == 128 for x in range(11, 15))


def test_bresenham_diagonal_steps_both_axes():
    m = OccupancyMap()
    m.bresenham_filling((0, 0), (4, 4))
    assert [m.grid[i, i] for i in range(5)] == [127, 128, 128, 128, 127]


def test_find_range_interpolates(stepped_scan):
    m = OccupancyMap()
    assert m.find_range_in_angle(0.05, stepped_scan) == pytest.approx(1.1)
    assert m.find_range_in_angle(2 * math.pi + 0.05, stepped_scan) == pytest.approx(1.1)


def test_find_range_jump_picks_nearest(stepped_scan):
    m = OccupancyMap()
    assert m.find_range_in_angle(0.12, stepped_scan) == pytest.approx(1.2)
    assert m.find_range_in_angle(0.18, stepped_scan) == pytest.approx(5.0)


def test_find_range_invalid_neighbours(stepped_scan):
    m = OccupancyMap()
    assert m.find_range_in_angle(0.35, stepped_scan) == pytest.approx(5.1)
    assert m.find_range_in_angle(0.45, stepped_scan) == pytest.approx(2.0)


def test_find_range_out_of_scan(stepped_scan):
    m = OccupancyMap()
    assert m.find_range_in_angle(-0.1, stepped_scan) == 0.0
    assert m.find_range_in_angle(0.6, stepped_scan) == 0.0


def test_add_frame_bresenham():
    m = OccupancyMap()
    m.add_lidar_frame(Frame(scan=single_beam_scan(2.0)), GridMethod.BRESENHAM)
    assert m.grid[500, 540] == 126
    assert m.grid[500, 500] == 127
    assert all(m.grid[500, x] == 128 for x in range(501, 540))
    assert m.grid[500, 560] == 127
    assert m.has_outside_points is False


def test_add_frame_default_is_bresenham():
    a, b = OccupancyMap(), OccupancyMap()
    frame = Frame(scan=single_beam_scan(2.0), pose=SE2(0.3, -0.2, 0.4))
    a.add_lidar_frame(frame)
    b.add_lidar_frame(frame, GridMethod.BRESENHAM)
    assert np.array_equal(a.grid, b.grid)


def test_add_frame_model_points():
    m = OccupancyMap()
    m.add_lidar_frame(Frame(scan=single_beam_scan(2.0)), GridMethod.MODEL_POINTS)
    assert m.grid[500, 540] == 126
    assert m.grid[500, 500] == 128
    assert m.grid[500, 520] == 128
    assert m.grid[500, 560] == 127
    assert m.grid[520, 500] == 127


def test_endpoint_outside_map():
    m = OccupancyMap()
    scan = single_beam_scan(2.0)
    scan.range_max = 50.0
    scan.ranges = [30.0]
    m.add_lidar_frame(Frame(scan=scan), GridMethod.BRESENHAM)
    assert m.has_outside_points is True
    assert m.grid[500, 999] == 128


def test_frame_without_scan_raises():
    with pytest.raises(ValueError):
        OccupancyMap().add_lidar_frame(Frame())