import math

import numpy as np
import pytest

from scanmap2d.frame import Frame, Scan2d
from scanmap2d.multi_resolution_likelihood_field import MRLikelihoodField
from scanmap2d.pose import SE2


def room_scan(half=4.0, beams=360):
    inc = 2 * math.pi / beams
    ranges = []
    for i in range(beams):
        a = -math.pi + i * inc
        ranges.append(half / max(abs(math.cos(a)), abs(math.sin(a))))
    return Scan2d(
        angle_min=-math.pi,
        angle_max=-math.pi + (beams - 1) * inc,
        angle_increment=inc,
        range_min=0.1,
        range_max=30.0,
        ranges=ranges,
    )


def thick_wall_room():
    """Occupancy grid of a 8 m square room centred in the image, walls 1 m thick."""
    occu = np.full((1000, 1000), 127, dtype=np.uint8)
    occu[408:592, 408:428] = 0
    occu[408:592, 572:592] = 0
    occu[408:428, 408:592] = 0
    occu[572:592, 408:592] = 0
    return occu


@pytest.mark.parametrize("level, expected", [(0, 2.5), (1, 5.0), (2, 10.0), (3, 20.0)])
def test_resolution_per_level(level, expected):
    assert MRLikelihoodField().resolution(level) == expected


def test_levels_and_initial_images():
    mr = MRLikelihoodField()
    assert mr.levels == 4
    images = mr.get_field_image()
    assert [im.shape for im in images] == [(125, 125, 3), (250, 250, 3), (500, 500, 3), (1000, 1000, 3)]
    assert all(int(im.min()) == 255 for im in images)


def test_occupied_pixel_appears_in_every_level():
    occu = np.full((1000, 1000), 127, dtype=np.uint8)
    occu[300, 400] = 0
    mr = MRLikelihoodField()
    mr.set_field_image_from_occu_map(occu)
    images = mr.get_field_image()
    assert list(images[3][300, 400]) == [0, 0, 0]
    assert list(images[2][150, 200]) == [0, 0, 0]
    assert list(images[1][75, 100]) == [0, 0, 0]
    assert list(images[0][37, 50]) == [0, 0, 0]
    assert list(images[3][0, 0]) == [255, 255, 255]


def test_border_cells_are_ignored():
    occu = np.full((1000, 1000), 127, dtype=np.uint8)
    occu[500, 10] = 0
    mr = MRLikelihoodField()
    mr.set_field_image_from_occu_map(occu)
    assert all(int(im.min()) == 255 for im in mr.get_field_image())


def test_fields_accumulate_across_calls():
    first = np.full((1000, 1000), 127, dtype=np.uint8)
    first[300, 400] = 0
    second = np.full((1000, 1000), 127, dtype=np.uint8)
    second[700, 600] = 0
    mr = MRLikelihoodField()
    mr.set_field_image_from_occu_map(first)
    mr.set_field_image_from_occu_map(second)
    assert mr.fields[3][300, 400] == 0.0
    assert mr.fields[3][700, 600] == 0.0


def test_align_in_matching_room_succeeds():
    mr = MRLikelihoodField()
    mr.set_field_image_from_occu_map(thick_wall_room())
    mr.source = room_scan()
    pose = mr.align_g2o(SE2())
    assert pose is not None
    assert pose.x == pytest.approx(0.0, abs=0.05)
    assert pose.y == pytest.approx(0.0, abs=0.05)
    assert pose.theta == pytest.approx(0.0, abs=0.02)
    assert len(mr.num_inliers) == 4
    assert all(n > 100 for n in mr.num_inliers)
    assert all(ratio > 0.4 for ratio in mr.inlier_ratios)


def test_frame_pose_through_submap_frame():
    pose_submap = SE2(2.0, 1.0, 0.3)
    frame = Frame(scan=room_scan(), pose=pose_submap * SE2())
    mr = MRLikelihoodField()
    mr.pose = pose_submap
    mr.set_field_image_from_occu_map(thick_wall_room())
    mr.source = frame.scan
    aligned = mr.align_g2o(pose_submap.inverse() * frame.pose)
    assert aligned is not None
    frame.pose = pose_submap * aligned
    assert frame.pose.x == pytest.approx(2.0, abs=0.05)
    assert frame.pose.y == pytest.approx(1.0, abs=0.05)
    assert frame.pose.theta == pytest.approx(0.3, abs=0.02)


def test_align_on_empty_map_fails():
    mr = MRLikelihoodField()
    mr.source = room_scan()
    assert mr.align_g2o(SE2()) is None
    assert mr.num_inliers == [0]


def test_align_with_too_few_beams_fails():
    mr = MRLikelihoodField()
    mr.set_field_image_from_occu_map(thick_wall_room())
    mr.source = room_scan(beams=90)
    assert mr.align_g2o(SE2()) is None


def test_align_without_source_raises():
    mr = MRLikelihoodField()
    with pytest.raises(RuntimeError):
        mr.align_g2o(SE2())