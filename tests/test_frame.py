import math

import pytest

from scanmap2d.frame import Frame, Scan2d
from scanmap2d.pose import SE2


def _scan():
    return Scan2d(-math.pi, math.pi, 0.5, 0.1, 30.0, [1.0, 2.5, 0.05, 40.0])


def test_angle_and_validity():
    s = _scan()
    assert math.isclose(s.angle_at(2), -math.pi + 1.0)
    assert s.is_valid(1.0)
    assert not s.is_valid(0.05)
    assert not s.is_valid(40.0)


def test_dump_load_round_trip(tmp_path):
    f = Frame(scan=_scan(), id=3, keyframe_id=1, timestamp=0.5, pose=SE2(1.25, -2.0, 0.3))
    path = tmp_path / "frame_3.txt"
    f.dump(path)
    loaded = Frame.load(path)
    assert loaded.id == 3 and loaded.keyframe_id == 1
    assert loaded.timestamp == 0.5
    assert loaded.pose == f.pose
    assert loaded.scan == f.scan


def test_dump_header_line(tmp_path):
    path = tmp_path / "f.txt"
    Frame(scan=_scan(), id=3, keyframe_id=1, timestamp=0.5).dump(path)
    assert path.read_text().splitlines()[0] == "3 1 0.5"


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Frame.load(tmp_path / "missing.txt")


def test_load_truncated(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 2 3")
    with pytest.raises(ValueError):
        Frame.load(path)