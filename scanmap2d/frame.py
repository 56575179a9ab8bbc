"""Single 2D laser scans and the frames that carry them."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from scanmap2d.pose import SE2


@dataclass
class Scan2d:
    """One planar laser scan."""

    angle_min: float = 0.0
    angle_max: float = 0.0
    angle_increment: float = 0.0
    range_min: float = 0.0
    range_max: float = 0.0
    ranges: list[float] = field(default_factory=list)

    def angle_at(self, index: int) -> float:
        """Bearing of the beam with the given index."""
        return self.angle_min + index * self.angle_increment

    def is_valid(self, r: float) -> bool:
        """Whether a range lies within the sensor limits."""
        return not (r < self.range_min or r > self.range_max)


@dataclass
class Frame:
    """A scan together with its identifiers and poses."""

    scan: Scan2d | None = None
    id: int = 0
    keyframe_id: int = 0
    timestamp: float = 0.0
    pose: SE2 = field(default_factory=SE2)
    pose_submap: SE2 = field(default_factory=SE2)

    def dump(self, filename) -> None:
        """Write the frame to a text file for offline use."""
        scan = self.scan or Scan2d()
        lines = [
            f"{self.id} {self.keyframe_id} {self.timestamp!r}",
            f"{self.pose.x!r} {self.pose.y!r} {self.pose.theta!r}",
            " ".join(
                repr(float(v))
                for v in (scan.angle_min, scan.angle_max, scan.angle_increment, scan.range_min, scan.range_max)
            )
            + f" {len(scan.ranges)}",
            " ".join(repr(float(r)) for r in scan.ranges) + " ",
        ]
        with open(filename, "w", encoding="utf-8") as fout:
            fout.write("\n".join(lines))

    @classmethod
    def load(cls, filename) -> Frame:
        """Read a frame written by :meth:`dump`."""
        with open(filename, encoding="utf-8") as fin:
            tokens = fin.read().split()
        if len(tokens) < 12:
            raise ValueError(f"truncated frame file: {filename}")
        it = iter(tokens)
        frame_id, kf_id = int(next(it)), int(next(it))
        timestamp = float(next(it))
        x, y, theta = float(next(it)), float(next(it)), float(next(it))
        limits = [float(next(it)) for _ in range(5)]
        count = int(next(it))
        ranges = [float(next(it)) for _ in range(count)]
        if not all(math.isfinite(v) or math.isinf(v) for v in ranges):
            raise ValueError("invalid range value")
        scan = Scan2d(*limits, ranges=ranges)
        return cls(scan=scan, id=frame_id, keyframe_id=kf_id, timestamp=timestamp, pose=SE2(x, y, theta))