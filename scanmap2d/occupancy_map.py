"""Occupancy grid built from 2D laser frames."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Iterator

import numpy as np

from scanmap2d.frame import Frame, Scan2d
from scanmap2d.pose import SE2


class GridMethod(Enum):
    """How free space between the sensor and the end points is filled."""

    MODEL_POINTS = "model"
    BRESENHAM = "bresenham"


@lru_cache(maxsize=None)
def _grid_model(size: int, inv_resolution: float):
    """Template offsets around the sensor with their range (m) and bearing (rad)."""
    offsets = np.arange(-size, size + 1)
    dx, dy = np.meshgrid(offsets, offsets, indexing="ij")
    dx, dy = dx.ravel(), dy.ravel()
    rng = (np.sqrt(dx * dx + dy * dy) * np.float32(inv_resolution)).astype(np.float32).astype(np.float64)
    angle = np.arctan2(dy, dx).astype(np.float64)
    for arr in (dx, dy, rng, angle):
        arr.setflags(write=False)
    return dx, dy, rng, angle


def _bresenham_cells(p1, p2) -> Iterator[tuple[int, int]]:
    """Cells strictly between p1 and p2 on a Bresenham line (p2 never yielded)."""
    x, y = int(p1[0]), int(p1[1])
    end = (int(p2[0]), int(p2[1]))
    dx, dy = end[0] - x, end[1] - y
    ux = 1 if dx > 0 else -1
    uy = 1 if dy > 0 else -1
    dx, dy = abs(dx), abs(dy)
    if dx > dy:
        e = -dx
        for _ in range(dx):
            x += ux
            e += 2 * dy
            if e >= 0:
                y += uy
                e -= 2 * dx
            if (x, y) != end:
                yield x, y
    else:
        e = -dy
        for _ in range(dy):
            y += uy
            e += 2 * dx
            if e >= 0:
                x += ux
                e -= 2 * dy
            if (x, y) != end:
                yield x, y


def _keys(xs, ys) -> np.ndarray:
    offset = np.int64(1 << 30)
    return (np.asarray(xs, dtype=np.int64) + offset) * np.int64(1 << 31) + (np.asarray(ys, dtype=np.int64) + offset)


class OccupancyMap:
    """An 8-bit occupancy grid: 127 unknown, lower occupied, higher free."""

    CLOSEST_TH = 0.2
    ENDPOINT_CLOSE_TH = 0.1
    RESOLUTION = 20.0
    INV_RESOLUTION = 0.05
    IMAGE_SIZE = 1000
    MODEL_SIZE = 400

    UNKNOWN = 127
    OCCUPIED_LIMIT = 117
    FREE_LIMIT = 137

    def __init__(self, pose: SE2 | None = None):
        self.grid = np.full((self.IMAGE_SIZE, self.IMAGE_SIZE), self.UNKNOWN, dtype=np.uint8)
        self.pose = pose if pose is not None else SE2()
        self.has_outside_points = False
        self._center = float(self.IMAGE_SIZE // 2)

    @property
    def resolution(self) -> float:
        return self.RESOLUTION

    def _to_image(self, points) -> np.ndarray:
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        mapped = (self.pose.inverse() * pts) * self.RESOLUTION + self._center
        return np.trunc(mapped).astype(np.int64)

    def world_to_image(self, point) -> tuple[int, int]:
        """Grid cell (column, row) of a world point."""
        cell = self._to_image(point)[0]
        return int(cell[0]), int(cell[1])

    def set_point(self, pt, occupy: bool) -> None:
        """Move one cell one step towards occupied or free, within the limits."""
        x, y = int(pt[0]), int(pt[1])
        rows, cols = self.grid.shape
        if x < 0 or y < 0 or x >= cols or y >= rows:
            if occupy:
                self.has_outside_points = True
            return
        value = int(self.grid[y, x])
        if occupy:
            if value > self.OCCUPIED_LIMIT:
                self.grid[y, x] = value - 1
        elif value < self.FREE_LIMIT:
            self.grid[y, x] = value + 1

    def _free_cells(self, xs, ys) -> None:
        """Mark cells free once per occurrence, as repeated set_point calls would."""
        xs = np.asarray(xs, dtype=np.int64)
        ys = np.asarray(ys, dtype=np.int64)
        rows, cols = self.grid.shape
        inside = (xs >= 0) & (ys >= 0) & (xs < cols) & (ys < rows)
        xs, ys = xs[inside], ys[inside]
        if xs.size == 0:
            return
        cells, counts = np.unique(ys * cols + xs, return_counts=True)
        flat = self.grid.reshape(-1)
        values = flat[cells].astype(np.int64)
        updated = np.where(values < self.FREE_LIMIT, np.minimum(values + counts, self.FREE_LIMIT), values)
        flat[cells] = updated.astype(np.uint8)

    def _ranges_in_angles(self, angles, scan: Scan2d) -> np.ndarray:
        angles = np.asarray(angles, dtype=float)
        angles = (angles + np.pi) % (2.0 * np.pi) - np.pi
        out = np.zeros_like(angles)
        ranges = np.asarray(scan.ranges, dtype=float)
        n = len(ranges)
        inc = scan.angle_increment
        if n == 0 or inc == 0:
            return out
        ok = (angles >= scan.angle_min) & (angles <= scan.angle_max)
        pos = (angles - scan.angle_min) / inc
        idx = np.where(ok, np.trunc(np.where(ok, pos, 0.0)), -1).astype(np.int64)
        ok &= (idx >= 0) & (idx < n)
        if not ok.any():
            return out
        i = idx[ok]
        s = pos[ok] - i
        r1 = ranges[i]
        has_next = i + 1 < n
        r2 = ranges[np.minimum(i + 1, n - 1)]

        def bad(r):
            return (r < scan.range_min) | (r > scan.range_max)

        picked = np.where(s > 0.5, r2, r1)
        lerp = r1 * (1 - s) + r2 * s
        out[ok] = np.select(
            [~has_next, bad(r2), bad(r1), np.abs(r1 - r2) > 0.3],
            [r1, r1, r2, picked],
            default=lerp,
        )
        return out

    def find_range_in_angle(self, angle: float, scan: Scan2d) -> float:
        """Interpolated range of the scan at a bearing; 0 where the scan has none."""
        return float(self._ranges_in_angles(np.array([angle]), scan)[0])

    def bresenham_filling(self, p1, p2) -> None:
        """Mark the cells between p1 and p2 as free."""
        cells = list(_bresenham_cells(p1, p2))
        if cells:
            xs, ys = zip(*cells)
            self._free_cells(xs, ys)

    def add_lidar_frame(self, frame: Frame, method: GridMethod = GridMethod.BRESENHAM) -> None:
        """Add a frame's scan: free space along the beams, occupied end points."""
        scan = frame.scan
        if scan is None:
            raise ValueError("frame has no scan")
        # frame.pose_submap may still refer to a previous submap, so use the world pose.
        theta = (self.pose.inverse() * frame.pose).theta
        self.has_outside_points = False

        ranges = np.asarray(scan.ranges, dtype=float)
        valid = np.array([scan.is_valid(r) for r in ranges], dtype=bool)
        beam_angles = scan.angle_min + np.arange(len(ranges)) * scan.angle_increment
        r, a = ranges[valid], beam_angles[valid]
        local = np.column_stack([r * np.cos(a), r * np.sin(a)])
        end_cells = self._to_image(frame.pose * local)
        endpoints = {(int(x), int(y)) for x, y in end_cells.tolist()}
        start = self.world_to_image(frame.pose.translation)

        if method is GridMethod.MODEL_POINTS:
            dx, dy, rng, angle = _grid_model(self.MODEL_SIZE, self.INV_RESOLUTION)
            px, py = start[0] + dx, start[1] + dy
            near = rng < self.CLOSEST_TH
            measured = self._ranges_in_angles(angle - theta, scan)
            invalid = (measured < scan.range_min) | (measured > scan.range_max)
            if endpoints:
                ends = np.array(sorted(endpoints), dtype=np.int64)
                not_end = ~np.isin(_keys(px, py), _keys(ends[:, 0], ends[:, 1]))
            else:
                not_end = np.ones(px.shape, dtype=bool)
            free = near | (~near & invalid & (rng < self.ENDPOINT_CLOSE_TH))
            free |= ~near & ~invalid & (measured > rng) & not_end
            self._free_cells(px[free], py[free])
        else:
            xs: list[int] = []
            ys: list[int] = []
            for end in endpoints:
                for x, y in _bresenham_cells(start, end):
                    xs.append(x)
                    ys.append(y)
            self._free_cells(xs, ys)

        for pt in endpoints:
            self.set_point(pt, True)

    def black_white_image(self) -> np.ndarray:
        """RGB view: unknown grey, occupied black, free white."""
        image = np.full(self.grid.shape + (3,), 127, dtype=np.uint8)
        image[self.grid < self.UNKNOWN] = 0
        image[self.grid > self.UNKNOWN] = 255
        return image