"""Likelihood-field scan matching against a target scan or an occupancy map."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np

from scanmap2d.frame import Scan2d
from scanmap2d.graph import EdgeSE2LikelihoodField, HuberKernel, Optimizer, VertexSE2
from scanmap2d.pose import SE2

log = logging.getLogger(__name__)

MODEL_RADIUS = 20
FIELD_MAX = 30.0
OCCUPIED_BELOW = 127
OCCU_BORDER = 25
EDGE_SKIP = 30 * math.pi / 180.0

_ITERATIONS = 10
_MIN_EFFECTIVE = 20
_GN_BORDER = 20
_G2O_RANGE_TH = 15.0
_G2O_RK_DELTA = 0.8


@dataclass(frozen=True)
class ModelPoint:
    """One cell of the field template: pixel offset and its distance residual."""

    dx: int
    dy: int
    residual: float


def build_model(radius: int = MODEL_RADIUS) -> list[ModelPoint]:
    """Square template of pixel offsets with their Euclidean distance."""
    return [
        ModelPoint(x, y, math.sqrt(x * x + y * y))
        for x in range(-radius, radius + 1)
        for y in range(-radius, radius + 1)
    ]


def _stamp_model(field: np.ndarray, xs, ys, model: list[ModelPoint]) -> None:
    """Lower field cells around each (x, y) to the template residual."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.size == 0:
        return
    rows, cols = field.shape
    for mp in model:
        xx = np.trunc(xs + mp.dx).astype(np.intp)
        yy = np.trunc(ys + mp.dy).astype(np.intp)
        ok = (xx >= 0) & (xx < cols) & (yy >= 0) & (yy < rows)
        if not ok.any():
            continue
        xx, yy = xx[ok], yy[ok]
        field[yy, xx] = np.minimum(field[yy, xx], np.float32(mp.residual))


def _occupied_pixels(occu_map, border: int = OCCU_BORDER) -> tuple[np.ndarray, np.ndarray]:
    """Column and row coordinates of occupied cells away from the map border."""
    occ = np.asarray(occu_map)
    if occ.ndim != 2:
        raise ValueError("occupancy map must be a single-channel image")
    rows, cols = occ.shape
    if rows - border <= border or cols - border <= border:
        return np.zeros(0), np.zeros(0)
    inner = occ[border : rows - border, border : cols - border]
    ys, xs = np.nonzero(inner < OCCUPIED_BELOW)
    return (xs + border).astype(float), (ys + border).astype(float)


def _scan_beams(scan: Scan2d, max_range: float | None = None) -> Iterator[tuple[float, float]]:
    """Valid (range, angle) pairs, leaving out the outer 30 degrees on each side."""
    for i, r in enumerate(scan.ranges):
        if not scan.is_valid(r):
            continue
        if max_range is not None and r > max_range:
            continue
        angle = scan.angle_at(i)
        if angle < scan.angle_min + EDGE_SKIP or angle > scan.angle_max - EDGE_SKIP:
            continue
        yield float(r), angle


def _field_to_image(field: np.ndarray) -> np.ndarray:
    """Grey RGB rendering of a field, 0 black and the maximum white."""
    grey = (field.astype(np.float64) * 255.0 / FIELD_MAX).astype(np.uint8)
    return np.repeat(grey[:, :, None], 3, axis=2)


class LikelihoodField:
    """Distance field built from a target scan or an occupancy map, used to align scans."""

    RESOLUTION = 20.0
    SIZE = 1000

    def __init__(self):
        self.model = build_model()
        self.field = np.full((self.SIZE, self.SIZE), FIELD_MAX, dtype=np.float32)
        self.pose = SE2()
        self.target: Scan2d | None = None
        self.source: Scan2d | None = None
        self.has_outside_points = False

    def set_target_scan(self, scan: Scan2d) -> None:
        """Rebuild the field around the end points of a target scan."""
        self.target = scan
        self.field = np.full((self.SIZE, self.SIZE), FIELD_MAX, dtype=np.float32)
        half = self.SIZE // 2
        xs, ys = [], []
        for i, r in enumerate(scan.ranges):
            if not scan.is_valid(r):
                continue
            angle = scan.angle_at(i)
            xs.append(r * math.cos(angle) * self.RESOLUTION + half)
            ys.append(r * math.sin(angle) * self.RESOLUTION + half)
        _stamp_model(self.field, xs, ys, self.model)

    def set_field_image_from_occu_map(self, occu_map) -> None:
        """Rebuild the field from the occupied cells of an occupancy grid."""
        self.field = np.full((self.SIZE, self.SIZE), FIELD_MAX, dtype=np.float32)
        xs, ys = _occupied_pixels(occu_map)
        _stamp_model(self.field, xs, ys, self.model)

    def _require_source(self) -> Scan2d:
        if self.source is None:
            raise RuntimeError("source scan is not set")
        return self.source

    def align_gauss_newton(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Gauss-Newton alignment of the source scan; None if too few points fall in the field."""
        source = self._require_source()
        pose = init_pose if init_pose is not None else SE2()
        field = self.field
        rows, cols = field.shape
        res = self.RESOLUTION
        center = np.array([self.SIZE // 2, self.SIZE // 2], dtype=float)
        b = _GN_BORDER
        last_cost = 0.0
        self.has_outside_points = False

        for it in range(_ITERATIONS):
            hess, grad, cost, effective = np.zeros((3, 3)), np.zeros(3), 0.0, 0
            theta = pose.theta
            for r, angle in _scan_beams(source):
                pw = pose * np.array([r * math.cos(angle), r * math.sin(angle)])
                px, py = (pw * res + center).astype(int)
                if not (b <= px < cols - b and b <= py < rows - b):
                    self.has_outside_points = True
                    continue
                effective += 1
                dx = 0.5 * (float(field[py, px + 1]) - float(field[py, px - 1]))
                dy = 0.5 * (float(field[py + 1, px]) - float(field[py - 1, px]))
                jac = np.array(
                    [
                        res * dx,
                        res * dy,
                        -res * dx * r * math.sin(angle + theta) + res * dy * r * math.cos(angle + theta),
                    ]
                )
                hess += np.outer(jac, jac)
                e = float(field[py, px])
                grad -= jac * e
                cost += e * e

            if effective < _MIN_EFFECTIVE:
                return None
            try:
                step = np.linalg.solve(hess, grad)
            except np.linalg.LinAlgError:
                break
            if math.isnan(step[0]):
                break
            cost /= effective
            if it > 0 and cost >= last_cost:
                break
            log.info("iter %d cost = %g, effect num: %d", it, cost, effective)
            pose = SE2(pose.x + step[0], pose.y + step[1], pose.theta + step[2])
            last_cost = cost
        return pose

    def align_g2o(self, init_pose: SE2 | None = None) -> SE2:
        """Robust graph-based alignment of the source scan; returns the estimated pose."""
        source = self._require_source()
        vertex = VertexSE2(init_pose if init_pose is not None else SE2())
        optimizer = Optimizer()
        optimizer.add_vertex(0, vertex)
        self.has_outside_points = False

        for r, angle in _scan_beams(source, _G2O_RANGE_TH):
            edge = EdgeSE2LikelihoodField(self.field, r, angle, self.RESOLUTION, vertex=vertex)
            if edge.is_outside():
                self.has_outside_points = True
                continue
            edge.information = np.eye(1)
            edge.robust_kernel = HuberKernel(_G2O_RK_DELTA)
            optimizer.add_edge(edge)

        optimizer.optimize(10)
        return vertex.estimate

    def get_field_image(self) -> np.ndarray:
        """The field as an 8-bit RGB image."""
        return _field_to_image(self.field)