"""Scan-to-scan ICP in the plane, point-to-point and point-to-line."""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.spatial import cKDTree

from scanmap2d.frame import Scan2d
from scanmap2d.pose import SE2

log = logging.getLogger(__name__)

_ITERATIONS = 10
_MIN_EFFECTIVE = 20


def fit_line_2d(points):
    """Fit a x + b y + c = 0 through points; return (a, b, c) or None if too few."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 2:
        return None
    a = np.column_stack([pts, np.ones(len(pts))])
    _, _, vt = np.linalg.svd(a)
    return vt[-1]


class Icp2d:
    """Align a source scan to a target scan. Set the target first, then the source."""

    def __init__(self):
        self._target: Scan2d | None = None
        self._source: Scan2d | None = None
        self._cloud = np.zeros((0, 2))
        self._tree: cKDTree | None = None

    def set_target(self, target: Scan2d) -> None:
        if target is None:
            raise ValueError("target is not set")
        self._target = target
        pts = [
            (r * math.cos(target.angle_at(i)), r * math.sin(target.angle_at(i)))
            for i, r in enumerate(target.ranges)
            if target.is_valid(r)
        ]
        self._cloud = np.array(pts, dtype=float).reshape(-1, 2)
        self._tree = cKDTree(self._cloud) if len(self._cloud) else None

    def set_source(self, source: Scan2d) -> None:
        self._source = source

    def _source_points(self):
        if self._source is None or self._target is None:
            raise RuntimeError("source and target must be set before aligning")
        for i, r in enumerate(self._source.ranges):
            if self._source.is_valid(r):
                yield r, self._source.angle_at(i)

    def _nearest(self, pt, k):
        if self._tree is None:
            return []
        dist, idx = self._tree.query(pt, k=k)
        dist, idx = np.atleast_1d(dist), np.atleast_1d(idx)
        return [(d * d, int(j)) for d, j in zip(dist, idx) if math.isfinite(d)]

    def _run(self, init_pose: SE2, residuals) -> SE2 | None:
        pose, last_cost = init_pose, 0.0
        for it in range(_ITERATIONS):
            hess, grad, cost, effective = np.zeros((3, 3)), np.zeros(3), 0.0, 0
            for jac, err in residuals(pose):
                effective += 1
                hess += jac.T @ jac
                grad -= jac.T @ err
                cost += float(err @ err)
            if effective < _MIN_EFFECTIVE:
                return None
            try:
                dx = np.linalg.solve(hess, grad)
            except np.linalg.LinAlgError:
                break
            if math.isnan(dx[0]):
                break
            cost /= effective
            if it > 0 and cost >= last_cost:
                break
            log.info("iter %d cost = %g, effect num: %d", it, cost, effective)
            pose = SE2(pose.x + dx[0], pose.y + dx[1], pose.theta + dx[2])
            last_cost = cost
        log.info("estimated pose: %g %g, theta: %g", pose.x, pose.y, pose.theta)
        return pose

    def align_gauss_newton(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Point-to-point Gauss-Newton; returns the pose or None on failure."""
        max_dis2 = 0.01

        def residuals(pose):
            theta = pose.theta
            for r, angle in self._source_points():
                pw = pose * np.array([r * math.cos(angle), r * math.sin(angle)])
                nn = self._nearest(pw, 1)
                if nn and nn[0][0] < max_dis2:
                    jac = np.array([[1.0, 0.0, -r * math.sin(angle + theta)], [0.0, 1.0, r * math.cos(angle + theta)]])
                    yield jac, pw - self._cloud[nn[0][1]]

        return self._run(init_pose or SE2(), residuals)

    def align_gauss_newton_point_to_plane(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Point-to-line Gauss-Newton; returns the pose or None on failure."""
        max_dis = 0.3

        def residuals(pose):
            theta = pose.theta
            for r, angle in self._source_points():
                pw = pose * np.array([r * math.cos(angle), r * math.sin(angle)])
                near = [self._cloud[j] for d, j in self._nearest(pw, 5) if d < max_dis]
                if len(near) < 3:
                    continue
                coeffs = fit_line_2d(near)
                if coeffs is None:
                    continue
                a, b, c = coeffs
                jac = np.array([[a, b, -a * r * math.sin(angle + theta) + b * r * math.cos(angle + theta)]])
                yield jac, np.array([a * pw[0] + b * pw[1] + c])

        return self._run(init_pose or SE2(), residuals)