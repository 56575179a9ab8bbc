"""Coarse-to-fine likelihood-field matching over an image pyramid."""

from __future__ import annotations

import logging

import numpy as np

from scanmap2d.frame import Scan2d
from scanmap2d.graph import EdgeSE2LikelihoodField, HuberKernel, Optimizer, VertexSE2
from scanmap2d.likelihood_field import (
    FIELD_MAX,
    _field_to_image,
    _occupied_pixels,
    _scan_beams,
    _stamp_model,
    build_model,
)
from scanmap2d.pose import SE2

log = logging.getLogger(__name__)

_RANGE_TH = 15.0
_RK_DELTA = (0.2, 0.3, 0.6, 0.8)
_INLIER_RATIO_TH = 0.4
_MIN_INLIERS = 100


class MRLikelihoodField:
    """Likelihood fields at four resolutions, matched from coarse to fine."""

    LEVELS = 4
    SIZES = (125, 250, 500, 1000)
    RESOLUTIONS = (2.5, 5.0, 10.0, 20.0)
    RATIOS = (0.125, 0.25, 0.5, 1.0)

    def __init__(self):
        self.model = build_model()
        self.fields = [np.full((s, s), FIELD_MAX, dtype=np.float32) for s in self.SIZES]
        self.pose = SE2()
        self.source: Scan2d | None = None
        self.num_inliers: list[int] = []
        self.inlier_ratios: list[float] = []

    @property
    def levels(self) -> int:
        return self.LEVELS

    def resolution(self, level: int = 0) -> float:
        """Pixels per metre at a pyramid level."""
        return self.RESOLUTIONS[level]

    def set_field_image_from_occu_map(self, occu_map) -> None:
        """Add the occupied cells of an occupancy grid to every level's field."""
        xs, ys = _occupied_pixels(occu_map)
        for field, ratio in zip(self.fields, self.RATIOS):
            _stamp_model(field, xs * ratio, ys * ratio, self.model)

    def _align_in_level(self, level: int, init_pose: SE2) -> SE2 | None:
        source = self.source
        vertex = VertexSE2(init_pose)
        optimizer = Optimizer()
        optimizer.add_vertex(0, vertex)
        delta = _RK_DELTA[level]
        field, res = self.fields[level], self.RESOLUTIONS[level]

        edges = []
        for r, angle in _scan_beams(source, _RANGE_TH):
            edge = EdgeSE2LikelihoodField(field, r, angle, res, vertex=vertex)
            if edge.is_outside():
                continue
            edge.information = np.eye(1)
            edge.robust_kernel = HuberKernel(delta)
            optimizer.add_edge(edge)
            edges.append(edge)

        if not edges:
            return None

        optimizer.optimize(10)

        inliers = sum(1 for e in edges if e.level == 0 and e.chi2() < delta)
        ratio = inliers / len(edges)
        self.num_inliers.append(inliers)
        self.inlier_ratios.append(ratio)

        if inliers > _MIN_INLIERS and ratio > _INLIER_RATIO_TH:
            return vertex.estimate
        return None

    def align_g2o(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Align the source scan level by level; None if any level is rejected."""
        if self.source is None:
            raise RuntimeError("source scan is not set")
        self.num_inliers = []
        self.inlier_ratios = []
        pose = init_pose if init_pose is not None else SE2()
        for level in range(self.LEVELS):
            pose = self._align_in_level(level, pose)
            if pose is None:
                return None
        for level, (n, ratio) in enumerate(zip(self.num_inliers, self.inlier_ratios)):
            log.info("level %d inliers: %d, ratio: %g", level, n, ratio)
        return pose

    def get_field_image(self) -> list[np.ndarray]:
        """Each level's field as an 8-bit RGB image, coarsest first."""
        return [_field_to_image(field) for field in self.fields]