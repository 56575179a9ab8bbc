"""Drawing helpers for 2D laser scans."""

from __future__ import annotations

import math

import numpy as np

from scanmap2d.frame import Scan2d
from scanmap2d.pose import SE2

_EDGE_SKIP = 30 * math.pi / 180.0


def _draw_circle(image, cx: float, cy: float, radius: float, color, thickness: int) -> None:
    rows, cols = image.shape[:2]
    ys, xs = np.ogrid[0:rows, 0:cols]
    dist = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)
    image[np.abs(dist - radius) <= thickness / 2.0] = color


def visualize_2d_scan(
    scan: Scan2d,
    pose: SE2,
    image=None,
    color=(255, 0, 0),
    image_size: int = 800,
    resolution: float = 20.0,
    pose_submap: SE2 | None = None,
) -> np.ndarray:
    """Draw a scan seen from ``pose`` into an image (created white if absent) and return it."""
    if pose_submap is None:
        pose_submap = SE2()
    if image is None:
        image = np.full((image_size, image_size, 3), 255, dtype=np.uint8)
    rows, cols = image.shape[:2]
    color = np.asarray(color[:3], dtype=np.uint8)
    half = image_size // 2
    to_submap = pose_submap.inverse()

    for i, r in enumerate(scan.ranges):
        if not scan.is_valid(r):
            continue
        angle = scan.angle_at(i)
        if angle < scan.angle_min + _EDGE_SKIP or angle > scan.angle_max - _EDGE_SKIP:
            continue
        p = to_submap * (pose * np.array([r * math.cos(angle), r * math.sin(angle)]))
        ix, iy = int(p[0] * resolution + half), int(p[1] * resolution + half)
        if 0 <= ix < cols and 0 <= iy < rows:
            image[iy, ix] = color

    center = (to_submap * pose.translation) * float(resolution) + half
    _draw_circle(image, center[0], center[1], 5, color, 2)
    return image