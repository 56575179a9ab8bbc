"""Submap-based 2D laser mapping with optional loop closure."""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np

from scanmap2d.frame import Frame, Scan2d
from scanmap2d.loop_closing import LoopClosing
from scanmap2d.pose import SE2
from scanmap2d.submap import Submap

log = logging.getLogger(__name__)

_SUBMAP_RESOLUTION = 20.0
_SUBMAP_SIZE = 50.0
_SUBMAP_PIXELS = 1000

# Colours follow the B, G, R channel order used by the other drawing helpers.
_FREE_CURRENT = (235, 250, 230)
_FREE_OTHER = (255, 255, 255)
_OCCUPIED_CURRENT = (230, 20, 30)
_OCCUPIED_OTHER = (0, 0, 0)
_RED = (0, 0, 255)
_GREEN = (0, 255, 0)
_BLUE = (255, 0, 0)


def _pixel_window(image, xs, ys, pad: float):
    rows, cols = image.shape[:2]
    x0 = max(int(math.floor(min(xs) - pad)), 0)
    x1 = min(int(math.ceil(max(xs) + pad)), cols - 1)
    y0 = max(int(math.floor(min(ys) - pad)), 0)
    y1 = min(int(math.ceil(max(ys) + pad)), rows - 1)
    if x0 > x1 or y0 > y1:
        return None
    gy, gx = np.mgrid[y0 : y1 + 1, x0 : x1 + 1]
    return y0, x0, gx.astype(float), gy.astype(float)


def _draw_line(image, p0, p1, color, thickness: int = 1) -> None:
    """Draw a segment of the given thickness, clipped to the image."""
    if not all(math.isfinite(v) for v in (*p0, *p1)):
        return
    half = thickness / 2.0
    window = _pixel_window(image, (p0[0], p1[0]), (p0[1], p1[1]), half + 1)
    if window is None:
        return
    y0, x0, gx, gy = window
    dx, dy = p1[0] - p0[0], p1[1] - p0[1]
    length2 = dx * dx + dy * dy
    if length2 == 0:
        t = np.zeros_like(gx)
    else:
        t = np.clip(((gx - p0[0]) * dx + (gy - p0[1]) * dy) / length2, 0.0, 1.0)
    dist = np.hypot(gx - (p0[0] + t * dx), gy - (p0[1] + t * dy))
    mask = dist <= half
    region = image[y0 : y0 + gx.shape[0], x0 : x0 + gx.shape[1]]
    region[mask] = color


def _draw_ring(image, center, radius: float, color, thickness: int = 1) -> None:
    """Draw a circle outline, clipped to the image."""
    cx, cy = center
    if not (math.isfinite(cx) and math.isfinite(cy)):
        return
    half = thickness / 2.0
    window = _pixel_window(image, (cx,), (cy,), radius + half + 1)
    if window is None:
        return
    y0, x0, gx, gy = window
    dist = np.hypot(gx - cx, gy - cy)
    mask = np.abs(dist - radius) <= half
    region = image[y0 : y0 + gx.shape[0], x0 : x0 + gx.shape[1]]
    region[mask] = color


class Mapping2D:
    """Builds submaps from a stream of scans, matching each scan to the current submap."""

    KEYFRAME_POS_TH = 0.3
    KEYFRAME_ANG_TH = 15 * math.pi / 180
    MAX_FRAMES_PER_SUBMAP = 50

    def __init__(self, with_loop_closing: bool = True, output_dir=None):
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self._frame_id = 0
        self._keyframe_id = 0
        self._submap_id = 0
        self._first_scan = True
        self.current_frame: Frame | None = None
        self.last_frame: Frame | None = None
        self.last_keyframe: Frame | None = None
        self.motion_guess = SE2()

        self.current_submap = Submap(SE2())
        self.all_submaps: list[Submap] = [self.current_submap]

        self.loop_closing: LoopClosing | None = None
        if with_loop_closing:
            debug = self.output_dir / "loops.txt" if self.output_dir is not None else None
            self.loop_closing = LoopClosing(debug)
            self.loop_closing.add_new_submap(self.current_submap)

    def process_scan(self, scan: Scan2d) -> bool:
        """Match a single-echo scan into the map, adding keyframes and submaps as needed."""
        if scan is None:
            raise ValueError("scan is required")
        frame = Frame(scan=scan, id=self._frame_id)
        self._frame_id += 1
        self.current_frame = frame

        if self.last_frame is not None:
            frame.pose = self.last_frame.pose * self.motion_guess
            frame.pose_submap = self.last_frame.pose_submap

        if not self._first_scan:
            # The first scan has nothing to match against; it seeds the map.
            self.current_submap.match_scan(frame)
        self._first_scan = False

        if self.is_keyframe():
            self._add_keyframe()
            self.current_submap.add_scan_in_occupancy_map(frame)

            if self.loop_closing is not None:
                self.loop_closing.add_new_frame(frame)

            if (
                self.current_submap.has_outside_points()
                or self.current_submap.num_frames > self.MAX_FRAMES_PER_SUBMAP
            ):
                self._expand_submap()

        if self.last_frame is not None:
            self.motion_guess = self.last_frame.pose.inverse() * frame.pose
        self.last_frame = frame
        return True

    def is_keyframe(self) -> bool:
        """Whether the current frame moved far enough from the last keyframe."""
        if self.last_keyframe is None:
            return True
        if self.current_frame is None:
            return False
        delta = self.last_keyframe.pose.inverse() * self.current_frame.pose
        return (
            float(np.linalg.norm(delta.translation)) > self.KEYFRAME_POS_TH
            or abs(delta.theta) > self.KEYFRAME_ANG_TH
        )

    def _add_keyframe(self) -> None:
        log.info("add keyframe %d", self._keyframe_id)
        frame = self.current_frame
        frame.keyframe_id = self._keyframe_id
        self._keyframe_id += 1
        self.current_submap.add_key_frame(frame)
        self.last_keyframe = frame

    def _expand_submap(self) -> None:
        if self.loop_closing is not None:
            self.loop_closing.add_finished_submap(self.current_submap)

        last_submap = self.current_submap
        if self.output_dir is not None:
            from PIL import Image

            self.output_dir.mkdir(parents=True, exist_ok=True)
            Image.fromarray(last_submap.occu_map.black_white_image()).save(
                self.output_dir / f"submap_{last_submap.id}.png"
            )

        frame = self.current_frame
        self._submap_id += 1
        submap = Submap(frame.pose)
        frame.pose_submap = SE2()
        submap.id = self._submap_id
        submap.add_key_frame(frame)
        # Seed with the previous submap's latest frames so the new one is not empty.
        submap.set_occu_from_other_submap(last_submap)
        submap.add_scan_in_occupancy_map(frame)
        self.current_submap = submap
        self.all_submaps.append(submap)

        if self.loop_closing is not None:
            self.loop_closing.add_new_submap(submap)

        log.info(
            "create submap %d with pose: %g %g, %g",
            submap.id,
            submap.pose.x,
            submap.pose.y,
            submap.pose.theta,
        )

    def show_global_map(self, max_size: int = 500) -> np.ndarray:
        """Render all submaps, their axes, trajectories and loops into one image."""
        centers = np.array([m.pose.translation for m in self.all_submaps], dtype=float).reshape(-1, 2)
        if len(centers) == 0:
            return np.zeros((0, 0, 3), dtype=np.uint8)
        top_left = centers.min(axis=0) - _SUBMAP_SIZE / 2
        bottom_right = centers.max(axis=0) + _SUBMAP_SIZE / 2
        if top_left[0] > bottom_right[0] or top_left[1] > bottom_right[1]:
            return np.zeros((0, 0, 3), dtype=np.uint8)

        c = (top_left + bottom_right) / 2.0
        phy_width, phy_height = bottom_right - top_left
        res = max_size / phy_width if phy_width > phy_height else max_size / phy_height

        global_center = np.array([int(c[0] * res) / res, int(c[1] * res) / res])
        width = int((bottom_right[0] - top_left[0]) * res + 0.5)
        height = int((bottom_right[1] - top_left[1]) * res + 0.5)
        if width <= 0 or height <= 0:
            return np.zeros((0, 0, 3), dtype=np.uint8)
        center_image = np.array([width // 2, height // 2], dtype=float)
        output = np.full((height, width, 3), 127, dtype=np.uint8)

        ys, xs = np.mgrid[0:height, 0:width]
        pwx = (xs - center_image[0]) / res + c[0]
        pwy = (ys - center_image[1]) / res + c[1]
        unassigned = np.ones((height, width), dtype=bool)

        for m in self.all_submaps:
            inv = m.pose.inverse()
            rot, t = inv.rotation_matrix(), inv.translation
            psx = rot[0, 0] * pwx + rot[0, 1] * pwy + t[0]
            psy = rot[1, 0] * pwx + rot[1, 1] * pwy + t[1]
            ptx = np.trunc(psx * _SUBMAP_RESOLUTION + _SUBMAP_PIXELS / 2).astype(np.int64)
            pty = np.trunc(psy * _SUBMAP_RESOLUTION + _SUBMAP_PIXELS / 2).astype(np.int64)
            inside = (ptx >= 0) & (ptx < _SUBMAP_PIXELS) & (pty >= 0) & (pty < _SUBMAP_PIXELS)
            grid = m.occu_map.grid
            value = grid[np.clip(pty, 0, grid.shape[0] - 1), np.clip(ptx, 0, grid.shape[1] - 1)]
            hit = unassigned & inside & (value != 127)
            is_current = m is self.current_submap
            output[hit & (value > 127)] = _FREE_CURRENT if is_current else _FREE_OTHER
            output[hit & (value < 127)] = _OCCUPIED_CURRENT if is_current else _OCCUPIED_OTHER
            unassigned &= ~hit

        def to_map(p):
            return (np.asarray(p, dtype=float) - global_center) * res + center_image

        for m in self.all_submaps:
            center_map = to_map(m.pose.translation)
            x_map = to_map(m.pose * np.array([1.0, 0.0]))
            y_map = to_map(m.pose * np.array([0.0, 1.0]))
            _draw_line(output, center_map, x_map, _RED, 2)
            _draw_line(output, center_map, y_map, _GREEN, 2)
            for frame in m.frames:
                _draw_ring(output, to_map(frame.pose.translation), 1, _RED, 1)

        if self.loop_closing is not None:
            for first_id, second_id in self.loop_closing.loops:
                c1 = to_map(self.all_submaps[first_id].pose.translation)
                c2 = to_map(self.all_submaps[second_id].pose.translation)
                _draw_line(output, c1, c2, _BLUE, 2)

        return output