"""Submaps: keyframes with their own occupancy grid and likelihood field."""

from __future__ import annotations

from scanmap2d.frame import Frame
from scanmap2d.likelihood_field import LikelihoodField
from scanmap2d.occupancy_map import GridMethod, OccupancyMap
from scanmap2d.pose import SE2

_FRAMES_FROM_OTHER = 10


class Submap:
    """A local map anchored at ``pose`` (T_w_s); frame world poses are pose * pose_submap."""

    def __init__(self, pose: SE2 | None = None):
        self.id = 0
        self.frames: list[Frame] = []
        self.likelihood = LikelihoodField()
        self.occu_map = OccupancyMap()
        self.pose = pose if pose is not None else SE2()

    @property
    def pose(self) -> SE2:
        return self._pose

    @pose.setter
    def pose(self, pose: SE2) -> None:
        self._pose = pose
        self.occu_map.pose = pose
        self.likelihood.pose = pose

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    def set_occu_from_other_submap(self, other: Submap) -> None:
        """Seed the grid with the latest frames of another submap."""
        frames = other.frames
        if len(frames) >= _FRAMES_FROM_OTHER:
            start = len(frames) - _FRAMES_FROM_OTHER
            for i in range(max(start, 1), len(frames)):
                self.occu_map.add_lidar_frame(frames[i])
        self.likelihood.set_field_image_from_occu_map(self.occu_map.grid)

    def match_scan(self, frame: Frame) -> bool:
        """Align a frame to this submap and update its poses."""
        self.likelihood.source = frame.scan
        frame.pose_submap = self.likelihood.align_g2o(frame.pose_submap)
        frame.pose = self.pose * frame.pose_submap
        return True

    def has_outside_points(self) -> bool:
        return self.occu_map.has_outside_points

    def add_scan_in_occupancy_map(self, frame: Frame) -> None:
        """Add a frame to the grid and rebuild the likelihood field."""
        self.occu_map.add_lidar_frame(frame, GridMethod.MODEL_POINTS)
        self.likelihood.set_field_image_from_occu_map(self.occu_map.grid)

    def add_key_frame(self, frame: Frame) -> None:
        self.frames.append(frame)

    def update_frame_pose_world(self) -> None:
        """Recompute each keyframe's world pose after the submap pose changed."""
        for frame in self.frames:
            frame.pose = self.pose * frame.pose_submap