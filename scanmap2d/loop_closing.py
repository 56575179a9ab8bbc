"""Loop detection between frames and finished submaps, with pose-graph correction."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from scanmap2d.frame import Frame
from scanmap2d.graph import CauchyKernel, EdgeSE2, Optimizer, VertexSE2
from scanmap2d.multi_resolution_likelihood_field import MRLikelihoodField
from scanmap2d.pose import SE2
from scanmap2d.submap import Submap

log = logging.getLogger(__name__)


@dataclass
class LoopConstraint:
    """Relative pose ``t12`` of submap ``id_submap2`` seen from ``id_submap1``."""

    id_submap1: int
    id_submap2: int
    t12: SE2
    valid: bool = True


class LoopClosing:
    """Single-threaded loop closure.

    Candidates are found from odometry poses, checked with multi-resolution
    matching, and accepted loops are verified by a pose-graph optimisation
    that also corrects every submap pose.
    """

    CANDIDATE_DISTANCE_TH = 15.0
    SUBMAP_GAP = 1
    LOOP_RK_DELTA = 1.0

    def __init__(self, debug_path=None):
        self.current_frame: Frame | None = None
        self.last_submap_id = 0
        self.submaps: dict[int, Submap] = {}
        self.submap_to_field: dict[int, MRLikelihoodField] = {}
        self.current_candidates: list[int] = []
        self.loop_constraints: dict[tuple[int, int], LoopConstraint] = {}
        self.has_new_loops = False
        self._debug_path = Path(debug_path) if debug_path is not None else None
        if self._debug_path is not None:
            self._debug_path.write_text("", encoding="utf-8")

    @property
    def loops(self) -> dict[tuple[int, int], LoopConstraint]:
        """A copy of the current loop constraints, keyed by submap id pair."""
        return dict(self.loop_constraints)

    def add_new_submap(self, submap: Submap) -> None:
        """Register the newest submap, which may still be under construction."""
        self.submaps[submap.id] = submap
        self.last_submap_id = submap.id

    def add_finished_submap(self, submap: Submap) -> None:
        """Build a multi-resolution field for a completed submap."""
        field = MRLikelihoodField()
        field.pose = submap.pose
        field.set_field_image_from_occu_map(submap.occu_map.grid)
        self.submap_to_field[submap.id] = field

    def add_new_frame(self, frame: Frame) -> None:
        """Look for loops with a new keyframe and optimise if any are found."""
        self.current_frame = frame
        if not self.detect_loop_candidates():
            return
        self.match_in_history_submaps()
        if self.has_new_loops:
            self.optimize()

    def detect_loop_candidates(self) -> bool:
        """Collect older submaps whose centre lies near the current frame."""
        self.has_new_loops = False
        if self.last_submap_id < self.SUBMAP_GAP:
            return False
        if self.current_frame is None:
            raise RuntimeError("no current frame")

        self.current_candidates = []
        frame_pos = self.current_frame.pose.translation
        for sid, submap in sorted(self.submaps.items()):
            if self.last_submap_id - sid <= self.SUBMAP_GAP:
                continue
            existing = self.loop_constraints.get((sid, self.last_submap_id))
            if existing is not None and existing.valid:
                continue
            dis = float(np.linalg.norm(submap.pose.translation - frame_pos))
            if dis < self.CANDIDATE_DISTANCE_TH:
                log.info(
                    "taking %d with %d, last submap id: %d",
                    self.current_frame.keyframe_id,
                    sid,
                    self.last_submap_id,
                )
                self.current_candidates.append(sid)
        return bool(self.current_candidates)

    def match_in_history_submaps(self) -> None:
        """Match the current frame against each candidate submap."""
        frame = self.current_frame
        if frame is None:
            raise RuntimeError("no current frame")
        last = self.submaps[self.last_submap_id]

        for can in self.current_candidates:
            submap = self.submaps[can]
            field = self.submap_to_field[submap.id]
            field.source = frame.scan
            pose_in_target = submap.pose.inverse() * frame.pose  # T_S1_C

            aligned = field.align_g2o(pose_in_target)
            if aligned is not None:
                # T_S1_S2 = T_S1_C * T_C_W * T_W_S2
                t_this_cur = aligned * frame.pose.inverse() * last.pose
                key = (can, self.last_submap_id)
                self.loop_constraints.setdefault(key, LoopConstraint(can, self.last_submap_id, t_this_cur))
                log.info("adding loop from submap %d to %d", can, self.last_submap_id)
                self.has_new_loops = True

            if self._debug_path is not None:
                p = submap.pose
                with open(self._debug_path, "a", encoding="utf-8") as fout:
                    fout.write(f"{frame.id} {can} {p.x!r} {p.y!r} {p.theta!r}\n")

        self.current_candidates = []

    def optimize(self) -> None:
        """Pose-graph optimisation of submap poses; drop loops judged wrong."""
        optimizer = Optimizer()
        for sid, submap in self.submaps.items():
            optimizer.add_vertex(sid, VertexSE2(submap.pose))

        for i in range(self.last_submap_id):
            first, nxt = self.submaps[i], self.submaps[i + 1]
            optimizer.add_edge(
                EdgeSE2(
                    optimizer.vertex(i),
                    optimizer.vertex(i + 1),
                    first.pose.inverse() * nxt.pose,
                    np.eye(3) * 1e4,
                )
            )

        loop_edges: dict[tuple[int, int], EdgeSE2] = {}
        for key, constraint in sorted(self.loop_constraints.items()):
            if not constraint.valid:
                continue
            first, second = self.submaps[key[0]], self.submaps[key[1]]
            edge = EdgeSE2(optimizer.vertex(first.id), optimizer.vertex(second.id), constraint.t12, np.eye(3))
            edge.robust_kernel = CauchyKernel(self.LOOP_RK_DELTA)
            optimizer.add_edge(edge)
            loop_edges[key] = edge

        optimizer.optimize(10)

        inliers = 0
        for key, edge in loop_edges.items():
            chi2 = edge.chi2()
            if chi2 < self.LOOP_RK_DELTA:
                log.info("loop from %d to %d is correct, chi2: %g", key[0], key[1], chi2)
                edge.robust_kernel = None
                self.loop_constraints[key].valid = True
                inliers += 1
            else:
                edge.level = 1
                log.info("loop from %d to %d is invalid, chi2: %g", key[0], key[1], chi2)
                self.loop_constraints[key].valid = False

        optimizer.optimize(5)

        for sid, submap in self.submaps.items():
            estimate = optimizer.vertex(sid).estimate
            if not all(math.isfinite(v) for v in (estimate.x, estimate.y, estimate.theta)):
                raise ArithmeticError(f"pose of submap {sid} diverged")
            submap.pose = estimate
            submap.update_frame_pose_world()

        log.info("loop inliers: %d/%d", inliers, len(self.loop_constraints))

        self.loop_constraints = {k: c for k, c in self.loop_constraints.items() if c.valid}