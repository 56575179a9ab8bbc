"""Rigid transforms in the plane."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

_SMALL = 1e-10


def normalize_angle(angle: float) -> float:
    """Wrap an angle into [-pi, pi)."""
    return (angle + math.pi) % (2.0 * math.pi) - math.pi


@dataclass(frozen=True)
class SE2:
    """A planar rigid transform: rotation by ``theta`` followed by translation."""

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        object.__setattr__(self, "theta", normalize_angle(float(self.theta)))

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x, self.y])

    @classmethod
    def exp(cls, xi) -> SE2:
        """Exponential map of a tangent vector (vx, vy, theta)."""
        vx, vy, theta = (float(v) for v in xi)
        if abs(theta) < _SMALL:
            a, b = 1.0 - theta * theta / 6.0, 0.5 * theta
        else:
            a = math.sin(theta) / theta
            b = (1.0 - math.cos(theta)) / theta
        return cls(a * vx - b * vy, b * vx + a * vy, theta)

    def log(self) -> np.ndarray:
        """Logarithmic map, the inverse of :meth:`exp`."""
        theta = self.theta
        half = 0.5 * theta
        if abs(theta) < _SMALL:
            half_cot = 1.0 - theta * theta / 12.0
        else:
            half_cot = half * math.sin(theta) / (1.0 - math.cos(theta))
        vx = half_cot * self.x + half * self.y
        vy = -half * self.x + half_cot * self.y
        return np.array([vx, vy, theta])

    def inverse(self) -> SE2:
        c, s = math.cos(self.theta), math.sin(self.theta)
        return SE2(-(c * self.x + s * self.y), -(-s * self.x + c * self.y), -self.theta)

    def rotation_matrix(self) -> np.ndarray:
        c, s = math.cos(self.theta), math.sin(self.theta)
        return np.array([[c, -s], [s, c]])

    def transform_point(self, point) -> np.ndarray:
        """Apply the transform to a point or to an (N, 2) array of points."""
        pts = np.asarray(point, dtype=float)
        return pts @ self.rotation_matrix().T + self.translation

    def __mul__(self, other):
        if isinstance(other, SE2):
            t = self.transform_point(other.translation)
            return SE2(t[0], t[1], self.theta + other.theta)
        return self.transform_point(other)