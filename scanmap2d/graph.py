"""A small pose-graph optimiser with SE2 vertices and robust kernels."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from scanmap2d.pose import SE2

IMAGE_BORDER = 10
_NUMERIC_EPS = 1e-7


def get_pixel_value(image, x: float, y: float) -> float:
    """Bilinearly interpolated value of a single-channel image at (x, y)."""
    rows, cols = image.shape[:2]
    x = min(max(float(x), 0.0), cols - 1.0)
    y = min(max(float(y), 0.0), rows - 1.0)
    x0, y0 = int(math.floor(x)), int(math.floor(y))
    x1, y1 = min(x0 + 1, cols - 1), min(y0 + 1, rows - 1)
    fx, fy = x - x0, y - y0
    return float(
        (1 - fx) * (1 - fy) * image[y0, x0]
        + fx * (1 - fy) * image[y0, x1]
        + (1 - fx) * fy * image[y1, x0]
        + fx * fy * image[y1, x1]
    )


class VertexSE2:
    """An optimisable planar pose."""

    def __init__(self, estimate: SE2 | None = None, fixed: bool = False):
        self.estimate = estimate if estimate is not None else SE2()
        self.fixed = fixed

    def oplus(self, update) -> None:
        """Apply an increment: translation added, rotation right-multiplied."""
        e = self.estimate
        self.estimate = SE2(e.x + update[0], e.y + update[1], e.theta + update[2])


class EdgeSE2LikelihoodField:
    """Unary edge: a laser point's value in a likelihood-field image."""

    def __init__(self, field_image, range_, angle, resolution=10.0, vertex=None):
        self.field_image = field_image
        self.range = float(range_)
        self.angle = float(angle)
        self.resolution = float(resolution)
        self.vertices = (vertex,)
        self.information = np.eye(1)
        self.robust_kernel = None
        self.level = 0

    def _pixel(self):
        pose = self.vertices[0].estimate
        pw = pose * np.array([self.range * math.cos(self.angle), self.range * math.sin(self.angle)])
        rows, cols = self.field_image.shape[:2]
        return pw * self.resolution + np.array([rows // 2, cols // 2], dtype=float)

    def _inside(self, pf) -> bool:
        rows, cols = self.field_image.shape[:2]
        b = IMAGE_BORDER
        return b <= pf[0] < cols - b and b <= pf[1] < rows - b

    def is_outside(self) -> bool:
        pf = self._pixel().astype(int)
        return not self._inside(pf)

    def compute_error(self) -> np.ndarray:
        pf = self._pixel() - 0.5
        if self._inside(pf):
            return np.array([get_pixel_value(self.field_image, pf[0], pf[1])])
        self.level = 1
        return np.zeros(1)

    def linearize(self) -> list[np.ndarray]:
        theta = self.vertices[0].estimate.theta
        pf = self._pixel() - 0.5
        if not self._inside(pf):
            self.level = 1
            return [np.zeros((1, 3))]
        img, res = self.field_image, self.resolution
        dx = 0.5 * (get_pixel_value(img, pf[0] + 1, pf[1]) - get_pixel_value(img, pf[0] - 1, pf[1]))
        dy = 0.5 * (get_pixel_value(img, pf[0], pf[1] + 1) - get_pixel_value(img, pf[0], pf[1] - 1))
        a = self.angle + theta
        jac = [res * dx, res * dy, -res * dx * self.range * math.sin(a) + res * dy * self.range * math.cos(a)]
        return [np.array([jac])]

    def chi2(self) -> float:
        e = self.compute_error()
        return float(e @ self.information @ e)


class EdgeSE2:
    """Binary edge: error = log(v1^-1 * v2 * measurement^-1)."""

    def __init__(self, v1, v2, measurement: SE2, information=None):
        self.vertices = (v1, v2)
        self.measurement = measurement
        self.information = np.eye(3) if information is None else np.asarray(information, dtype=float)
        self.robust_kernel = None
        self.level = 0

    def compute_error(self) -> np.ndarray:
        v1, v2 = self.vertices
        return (v1.estimate.inverse() * v2.estimate * self.measurement.inverse()).log()

    def linearize(self) -> list[np.ndarray]:
        """Numeric Jacobians with respect to each vertex's increment."""
        eps = _NUMERIC_EPS
        jacobians = []
        for vertex in self.vertices:
            orig = vertex.estimate
            jac = np.zeros((3, 3))
            for k in range(3):
                step = np.zeros(3)
                step[k] = eps
                vertex.oplus(step)
                plus = self.compute_error()
                vertex.estimate = orig
                vertex.oplus(-step)
                minus = self.compute_error()
                vertex.estimate = orig
                diff = plus - minus
                diff[2] = (diff[2] + math.pi) % (2 * math.pi) - math.pi
                jac[:, k] = diff / (2 * eps)
            jacobians.append(jac)
        return jacobians

    def chi2(self) -> float:
        e = self.compute_error()
        return float(e @ self.information @ e)


@dataclass
class HuberKernel:
    delta: float = 1.0

    def _rho(self, chi2: float) -> float:
        dsqr = self.delta**2
        return chi2 if chi2 <= dsqr else 2.0 * math.sqrt(chi2) * self.delta - dsqr

    def weight(self, chi2: float) -> float:
        """First derivative of the robust cost with respect to chi2."""
        return 1.0 if chi2 <= self.delta**2 else self.delta / math.sqrt(chi2)


@dataclass
class CauchyKernel:
    delta: float = 1.0

    def _rho(self, chi2: float) -> float:
        dsqr = self.delta**2
        return dsqr * math.log1p(chi2 / dsqr)

    def weight(self, chi2: float) -> float:
        return 1.0 / (1.0 + chi2 / self.delta**2)


class Optimizer:
    """Levenberg-Marquardt over SE2 vertices."""

    def __init__(self):
        self._vertices: dict[int, VertexSE2] = {}
        self._edges: list = []

    def add_vertex(self, vertex_id: int, vertex: VertexSE2) -> None:
        if vertex_id in self._vertices:
            raise ValueError(f"duplicate vertex id {vertex_id}")
        self._vertices[vertex_id] = vertex

    def add_edge(self, edge) -> None:
        self._edges.append(edge)

    def vertex(self, vertex_id: int) -> VertexSE2:
        return self._vertices[vertex_id]

    @staticmethod
    def _edge_cost(edge) -> float:
        chi2 = edge.chi2()
        return edge.robust_kernel._rho(chi2) if edge.robust_kernel else chi2

    def _total(self, edges) -> float:
        return sum(self._edge_cost(e) for e in edges)

    def _build(self, edges, index, n):
        hess, grad = np.zeros((n, n)), np.zeros(n)
        for edge in edges:
            err = edge.compute_error()
            jacs = edge.linearize()
            chi2 = float(err @ edge.information @ err)
            w = edge.robust_kernel.weight(chi2) if edge.robust_kernel else 1.0
            omega = w * edge.information
            blocks = [(index.get(id(v)), j) for v, j in zip(edge.vertices, jacs)]
            for i, ji in blocks:
                if i is None:
                    continue
                grad[3 * i : 3 * i + 3] -= ji.T @ omega @ err
                for k, jk in blocks:
                    if k is not None:
                        hess[3 * i : 3 * i + 3, 3 * k : 3 * k + 3] += ji.T @ omega @ jk
        return hess, grad

    def optimize(self, iterations: int = 10) -> float:
        """Run up to ``iterations`` steps on edges at level 0; return the final cost."""
        free = [v for v in self._vertices.values() if not v.fixed]
        index = {id(v): i for i, v in enumerate(free)}
        edges = [e for e in self._edges if e.level == 0]
        cost = self._total(edges)
        if not free or not edges:
            return cost
        n = 3 * len(free)
        lam = None
        for _ in range(iterations):
            hess, grad = self._build(edges, index, n)
            if lam is None:
                lam = 1e-5 * max(float(np.max(np.diag(hess))), 1e-12)
            accepted = False
            for _ in range(10):
                try:
                    dx = np.linalg.solve(hess + lam * np.eye(n), grad)
                except np.linalg.LinAlgError:
                    lam *= 2
                    continue
                backup = [v.estimate for v in free]
                for i, v in enumerate(free):
                    v.oplus(dx[3 * i : 3 * i + 3])
                new_cost = self._total(edges)
                if new_cost < cost:
                    cost, lam, accepted = new_cost, max(lam / 3, 1e-12), True
                    break
                for v, est in zip(free, backup):
                    v.estimate = est
                lam *= 2
            if not accepted:
                break
        return cost