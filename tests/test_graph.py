import math

import numpy as np
import pytest

from scanmap2d.graph import (
    CauchyKernel,
    EdgeSE2,
    EdgeSE2LikelihoodField,
    HuberKernel,
    Optimizer,
    VertexSE2,
    get_pixel_value,
)
from scanmap2d.pose import SE2


def _linear_field():
    ys, xs = np.mgrid[0:100, 0:100]
    return (0.1 * xs + 0.05 * ys).astype(np.float32)


def test_pixel_value_interpolates():
    img = np.array([[0.0, 2.0], [4.0, 6.0]])
    assert get_pixel_value(img, 0, 0) == pytest.approx(img[0, 0])
    assert get_pixel_value(img, 0.5, 0.5) == pytest.approx(np.mean(img))


def test_vertex_oplus():
    v = VertexSE2(SE2(1.0, 2.0, 0.1))
    v.oplus([0.5, -1.0, 0.2])
    assert v.estimate == SE2(1.5, 1.0, 0.1 + 0.2)


def test_likelihood_edge_outside():
    v = VertexSE2()
    edge = EdgeSE2LikelihoodField(_linear_field(), 100.0, 0.0, 10.0, v)
    assert edge.is_outside()
    assert np.allclose(edge.compute_error(), 0.0)
    assert edge.level == 1


def test_likelihood_edge_jacobian_matches_numeric():
    v = VertexSE2(SE2(0.3, -0.2, 0.4))
    edge = EdgeSE2LikelihoodField(_linear_field(), 1.0, 0.3, 10.0, v)
    assert not edge.is_outside()
    jac = edge.linearize()[0][0]
    orig, eps = v.estimate, 1e-5
    for k in range(3):
        step = np.zeros(3)
        step[k] = eps
        v.oplus(step)
        plus = edge.compute_error()[0]
        v.estimate = orig
        v.oplus(-step)
        minus = edge.compute_error()[0]
        v.estimate = orig
        assert jac[k] == pytest.approx((plus - minus) / (2 * eps), rel=1e-3, abs=1e-4)


def test_edge_se2_zero_error_when_consistent():
    a, b = VertexSE2(SE2(1, 0, 0.2)), VertexSE2(SE2(2, 1, -0.3))
    edge = EdgeSE2(a, b, a.estimate.inverse() * b.estimate)
    assert np.allclose(edge.compute_error(), 0.0, atol=1e-12)
    assert edge.chi2() == pytest.approx(0.0, abs=1e-20)


def test_kernels():
    huber = HuberKernel(1.0)
    assert huber.weight(0.5) == 1.0
    assert huber.weight(4.0) < 1.0
    cauchy = CauchyKernel(1.0)
    assert cauchy.weight(0.0) == 1.0
    assert cauchy.weight(10.0) < cauchy.weight(1.0)


def test_pose_graph_recovers_chain():
    truth = [SE2(0, 0, 0), SE2(1, 0, 0.5), SE2(1.5, 1, 1.0)]
    opt = Optimizer()
    verts = [VertexSE2(truth[0], fixed=True), VertexSE2(SE2(1.3, 0.2, 0.3)), VertexSE2(SE2(1.0, 1.4, 1.3))]
    for i, v in enumerate(verts):
        opt.add_vertex(i, v)
    for i in range(2):
        opt.add_edge(EdgeSE2(verts[i], verts[i + 1], truth[i].inverse() * truth[i + 1]))
    cost = opt.optimize(20)
    assert cost < 1e-8
    for v, t in zip(verts, truth):
        assert np.allclose([v.estimate.x, v.estimate.y], [t.x, t.y], atol=1e-4)
        assert math.isclose(v.estimate.theta, t.theta, abs_tol=1e-4)


def test_duplicate_and_missing_vertex():
    opt = Optimizer()
    opt.add_vertex(0, VertexSE2())
    with pytest.raises(ValueError):
        opt.add_vertex(0, VertexSE2())
    with pytest.raises(KeyError):
        opt.vertex(5)