import numpy as np
import pytest

from liofactors.manifold import (
    CostFunction,
    GravityLocalParameterization,
    PoseLocalParameterization,
    delta_q,
    left_quat_matrix,
    quat_conjugate,
    quat_multiply,
    quat_normalize,
    quat_rotate,
    quat_to_rotation_matrix,
    right_quat_matrix,
    skew_symmetric,
)

IDENTITY = np.array([0.0, 0.0, 0.0, 1.0])
P = quat_normalize([0.1, -0.3, 0.2, 0.9])
Q = quat_normalize([-0.4, 0.1, 0.5, 0.7])


def test_delta_q_of_zero_is_identity():
    assert np.array_equal(delta_q([0.0, 0.0, 0.0]), IDENTITY)


def test_delta_q_holds_half_angle():
    theta = np.array([0.2, -0.4, 0.6])
    dq = delta_q(theta)
    assert dq[3] == 1.0
    assert np.allclose(2.0 * dq[:3], theta)


def test_skew_symmetric_is_cross_product():
    v = np.array([1.0, -2.0, 0.5])
    u = np.array([0.3, 0.7, -1.1])
    assert np.allclose(skew_symmetric(v) @ u, np.cross(v, u))
    assert np.allclose(skew_symmetric(v).T, -skew_symmetric(v))


def test_multiply_by_identity():
    assert np.allclose(quat_multiply(P, IDENTITY), P)
    assert np.allclose(quat_multiply(IDENTITY, P), P)


def test_unit_times_conjugate_is_identity():
    assert np.allclose(quat_multiply(P, quat_conjugate(P)), IDENTITY)


def test_rotate_matches_rotation_matrix():
    v = np.array([0.4, -1.2, 2.5])
    assert np.allclose(quat_rotate(P, v), quat_to_rotation_matrix(P) @ v)


def test_rotation_matrix_is_orthonormal():
    r = quat_to_rotation_matrix(Q)
    assert np.allclose(r @ r.T, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_quarter_turn_about_z():
    s = np.sqrt(0.5)
    q = np.array([0.0, 0.0, s, s])
    assert np.allclose(quat_rotate(q, [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_product_matrix_is_matrix_product():
    assert np.allclose(
        quat_to_rotation_matrix(quat_multiply(P, Q)),
        quat_to_rotation_matrix(P) @ quat_to_rotation_matrix(Q),
    )


def test_left_and_right_matrices():
    assert np.allclose(left_quat_matrix(P) @ Q, quat_multiply(P, Q))
    assert np.allclose(right_quat_matrix(Q) @ P, quat_multiply(P, Q))


def test_normalize():
    assert np.linalg.norm(quat_normalize([1.0, 2.0, 3.0, 4.0])) == pytest.approx(1.0)
    assert np.array_equal(quat_normalize([0.0, 0.0, 0.0, 0.0]), np.zeros(4))


def test_wrong_size_raises():
    with pytest.raises(ValueError):
        quat_multiply([1.0, 2.0, 3.0], IDENTITY)
    with pytest.raises(ValueError):
        skew_symmetric([1.0, 2.0])


def test_cost_function_is_abstract():
    with pytest.raises(TypeError):
        CostFunction()


def test_pose_plus_zero_delta():
    x = np.concatenate([[1.0, 2.0, 3.0], P])
    assert np.allclose(PoseLocalParameterization().plus(x, np.zeros(6)), x)


def test_pose_plus_adds_translation_and_keeps_unit_rotation():
    x = np.concatenate([[1.0, 2.0, 3.0], P])
    delta = np.array([0.5, -0.5, 1.5, 0.1, 0.2, -0.3])
    result = PoseLocalParameterization().plus(x, delta)
    assert np.allclose(result[:3], x[:3] + delta[:3])
    assert np.linalg.norm(result[3:]) == pytest.approx(1.0)


def test_pose_jacobian():
    param = PoseLocalParameterization()
    jac = param.compute_jacobian(np.concatenate([np.zeros(3), IDENTITY]))
    assert jac.shape == (param.global_size(), param.local_size())
    assert np.array_equal(jac[:6], np.eye(6))
    assert np.array_equal(jac[6], np.zeros(6))


def test_pose_plus_rejects_bad_delta():
    with pytest.raises(ValueError):
        PoseLocalParameterization().plus(np.concatenate([np.zeros(3), IDENTITY]), np.zeros(7))


def test_gravity_plus_leaves_no_z_rotation():
    result = GravityLocalParameterization().plus(IDENTITY, [0.2, -0.1])
    assert result[2] == pytest.approx(0.0)
    assert np.linalg.norm(result) == pytest.approx(1.0)


def test_gravity_jacobian():
    param = GravityLocalParameterization()
    jac = param.compute_jacobian(IDENTITY)
    assert jac.shape == (param.global_size(), param.local_size())
    assert np.array_equal(jac[:2], np.eye(2))
    assert np.array_equal(jac[2:], np.zeros((2, 2)))


def test_gravity_plus_rejects_bad_delta():
    with pytest.raises(ValueError):
        GravityLocalParameterization().plus(IDENTITY, [0.1, 0.2, 0.3])