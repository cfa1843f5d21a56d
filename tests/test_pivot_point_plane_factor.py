import numpy as np
import pytest

from liofactors.manifold import delta_q, quat_normalize
from liofactors.pivot_point_plane_factor import PivotPointPlaneFactor

IDENTITY_POSE = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0]


def _pose(translation, rotation_vector):
    q = quat_normalize(delta_q(rotation_vector))
    return np.concatenate([np.asarray(translation, dtype=float), q])


@pytest.fixture
def parameters():
    return [
        _pose([0.5, -0.3, 0.2], [0.1, -0.2, 0.3]),
        _pose([1.2, 0.4, -0.1], [-0.3, 0.15, 0.05]),
        _pose([0.05, 0.1, -0.2], [0.02, 0.04, -0.03]),
    ]


@pytest.fixture
def factor():
    normal = np.array([0.3, -0.5, 0.8])
    normal /= np.linalg.norm(normal)
    return PivotPointPlaneFactor([2.0, 1.0, -0.5], np.concatenate([normal, [0.7]]))


def test_identity_poses_give_plane_equation():
    point = [1.0, 2.0, 3.0]
    coeff = [0.0, 0.0, 1.0, -2.5]
    factor = PivotPointPlaneFactor(point, coeff)
    residuals, jacobians = factor.evaluate([IDENTITY_POSE] * 3, False)
    assert jacobians is None
    assert residuals.shape == (1,)
    assert residuals[0] == pytest.approx(3.0 - 2.5)


def test_same_pose_for_pivot_and_point(factor, parameters):
    shared = parameters[0]
    residuals, _ = factor.evaluate([shared, shared, parameters[2]], False)
    expected = factor.coeff[:3] @ factor.point + factor.coeff[3]
    assert residuals[0] == pytest.approx(expected)


def test_analytic_jacobians_match_numerical(factor, parameters):
    residuals, jacobians, base, numerical = factor.check(parameters)
    assert residuals[0] == pytest.approx(base)
    analytic = np.concatenate([jac[0, :6] for jac in jacobians])
    np.testing.assert_allclose(analytic, numerical[0], atol=1e-4)


def test_last_jacobian_column_is_zero(factor, parameters):
    _, jacobians = factor.evaluate(parameters, True)
    assert len(jacobians) == 3
    for jac in jacobians:
        assert jac.shape == (1, 7)
        assert jac[0, 6] == 0.0


def test_jacobian_mask_selects_blocks(factor, parameters):
    _, full = factor.evaluate(parameters, True)
    _, partial = factor.evaluate(parameters, [False, True, False])
    assert partial[0] is None
    assert partial[2] is None
    np.testing.assert_allclose(partial[1], full[1])


def test_translation_jacobians_are_opposite(factor, parameters):
    _, jacobians = factor.evaluate(parameters, True)
    np.testing.assert_allclose(jacobians[0][0, :3], -jacobians[1][0, :3])


def test_wrong_block_count_raises(factor):
    with pytest.raises(ValueError):
        factor.evaluate([IDENTITY_POSE, IDENTITY_POSE], False)


def test_wrong_coeff_size_raises():
    with pytest.raises(ValueError):
        PivotPointPlaneFactor([0.0, 0.0, 0.0], [1.0, 0.0, 0.0])


def test_wrong_mask_length_raises(factor, parameters):
    with pytest.raises(ValueError):
        factor.evaluate(parameters, [True, False])