import numpy as np
import pytest

from liofactors.manifold import delta_q, quat_multiply, quat_normalize
from liofactors.prior_factor import PriorFactor

POS = np.array([1.0, -2.0, 0.5])
ROT = quat_normalize([0.1, 0.2, 0.3, 0.9])
SQRT_INFO_DIAG = np.array([1000.0, 1000.0, 1000.0, 0.1, 0.1, 0.1])


def pose(position, rotation):
    return np.concatenate([position, rotation])


def test_zero_residual_at_prior():
    residuals, _ = PriorFactor(POS, ROT).evaluate([pose(POS, ROT)])
    assert np.allclose(residuals, np.zeros(6))


def test_translation_residual_is_weighted():
    residuals, _ = PriorFactor(POS, ROT).evaluate([pose(POS + [0.001, 0.0, 0.0], ROT)])
    assert residuals[0] == pytest.approx(1.0)
    assert np.allclose(residuals[1:], np.zeros(5))


def test_rotation_residual_follows_small_angle():
    theta = np.array([0.002, -0.001, 0.003])
    rotated = quat_normalize(quat_multiply(ROT, delta_q(theta)))
    residuals, _ = PriorFactor(POS, ROT).evaluate([pose(POS, rotated)])
    assert np.allclose(residuals[3:], 0.1 * theta, atol=1e-7)
    assert np.allclose(residuals[:3], np.zeros(3))


def test_jacobian_shape_and_zero_last_column():
    _, jacobians = PriorFactor(POS, ROT).evaluate([pose(POS + 0.1, ROT)])
    assert len(jacobians) == 1
    assert jacobians[0].shape == (6, 7)
    assert np.array_equal(jacobians[0][:, 6], np.zeros(6))


def test_no_jacobians_when_not_requested():
    _, jacobians = PriorFactor(POS, ROT).evaluate([pose(POS, ROT)], False)
    assert jacobians is None
    _, masked = PriorFactor(POS, ROT).evaluate([pose(POS, ROT)], [False])
    assert masked is None


def test_check_numerical_matches_unweighted_analytic():
    factor = PriorFactor(POS, ROT)
    residuals, jacobian, numerical_residuals, numerical = factor.check([pose(POS + [0.3, 0.1, -0.2], ROT)])
    assert np.allclose(residuals, SQRT_INFO_DIAG * numerical_residuals)
    unweighted = jacobian[:, :6] / SQRT_INFO_DIAG[:, None]
    assert np.allclose(unweighted, numerical, atol=1e-4)


def test_wrong_parameter_blocks_raise():
    factor = PriorFactor(POS, ROT)
    with pytest.raises(ValueError):
        factor.evaluate([pose(POS, ROT), pose(POS, ROT)])
    with pytest.raises(ValueError):
        factor.evaluate([np.zeros(6)])
    with pytest.raises(ValueError):
        factor.evaluate([pose(POS, ROT)], [True, True])