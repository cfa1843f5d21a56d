"""Prior on a single pose."""

from __future__ import annotations

import logging

import numpy as np

from liofactors.manifold import (
    CostFunction,
    delta_q,
    left_quat_matrix,
    quat_conjugate,
    quat_multiply,
)

logger = logging.getLogger(__name__)

_CHECK_EPS = 1e-6


def _quat_inverse(q: np.ndarray) -> np.ndarray:
    return quat_conjugate(q) / (q @ q)


class PriorFactor(CostFunction):
    """Six residuals pulling a pose towards a fixed position and rotation."""

    num_residuals = 6
    parameter_block_sizes = (7,)

    _SQRT_INFO = np.diag([1000.0, 1000.0, 1000.0, 0.1, 0.1, 0.1])

    def __init__(self, pos, rot):
        self.pos = self._vector(pos, 3, "pos")
        self.rot = self._vector(rot, 4, "rot")

    def _raw_residual(self, position: np.ndarray, rotation: np.ndarray) -> np.ndarray:
        residual = np.empty(6)
        residual[:3] = position - self.pos
        residual[3:] = 2.0 * quat_multiply(_quat_inverse(self.rot), rotation)[:3]
        return residual

    def evaluate(self, parameters, compute_jacobians=True):
        (pose,) = self._blocks(parameters)
        position, rotation = pose[:3], pose[3:]
        residuals = self._SQRT_INFO @ self._raw_residual(position, rotation)
        logger.debug("residual: %s", residuals)

        mask = self._jacobian_mask(compute_jacobians)
        if not any(mask):
            return residuals, None

        local = np.eye(6)
        local[3:, 3:] = left_quat_matrix(quat_multiply(_quat_inverse(rotation), self.rot))[:3, :3]
        jacobian = np.zeros((6, 7))
        jacobian[:, :6] = self._SQRT_INFO @ local
        return residuals, [jacobian]

    def check(self, parameters):
        """Compare the analytic jacobian with forward differences.

        The numerical residual and jacobian are computed without the information
        weighting. Returns ``(residuals, jacobian, numerical_residuals,
        numerical_jacobian)``, the last a 6x6 array over the local pose coordinates.
        """
        residuals, jacobians = self.evaluate(parameters, True)
        logger.debug("check begins; analytical residual %s", residuals)
        logger.debug("analytical jacobian\n%s", jacobians[0])

        (pose,) = self._blocks(parameters)
        base = self._raw_residual(pose[:3], pose[3:])
        logger.debug("numerical residual %s", base)

        numerical = np.empty((6, 6))
        for k in range(6):
            position, rotation = pose[:3].copy(), pose[3:].copy()
            delta = np.zeros(3)
            delta[k % 3] = _CHECK_EPS
            if k < 3:
                position += delta
            else:
                rotation = quat_multiply(rotation, delta_q(delta))
            numerical[:, k] = (self._raw_residual(position, rotation) - base) / _CHECK_EPS
        logger.debug("numerical jacobian\n%s", numerical)
        return residuals, jacobians[0], base, numerical