"""Point-to-plane distance of a lidar point seen from one pose."""

from __future__ import annotations

import logging

import numpy as np

from liofactors.manifold import (
    CostFunction,
    delta_q,
    quat_conjugate,
    quat_multiply,
    quat_rotate,
    quat_to_rotation_matrix,
    skew_symmetric,
)

logger = logging.getLogger(__name__)

_SQRT_INFO = 100.0
_CHECK_EPS = 1e-6


class PointDistanceFactor(CostFunction):
    """One residual: signed plane distance of ``point`` over a body pose and the lidar-body extrinsic."""

    num_residuals = 1
    parameter_block_sizes = (7, 7)

    def __init__(self, point, coeff, info_mat):
        self.point = self._vector(point, 3, "point")
        self.coeff = self._vector(coeff, 4, "coeff")
        info = np.asarray(info_mat, dtype=float)
        if info.shape != (6, 6):
            raise ValueError(f"info_mat must be 6x6, got shape {info.shape}")
        self.info_mat = info

    def _raw_residual(self, pi, qi, tlb, qlb) -> float:
        qli = quat_multiply(qi, quat_conjugate(qlb))
        pli = pi - quat_rotate(qli, tlb)
        return float(self.coeff[:3] @ (quat_rotate(qli, self.point) + pli) + self.coeff[3])

    def evaluate(self, parameters, compute_jacobians=True):
        pose, extrinsic = self._blocks(parameters)
        pi, qi = pose[:3], pose[3:]
        tlb, qlb = extrinsic[:3], extrinsic[3:]
        residuals = np.array([_SQRT_INFO * self._raw_residual(pi, qi, tlb, qlb)])

        mask = self._jacobian_mask(compute_jacobians)
        if not any(mask):
            return residuals, None

        w = self.coeff[:3]
        ri = quat_to_rotation_matrix(qi)
        rlb = quat_to_rotation_matrix(qlb)
        lever = skew_symmetric(rlb.T @ self.point) - skew_symmetric(rlb.T @ tlb)

        jacobians = []
        if mask[0]:
            jac = np.zeros((1, 7))
            jac[0, :3] = w
            jac[0, 3:6] = -w @ ri @ lever
            jacobians.append(_SQRT_INFO * jac)
        else:
            jacobians.append(None)
        if mask[1]:
            jac = np.zeros((1, 7))
            jac[0, :3] = -w @ ri @ rlb.T
            jac[0, 3:6] = w @ ri @ lever
            jacobians.append(_SQRT_INFO * jac)
        else:
            jacobians.append(None)
        return residuals, jacobians

    def check(self, parameters):
        """Compare the analytic jacobians with forward differences.

        Returns ``(residuals, jacobians, numerical_residual, numerical_jacobian)``;
        the numerical jacobian is 1x12, pose then extrinsic local coordinates.
        """
        residuals, jacobians = self.evaluate(parameters, True)
        logger.debug("check begins; analytical residual %s", residuals)
        for jac in jacobians:
            logger.debug("analytical jacobian\n%s", jac)

        pose, extrinsic = self._blocks(parameters)
        base = _SQRT_INFO * self._raw_residual(pose[:3], pose[3:], extrinsic[:3], extrinsic[3:])
        logger.debug("numerical residual %s", base)

        numerical = np.empty((1, 12))
        for k in range(12):
            pi, qi = pose[:3].copy(), pose[3:].copy()
            tlb, qlb = extrinsic[:3].copy(), extrinsic[3:].copy()
            delta = np.zeros(3)
            delta[k % 3] = _CHECK_EPS
            block = k // 3
            if block == 0:
                pi += delta
            elif block == 1:
                qi = quat_multiply(qi, delta_q(delta))
            elif block == 2:
                tlb += delta
            else:
                qlb = quat_multiply(qlb, delta_q(delta))
            perturbed = _SQRT_INFO * self._raw_residual(pi, qi, tlb, qlb)
            numerical[0, k] = (perturbed - base) / _CHECK_EPS
        logger.debug("numerical jacobian\n%s", numerical)
        return residuals, jacobians, base, numerical