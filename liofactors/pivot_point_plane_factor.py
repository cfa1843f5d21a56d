"""Point-to-plane distance of a lidar point expressed in a pivot frame."""

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

_SQRT_INFO = 1.0
_CHECK_EPS = 1e-6


class PivotPointPlaneFactor(CostFunction):
    """One residual over the pivot pose, the pose of the point and the lidar-body extrinsic.

    The point is observed from pose ``i``; the plane ``coeff = [w, b]`` is
    expressed in the lidar frame of the pivot pose.
    """

    num_residuals = 1
    parameter_block_sizes = (7, 7, 7)

    def __init__(self, point, coeff):
        self.point = self._vector(point, 3, "point")
        self.coeff = self._vector(coeff, 4, "coeff")

    def _raw_residual(self, p_pivot, q_pivot, pi, qi, tlb, qlb) -> float:
        qlb_conj = quat_conjugate(qlb)
        q_lpivot = quat_multiply(q_pivot, qlb_conj)
        p_lpivot = p_pivot - quat_rotate(q_lpivot, tlb)

        q_li = quat_multiply(qi, qlb_conj)
        p_li = pi - quat_rotate(q_li, tlb)

        q_lpivot_conj = quat_conjugate(q_lpivot)
        q_lpi = quat_multiply(q_lpivot_conj, q_li)
        p_lpi = quat_rotate(q_lpivot_conj, p_li - p_lpivot)

        w, b = self.coeff[:3], self.coeff[3]
        return float(w @ (quat_rotate(q_lpi, self.point) + p_lpi) + b)

    def evaluate(self, parameters, compute_jacobians=True):
        pivot, pose, extrinsic = self._blocks(parameters)
        p_pivot, q_pivot = pivot[:3], pivot[3:]
        pi, qi = pose[:3], pose[3:]
        tlb, qlb = extrinsic[:3], extrinsic[3:]

        residuals = np.array(
            [_SQRT_INFO * self._raw_residual(p_pivot, q_pivot, pi, qi, tlb, qlb)]
        )

        mask = self._jacobian_mask(compute_jacobians)
        if not any(mask):
            return residuals, None

        w = self.coeff[:3]
        ri = quat_to_rotation_matrix(qi)
        rp = quat_to_rotation_matrix(q_pivot)
        rlb = quat_to_rotation_matrix(qlb)
        lever = self.point - tlb
        rel = rp.T @ ri @ rlb.T @ lever
        offset = rp.T @ (pi - p_pivot)

        jacobians: list[np.ndarray | None] = []

        if mask[0]:
            jac = np.zeros((1, 7))
            jac[0, :3] = -w @ rlb @ rp.T
            jac[0, 3:6] = w @ rlb @ (skew_symmetric(rel) + skew_symmetric(offset))
            jacobians.append(_SQRT_INFO * jac)
        else:
            jacobians.append(None)

        if mask[1]:
            jac = np.zeros((1, 7))
            jac[0, :3] = w @ rlb @ rp.T
            jac[0, 3:6] = (
                w
                @ rlb
                @ rp.T
                @ ri
                @ (-skew_symmetric(rlb.T @ self.point) + skew_symmetric(rlb.T @ tlb))
            )
            jacobians.append(_SQRT_INFO * jac)
        else:
            jacobians.append(None)

        if mask[2]:
            jac = np.zeros((1, 7))
            jac[0, :3] = w @ (np.eye(3) - rlb @ rp.T @ ri @ rlb.T)
            jac[0, 3:6] = w @ rlb @ (
                -skew_symmetric(rel)
                + rp.T @ ri @ skew_symmetric(rlb.T @ lever)
                - skew_symmetric(offset)
            )
            jacobians.append(_SQRT_INFO * jac)
        else:
            jacobians.append(None)

        return residuals, jacobians

    def check(self, parameters):
        """Compare the analytic jacobians with forward differences.

        Returns ``(residuals, jacobians, numerical_residual, numerical_jacobian)``;
        the numerical jacobian is 1x18: pivot pose, pose ``i`` and extrinsic,
        each in local (translation, rotation) coordinates.
        """
        residuals, jacobians = self.evaluate(parameters, True)
        logger.debug("check begins; analytical residual %s", residuals)
        for jac in jacobians:
            logger.debug("analytical jacobian\n%s", jac)

        pivot, pose, extrinsic = self._blocks(parameters)
        base = _SQRT_INFO * self._raw_residual(
            pivot[:3], pivot[3:], pose[:3], pose[3:], extrinsic[:3], extrinsic[3:]
        )
        logger.debug("numerical residual %s", base)

        numerical = np.empty((1, 18))
        for k in range(18):
            blocks = [
                pivot[:3].copy(),
                pivot[3:].copy(),
                pose[:3].copy(),
                pose[3:].copy(),
                extrinsic[:3].copy(),
                extrinsic[3:].copy(),
            ]
            delta = np.zeros(3)
            delta[k % 3] = _CHECK_EPS
            part = k // 3
            if part % 2 == 0:
                blocks[part] = blocks[part] + delta
            else:
                blocks[part] = quat_multiply(blocks[part], delta_q(delta))
            perturbed = _SQRT_INFO * self._raw_residual(*blocks)
            numerical[0, k] = (perturbed - base) / _CHECK_EPS
        logger.debug("numerical jacobian\n%s", numerical)
        return residuals, jacobians, base, numerical