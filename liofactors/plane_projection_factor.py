"""Consistency of a plane seen in the lidar frames of two poses."""

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

_CHECK_EPS = 1e-6


class PlaneProjectionFactor(CostFunction):
    """Four residuals: the plane of frame ``i`` carried into frame ``j`` minus the plane of frame ``j``.

    Planes are ``[nx, ny, nz, d]`` with ``n . x + d = 0``; residuals are
    weighted by ``score``.
    """

    num_residuals = 4
    parameter_block_sizes = (7, 7, 7)

    def __init__(self, local_coeffi, local_coeffj, score):
        self.local_coeffi = self._vector(local_coeffi, 4, "local_coeffi")
        self.local_coeffj = self._vector(local_coeffj, 4, "local_coeffj")
        self.score = float(score)

    def _coeffi_in_j(self, pi, qi, pj, qj, tlb, qlb) -> np.ndarray:
        qlb_conj = quat_conjugate(qlb)
        q_li = quat_multiply(qi, qlb_conj)
        p_li = pi - quat_rotate(q_li, tlb)
        q_lj = quat_multiply(qj, qlb_conj)
        p_lj = pj - quat_rotate(q_lj, tlb)

        q_li_conj = quat_conjugate(q_li)
        rot = quat_to_rotation_matrix(quat_multiply(q_li_conj, q_lj))
        pos = quat_rotate(q_li_conj, p_lj - p_li)

        w, d = self.local_coeffi[:3], self.local_coeffi[3]
        result = np.empty(4)
        result[:3] = rot.T @ w
        result[3] = pos @ w + d
        return result

    def evaluate(self, parameters, compute_jacobians=True):
        pose_i, pose_j, extrinsic = self._blocks(parameters)
        pi, qi = pose_i[:3], pose_i[3:]
        pj, qj = pose_j[:3], pose_j[3:]
        tlb, qlb = extrinsic[:3], extrinsic[3:]

        if self.local_coeffi[3] < 0:
            logger.info("disi less than zero: %s", self.local_coeffi[3])
        if self.local_coeffj[3] < 0:
            logger.info("disj less than zero: %s", self.local_coeffj[3])

        coeffi_in_j = self._coeffi_in_j(pi, qi, pj, qj, tlb, qlb)
        if coeffi_in_j[3] < 0:
            coeffi_in_j = -coeffi_in_j
            if coeffi_in_j[3] < 0:
                logger.info("disi_in_j less than zero: %s", coeffi_in_j[3])

        info = self.score
        residuals = info * (coeffi_in_j - self.local_coeffj)

        mask = self._jacobian_mask(compute_jacobians)
        if not any(mask):
            return residuals, None

        wi = self.local_coeffi[:3]
        ri = quat_to_rotation_matrix(qi)
        rj = quat_to_rotation_matrix(qj)
        rlb = quat_to_rotation_matrix(qlb)
        s = rlb.T @ tlb

        jacobians: list[np.ndarray | None] = []

        if mask[0]:
            jac = np.zeros((4, 6))
            jac[3, :3] = -wi @ rlb @ ri.T
            jac[:3, 3:] = -rlb @ rj.T @ ri @ skew_symmetric(rlb.T @ wi)
            jac[3, 3:] = wi @ rlb @ skew_symmetric(ri.T @ (pj - pi - rj @ s))
            jacobians.append(self._pad(info * jac))
        else:
            jacobians.append(None)

        if mask[1]:
            jac = np.zeros((4, 6))
            jac[3, :3] = wi @ rlb @ rj.T
            jac[:3, 3:] = rlb @ skew_symmetric(rj.T @ ri @ rlb.T @ wi)
            jac[3, 3:] = wi @ rlb @ ri.T @ rj @ skew_symmetric(s)
            jacobians.append(self._pad(info * jac))
        else:
            jacobians.append(None)

        if mask[2]:
            jac = np.zeros((4, 6))
            jac[3, :3] = -wi @ rlb @ ri.T @ (rj - ri) @ rlb.T
            jac[:3, 3:] = rlb @ rj.T @ ri @ skew_symmetric(rlb.T @ wi) - rlb @ skew_symmetric(
                rj.T @ ri @ rlb.T @ wi
            )
            jac[3, 3:] = wi @ (
                -rlb @ ri.T @ (rj - ri) @ skew_symmetric(s)
                - rlb @ skew_symmetric(ri.T @ (pj - pi - (rj - ri) @ s))
            )
            jacobians.append(self._pad(info * jac))
        else:
            jacobians.append(None)

        return residuals, jacobians

    @staticmethod
    def _pad(local: np.ndarray) -> np.ndarray:
        jac = np.zeros((4, 7))
        jac[:, :6] = local
        return jac

    def check(self, parameters):
        """Compare the analytic jacobians with forward differences.

        The numerical residual is taken without the sign normalization of the
        carried plane. Returns ``(residuals, jacobians, numerical_residuals,
        numerical_jacobian)``; the numerical jacobian is 4x18: pose ``i``, pose
        ``j`` and extrinsic, each in local (translation, rotation) coordinates.
        """
        residuals, jacobians = self.evaluate(parameters, True)
        logger.debug("check begins; analytical residual %s", residuals)
        for jac in jacobians:
            logger.debug("analytical jacobian\n%s", jac)

        pose_i, pose_j, extrinsic = self._blocks(parameters)
        info = self.score

        def raw(blocks) -> np.ndarray:
            return info * (self._coeffi_in_j(*blocks) - self.local_coeffj)

        original = [
            pose_i[:3],
            pose_i[3:],
            pose_j[:3],
            pose_j[3:],
            extrinsic[:3],
            extrinsic[3:],
        ]
        base = raw(original)
        logger.debug("numerical residual %s", base)

        numerical = np.empty((4, 18))
        for k in range(18):
            blocks = [block.copy() for block in original]
            delta = np.zeros(3)
            delta[k % 3] = _CHECK_EPS
            part = k // 3
            if part % 2 == 0:
                blocks[part] = blocks[part] + delta
            else:
                blocks[part] = quat_multiply(blocks[part], delta_q(delta))
            numerical[:, k] = (raw(blocks) - base) / _CHECK_EPS
        logger.debug("numerical jacobian\n%s", numerical)
        return residuals, jacobians, base, numerical