"""Quaternion helpers, the cost-function base and local parameterizations.

Quaternions are stored as ``[x, y, z, w]`` arrays; poses as
``[px, py, pz, qx, qy, qz, qw]``.
"""

from __future__ import annotations

import abc
from collections.abc import Iterable, Sequence

import numpy as np


def _as_vector(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def delta_q(theta) -> np.ndarray:
    """Small-angle quaternion for the rotation vector ``theta`` (not normalized)."""
    half = _as_vector(theta, 3, "theta") / 2.0
    return np.array([half[0], half[1], half[2], 1.0])


def skew_symmetric(v) -> np.ndarray:
    """Cross-product matrix of a 3-vector."""
    x, y, z = _as_vector(v, 3, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def quat_multiply(p, q) -> np.ndarray:
    """Hamilton product ``p * q``."""
    p = _as_vector(p, 4, "p")
    q = _as_vector(q, 4, "q")
    pv, pw = p[:3], p[3]
    qv, qw = q[:3], q[3]
    vec = pw * qv + qw * pv + np.cross(pv, qv)
    return np.array([vec[0], vec[1], vec[2], pw * qw - pv @ qv])


def quat_conjugate(q) -> np.ndarray:
    """Conjugate quaternion."""
    q = _as_vector(q, 4, "q")
    return np.array([-q[0], -q[1], -q[2], q[3]])


def quat_rotate(q, v) -> np.ndarray:
    """Rotate ``v`` by ``q``, assuming ``q`` has unit norm."""
    q = _as_vector(q, 4, "q")
    v = _as_vector(v, 3, "v")
    qv = q[:3]
    uv = 2.0 * np.cross(qv, v)
    return v + q[3] * uv + np.cross(qv, uv)


def quat_normalize(q) -> np.ndarray:
    """Unit quaternion in the direction of ``q``; a zero quaternion is returned unchanged."""
    q = _as_vector(q, 4, "q")
    norm = np.linalg.norm(q)
    return q / norm if norm > 0.0 else q.copy()


def quat_to_rotation_matrix(q) -> np.ndarray:
    """Rotation matrix of a unit quaternion."""
    x, y, z, w = _as_vector(q, 4, "q")
    tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
    twx, twy, twz = tx * w, ty * w, tz * w
    txx, txy, txz = tx * x, ty * x, tz * x
    tyy, tyz, tzz = ty * y, tz * y, tz * z
    return np.array(
        [
            [1.0 - (tyy + tzz), txy - twz, txz + twy],
            [txy + twz, 1.0 - (txx + tzz), tyz - twx],
            [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
        ]
    )


def left_quat_matrix(q) -> np.ndarray:
    """Matrix ``L(q)`` with ``L(q) @ p == q * p``."""
    q = _as_vector(q, 4, "q")
    vq, w = q[:3], q[3]
    m = np.empty((4, 4))
    m[:3, :3] = w * np.eye(3) + skew_symmetric(vq)
    m[:3, 3] = vq
    m[3, :3] = -vq
    m[3, 3] = w
    return m


def right_quat_matrix(q) -> np.ndarray:
    """Matrix ``R(q)`` with ``R(q) @ p == p * q``."""
    q = _as_vector(q, 4, "q")
    vq, w = q[:3], q[3]
    m = np.empty((4, 4))
    m[:3, :3] = w * np.eye(3) - skew_symmetric(vq)
    m[:3, 3] = vq
    m[3, :3] = -vq
    m[3, 3] = w
    return m


class CostFunction(abc.ABC):
    """A residual block over fixed-size parameter blocks."""

    num_residuals: int = 0
    parameter_block_sizes: tuple[int, ...] = ()

    @abc.abstractmethod
    def evaluate(self, parameters, compute_jacobians=True):
        """Return ``(residuals, jacobians)``.

        ``jacobians`` is ``None`` when none are requested, otherwise a list with
        one row-major ``(num_residuals, block_size)`` array per parameter block,
        or ``None`` for a block whose jacobian was not requested.
        """

    @staticmethod
    def _vector(values, size: int, name: str) -> np.ndarray:
        return _as_vector(values, size, name)

    def _blocks(self, parameters: Sequence) -> list[np.ndarray]:
        blocks = list(parameters)
        if len(blocks) != len(self.parameter_block_sizes):
            raise ValueError(
                f"expected {len(self.parameter_block_sizes)} parameter blocks, got {len(blocks)}"
            )
        return [
            _as_vector(block, size, f"parameter block {index}")
            for index, (block, size) in enumerate(zip(blocks, self.parameter_block_sizes))
        ]

    def _jacobian_mask(self, compute_jacobians) -> list[bool]:
        count = len(self.parameter_block_sizes)
        if isinstance(compute_jacobians, (bool, np.bool_)):
            return [bool(compute_jacobians)] * count
        if not isinstance(compute_jacobians, Iterable):
            raise TypeError("compute_jacobians must be a bool or a sequence of bools")
        mask = [bool(flag) for flag in compute_jacobians]
        if len(mask) != count:
            raise ValueError(f"compute_jacobians must have {count} entries, got {len(mask)}")
        return mask


class PoseLocalParameterization:
    """Pose manifold: translation added, rotation composed on the right."""

    def plus(self, x, delta) -> np.ndarray:
        x = _as_vector(x, 7, "x")
        delta = _as_vector(delta, 6, "delta")
        result = np.empty(7)
        result[:3] = x[:3] + delta[:3]
        result[3:] = quat_normalize(quat_multiply(x[3:], delta_q(delta[3:])))
        return result

    def compute_jacobian(self, x) -> np.ndarray:
        _as_vector(x, 7, "x")
        jacobian = np.zeros((7, 6))
        jacobian[:6, :] = np.eye(6)
        return jacobian

    def global_size(self) -> int:
        return 7

    def local_size(self) -> int:
        return 6


class GravityLocalParameterization:
    """Gravity-direction manifold: rotation about the x and y axes only."""

    def plus(self, x, delta) -> np.ndarray:
        q = _as_vector(x, 4, "x")
        dx, dy = _as_vector(delta, 2, "delta")
        return quat_normalize(quat_multiply(q, delta_q([dx, dy, 0.0])))

    def compute_jacobian(self, x) -> np.ndarray:
        _as_vector(x, 4, "x")
        jacobian = np.zeros((4, 2))
        jacobian[:2, :] = np.eye(2)
        return jacobian

    def global_size(self) -> int:
        return 4

    def local_size(self) -> int:
        return 2