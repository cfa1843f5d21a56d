"""Marginalization of parameter blocks into a linear prior.

Parameter blocks are mutable arrays shared between residual blocks. They are
told apart by identity, so the same block object must be passed to every
residual block that uses it. ``addr_shift`` mappings are keyed by ``id(block)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from liofactors.manifold import CostFunction, quat_conjugate, quat_multiply, quat_normalize

logger = logging.getLogger(__name__)

LossFunction = Callable[[float], Sequence[float]]


def _local(size: int) -> int:
    return 6 if size == 7 else size


def _global(size: int) -> int:
    return 7 if size == 6 else size


@dataclass
class ResidualBlockInfo:
    """A residual block taking part in marginalization.

    ``loss_function``, when given, maps a squared residual norm to
    ``(rho, rho', rho'')``. ``drop_set`` lists the positions of the parameter
    blocks to marginalize out.
    """

    cost_function: CostFunction
    loss_function: LossFunction | None
    parameter_blocks: list
    drop_set: list[int]
    jacobians: list[np.ndarray] = field(default_factory=list)
    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __post_init__(self):
        self.parameter_blocks = list(self.parameter_blocks)
        self.drop_set = list(self.drop_set)
        count = len(self.parameter_blocks)
        if len(self.cost_function.parameter_block_sizes) != count:
            raise ValueError("parameter blocks do not match the cost function")
        for index in self.drop_set:
            if not 0 <= index < count:
                raise IndexError(f"drop index {index} out of range")

    def evaluate(self) -> None:
        """Evaluate residuals and jacobians, applying the loss correction."""
        residuals, jacobians = self.cost_function.evaluate(self.parameter_blocks, True)
        self.residuals = np.asarray(residuals, dtype=float).reshape(-1).copy()
        self.jacobians = [np.asarray(jac, dtype=float).copy() for jac in jacobians]

        if self.loss_function is None:
            return

        sq_norm = float(self.residuals @ self.residuals)
        rho = [float(value) for value in self.loss_function(sq_norm)]
        sqrt_rho1 = np.sqrt(rho[1])

        if sq_norm == 0.0 or rho[2] <= 0.0:
            residual_scaling = sqrt_rho1
            alpha_sq_norm = 0.0
        else:
            d = 1.0 + 2.0 * sq_norm * rho[2] / rho[1]
            alpha = 1.0 - np.sqrt(d)
            residual_scaling = sqrt_rho1 / (1.0 - alpha)
            alpha_sq_norm = alpha / sq_norm

        r = self.residuals
        self.jacobians = [
            sqrt_rho1 * (jac - alpha_sq_norm * np.outer(r, r @ jac)) for jac in self.jacobians
        ]
        self.residuals = r * residual_scaling

    def local_size(self, size: int) -> int:
        return _local(size)


class MarginalizationInfo:
    """Collects residual blocks and reduces them to a prior on the kept blocks."""

    eps = 1e-8

    def __init__(self):
        self.factors: list[ResidualBlockInfo] = []
        self.m = 0
        self.n = 0
        self.sum_block_size = 0
        self.parameter_block_size: dict[int, int] = {}
        self.parameter_block_idx: dict[int, int] = {}
        self.parameter_block_data: dict[int, np.ndarray] = {}
        self.keep_block_size: list[int] = []
        self.keep_block_idx: list[int] = []
        self.keep_block_data: list[np.ndarray] = []
        self.linearized_jacobians = np.zeros((0, 0))
        self.linearized_residuals = np.zeros(0)

    def local_size(self, size: int) -> int:
        return _local(size)

    def global_size(self, size: int) -> int:
        return _global(size)

    def add_residual_block_info(self, residual_block_info: ResidualBlockInfo) -> None:
        self.factors.append(residual_block_info)
        sizes = residual_block_info.cost_function.parameter_block_sizes
        blocks = residual_block_info.parameter_blocks
        for block, size in zip(blocks, sizes):
            self.parameter_block_size[id(block)] = size
        for index in residual_block_info.drop_set:
            self.parameter_block_idx[id(blocks[index])] = 0

    def pre_marginalize(self) -> None:
        """Evaluate every residual block and keep a copy of the linearization point."""
        for factor in self.factors:
            factor.evaluate()
            sizes = factor.cost_function.parameter_block_sizes
            for block, size in zip(factor.parameter_blocks, sizes):
                key = id(block)
                if key not in self.parameter_block_data:
                    data = np.array(block, dtype=float).reshape(-1)[:size].copy()
                    self.parameter_block_data[key] = data

    def _assign_indices(self) -> int:
        pos = 0
        for key in self.parameter_block_idx:
            self.parameter_block_idx[key] = pos
            pos += _local(self.parameter_block_size[key])
        self.m = pos
        for key, size in self.parameter_block_size.items():
            if key not in self.parameter_block_idx:
                self.parameter_block_idx[key] = pos
                pos += _local(size)
        self.n = pos - self.m
        return pos

    def _build_system(self, total: int) -> tuple[np.ndarray, np.ndarray]:
        a = np.zeros((total, total))
        b = np.zeros(total)
        for factor in self.factors:
            placed = []
            for block, jac in zip(factor.parameter_blocks, factor.jacobians):
                key = id(block)
                size = _local(self.parameter_block_size[key])
                placed.append((self.parameter_block_idx[key], size, jac[:, :size]))
            for i, (idx_i, size_i, jac_i) in enumerate(placed):
                for idx_j, size_j, jac_j in placed[i:]:
                    block = jac_i.T @ jac_j
                    a[idx_i:idx_i + size_i, idx_j:idx_j + size_j] += block
                    if (idx_i, size_i) != (idx_j, size_j):
                        a[idx_j:idx_j + size_j, idx_i:idx_i + size_i] += block.T
                b[idx_i:idx_i + size_i] += jac_i.T @ factor.residuals
        return a, b

    def _pseudo_inverse_values(self, values: np.ndarray) -> np.ndarray:
        inverse = np.zeros_like(values)
        mask = values > self.eps
        inverse[mask] = 1.0 / values[mask]
        return inverse

    def marginalize(self) -> None:
        """Form the Schur complement and factor it into a linear residual."""
        total = self._assign_indices()
        m, n = self.m, self.n
        logger.debug("marginalization, pos: %d, m: %d, n: %d", total, m, n)
        a, b = self._build_system(total)

        if m > 0:
            amm = 0.5 * (a[:m, :m] + a[:m, :m].T)
            values, vectors = np.linalg.eigh(amm)
            amm_inv = vectors @ np.diag(self._pseudo_inverse_values(values)) @ vectors.T
        else:
            amm_inv = np.zeros((0, 0))

        bmm = b[:m]
        amr = a[:m, m:]
        arm = a[m:, :m]
        arr = a[m:, m:]
        brr = b[m:]
        a_schur = arr - arm @ amm_inv @ amr
        b_schur = brr - arm @ amm_inv @ bmm

        if n == 0:
            self.linearized_jacobians = np.zeros((0, 0))
            self.linearized_residuals = np.zeros(0)
            return

        values, vectors = np.linalg.eigh(a_schur)
        s = np.where(values > self.eps, values, 0.0)
        s_inv = self._pseudo_inverse_values(values)
        self.linearized_jacobians = np.diag(np.sqrt(s)) @ vectors.T
        self.linearized_residuals = np.diag(np.sqrt(s_inv)) @ vectors.T @ b_schur

    def get_parameter_blocks(self, addr_shift: Mapping[int, object]) -> list:
        """Record the kept blocks and return their replacements from ``addr_shift``.

        ``addr_shift`` maps ``id`` of each kept block to the block that takes its
        place in the next problem.
        """
        keep_blocks = []
        self.keep_block_size = []
        self.keep_block_idx = []
        self.keep_block_data = []
        for key, idx in self.parameter_block_idx.items():
            if idx >= self.m:
                if key not in addr_shift:
                    raise KeyError(f"no replacement given for kept parameter block {key}")
                self.keep_block_size.append(self.parameter_block_size[key])
                self.keep_block_idx.append(idx)
                self.keep_block_data.append(self.parameter_block_data[key])
                keep_blocks.append(addr_shift[key])
        self.sum_block_size = sum(self.keep_block_size)
        return keep_blocks


class MarginalizationFactor(CostFunction):
    """Linear prior left behind by a marginalization."""

    def __init__(self, marginalization_info: MarginalizationInfo):
        self.marginalization_info = marginalization_info
        self.parameter_block_sizes = tuple(marginalization_info.keep_block_size)
        self.num_residuals = marginalization_info.n

    def evaluate(self, parameters, compute_jacobians=True):
        info = self.marginalization_info
        blocks = self._blocks(parameters)
        n, m = info.n, info.m

        dx = np.zeros(n)
        for x, size, idx, x0 in zip(blocks, info.keep_block_size, info.keep_block_idx, info.keep_block_data):
            idx -= m
            if size != 7:
                dx[idx:idx + size] = x - x0
                continue
            dx[idx:idx + 3] = x[:3] - x0[:3]
            q0 = x0[3:]
            q0_inv = quat_conjugate(q0) / (q0 @ q0)
            dq = quat_multiply(q0_inv, x[3:])
            vec = 2.0 * quat_normalize(dq)[:3]
            dx[idx + 3:idx + 6] = -vec if dq[3] < 0 else vec

        residuals = info.linearized_residuals + info.linearized_jacobians @ dx
        logger.debug("linearized_residuals: %s", np.linalg.norm(info.linearized_residuals))
        logger.debug("linearized_residuals size: %d", info.linearized_residuals.shape[0])
        logger.debug("dr: %s", np.linalg.norm(info.linearized_jacobians @ dx))

        mask = self._jacobian_mask(compute_jacobians)
        if not any(mask):
            return residuals, None

        jacobians: list[np.ndarray | None] = []
        for wanted, size, idx in zip(mask, info.keep_block_size, info.keep_block_idx):
            if not wanted:
                jacobians.append(None)
                continue
            local = _local(size)
            idx -= m
            jac = np.zeros((n, size))
            jac[:, :local] = info.linearized_jacobians[:, idx:idx + local]
            jacobians.append(jac)
        return residuals, jacobians