# liofactors

Residual blocks, manifold parameterizations and Schur-complement
marginalization for lidar-based pose optimization, written with NumPy.

Every residual block reports its residuals together with analytic Jacobians.
A least-squares solver can then use them directly.

## Conventions

- Quaternions are 4 numbers `[qx, qy, qz, qw]`.
- Poses are 7 numbers `[x, y, z, qx, qy, qz, qw]`.
- Jacobians are row-major arrays of shape `(num_residuals, block_size)`. For
  a pose block the 7th column is always zero. The first six columns are taken
  with respect to the local coordinates `(translation, rotation)`. The rotation
  perturbation is applied on the right, as `q * delta_q(theta)`.

## Modules

### `liofactors.manifold`

Quaternion and rotation helpers:

- `delta_q(theta)`: the small-angle quaternion `[theta/2, 1]`, not normalized.
- `skew_symmetric(v)`
- `quat_multiply(p, q)`
- `quat_conjugate(q)`
- `quat_rotate(q, v)`
- `quat_normalize(q)`
- `quat_to_rotation_matrix(q)`
- `left_quat_matrix(q)` and `right_quat_matrix(q)`.

`CostFunction` is the abstract base of every residual block. It has these
members:

- `num_residuals` and `parameter_block_sizes`.
- `evaluate(parameters, compute_jacobians=True)`, which returns
  `(residuals, jacobians)`.

`compute_jacobians` may be a single bool or a sequence with one bool per
parameter block. When no Jacobian is requested, `jacobians` is `None`.
Otherwise it is a list in which an unrequested block holds `None`. Each
parameter block is checked for its size, and a wrong size raises
`ValueError`.

The manifold parameterizations each provide `plus(x, delta)`,
`compute_jacobian(x)`, `global_size()` and `local_size()`:

- `PoseLocalParameterization` works on a 7-D pose with a 6-D tangent. It adds
  the translation and composes the rotation on the right, then normalizes.
- `GravityLocalParameterization` works on a 4-D quaternion with a 2-D tangent.
  It rotates about the x and y axes only.

### `liofactors.prior_factor`

`PriorFactor(pos, rot)` has six residuals that pull one pose towards a fixed
position and rotation. The translation part is weighted by 1000 and the
rotation part by 0.1.

### `liofactors.point_distance_factor`

`PointDistanceFactor(point, coeff, info_mat)` has one residual: the signed
distance of a lidar point to the plane `coeff = [nx, ny, nz, d]`.

- It has two parameter blocks: the body pose and the lidar-body extrinsic.
- The residual is weighted by 100.
- `info_mat` must be 6x6. It is stored but does not enter the residual.

### `liofactors.pivot_point_plane_factor`

`PivotPointPlaneFactor(point, coeff)` has one residual: the point-to-plane
distance of a point seen from pose `i`, measured against a plane given in the
lidar frame of a pivot pose. It has three parameter blocks: the pivot pose,
pose `i` and the extrinsic.

### `liofactors.plane_projection_factor`

`PlaneProjectionFactor(local_coeffi, local_coeffj, score)` has four residuals.
They are the plane of frame `i`, carried into frame `j`, minus the plane
observed in frame `j`, weighted by `score`.

- The carried plane is flipped when its offset is negative.
- It has three parameter blocks: pose `i`, pose `j` and the extrinsic.

Every factor also has `check(parameters)`. It returns the analytic residuals
and Jacobians together with a numerical residual and a forward-difference
Jacobian (step `1e-6`) over the local coordinates, so the two can be
compared.

### `liofactors.marginalization`

This module has three classes:

- `ResidualBlockInfo(cost_function, loss_function, parameter_blocks, drop_set)`
  holds one residual block that takes part in marginalization.
  - `loss_function` is `None` or a callable that maps a squared norm to
    `(rho, rho', rho'')`.
  - `drop_set` lists the positions of the blocks to marginalize out.
- `MarginalizationInfo` gathers residual blocks through
  `add_residual_block_info`.
  - `pre_marginalize()` evaluates the blocks and stores the linearization
    point.
  - `marginalize()` forms the Schur complement. Eigenvalues at or below
    `1e-8` are treated as zero, and the result is factored into
    `linearized_jacobians` and `linearized_residuals`.
  - `get_parameter_blocks(addr_shift)` records the kept blocks and returns
    their replacements.
- `MarginalizationFactor(marginalization_info)` is the linear prior that is
  left behind. Its parameter blocks are the kept blocks.

Parameter blocks are mutable NumPy arrays, and they are told apart by
identity. Pass the same array object to every residual block that uses it.
Key `addr_shift` by `id(block)`.

## Installation

```
pip install .
```

## Examples

```python
import numpy as np
from liofactors.manifold import PoseLocalParameterization
from liofactors.prior_factor import PriorFactor

pose = np.array([0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
prior = PriorFactor(np.zeros(3), np.array([0.0, 0.0, 0.0, 1.0]))

residuals, jacobians = prior.evaluate([pose], True)   # shapes (6,) and [(6, 7)]

param = PoseLocalParameterization()
moved = param.plus(pose, np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.01]))
```

This example marginalizes a body pose out of a point-to-plane residual and
keeps a prior on the extrinsic:

```python
import numpy as np
from liofactors.marginalization import (
    MarginalizationFactor, MarginalizationInfo, ResidualBlockInfo,
)
from liofactors.point_distance_factor import PointDistanceFactor

pose = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
extrinsic = np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
factor = PointDistanceFactor([1.0, 2.0, 3.0], [0.0, 0.0, 1.0, -1.0], np.eye(6))

info = MarginalizationInfo()
info.add_residual_block_info(ResidualBlockInfo(factor, None, [pose, extrinsic], [0]))
info.pre_marginalize()
info.marginalize()
kept = info.get_parameter_blocks({id(extrinsic): extrinsic})

prior = MarginalizationFactor(info)
residuals, jacobians = prior.evaluate(kept, True)
```

## What it does not do

The package computes residuals and Jacobians only. It does not include the
following:

- a nonlinear least-squares solver
- residuals for inertial measurements
- point-cloud processing or feature extraction
- any program or command to run.

To optimize poses, pass the residuals and Jacobians to a solver of your
choice.

## Running the tests

```
pip install .[test]
pytest
```