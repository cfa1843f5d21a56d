"""Residual blocks with analytic Jacobians, pose and gravity manifolds, and marginalization for lidar pose optimization."""

__version__ = "0.1.0"

__all__ = [
    "manifold",
    "prior_factor",
    "point_distance_factor",
    "pivot_point_plane_factor",
    "plane_projection_factor",
    "marginalization",
]