[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "liofactors"
version = "0.1.0"
description = "Residual factors, manifold parameterizations and marginalization for lidar-inertial pose optimization"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "lidar",
    "odometry",
    "slam",
    "nonlinear least squares",
    "marginalization",
    "quaternion",
    "jacobian",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["liofactors"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
