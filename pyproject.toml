[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "scanmap2d"
version = "0.1.0"
description = "2D laser scan matching, occupancy grids, submaps and loop closure for planar lidar mapping"
requires-python = ">=3.10"
keywords = [
    "slam",
    "lidar",
    "laser scan",
    "icp",
    "likelihood field",
    "occupancy grid",
    "pose graph",
    "loop closure",
    "mapping",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["scanmap2d"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
