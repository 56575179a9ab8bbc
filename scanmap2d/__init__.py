"""Planar lidar mapping: poses, scan matching, occupancy grids, submaps and loop closure."""

__version__ = "0.1.0"

__all__ = [
    "pose",
    "frame",
    "graph",
    "lidar_2d_utils",
    "icp_2d",
    "likelihood_field",
    "multi_resolution_likelihood_field",
    "occupancy_map",
    "submap",
    "loop_closing",
    "mapping_2d",
]