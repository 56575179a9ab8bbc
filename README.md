# scanmap2d

Building blocks for mapping with a planar (2D) laser scanner, as a Python
library.

- **Poses** (`scanmap2d.pose`) – `SE2` rigid transforms in the plane with
  `exp`, `log`, `inverse`, `rotation_matrix`, `transform_point` and
  composition via `*` (an `SE2` times an `SE2` gives an `SE2`; an `SE2` times a
  point or an `(N, 2)` array transforms the points). `normalize_angle` wraps an
  angle into `[-pi, pi)`.
- **Scans and frames** (`scanmap2d.frame`) – `Scan2d` holds one sweep of
  ranges with its angle and range limits (`angle_at`, `is_valid`); `Frame`
  ties a scan to its ids, its world pose and its pose inside a submap. A frame
  can be written to a plain text file with `Frame.dump` and read back with
  `Frame.load`.
- **Scan matching**
  - `Icp2d` (`scanmap2d.icp_2d`) – point-to-point and point-to-line ICP solved
    with Gauss-Newton (`align_gauss_newton`,
    `align_gauss_newton_point_to_plane`). `fit_line_2d` fits a line through
    points.
  - `LikelihoodField` (`scanmap2d.likelihood_field`) – matching against a
    distance field built from a target scan (`set_target_scan`) or from an
    occupancy grid (`set_field_image_from_occu_map`), by Gauss-Newton
    (`align_gauss_newton`) or by the small graph optimiser (`align_g2o`).
    `get_field_image` renders the field as a grey RGB image.
  - `MRLikelihoodField` (`scanmap2d.multi_resolution_likelihood_field`) – the
    same idea over a four-level resolution pyramid, matched coarse to fine,
    with an inlier count and ratio check at each level.
- **Occupancy grids** (`scanmap2d.occupancy_map`) – `OccupancyMap` rasterises
  frames into a 1000×1000 grid, either with a precomputed template
  (`GridMethod.MODEL_POINTS`) or by Bresenham line filling
  (`GridMethod.BRESENHAM`, the default of `add_lidar_frame`).
  `black_white_image` gives a grey/black/white RGB view.
- **Submaps** (`scanmap2d.submap`) – `Submap` owns keyframes, an occupancy
  grid and a likelihood field, and matches new frames against them
  (`match_scan`).
- **Loop closure** (`scanmap2d.loop_closing`) – `LoopClosing` finds older
  submaps near the current keyframe, matches the frame against them with the
  multi-resolution field, and runs a pose-graph optimisation with a Cauchy
  kernel, dropping loops it judges wrong and updating every submap pose and
  keyframe world pose. Accepted loops are available as `loops`, a dict of
  `LoopConstraint` keyed by submap id pair.
- **The mapper** (`scanmap2d.mapping_2d`) – `Mapping2D` puts it all together:
  feed it scans one after another with `process_scan`, and render all submaps,
  their axes, keyframe trajectories and loops with `show_global_map`.

A small Levenberg-Marquardt optimiser (`Optimizer`, `VertexSE2`, `EdgeSE2`,
`EdgeSE2LikelihoodField`, `HuberKernel`, `CauchyKernel`, `get_pixel_value`)
lives in `scanmap2d.graph` and is what the matchers use internally.

Images are NumPy arrays: grids are `uint8` of shape `(rows, cols)`, colour
images `uint8` of shape `(rows, cols, 3)`, likelihood fields `float32`.

## Installation

```
pip install .
pip install ".[test]"   # with pytest, to run the tests
```

## Usage

### Building a map from a stream of scans

```python
from scanmap2d.mapping_2d import Mapping2D

mapping = Mapping2D(with_loop_closing=True, output_dir="out")
for scan in scans:            # an iterable of Scan2d
    mapping.process_scan(scan)

global_map = mapping.show_global_map(2000)   # colour image as a NumPy array
```

With `output_dir` set, each finished submap is saved there as
`submap_<id>.png`, and loop-closure matching attempts are logged to
`loops.txt`. Without it nothing is written to disk.

### Matching two scans

```python
from scanmap2d.icp_2d import Icp2d
from scanmap2d.likelihood_field import LikelihoodField
from scanmap2d.pose import SE2

initial_pose = SE2()

icp = Icp2d()
icp.set_target(previous_scan)
icp.set_source(current_scan)
result = icp.align_gauss_newton(initial_pose)   # SE2, or None if too few matches

field = LikelihoodField()
field.set_target_scan(previous_scan)
field.source = current_scan
result = field.align_gauss_newton(initial_pose)  # SE2, or None
result = field.align_g2o(initial_pose)           # SE2
```

`MRLikelihoodField.align_g2o` returns `None` when any pyramid level fails its
inlier check.

### Drawing a scan

```python
from scanmap2d.lidar_2d_utils import visualize_2d_scan

image = visualize_2d_scan(scan, pose, None, (255, 0, 0), 800, 20.0, pose_submap)
```

Passing `None` as the image creates a white one of `image_size` pixels; the
scan's end points are drawn in the given colour, together with a circle at the
pose.

### Saving and reloading a frame

```python
from scanmap2d.frame import Frame

frame.dump("frame_42.txt")
restored = Frame.load("frame_42.txt")
```

## Conventions

- Poses are `T_world_sensor`; a frame's `pose_submap` is `T_submap_sensor`, and
  the world pose is recovered as `submap.pose * frame.pose_submap`.
- Grid images are centred on the owning pose at a resolution of 20 pixels per
  metre; occupancy values start at 127 (unknown), move one step per hit towards
  117 when occupied and towards 137 when seen free.
- Colour tuples are in blue, green, red channel order.

## What it does not do

This is a library only. It has no command-line program, does not read scans
from recorded log files or live sensors (you build `Scan2d` objects yourself),
and opens no display windows: images are returned as arrays for you to show or
save.