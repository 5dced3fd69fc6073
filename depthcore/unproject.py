"""
Unprojection

Turns depth-buffer pixels plus metric depth into camera-space vertices.

Camera space: +x right, +y up, +z forward along the optical axis. Image rows
grow downward, so the pixel y offset is negated.
"""

from typing import Optional

import numpy as np

from .intrinsics import Intrinsics

# Returned when there is no valid depth; every component is -inf
INVALID_VERTEX = np.full(3, -np.inf)


def invalid_vertex() -> np.ndarray:
    """Fresh copy of the invalid-vertex sentinel."""
    return INVALID_VERTEX.copy()


def is_valid_vertex(vertex: np.ndarray) -> bool:
    """True unless the vertex is the invalid sentinel."""
    return not np.all(np.isneginf(vertex))


def unproject(x: float, y: float, z: float, intrinsics: Intrinsics) -> np.ndarray:
    """
    Vertex in local camera space for pixel (x, y) at depth z meters.

    In portrait mode x and y are swapped relative to the screen, i.e. +x is
    down and +y is right.

    Returns the invalid vertex if z is not positive or the intrinsics have
    not been resolved yet.
    """
    if not z > 0 or not intrinsics.is_valid:
        return invalid_vertex()

    vx = (x - intrinsics.cx) * z / intrinsics.fx
    vy = (y - intrinsics.cy) * z / intrinsics.fy
    return np.array([vx, -vy, z], dtype=np.float64)


def project(vertex: np.ndarray, intrinsics: Intrinsics) -> np.ndarray:
    """Inverse of unproject: camera-space vertex back to pixel (x, y)."""
    vx, vy, z = vertex
    x = vx * intrinsics.fx / z + intrinsics.cx
    y = -vy * intrinsics.fy / z + intrinsics.cy
    return np.array([x, y])


def unproject_depth_map(
    depth: np.ndarray,
    intrinsics: Intrinsics,
    step: int = 1,
    invalid_depth: Optional[float] = None,
) -> np.ndarray:
    """
    Unproject a whole depth map.

    Args:
        depth: (H, W) depth in meters
        intrinsics: Intrinsics in depth-buffer pixel units
        step: Sample every step-th pixel along both axes
        invalid_depth: Optional sentinel depth to treat as missing

    Returns:
        (H', W', 3) array of camera-space vertices; pixels without a valid
        depth hold -inf in every component.
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")

    sampled = np.asarray(depth, dtype=np.float64)[::step, ::step]
    rows = np.arange(0, depth.shape[0], step)
    cols = np.arange(0, depth.shape[1], step)
    uu, vv = np.meshgrid(cols, rows)

    if not intrinsics.is_valid:
        return np.full(sampled.shape + (3,), -np.inf)

    z = sampled
    with np.errstate(invalid='ignore'):
        valid = z > 0
    if invalid_depth is not None:
        valid &= z != invalid_depth

    vertices = np.stack([
        (uu - intrinsics.cx) * z / intrinsics.fx,
        -((vv - intrinsics.cy) * z / intrinsics.fy),
        z,
    ], axis=-1)
    vertices[~valid] = -np.inf

    return vertices
