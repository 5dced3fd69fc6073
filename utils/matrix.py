"""Matrix transformation utilities for device pose and camera-space geometry."""

import numpy as np
from typing import Sequence, List


def row_major_to_matrix(data: Sequence[float]) -> np.ndarray:
    """Convert row-major 16-element list to 4x4 matrix."""
    if len(data) != 16:
        raise ValueError(f"Expected 16 elements, got {len(data)}")
    return np.array(data, dtype=np.float64).reshape(4, 4)


def matrix_to_row_major(matrix: np.ndarray) -> List[float]:
    """Convert 4x4 matrix to row-major 16-element list."""
    return matrix.flatten().tolist()


def validate_transform(matrix: np.ndarray) -> bool:
    """
    Validate that a 4x4 matrix is a rigid transformation matrix.

    Checks:
    - Shape is (4, 4)
    - No NaN or Inf values
    - Bottom row is [0, 0, 0, 1]
    - Rotation part is orthonormal (within tolerance)
    """
    if matrix.shape != (4, 4):
        return False

    if np.any(np.isnan(matrix)) or np.any(np.isinf(matrix)):
        return False

    # Check bottom row
    if not np.allclose(matrix[3, :], [0, 0, 0, 1], atol=1e-6):
        return False

    # Check rotation is orthonormal
    rotation = matrix[:3, :3]
    should_be_identity = rotation @ rotation.T
    if not np.allclose(should_be_identity, np.eye(3), atol=1e-4):
        return False

    # Determinant -1 would be a reflection
    det = np.linalg.det(rotation)
    if not np.isclose(det, 1.0, atol=1e-4):
        return False

    return True


def is_identity(matrix: np.ndarray, atol: float = 1e-5) -> bool:
    """
    Check whether a 4x4 matrix equals the identity.

    Uses an absolute tolerance of 1e-5 per element, the same closeness a
    tracking host applies when it compares transforms for equality.
    """
    return bool(np.allclose(matrix, np.eye(4), rtol=0.0, atol=atol))


def extract_position(matrix: np.ndarray) -> np.ndarray:
    """Extract translation/position from 4x4 transform matrix."""
    return matrix[:3, 3].copy()


def extract_rotation(matrix: np.ndarray) -> np.ndarray:
    """Extract 3x3 rotation matrix from 4x4 transform matrix."""
    return matrix[:3, :3].copy()


def compose_transform(position: Sequence[float], rotation: np.ndarray) -> np.ndarray:
    """
    Build a rigid 4x4 transform from a position and a 3x3 rotation.

    The result maps device-local points into world space:
    p_world = R @ p_local + t
    """
    result = np.eye(4)
    result[:3, :3] = rotation
    result[:3, 3] = np.asarray(position, dtype=np.float64)
    return result


def rotation_about_z(angle_deg: float) -> np.ndarray:
    """
    4x4 rotation about the forward (depth) axis.

    Positive angles turn +X towards +Y.
    """
    theta = np.deg2rad(angle_deg)
    c, s = np.cos(theta), np.sin(theta)

    result = np.eye(4)
    result[0, 0] = c
    result[0, 1] = -s
    result[1, 0] = s
    result[1, 1] = c
    return result


def transform_point(matrix: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """
    Apply a 4x4 affine transform to a 3D point.

    The point is treated as homogeneous with w=1; no perspective divide is
    performed.
    """
    p = np.asarray(point, dtype=np.float64)
    return matrix[:3, :3] @ p + matrix[:3, 3]


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 affine transform to an (N, 3) array of points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return pts @ matrix[:3, :3].T + matrix[:3, 3]


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [w, x, y, z]."""
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return np.array([w, x, y, z])


def quaternion_to_rotation_matrix(q: Sequence[float]) -> np.ndarray:
    """Convert quaternion [w, x, y, z] to 3x3 rotation matrix."""
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm == 0:
        raise ValueError("Quaternion must be non-zero")
    w, x, y, z = q / norm

    R = np.array([
        [1 - 2*(y*y + z*z), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x*x + z*z), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x*x + y*y)]
    ])

    return R


def rotation_matrix_to_euler_zxy(R: np.ndarray) -> np.ndarray:
    """
    Convert a 3x3 rotation matrix to Euler angles in degrees.

    Angles follow the game-engine Z-X-Y convention: R = Ry(y) @ Rx(x) @ Rz(z),
    i.e. roll about Z first, then pitch about X, then yaw about Y. Each
    returned angle is wrapped into [0, 360).

    Returns:
        Array [x, y, z] in degrees
    """
    sin_x = np.clip(-R[1, 2], -1.0, 1.0)
    x = np.arcsin(sin_x)

    if abs(sin_x) < 1.0 - 1e-6:
        y = np.arctan2(R[0, 2], R[2, 2])
        z = np.arctan2(R[1, 0], R[1, 1])
    else:
        # Gimbal lock: fold the roll into yaw
        y = np.arctan2(-R[2, 0], R[0, 0])
        z = 0.0

    angles = np.mod(np.rad2deg([x, y, z]), 360.0)
    # Tiny negative angles wrap to exactly 360.0 in floating point
    angles[angles >= 360.0] = 0.0
    return angles
