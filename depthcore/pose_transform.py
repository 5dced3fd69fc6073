"""
Device Pose Transform

Combines the device pose reported by the host with a screen-orientation
correction into a single local-to-world matrix.

    local_to_world = device_transform @ screen_rotation

The screen correction is applied first, in camera-local space, then the
device pose maps the result into world space.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

import numpy as np
from rich.console import Console

from utils.matrix import (
    compose_transform,
    extract_position,
    extract_rotation,
    is_identity,
    quaternion_to_rotation_matrix,
    rotation_about_z,
    rotation_matrix_to_euler_zxy,
    transform_point,
    transform_points,
)

console = Console()


class ScreenOrientation(str, Enum):
    """Device screen orientation as reported by the host."""
    PORTRAIT = "Portrait"
    PORTRAIT_UPSIDE_DOWN = "PortraitUpsideDown"
    LANDSCAPE_LEFT = "LandscapeLeft"
    LANDSCAPE_RIGHT = "LandscapeRight"
    UNKNOWN = "Unknown"


# Rotation about the optical axis (degrees) that aligns the depth image
# with the screen for each orientation
SCREEN_CORRECTION_DEG = {
    ScreenOrientation.PORTRAIT: -90,
    ScreenOrientation.LANDSCAPE_LEFT: 0,
    ScreenOrientation.PORTRAIT_UPSIDE_DOWN: 90,
    ScreenOrientation.LANDSCAPE_RIGHT: 180,
}
DEFAULT_CORRECTION_DEG = -90


def screen_correction_angle(orientation) -> int:
    """Correction angle in degrees; unknown orientations fall back to portrait."""
    try:
        orientation = ScreenOrientation(orientation)
    except ValueError:
        return DEFAULT_CORRECTION_DEG
    return SCREEN_CORRECTION_DEG.get(orientation, DEFAULT_CORRECTION_DEG)


@dataclass(frozen=True)
class DevicePose:
    """
    Device pose in world space.

    Attributes:
        position: World position (x, y, z) in meters
        rotation: Unit quaternion [w, x, y, z] (device-local to world)
    """
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)


class PoseTransform:
    """
    Current local-to-world transform.

    The stored matrix starts as identity and is replaced whole on every
    update with a non-identity device transform. An identity device
    transform means tracking has not produced a pose yet, so the previous
    matrix is kept.

    Note: a device resting exactly at the world origin with no rotation is
    indistinguishable from "not tracking yet" and will not update the matrix.
    """

    def __init__(self):
        self.local_to_world = np.eye(4)
        self.device_transform = np.eye(4)
        self.screen_rotation = np.eye(4)
        self.skipped_updates = 0

    def update(
        self,
        device_position: Sequence[float],
        device_rotation: Sequence[float],
        screen_orientation,
    ) -> np.ndarray:
        """
        Recompute the local-to-world matrix for this tick.

        Args:
            device_position: World position (x, y, z)
            device_rotation: Quaternion [w, x, y, z]
            screen_orientation: ScreenOrientation (or its string value)

        Returns:
            The local-to-world matrix in effect after the update
        """
        device_transform = compose_transform(
            device_position, quaternion_to_rotation_matrix(device_rotation)
        )
        return self.update_from_matrix(device_transform, screen_orientation)

    def update_from_matrix(self, device_transform: np.ndarray, screen_orientation) -> np.ndarray:
        """Same as update, for hosts that report the device transform as a matrix."""
        self.device_transform = np.array(device_transform, dtype=np.float64)
        self.screen_rotation = rotation_about_z(screen_correction_angle(screen_orientation))

        if is_identity(self.device_transform):
            self.skipped_updates += 1
            if self.skipped_updates == 1:
                console.print("[yellow]Device transform is identity, keeping previous local-to-world[/yellow]")
            return self.local_to_world

        self.skipped_updates = 0
        self.local_to_world = self.device_transform @ self.screen_rotation
        return self.local_to_world

    @staticmethod
    def apply(matrix: np.ndarray, vertex: Sequence[float]) -> np.ndarray:
        """Transform a camera-space vertex into world space."""
        return transform_point(matrix, vertex)

    def to_world(self, vertex: Sequence[float]) -> np.ndarray:
        """Transform a vertex with the current local-to-world matrix."""
        return transform_point(self.local_to_world, vertex)

    def to_world_many(self, vertices: np.ndarray) -> np.ndarray:
        """Transform an (N, 3) array of vertices with the current matrix."""
        return transform_points(self.local_to_world, vertices)

    @property
    def position(self) -> np.ndarray:
        """Most recent device position."""
        return extract_position(self.device_transform)

    @property
    def rotation_euler(self) -> np.ndarray:
        """Most recent device rotation as Euler angles in degrees (Z-X-Y order)."""
        return rotation_matrix_to_euler_zxy(extract_rotation(self.device_transform))
