"""
Camera Intrinsics Resolution

Scales the host camera's raw intrinsics (in sensor pixels) to the resolution
of the current depth buffer.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from rich.console import Console

console = Console()


@dataclass(frozen=True)
class RawIntrinsics:
    """Camera intrinsics as reported by the host, in sensor pixel units."""
    focal_length: Tuple[float, float]
    principal_point: Tuple[float, float]
    resolution: Tuple[int, int]

    def __post_init__(self):
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Sensor resolution must be positive, got {self.resolution}")


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics in depth-buffer pixel units."""
    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0

    @property
    def focal_length(self) -> Tuple[float, float]:
        return (self.fx, self.fy)

    @property
    def principal_point(self) -> Tuple[float, float]:
        return (self.cx, self.cy)

    @property
    def is_valid(self) -> bool:
        """False until a resolve has produced non-zero focal lengths."""
        return self.fx > 0 and self.fy > 0


def scale_intrinsics(
    raw: RawIntrinsics,
    target_width: int,
    target_height: int,
) -> Intrinsics:
    """
    Scale raw intrinsics to a target buffer resolution.

    Focal length and principal point are multiplied elementwise by
    (target_width / sensor_width, target_height / sensor_height). The
    vertical focal length is then forced equal to the horizontal one
    (square pixels).
    """
    scale_x = target_width / raw.resolution[0]
    scale_y = target_height / raw.resolution[1]

    fx = raw.focal_length[0] * scale_x
    cx = raw.principal_point[0] * scale_x
    cy = raw.principal_point[1] * scale_y

    return Intrinsics(fx=fx, fy=fx, cx=cx, cy=cy)


class IntrinsicsResolver:
    """Holds the intrinsics for the current depth resolution."""

    def __init__(self):
        self.current = Intrinsics()
        self.stale_frames = 0

    def resolve(
        self,
        raw: Optional[RawIntrinsics],
        target_width: int,
        target_height: int,
    ) -> Intrinsics:
        """
        Recompute intrinsics for the given depth resolution.

        If the host has no intrinsics this frame (raw is None), the last
        resolved values are kept unchanged.
        """
        if raw is None:
            self.stale_frames += 1
            if self.stale_frames == 1 and self.current.is_valid:
                console.print("[yellow]Camera intrinsics unavailable, keeping previous values[/yellow]")
            return self.current

        self.stale_frames = 0
        self.current = scale_intrinsics(raw, target_width, target_height)
        return self.current
