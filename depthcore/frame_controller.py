"""
Frame Controller

Owns one depth buffer, one intrinsics resolver and one pose transform, and
exposes the two host entry points:

- on_depth_frame: a new depth image arrived (frame-received event)
- on_pose_tick: per-display-frame update with the current device pose

The host may call them in either order and at independent rates.
"""

import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from rich.console import Console

from .depth_buffer import DepthBuffer, DepthFrame, INVALID_DEPTH
from .intrinsics import Intrinsics, IntrinsicsResolver, RawIntrinsics
from .pose_transform import DevicePose, PoseTransform, ScreenOrientation
from .unproject import unproject, unproject_depth_map

console = Console()


@dataclass
class CoreConfig:
    """Configuration for the depth core and its tick cadence."""
    target_frame_rate: int = 30
    vsync_count: int = 0  # 0 = tick cadence set by the host scheduler, not vsync
    verbose: bool = False  # Print the probe-pixel depth every tick
    probe_pixel: Tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class ColorFrame:
    """RGBA32 camera image pushed by the host. Kept, never processed."""
    data: bytes
    width: int
    height: int

    def __post_init__(self):
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"Color frame is {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height} RGBA"
            )


class FrameClock:
    """
    Tracks the tick cadence and produces the FPS status text.

    With vsync disabled, the interval between ticks is whatever the host
    scheduler delivers; the target rate only paces a host that asks for it.
    """

    def __init__(self, target_frame_rate: int = 30):
        if target_frame_rate <= 0:
            raise ValueError(f"target_frame_rate must be positive, got {target_frame_rate}")
        self.target_frame_rate = target_frame_rate
        self.last_tick: Optional[float] = None
        self.ticks = 0

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.target_frame_rate

    def tick(self, now: Optional[float] = None) -> float:
        """Record a tick and return the unscaled seconds since the previous one."""
        now = time.perf_counter() if now is None else now
        delta = self.frame_interval if self.last_tick is None else now - self.last_tick
        self.last_tick = now
        self.ticks += 1
        return delta

    def wait_for_next_frame(self) -> None:
        """Sleep until one frame interval has elapsed since the last tick."""
        if self.last_tick is None:
            return
        remaining = self.last_tick + self.frame_interval - time.perf_counter()
        if remaining > 0:
            time.sleep(remaining)


def format_fps(delta_time: float) -> str:
    """Status line with the frame rate, rounded to the nearest integer."""
    if delta_time <= 0:
        return "0\n"
    return f"{round(1.0 / delta_time)}\n"


class DepthCore:
    """
    Depth-to-world pipeline state for one AR session.

    Callers hold a reference to the instance; there is no shared global
    state between cores.
    """

    def __init__(self, config: Optional[CoreConfig] = None):
        self.config = config or CoreConfig()
        self.depth = DepthBuffer()
        self.intrinsics_resolver = IntrinsicsResolver()
        self.pose = PoseTransform()
        self.color_frame: Optional[ColorFrame] = None
        self.status_text = ""
        self.depth_frames = 0
        self.pose_ticks = 0

    # Host entry points

    def on_depth_frame(self, frame: DepthFrame, raw_intrinsics: Optional[RawIntrinsics] = None) -> None:
        """
        Take a new depth frame and refresh intrinsics for its resolution.

        raw_intrinsics may be None when the host cannot provide them this
        frame; the previous intrinsics stay in effect.

        Raises:
            DepthFormatError: if the frame violates the host contract
        """
        self.depth.replace(frame)
        self.intrinsics_resolver.resolve(raw_intrinsics, frame.width, frame.height)
        self.depth_frames += 1

    def on_color_frame(self, frame: ColorFrame) -> None:
        """Keep the latest color image alongside the depth data."""
        self.color_frame = frame

    def on_pose_tick(
        self,
        pose: Optional[DevicePose],
        orientation=ScreenOrientation.PORTRAIT,
        delta_time: Optional[float] = None,
    ) -> str:
        """
        Per-tick update with the current device pose.

        A None pose (tracking unavailable) leaves the local-to-world matrix
        untouched.

        Returns:
            Status text for the host to display
        """
        if delta_time is not None:
            self.status_text = format_fps(delta_time)

        if pose is not None:
            self.pose.update(pose.position, pose.rotation, orientation)

        self.pose_ticks += 1
        self._probe_depth()
        return self.status_text

    def _probe_depth(self) -> None:
        if self.depth.is_empty or not self.config.verbose:
            return
        x, y = self.config.probe_pixel
        console.print(f"[dim]Distance at pixel ({x},{y}): {self.get_depth(x, y)}[/dim]")

    # Outward API

    @property
    def intrinsics(self) -> Intrinsics:
        return self.intrinsics_resolver.current

    @property
    def local_to_world(self) -> np.ndarray:
        return self.pose.local_to_world

    @property
    def position(self) -> np.ndarray:
        """Device world position from the latest tick."""
        return self.pose.position

    @property
    def rotation(self) -> np.ndarray:
        """Device rotation from the latest tick, Euler degrees in [0, 360)."""
        return self.pose.rotation_euler

    def get_depth(self, x: int, y: int) -> float:
        """Depth in meters at depth-buffer pixel (x, y); INVALID_DEPTH if none."""
        return self.depth.decode_depth(x, y)

    def compute_vertex(self, x: int, y: int, z: float) -> np.ndarray:
        """Camera-space vertex for pixel (x, y) at depth z."""
        return unproject(x, y, z, self.intrinsics)

    def transform_to_world(self, vertex) -> np.ndarray:
        """Camera-space vertex to world space with the current pose."""
        return self.pose.to_world(vertex)

    def world_point(self, x: int, y: int) -> Optional[np.ndarray]:
        """World-space point for one pixel, or None if it has no depth."""
        z = self.get_depth(x, y)
        if z == INVALID_DEPTH:
            return None
        vertex = self.compute_vertex(x, y, z)
        if not np.all(np.isfinite(vertex)):
            return None
        return self.transform_to_world(vertex)

    def world_points(self, step: int = 1) -> np.ndarray:
        """
        World-space points for the current depth frame.

        Args:
            step: Sample every step-th pixel along both axes

        Returns:
            (N, 3) array of valid points; empty if no depth has arrived or
            intrinsics are not resolved yet.
        """
        depth = self.depth.to_meters()
        if depth is None or not self.intrinsics.is_valid:
            return np.empty((0, 3))

        vertices = unproject_depth_map(depth, self.intrinsics, step=step, invalid_depth=INVALID_DEPTH)
        vertices = vertices.reshape(-1, 3)
        vertices = vertices[np.all(np.isfinite(vertices), axis=1)]
        return self.pose.to_world_many(vertices)
