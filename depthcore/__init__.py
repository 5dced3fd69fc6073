"""
AR Depth Points

Converts a mobile device's live depth feed into world-space 3D points.

Per-frame flow:
1. Depth buffer - Raw depth frame → decoded meters
2. Intrinsics - Sensor intrinsics → depth-buffer pixel units
3. Unproject - Pixel + depth → camera-space vertex
4. Pose transform - Camera space → world space (device pose + screen orientation)

Recorded sessions can be replayed through the same core with
`python -m depthcore.replay`.
"""

from .depth_buffer import INVALID_DEPTH, DepthBuffer, DepthFormatError, DepthFrame
from .frame_controller import ColorFrame, CoreConfig, DepthCore
from .intrinsics import Intrinsics, IntrinsicsResolver, RawIntrinsics
from .pose_transform import DevicePose, PoseTransform, ScreenOrientation
from .unproject import INVALID_VERTEX, unproject

__version__ = "0.1.0"

__all__ = [
    "INVALID_DEPTH",
    "INVALID_VERTEX",
    "ColorFrame",
    "CoreConfig",
    "DepthBuffer",
    "DepthCore",
    "DepthFormatError",
    "DepthFrame",
    "DevicePose",
    "Intrinsics",
    "IntrinsicsResolver",
    "PoseTransform",
    "RawIntrinsics",
    "ScreenOrientation",
    "unproject",
]
