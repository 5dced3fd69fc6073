"""Validation utilities for recorded depth sessions and data integrity."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator
import numpy as np

from .matrix import row_major_to_matrix, validate_transform


# Pydantic models for session manifest validation

VALID_ORIENTATIONS = {
    "Portrait",
    "PortraitUpsideDown",
    "LandscapeLeft",
    "LandscapeRight",
    "Unknown",
}


class IntrinsicsEntry(BaseModel):
    focal_length: List[float] = Field(..., min_length=2, max_length=2)
    principal_point: List[float] = Field(..., min_length=2, max_length=2)
    resolution: List[int] = Field(..., min_length=2, max_length=2)

    @field_validator("focal_length")
    @classmethod
    def validate_focal_length(cls, v):
        if v[0] <= 0 or v[1] <= 0:
            raise ValueError("Focal lengths must be positive")
        return v

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v):
        if v[0] <= 0 or v[1] <= 0:
            raise ValueError("Sensor resolution must be positive")
        return v


class PoseEntry(BaseModel):
    position: List[float] = Field(..., min_length=3, max_length=3)
    rotation: List[float] = Field(default=[1.0, 0.0, 0.0, 0.0], min_length=4, max_length=4)

    @field_validator("position")
    @classmethod
    def validate_position(cls, v):
        if not np.all(np.isfinite(v)):
            raise ValueError("Position must be finite")
        return v

    @field_validator("rotation")
    @classmethod
    def validate_rotation(cls, v):
        norm = float(np.linalg.norm(v))
        if not np.isfinite(norm) or norm < 1e-6:
            raise ValueError("Rotation quaternion must be non-zero and finite")
        if abs(norm - 1.0) > 1e-3:
            raise ValueError(f"Rotation quaternion must be unit length (norm {norm:.4f})")
        return v


class DepthFrameEntry(BaseModel):
    timestamp: float = Field(..., ge=0)
    depth_path: str
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    pixel_stride: Optional[int] = None
    plane_count: int = Field(default=1)
    intrinsics: Optional[IntrinsicsEntry] = None
    pose: Optional[PoseEntry] = None
    device_transform: Optional[List[float]] = None  # Row-major 4x4, alternative to pose
    screen_orientation: str = Field(default="Portrait")
    color_path: Optional[str] = None
    intrinsics_available: bool = True

    @field_validator("device_transform")
    @classmethod
    def validate_device_transform(cls, v):
        if v is None:
            return v
        if len(v) != 16:
            raise ValueError(f"Device transform must have 16 elements, got {len(v)}")
        if not validate_transform(row_major_to_matrix(v)):
            raise ValueError("Device transform is not a valid rigid transform")
        return v

    @field_validator("pixel_stride")
    @classmethod
    def validate_pixel_stride(cls, v):
        if v is not None and v not in (2, 4):
            raise ValueError(f"Invalid pixel stride: {v}. Must be 2 or 4")
        return v

    @field_validator("screen_orientation")
    @classmethod
    def validate_screen_orientation(cls, v):
        if v not in VALID_ORIENTATIONS:
            raise ValueError(f"Invalid screen orientation: {v}. Must be one of {VALID_ORIENTATIONS}")
        return v


class SessionManifest(BaseModel):
    """Pydantic model for session manifest validation."""

    session_id: str
    timestamp: str
    device: str = Field(default="unknown")
    target_frame_rate: int = Field(default=30, gt=0)
    intrinsics: Optional[IntrinsicsEntry] = None
    frames: List[DepthFrameEntry]

    @field_validator("frames")
    @classmethod
    def validate_frames_list(cls, v):
        if len(v) < 1:
            raise ValueError("At least 1 depth frame required")
        return v


def validate_manifest(manifest_path: Path) -> Tuple[bool, Optional[SessionManifest], List[str]]:
    """
    Validate a session manifest JSON file.

    Args:
        manifest_path: Path to session_manifest.json

    Returns:
        Tuple of (is_valid, parsed_manifest, list_of_errors)
    """
    errors = []

    if not manifest_path.exists():
        return False, None, ["Manifest file does not exist"]

    try:
        with open(manifest_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        return False, None, [f"Invalid JSON: {e}"]

    try:
        manifest = SessionManifest(**data)
        return True, manifest, []
    except Exception as e:
        errors.append(str(e))
        return False, None, errors


def validate_frames(frames: List[DepthFrameEntry]) -> Tuple[bool, Dict, List[str]]:
    """
    Validate a depth frame sequence for consistency.

    Checks:
    - Timestamps are monotonically increasing
    - No large gaps in timestamps
    - Poses are present for most frames
    - No sudden position jumps

    Returns:
        Tuple of (is_valid, stats, list_of_warnings)
    """
    warnings = []
    stats = {
        "total_frames": len(frames),
        "frames_with_pose": 0,
        "frames_with_intrinsics": 0,
        "duration": 0,
        "avg_fps": 0,
        "resolutions": [],
    }

    if not frames:
        return False, stats, ["No depth frames"]

    timestamps = [f.timestamp for f in frames]
    stats["duration"] = timestamps[-1] - timestamps[0]

    if stats["duration"] > 0:
        stats["avg_fps"] = len(frames) / stats["duration"]

    # Check monotonicity
    for i in range(1, len(timestamps)):
        if timestamps[i] <= timestamps[i - 1]:
            warnings.append(f"Non-monotonic timestamp at index {i}")

    # Check for gaps
    max_gap = 0.5  # 500ms
    for i in range(1, len(timestamps)):
        gap = timestamps[i] - timestamps[i - 1]
        if gap > max_gap:
            warnings.append(f"Large timestamp gap ({gap:.2f}s) at index {i}")

    resolutions = set()
    for frame in frames:
        resolutions.add((frame.width, frame.height))
        if frame.pose is not None or frame.device_transform is not None:
            stats["frames_with_pose"] += 1
        if frame.intrinsics is not None:
            stats["frames_with_intrinsics"] += 1
    stats["resolutions"] = sorted(resolutions)

    pose_ratio = stats["frames_with_pose"] / len(frames)
    if pose_ratio < 0.5:
        warnings.append(f"Low tracking coverage: only {pose_ratio * 100:.1f}% of frames have a pose")

    # Check for position jumps
    prev_pos = None
    prev_time = None
    max_velocity = 5.0  # m/s - handheld device
    for i, frame in enumerate(frames):
        if frame.pose is not None:
            pos = np.array(frame.pose.position)
        elif frame.device_transform is not None:
            pos = row_major_to_matrix(frame.device_transform)[:3, 3]
        else:
            continue

        if prev_pos is not None:
            dt = frame.timestamp - prev_time
            if dt > 0:
                velocity = np.linalg.norm(pos - prev_pos) / dt
                if velocity > max_velocity:
                    warnings.append(f"High velocity ({velocity:.1f} m/s) at index {i}")

        prev_pos = pos
        prev_time = frame.timestamp

    is_valid = len([w for w in warnings if "Low tracking" not in w]) == 0
    return is_valid, stats, warnings


def validate_session_package(package_dir: Path) -> Tuple[bool, Dict, List[str]]:
    """
    Validate a complete session directory.

    Expected structure:
    - session_manifest.json
    - depth files referenced by each frame (.png, .npy or .bin)

    Returns:
        Tuple of (is_valid, package_info, list_of_errors)
    """
    errors = []
    info = {}

    manifest_path = package_dir / "session_manifest.json"
    manifest_valid, manifest, manifest_errors = validate_manifest(manifest_path)

    if not manifest_valid:
        return False, info, manifest_errors

    info["manifest"] = manifest

    missing = [f.depth_path for f in manifest.frames if not (package_dir / f.depth_path).exists()]
    if missing:
        errors.append(f"{len(missing)} depth file(s) missing, first: {missing[0]}")

    if manifest.intrinsics is None and not any(f.intrinsics for f in manifest.frames):
        errors.append("Session has no camera intrinsics")

    frames_valid, frames_stats, frames_warnings = validate_frames(manifest.frames)
    info["frames"] = frames_stats

    # Non-monotonic time breaks replay ordering
    for warning in frames_warnings:
        if "Non-monotonic" in warning:
            errors.append(warning)

    info["warnings"] = frames_warnings

    is_valid = len(errors) == 0
    return is_valid, info, errors
