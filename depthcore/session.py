"""
Session Loading

Loads a recorded depth session (directory or .zip) and turns each manifest
entry into the primitive data a live AR host would push: a depth frame,
raw intrinsics, a device pose and the screen orientation.
"""

import json
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple

import cv2
import numpy as np
from PIL import Image
from rich.console import Console

from utils.matrix import (
    extract_position,
    extract_rotation,
    row_major_to_matrix,
    rotation_matrix_to_quaternion,
)
from utils.validation import (
    DepthFrameEntry,
    IntrinsicsEntry,
    SessionManifest,
    validate_session_package,
)

from .depth_buffer import DepthFrame, depth_frame_from_array
from .frame_controller import ColorFrame
from .intrinsics import RawIntrinsics
from .pose_transform import DevicePose, ScreenOrientation

console = Console()

MANIFEST_NAME = "session_manifest.json"


class SessionError(Exception):
    """Error while loading a recorded session."""
    pass


@dataclass(frozen=True)
class HostFrame:
    """Everything the host delivers for one recorded frame."""
    index: int
    timestamp: float
    depth: DepthFrame
    intrinsics: Optional[RawIntrinsics]
    pose: Optional[DevicePose]
    orientation: ScreenOrientation
    color: Optional[ColorFrame] = None


def unzip_session(
    zip_path: Path,
    output_dir: Path,
    overwrite: bool = False
) -> Path:
    """
    Unzip a session archive to the specified directory.

    Args:
        zip_path: Path to the .zip file
        output_dir: Directory to extract to
        overwrite: If True, overwrite existing directory

    Returns:
        Path to the extracted session directory
    """
    if not zip_path.exists():
        raise SessionError(f"Zip file not found: {zip_path}")

    if not zipfile.is_zipfile(zip_path):
        raise SessionError(f"Not a valid zip file: {zip_path}")

    session_dir = output_dir / zip_path.stem

    if session_dir.exists():
        if overwrite:
            console.print(f"[yellow]Removing existing directory: {session_dir}[/yellow]")
            shutil.rmtree(session_dir)
        else:
            raise SessionError(f"Output directory already exists: {session_dir}")

    console.print(f"[blue]Extracting {zip_path.name}...[/blue]")
    with zipfile.ZipFile(zip_path, 'r') as zf:
        zf.extractall(session_dir)

    # Archives often wrap everything in one top-level folder
    if not (session_dir / MANIFEST_NAME).exists():
        for item in session_dir.rglob(MANIFEST_NAME):
            session_dir = item.parent
            break

    console.print(f"[green]Extracted to: {session_dir}[/green]")
    return session_dir


def load_manifest(session_dir: Path) -> SessionManifest:
    """
    Load and parse the session manifest from a session directory.

    Args:
        session_dir: Directory containing session_manifest.json

    Returns:
        Parsed SessionManifest object
    """
    manifest_path = session_dir / MANIFEST_NAME

    if not manifest_path.exists():
        raise SessionError(f"Manifest not found: {manifest_path}")

    try:
        with open(manifest_path, 'r') as f:
            data = json.load(f)
        return SessionManifest(**data)
    except json.JSONDecodeError as e:
        raise SessionError(f"Invalid JSON in manifest: {e}")
    except Exception as e:
        raise SessionError(f"Failed to parse manifest: {e}")


def validate_session(session_dir: Path) -> Tuple[bool, dict]:
    """
    Validate a session directory and print a summary.

    Returns:
        Tuple of (is_valid, info_dict)
    """
    console.print("[blue]Validating session...[/blue]")

    is_valid, info, errors = validate_session_package(session_dir)

    if errors:
        console.print("[red]Validation errors:[/red]")
        for error in errors:
            console.print(f"  [red]• {error}[/red]")

    for warning in info.get("warnings", []):
        console.print(f"  [yellow]• {warning}[/yellow]")

    if is_valid:
        console.print("[green]Session validation passed![/green]")

        if 'frames' in info:
            frames = info['frames']
            console.print(f"  Depth frames: {frames['total_frames']}")
            console.print(f"  Duration: {frames['duration']:.1f}s")
            console.print(f"  Avg FPS: {frames['avg_fps']:.1f}")
            console.print(f"  Frames with pose: {frames['frames_with_pose']}")
            resolutions = ", ".join(f"{w}x{h}" for w, h in frames['resolutions'])
            console.print(f"  Depth resolutions: {resolutions}")

    return is_valid, info


def ingest(
    input_path: Path,
    work_dir: Path,
    validate: bool = True
) -> Tuple[Path, SessionManifest, dict]:
    """
    Unzip (if needed), validate, and load a recorded session.

    Args:
        input_path: Path to .zip file or session directory
        work_dir: Working directory for extraction
        validate: Whether to validate the session

    Returns:
        Tuple of (session_directory, manifest, session_info)
    """
    if input_path.suffix == '.zip':
        work_dir.mkdir(parents=True, exist_ok=True)
        session_dir = unzip_session(input_path, work_dir, overwrite=True)
    elif input_path.is_dir():
        session_dir = input_path
    else:
        raise SessionError(f"Input must be a .zip file or directory: {input_path}")

    manifest = load_manifest(session_dir)
    console.print(f"[green]Loaded manifest for session: {manifest.session_id}[/green]")

    info = {}
    if validate:
        is_valid, info = validate_session(session_dir)
        if not is_valid:
            raise SessionError("Session validation failed")

    return session_dir, manifest, info


def read_depth_file(path: Path, entry: DepthFrameEntry) -> DepthFrame:
    """
    Read one depth file into a host-style depth frame.

    Formats:
        .png  16-bit single-channel, millimeters (stride 2)
        .npy  float32 meters (stride 4) or uint16 millimeters (stride 2)
        .bin  raw little-endian buffer; entry.pixel_stride is required

    The manifest's plane_count is passed through untouched so the core can
    reject multi-plane frames.
    """
    if not path.exists():
        raise SessionError(f"Depth file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == '.png':
        depth = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if depth is None:
            raise SessionError(f"Could not read depth image: {path}")
        if depth.dtype != np.uint16 or depth.ndim != 2:
            raise SessionError(f"Depth PNG must be 16-bit single channel: {path}")
        frame = depth_frame_from_array(depth)
    elif suffix == '.npy':
        depth = np.load(path)
        if depth.dtype != np.uint16:
            depth = depth.astype(np.float32)
        frame = depth_frame_from_array(depth)
    elif suffix == '.bin':
        if entry.pixel_stride is None:
            raise SessionError(f"pixel_stride is required for raw depth file: {path}")
        frame = DepthFrame(
            data=path.read_bytes(),
            width=entry.width,
            height=entry.height,
            pixel_stride=entry.pixel_stride,
        )
    else:
        raise SessionError(f"Unsupported depth file format: {path.suffix}")

    if (frame.width, frame.height) != (entry.width, entry.height):
        raise SessionError(
            f"Depth file {path.name} is {frame.width}x{frame.height}, "
            f"manifest says {entry.width}x{entry.height}"
        )
    if entry.pixel_stride is not None and entry.pixel_stride != frame.pixel_stride:
        raise SessionError(
            f"Depth file {path.name} has stride {frame.pixel_stride}, "
            f"manifest says {entry.pixel_stride}"
        )

    return DepthFrame(
        data=frame.data,
        width=frame.width,
        height=frame.height,
        pixel_stride=frame.pixel_stride,
        plane_count=entry.plane_count,
    )


def read_color_file(path: Path) -> ColorFrame:
    """Read a camera image as an RGBA32 color frame."""
    if not path.exists():
        raise SessionError(f"Color file not found: {path}")
    with Image.open(path) as img:
        rgba = img.convert("RGBA")
        return ColorFrame(data=rgba.tobytes(), width=rgba.width, height=rgba.height)


def to_raw_intrinsics(entry: IntrinsicsEntry) -> RawIntrinsics:
    return RawIntrinsics(
        focal_length=tuple(entry.focal_length),
        principal_point=tuple(entry.principal_point),
        resolution=tuple(entry.resolution),
    )


def pose_from_transform(transform_matrix) -> DevicePose:
    """Device pose from a row-major 4x4 device transform."""
    matrix = row_major_to_matrix(transform_matrix)
    return DevicePose(
        position=tuple(extract_position(matrix).tolist()),
        rotation=tuple(rotation_matrix_to_quaternion(extract_rotation(matrix)).tolist()),
    )


def iter_host_frames(session_dir: Path, manifest: SessionManifest) -> Iterator[HostFrame]:
    """
    Yield the host data for each recorded frame, in manifest order.

    Per-frame intrinsics override the session-level ones; a frame with
    intrinsics_available=false yields None, as a host would when the camera
    cannot report intrinsics that frame. A frame may give its pose as a
    row-major device_transform instead of position and rotation.
    """
    for index, entry in enumerate(manifest.frames):
        depth = read_depth_file(session_dir / entry.depth_path, entry)

        intrinsics = None
        if entry.intrinsics_available:
            source = entry.intrinsics or manifest.intrinsics
            if source is not None:
                intrinsics = to_raw_intrinsics(source)

        pose = None
        if entry.pose is not None:
            pose = DevicePose(
                position=tuple(entry.pose.position),
                rotation=tuple(entry.pose.rotation),
            )
        elif entry.device_transform is not None:
            pose = pose_from_transform(entry.device_transform)

        color = None
        if entry.color_path:
            color = read_color_file(session_dir / entry.color_path)

        yield HostFrame(
            index=index,
            timestamp=entry.timestamp,
            depth=depth,
            intrinsics=intrinsics,
            pose=pose,
            orientation=ScreenOrientation(entry.screen_orientation),
            color=color,
        )
