#!/usr/bin/env python3
"""
Generate a synthetic depth session of a box standing on a floor.

Creates a session_manifest.json plus ray-cast depth maps with known-correct
device poses. Use this to verify the replay path independently of real
device recordings: every exported world point should lie on the floor
(y = 0) or on the box surface.

Depth alternates between 16-bit millimeter PNG and float32 .npy so both
buffer encodings are exercised.

Usage:
    python scripts/generate_synthetic_session.py [output_dir]

Then replay it:
    python -m depthcore.replay replay synthetic_session/ --output-dir output/synthetic_test/
"""

import json
import math
import sys
import zipfile
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

sys.path.append(str(Path(__file__).parent.parent))

from utils.matrix import rotation_matrix_to_quaternion


# ── Scene: box on a floor ────────────────────────────────────────────

FLOOR_Y = 0.0
BOX_MIN = np.array([-0.5, 0.0, -0.5])
BOX_MAX = np.array([0.5, 1.0, 0.5])
MAX_RANGE = 5.0  # meters, beyond this the sensor reports nothing


# ── Camera settings ──────────────────────────────────────────────────

SENSOR_W, SENSOR_H = 1920, 1440
SENSOR_FX = SENSOR_FY = 1500.0
SENSOR_CX, SENSOR_CY = SENSOR_W / 2.0, SENSOR_H / 2.0

DEPTH_W, DEPTH_H = 256, 192
SCALE = DEPTH_W / SENSOR_W
FX = SENSOR_FX * SCALE
CX = SENSOR_CX * SCALE
CY = SENSOR_CY * (DEPTH_H / SENSOR_H)

NUM_FRAMES = 24
CAMERA_RADIUS = 2.5
CAMERA_HEIGHT = 1.4
TARGET = np.array([0.0, 0.5, 0.0])
FRAME_RATE = 30


# ── Math helpers ─────────────────────────────────────────────────────

def normalize(v):
    n = np.linalg.norm(v)
    return v / n if n > 1e-8 else v


def look_at(eye, target, world_up=np.array([0.0, 1.0, 0.0])):
    """
    Device rotation whose +Z looks at target, +Y up, +X right.

    Columns are [right, up, forward]; det = +1.
    """
    forward = normalize(target - eye)
    right = normalize(np.cross(world_up, forward))
    up = np.cross(forward, right)
    return np.stack([right, up, forward], axis=1)


def ray_cast_depth(eye, rotation):
    """
    Render a (DEPTH_H, DEPTH_W) depth map in meters along the optical axis.

    Pixels that hit nothing within MAX_RANGE are 0 (no measurement).
    """
    u = np.arange(DEPTH_W)
    v = np.arange(DEPTH_H)
    uu, vv = np.meshgrid(u, v)
    # z = 1 in camera space, so the ray parameter equals the depth
    dirs_cam = np.stack([
        (uu - CX) / FX,
        -(vv - CY) / FX,
        np.ones_like(uu, dtype=float),
    ], axis=-1).reshape(-1, 3)
    dirs = dirs_cam @ rotation.T

    t_best = np.full(len(dirs), np.inf)

    # Floor plane
    with np.errstate(divide='ignore', invalid='ignore'):
        t_floor = (FLOOR_Y - eye[1]) / dirs[:, 1]
    t_floor[~(t_floor > 0)] = np.inf
    t_best = np.minimum(t_best, t_floor)

    # Box (slab method)
    with np.errstate(divide='ignore', invalid='ignore'):
        t1 = (BOX_MIN - eye) / dirs
        t2 = (BOX_MAX - eye) / dirs
    t_near = np.nanmax(np.minimum(t1, t2), axis=1)
    t_far = np.nanmin(np.maximum(t1, t2), axis=1)
    hit = (t_near <= t_far) & (t_near > 0)
    t_box = np.where(hit, t_near, np.inf)
    t_best = np.minimum(t_best, t_box)

    t_best[t_best > MAX_RANGE] = 0.0
    return t_best.reshape(DEPTH_H, DEPTH_W)


def depth_preview(depth):
    """Grayscale RGBA preview standing in for the camera image."""
    gray = np.clip(255.0 * (1.0 - depth / MAX_RANGE), 0, 255).astype(np.uint8)
    gray[depth <= 0] = 0
    return Image.fromarray(gray).convert("RGBA")


# ── Main ─────────────────────────────────────────────────────────────

def main():
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("synthetic_session")
    depth_dir = out / "depth"
    color_dir = out / "color"
    depth_dir.mkdir(parents=True, exist_ok=True)
    color_dir.mkdir(parents=True, exist_ok=True)

    print(f"Generating {NUM_FRAMES} synthetic depth frames of a box on a floor …")

    frames = []
    for i in range(NUM_FRAMES):
        angle = 2 * math.pi * i / NUM_FRAMES
        eye = np.array([
            CAMERA_RADIUS * math.cos(angle),
            CAMERA_HEIGHT,
            CAMERA_RADIUS * math.sin(angle),
        ])
        rotation = look_at(eye, TARGET)
        det = np.linalg.det(rotation)
        assert abs(det - 1.0) < 1e-6, f"Frame {i}: det(R)={det}"

        depth = ray_cast_depth(eye, rotation)

        if i % 2 == 0:
            depth_name = f"depth/depth_{i:06d}.png"
            depth_mm = (depth * 1000.0).round().clip(0, 65535).astype(np.uint16)
            cv2.imwrite(str(out / depth_name), depth_mm)
            stride = 2
        else:
            depth_name = f"depth/depth_{i:06d}.npy"
            np.save(out / depth_name, depth.astype(np.float32))
            stride = 4

        color_name = f"color/color_{i:06d}.png"
        depth_preview(depth).save(out / color_name)

        frames.append({
            "timestamp": i / FRAME_RATE,
            "depth_path": depth_name,
            "width": DEPTH_W,
            "height": DEPTH_H,
            "pixel_stride": stride,
            "pose": {
                "position": [float(c) for c in eye],
                "rotation": [float(c) for c in rotation_matrix_to_quaternion(rotation)],
            },
            # Angle 0: local-to-world equals the device transform
            "screen_orientation": "LandscapeLeft",
            "color_path": color_name,
        })

    manifest = {
        "session_id": "synthetic-box-test",
        "timestamp": "2025-01-01T00:00:00Z",
        "device": "synthetic",
        "target_frame_rate": FRAME_RATE,
        "intrinsics": {
            "focal_length": [SENSOR_FX, SENSOR_FY],
            "principal_point": [SENSOR_CX, SENSOR_CY],
            "resolution": [SENSOR_W, SENSOR_H],
        },
        "frames": frames,
    }
    with open(out / "session_manifest.json", "w") as f:
        json.dump(manifest, f, indent=2)

    zip_path = out.with_suffix(".zip")
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.write(out / "session_manifest.json", "session_manifest.json")
        for path in sorted(depth_dir.iterdir()) + sorted(color_dir.iterdir()):
            zf.write(path, f"{path.parent.name}/{path.name}")

    zip_mb = zip_path.stat().st_size / (1024 * 1024)
    print(f"\nSynthetic session: {zip_path}  ({zip_mb:.1f} MB)")
    print(f"  {NUM_FRAMES} frames  |  depth {DEPTH_W}×{DEPTH_H}  |  sensor fx=fy={SENSOR_FX}")
    print(f"  Box: {BOX_MIN.tolist()} → {BOX_MAX.tolist()}, floor at y={FLOOR_Y}")
    print(f"Replay:  python -m depthcore.replay replay {zip_path} --output-dir output/synthetic_test/")


if __name__ == "__main__":
    main()
