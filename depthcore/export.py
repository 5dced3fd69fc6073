"""
Point Export

Writes world-space points to PLY files and reads PLY headers back.
"""

from pathlib import Path
from typing import Dict

import numpy as np
from rich.console import Console

console = Console()


class ExportError(Exception):
    """Error during point export."""
    pass


def write_ply(points: np.ndarray, output_path: Path, binary: bool = True) -> Path:
    """
    Write an (N, 3) array of points as a PLY file.

    Args:
        points: World-space points in meters
        output_path: Destination .ply path
        binary: Write binary_little_endian (default) or ascii

    Returns:
        Path to the written file
    """
    points = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    if not np.all(np.isfinite(points)):
        raise ExportError("Points must be finite (drop invalid vertices before export)")

    fmt = "binary_little_endian" if binary else "ascii"
    header = (
        "ply\n"
        f"format {fmt} 1.0\n"
        f"element vertex {len(points)}\n"
        "property float x\n"
        "property float y\n"
        "property float z\n"
        "end_header\n"
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'wb') as f:
        f.write(header.encode('ascii'))
        if binary:
            f.write(points.astype('<f4').tobytes())
        else:
            for x, y, z in points:
                f.write(f"{x:.6f} {y:.6f} {z:.6f}\n".encode('ascii'))

    return output_path


def get_ply_info(ply_path: Path) -> Dict:
    """
    Get information about a PLY file.

    Returns:
        Dict with point_count, format, file_size, properties
    """
    if not ply_path.exists():
        raise ExportError(f"PLY file not found: {ply_path}")

    info = {
        'file_size': ply_path.stat().st_size,
        'file_size_mb': ply_path.stat().st_size / (1024 * 1024),
    }

    # Parse PLY header
    with open(ply_path, 'rb') as f:
        header_lines = []
        while True:
            line = f.readline().decode('utf-8', errors='ignore').strip()
            header_lines.append(line)
            if line == 'end_header':
                break
            if len(header_lines) > 100:  # Safety limit
                raise ExportError(f"PLY header not terminated: {ply_path}")

    properties = []
    for line in header_lines:
        if line.startswith('format'):
            info['format'] = line.split()[1]
        elif line.startswith('element vertex'):
            info['point_count'] = int(line.split()[-1])
        elif line.startswith('property'):
            parts = line.split()
            if len(parts) >= 3:
                properties.append({
                    'type': parts[1],
                    'name': parts[2],
                })

    info['properties'] = properties
    info['property_count'] = len(properties)

    return info


def read_ply_points(ply_path: Path) -> np.ndarray:
    """Read the x, y, z points of a PLY written by write_ply."""
    info = get_ply_info(ply_path)
    count = info.get('point_count', 0)

    with open(ply_path, 'rb') as f:
        while f.readline().strip() != b'end_header':
            pass
        if info.get('format') == 'binary_little_endian':
            data = np.frombuffer(f.read(count * 12), dtype='<f4')
        else:
            data = np.loadtxt(f, dtype=np.float32, ndmin=2)

    return np.asarray(data, dtype=np.float32).reshape(-1, 3)
