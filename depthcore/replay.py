"""
Session Replay

Plays a recorded depth session through a DepthCore the way a live AR host
would: one pose tick per display frame and one depth frame per camera
frame, then exports the world-space points.
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from utils.matrix import matrix_to_row_major

from .depth_buffer import DepthFormatError, is_valid_depth
from .export import ExportError, write_ply
from .frame_controller import CoreConfig, DepthCore, FrameClock
from .session import SessionError, ingest, iter_host_frames
from .unproject import is_valid_vertex

console = Console()
app = typer.Typer(help="AR depth session replay")


class ReplayError(Exception):
    """Error during session replay."""
    pass


@dataclass
class ReplayConfig:
    """Configuration for a session replay."""
    pixel_step: int = 4  # Sample every Nth depth pixel when exporting
    export_every: int = 1  # Export points for every Nth frame
    depth_first: bool = False  # Deliver depth before the pose tick within a frame
    realtime: bool = False  # Pace ticks at the target frame rate
    write_ply: bool = True
    verbose: bool = False


@dataclass
class ReplayStats:
    """Statistics collected during a replay."""
    start_time: float = 0
    end_time: float = 0
    frames: int = 0
    exported_frames: int = 0
    points: int = 0
    frames_without_pose: int = 0
    frames_without_intrinsics: int = 0
    per_frame: Dict = field(default_factory=dict)

    def start(self):
        self.start_time = time.time()

    def stop(self):
        self.end_time = time.time()

    @property
    def total_duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict:
        return {
            "total_duration_seconds": self.total_duration,
            "frames": self.frames,
            "exported_frames": self.exported_frames,
            "points": self.points,
            "frames_without_pose": self.frames_without_pose,
            "frames_without_intrinsics": self.frames_without_intrinsics,
            "per_frame": self.per_frame,
        }


def replay_session(
    input_path: Path,
    output_dir: Path,
    config: Optional[ReplayConfig] = None,
) -> ReplayStats:
    """
    Replay a recorded session and export world points per frame.

    Args:
        input_path: Session directory or .zip
        output_dir: Output directory for PLY files and replay_stats.json
        config: Replay configuration

    Returns:
        Collected replay statistics
    """
    config = config or ReplayConfig()
    if config.pixel_step < 1 or config.export_every < 1:
        raise ReplayError("pixel_step and export_every must be >= 1")

    stats = ReplayStats()
    stats.start()
    output_dir.mkdir(parents=True, exist_ok=True)

    session_dir, manifest, _ = ingest(input_path, output_dir / "work")

    console.print(Panel.fit(
        "[bold blue]AR Depth Session Replay[/bold blue]\n"
        f"Session: {manifest.session_id}\n"
        f"Frames: {len(manifest.frames)} @ {manifest.target_frame_rate} Hz\n"
        f"Output: {output_dir}",
        border_style="blue"
    ))

    core = DepthCore(CoreConfig(target_frame_rate=manifest.target_frame_rate, verbose=config.verbose))
    clock = FrameClock(core.config.target_frame_rate)
    points_dir = output_dir / "points"

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Replaying frames", total=len(manifest.frames))

        for host_frame in iter_host_frames(session_dir, manifest):
            if config.realtime:
                clock.wait_for_next_frame()
                delta = clock.tick()
            else:
                delta = clock.tick(host_frame.timestamp)

            try:
                if config.depth_first:
                    core.on_depth_frame(host_frame.depth, host_frame.intrinsics)
                    core.on_pose_tick(host_frame.pose, host_frame.orientation, delta)
                else:
                    core.on_pose_tick(host_frame.pose, host_frame.orientation, delta)
                    core.on_depth_frame(host_frame.depth, host_frame.intrinsics)
            except DepthFormatError as e:
                raise ReplayError(f"Frame {host_frame.index}: {e}")

            if host_frame.color is not None:
                core.on_color_frame(host_frame.color)

            stats.frames += 1
            if host_frame.pose is None:
                stats.frames_without_pose += 1
            if host_frame.intrinsics is None:
                stats.frames_without_intrinsics += 1

            if host_frame.index % config.export_every == 0:
                points = core.world_points(step=config.pixel_step)
                frame_stats = {
                    "timestamp": host_frame.timestamp,
                    "points": int(len(points)),
                    "position": core.position.tolist(),
                    "rotation": core.rotation.tolist(),
                    "local_to_world": matrix_to_row_major(core.local_to_world),
                    "status": core.status_text.strip(),
                }
                if config.write_ply and len(points) > 0:
                    ply_path = points_dir / f"frame_{host_frame.index:06d}.ply"
                    try:
                        write_ply(points, ply_path)
                    except ExportError as e:
                        raise ReplayError(f"Frame {host_frame.index}: {e}")
                    frame_stats["ply"] = str(ply_path.relative_to(output_dir))
                stats.per_frame[host_frame.index] = frame_stats
                stats.exported_frames += 1
                stats.points += len(points)

            progress.advance(task)

    stats.stop()

    with open(output_dir / "replay_stats.json", 'w') as f:
        json.dump(stats.to_dict(), f, indent=2)

    console.print(Panel.fit(
        f"[bold green]Replay Complete![/bold green]\n\n"
        f"Frames: {stats.frames} ({stats.exported_frames} exported)\n"
        f"World points: {stats.points}\n"
        f"Total time: {stats.total_duration:.1f}s",
        border_style="green"
    ))

    return stats


@app.command()
def replay(
    input_path: Path = typer.Argument(..., help="Path to session (.zip or directory)"),
    output_dir: Path = typer.Option(Path("./output"), help="Output directory"),
    pixel_step: int = typer.Option(4, help="Sample every Nth depth pixel"),
    export_every: int = typer.Option(1, help="Export points for every Nth frame"),
    depth_first: bool = typer.Option(False, "--depth-first", help="Deliver depth before the pose tick"),
    realtime: bool = typer.Option(False, "--realtime", help="Pace ticks at the target frame rate"),
    no_ply: bool = typer.Option(False, "--no-ply", help="Don't write PLY files"),
    verbose: bool = typer.Option(False, "--verbose", help="Print probe-pixel depth every tick"),
):
    """
    Replay a recorded depth session and export world-space points.
    """
    config = ReplayConfig(
        pixel_step=pixel_step,
        export_every=export_every,
        depth_first=depth_first,
        realtime=realtime,
        write_ply=not no_ply,
        verbose=verbose,
    )

    try:
        replay_session(input_path, output_dir, config)
    except (SessionError, ReplayError) as e:
        console.print(f"[bold red]Replay failed:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def probe(
    input_path: Path = typer.Argument(..., help="Path to session (.zip or directory)"),
    x: int = typer.Option(0, help="Depth pixel column"),
    y: int = typer.Option(0, help="Depth pixel row"),
    work_dir: Path = typer.Option(Path("./work"), help="Working directory for .zip sessions"),
    verbose: bool = typer.Option(False, "--verbose", help="Print probe-pixel depth every tick"),
):
    """Print depth, camera vertex and world point of one pixel for every frame."""
    try:
        session_dir, manifest, _ = ingest(input_path, work_dir)
        core = DepthCore(CoreConfig(target_frame_rate=manifest.target_frame_rate, verbose=verbose))
        for host_frame in iter_host_frames(session_dir, manifest):
            core.on_pose_tick(host_frame.pose, host_frame.orientation)
            core.on_depth_frame(host_frame.depth, host_frame.intrinsics)

            depth = core.get_depth(x, y)
            if not is_valid_depth(depth):
                console.print(f"[blue]{host_frame.index:04d}[/blue] [dim]depth=none[/dim]")
                continue

            vertex = core.compute_vertex(x, y, depth)
            if not is_valid_vertex(vertex):
                console.print(f"[blue]{host_frame.index:04d}[/blue] depth={depth:.3f} [dim]vertex=none[/dim]")
                continue

            world = core.transform_to_world(vertex)
            console.print(
                f"[blue]{host_frame.index:04d}[/blue] depth={depth:.3f} "
                f"vertex={np.round(vertex, 3).tolist()} world={np.round(world, 3).tolist()}"
            )
    except (SessionError, DepthFormatError, IndexError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
