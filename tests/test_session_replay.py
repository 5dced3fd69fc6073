"""Integration tests for session loading, replay and point export."""

import json
import shutil
from pathlib import Path

import cv2
import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from depthcore.export import ExportError, get_ply_info, read_ply_points, write_ply
from depthcore.pose_transform import ScreenOrientation
from depthcore.replay import ReplayConfig, ReplayError, app, replay_session
from depthcore.session import (
    SessionError,
    ingest,
    iter_host_frames,
    load_manifest,
    read_depth_file,
)
from utils.validation import (
    DepthFrameEntry,
    validate_frames,
    validate_manifest,
    validate_session_package,
)

WIDTH, HEIGHT = 8, 6


def create_test_session(output_dir: Path, **overrides) -> Path:
    """
    Create a three-frame session with one depth file of each format.

    Sensor intrinsics (16x12, fx 16, principal point 8,6) scale to
    fx 8, principal point (4, 3) at the 8x6 depth resolution.
    """
    session_dir = output_dir / "session"
    (session_dir / "depth").mkdir(parents=True)
    (session_dir / "color").mkdir()

    # Frame 0: 16-bit PNG in millimeters
    cv2.imwrite(str(session_dir / "depth" / "000000.png"), np.full((HEIGHT, WIDTH), 2000, dtype=np.uint16))
    Image.new("RGB", (WIDTH, HEIGHT), (200, 100, 50)).save(session_dir / "color" / "000000.png")

    # Frame 1: float32 meters
    np.save(session_dir / "depth" / "000001.npy", np.full((HEIGHT, WIDTH), 1.5, dtype=np.float32))

    # Frame 2: raw float32 buffer
    (session_dir / "depth" / "000002.bin").write_bytes(
        np.full(WIDTH * HEIGHT, 1.0, dtype="<f4").tobytes()
    )

    frames = [
        {
            "timestamp": 0.0,
            "depth_path": "depth/000000.png",
            "width": WIDTH,
            "height": HEIGHT,
            "pose": {"position": [0.0, 0.0, -1.0]},
            "screen_orientation": "LandscapeLeft",
            "color_path": "color/000000.png",
        },
        {
            "timestamp": 0.1,
            "depth_path": "depth/000001.npy",
            "width": WIDTH,
            "height": HEIGHT,
            "pixel_stride": 4,
            "pose": {"position": [0.1, 0.0, -1.0], "rotation": [1.0, 0.0, 0.0, 0.0]},
            "screen_orientation": "LandscapeLeft",
            "intrinsics": {
                "focal_length": [32.0, 32.0],
                "principal_point": [16.0, 12.0],
                "resolution": [32, 24],
            },
        },
        {
            "timestamp": 0.2,
            "depth_path": "depth/000002.bin",
            "width": WIDTH,
            "height": HEIGHT,
            "pixel_stride": 4,
            "screen_orientation": "Portrait",
            "intrinsics_available": False,
        },
    ]

    manifest = {
        "session_id": "test-session-001",
        "timestamp": "2024-01-15T10:30:00Z",
        "device": "iPhone 14 Pro",
        "target_frame_rate": 30,
        "intrinsics": {
            "focal_length": [16.0, 16.0],
            "principal_point": [8.0, 6.0],
            "resolution": [16, 12],
        },
        "frames": frames,
    }
    manifest.update(overrides)

    with open(session_dir / "session_manifest.json", "w") as f:
        json.dump(manifest, f, indent=2)

    return session_dir


def frame_entry(**kwargs) -> DepthFrameEntry:
    data = {"timestamp": 0.0, "depth_path": "d.npy", "width": WIDTH, "height": HEIGHT}
    data.update(kwargs)
    return DepthFrameEntry(**data)


class TestValidation:
    """Tests for manifest and session validation."""

    def test_validate_valid_manifest(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        is_valid, manifest, errors = validate_manifest(session_dir / "session_manifest.json")

        assert is_valid
        assert len(errors) == 0
        assert manifest.session_id == "test-session-001"
        assert manifest.frames[0].plane_count == 1
        assert manifest.frames[0].pose.rotation == [1.0, 0.0, 0.0, 0.0]

    def test_validate_missing_manifest(self, tmp_path):
        is_valid, manifest, errors = validate_manifest(tmp_path / "nonexistent.json")

        assert not is_valid
        assert manifest is None
        assert len(errors) > 0

    def test_empty_frames(self, tmp_path):
        session_dir = create_test_session(tmp_path, frames=[])
        is_valid, _, errors = validate_manifest(session_dir / "session_manifest.json")

        assert not is_valid
        assert "At least 1 depth frame" in str(errors)

    def test_invalid_orientation(self):
        with pytest.raises(ValueError, match="screen orientation"):
            frame_entry(screen_orientation="FaceUp")

    def test_invalid_stride(self):
        with pytest.raises(ValueError, match="pixel stride"):
            frame_entry(pixel_stride=3)

    def test_non_unit_quaternion(self):
        with pytest.raises(ValueError, match="unit length"):
            frame_entry(pose={"position": [0, 0, 0], "rotation": [2.0, 0.0, 0.0, 0.0]})

    def test_device_transform(self):
        entry = frame_entry(device_transform=[
            0, 0, 1, 1.0,
            0, 1, 0, 2.0,
            -1, 0, 0, 3.0,
            0, 0, 0, 1,
        ])
        assert len(entry.device_transform) == 16

        with pytest.raises(ValueError, match="16 elements"):
            frame_entry(device_transform=[1, 0, 0])
        with pytest.raises(ValueError, match="rigid transform"):
            frame_entry(device_transform=[2, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1])

    def test_frame_sequence_stats(self):
        frames = [
            frame_entry(timestamp=i * 0.1, pose={"position": [i * 0.01, 0.0, 0.0]})
            for i in range(10)
        ]
        is_valid, stats, warnings = validate_frames(frames)

        assert is_valid
        assert stats["total_frames"] == 10
        assert stats["frames_with_pose"] == 10
        assert stats["resolutions"] == [(WIDTH, HEIGHT)]
        assert stats["duration"] == pytest.approx(0.9)

    def test_frame_sequence_warnings(self):
        frames = [
            frame_entry(timestamp=0.0, pose={"position": [0.0, 0.0, 0.0]}),
            frame_entry(timestamp=0.1, pose={"position": [5.0, 0.0, 0.0]}),
            frame_entry(timestamp=0.05),
            frame_entry(timestamp=1.0),
            frame_entry(timestamp=1.1),
        ]
        is_valid, _, warnings = validate_frames(frames)

        assert not is_valid
        assert any("Non-monotonic" in w for w in warnings)
        assert any("Large timestamp gap" in w for w in warnings)
        assert any("High velocity" in w for w in warnings)
        assert any("Low tracking" in w for w in warnings)

    def test_session_package(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        is_valid, info, errors = validate_session_package(session_dir)

        assert is_valid, errors
        assert info["frames"]["total_frames"] == 3

    def test_missing_depth_file(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        (session_dir / "depth" / "000001.npy").unlink()

        is_valid, _, errors = validate_session_package(session_dir)

        assert not is_valid
        assert "000001.npy" in str(errors)

    def test_no_intrinsics(self, tmp_path):
        session_dir = create_test_session(tmp_path, intrinsics=None)
        manifest_path = session_dir / "session_manifest.json"
        data = json.loads(manifest_path.read_text())
        for frame in data["frames"]:
            frame.pop("intrinsics", None)
        manifest_path.write_text(json.dumps(data))

        is_valid, _, errors = validate_session_package(session_dir)

        assert not is_valid
        assert "no camera intrinsics" in str(errors)


class TestSessionLoading:
    """Tests for ingesting sessions and yielding host frames."""

    def test_ingest_directory(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        result_dir, manifest, info = ingest(session_dir, tmp_path / "work")

        assert result_dir == session_dir
        assert manifest.device == "iPhone 14 Pro"
        assert "frames" in info

    def test_ingest_zip(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        archive = shutil.make_archive(str(tmp_path / "recording"), "zip", root_dir=session_dir)

        result_dir, manifest, _ = ingest(Path(archive), tmp_path / "work")

        assert (result_dir / "session_manifest.json").exists()
        assert manifest.session_id == "test-session-001"

    def test_ingest_bad_input(self, tmp_path):
        with pytest.raises(SessionError, match="zip file or directory"):
            ingest(tmp_path / "missing.mov", tmp_path / "work")

    def test_ingest_invalid_session(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        (session_dir / "depth" / "000000.png").unlink()

        with pytest.raises(SessionError, match="validation failed"):
            ingest(session_dir, tmp_path / "work")

    def test_load_manifest_missing(self, tmp_path):
        with pytest.raises(SessionError, match="Manifest not found"):
            load_manifest(tmp_path)

    def test_host_frames(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        frames = list(iter_host_frames(session_dir, load_manifest(session_dir)))

        assert [f.index for f in frames] == [0, 1, 2]

        png, npy, raw = frames
        assert png.depth.pixel_stride == 2
        assert npy.depth.pixel_stride == 4
        assert raw.depth.pixel_stride == 4
        assert len(raw.depth.data) == WIDTH * HEIGHT * 4

        assert png.orientation is ScreenOrientation.LANDSCAPE_LEFT
        assert raw.orientation is ScreenOrientation.PORTRAIT
        assert png.pose.position == (0.0, 0.0, -1.0)
        assert raw.pose is None

    def test_intrinsics_selection(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        png, npy, raw = iter_host_frames(session_dir, load_manifest(session_dir))

        assert png.intrinsics.resolution == (16, 12)
        assert npy.intrinsics.resolution == (32, 24)
        assert raw.intrinsics is None

    def test_pose_from_device_transform(self, tmp_path):
        """A row-major device transform replays like the equivalent pose."""
        session_dir = create_test_session(tmp_path)
        manifest_path = session_dir / "session_manifest.json"
        data = json.loads(manifest_path.read_text())
        # 90 degrees about +Y, at (1, 2, 3)
        data["frames"][2]["device_transform"] = [
            0, 0, 1, 1.0,
            0, 1, 0, 2.0,
            -1, 0, 0, 3.0,
            0, 0, 0, 1,
        ]
        manifest_path.write_text(json.dumps(data))

        frames = list(iter_host_frames(session_dir, load_manifest(session_dir)))
        pose = frames[2].pose

        assert pose.position == (1.0, 2.0, 3.0)
        np.testing.assert_allclose(pose.rotation, [np.sqrt(0.5), 0.0, np.sqrt(0.5), 0.0], atol=1e-9)

    def test_color_frame(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        png, npy, _ = iter_host_frames(session_dir, load_manifest(session_dir))

        assert (png.color.width, png.color.height) == (WIDTH, HEIGHT)
        assert png.color.data[:4] == bytes([200, 100, 50, 255])
        assert npy.color is None

    def test_depth_size_mismatch(self, tmp_path):
        path = tmp_path / "depth.npy"
        np.save(path, np.ones((HEIGHT, WIDTH), dtype=np.float32))

        with pytest.raises(SessionError, match="manifest says 4x4"):
            read_depth_file(path, frame_entry(depth_path="depth.npy", width=4, height=4))

    def test_raw_depth_needs_stride(self, tmp_path):
        path = tmp_path / "depth.bin"
        path.write_bytes(b"\x00" * WIDTH * HEIGHT * 4)

        with pytest.raises(SessionError, match="pixel_stride is required"):
            read_depth_file(path, frame_entry(depth_path="depth.bin"))

    def test_plane_count_passed_through(self, tmp_path):
        path = tmp_path / "depth.npy"
        np.save(path, np.ones((HEIGHT, WIDTH), dtype=np.float32))

        frame = read_depth_file(path, frame_entry(depth_path="depth.npy", plane_count=2))

        assert frame.plane_count == 2


class TestReplay:
    """Tests for replaying a session through the depth core."""

    def test_replay_writes_outputs(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        output_dir = tmp_path / "output"

        stats = replay_session(session_dir, output_dir, ReplayConfig(pixel_step=1))

        assert stats.frames == 3
        assert stats.exported_frames == 3
        assert stats.points == 3 * WIDTH * HEIGHT
        assert stats.frames_without_pose == 1
        assert stats.frames_without_intrinsics == 1

        for i in range(3):
            assert (output_dir / "points" / f"frame_{i:06d}.ply").exists()

        with open(output_dir / "replay_stats.json") as f:
            saved = json.load(f)
        assert saved["frames"] == 3
        assert saved["per_frame"]["1"]["status"] == "10"
        assert saved["per_frame"]["0"]["local_to_world"][11] == -1.0

    def test_replayed_points_in_world(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        output_dir = tmp_path / "output"
        replay_session(session_dir, output_dir, ReplayConfig(pixel_step=1))

        # Frame 0: device at z = -1, wall 2 m ahead, principal point is pixel (4, 3)
        first = read_ply_points(output_dir / "points" / "frame_000000.ply")
        np.testing.assert_allclose(first[:, 2], 1.0, atol=1e-5)
        np.testing.assert_allclose(first[3 * WIDTH + 4], [0.0, 0.0, 1.0], atol=1e-5)

        # Frame 2 has no pose; the frame 1 matrix stays in effect
        last = read_ply_points(output_dir / "points" / "frame_000002.ply")
        np.testing.assert_allclose(last[3 * WIDTH + 4], [0.1, 0.0, 0.0], atol=1e-5)

    def test_call_order_does_not_change_points(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        replay_session(session_dir, tmp_path / "pose_first", ReplayConfig(pixel_step=2))
        replay_session(session_dir, tmp_path / "depth_first", ReplayConfig(pixel_step=2, depth_first=True))

        for i in range(3):
            name = f"points/frame_{i:06d}.ply"
            np.testing.assert_array_equal(
                read_ply_points(tmp_path / "pose_first" / name),
                read_ply_points(tmp_path / "depth_first" / name),
            )

    def test_export_every(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        stats = replay_session(session_dir, tmp_path / "output", ReplayConfig(export_every=2, write_ply=False))

        assert stats.exported_frames == 2
        assert sorted(stats.per_frame) == [0, 2]
        assert not (tmp_path / "output" / "points").exists()

    def test_multi_plane_frame_fails(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        manifest_path = session_dir / "session_manifest.json"
        data = json.loads(manifest_path.read_text())
        data["frames"][1]["plane_count"] = 2
        manifest_path.write_text(json.dumps(data))

        with pytest.raises(ReplayError, match="Frame 1: Plane count"):
            replay_session(session_dir, tmp_path / "output")

    def test_bad_config(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        with pytest.raises(ReplayError, match="pixel_step"):
            replay_session(session_dir, tmp_path / "output", ReplayConfig(pixel_step=0))


class TestCli:
    """Tests for the replay command line."""

    def test_replay_command(self, tmp_path):
        session_dir = create_test_session(tmp_path)
        output_dir = tmp_path / "output"

        result = CliRunner().invoke(app, [
            "replay", str(session_dir),
            "--output-dir", str(output_dir),
            "--pixel-step", "2",
        ])

        assert result.exit_code == 0, result.output
        assert (output_dir / "replay_stats.json").exists()

    def test_replay_command_failure(self, tmp_path):
        result = CliRunner().invoke(app, [
            "replay", str(tmp_path / "missing.mov"),
            "--output-dir", str(tmp_path / "output"),
        ])

        assert result.exit_code == 1
        assert "Replay failed" in result.output

    def test_probe_command(self, tmp_path):
        session_dir = create_test_session(tmp_path)

        result = CliRunner().invoke(app, ["probe", str(session_dir), "--x", "4", "--y", "3"])

        assert result.exit_code == 0, result.output
        assert "depth=2.000" in result.output

    def test_pixel_without_depth_prints_none(self, tmp_path):
        """Pixels without depth print as none, never as a far-away point."""
        session_dir = create_test_session(tmp_path)
        np.save(session_dir / "depth" / "000001.npy", np.zeros((HEIGHT, WIDTH), dtype=np.float32))

        result = CliRunner().invoke(app, ["probe", str(session_dir), "--x", "0", "--y", "0"])

        assert result.exit_code == 0, result.output
        assert "0001 depth=none" in result.output
        assert "99999" not in result.output
        assert "depth=2.000" in result.output

    def test_pixel_command_verbose(self, tmp_path):
        """The per-pixel command honors --verbose like replay does."""
        session_dir = create_test_session(tmp_path)

        result = CliRunner().invoke(app, ["probe", str(session_dir), "--x", "1", "--y", "1", "--verbose"])

        assert result.exit_code == 0, result.output
        assert "Distance at pixel (0,0): 2.0" in result.output


class TestExport:
    """Tests for PLY export."""

    def test_binary_roundtrip(self, tmp_path):
        points = np.array([[0.0, 1.0, 2.0], [-1.5, 0.25, 3.0]], dtype=np.float32)
        path = write_ply(points, tmp_path / "points.ply")

        info = get_ply_info(path)
        assert info["format"] == "binary_little_endian"
        assert info["point_count"] == 2
        assert [p["name"] for p in info["properties"]] == ["x", "y", "z"]
        np.testing.assert_array_equal(read_ply_points(path), points)

    def test_ascii(self, tmp_path):
        points = np.array([[0.5, -1.0, 2.0]])
        path = write_ply(points, tmp_path / "points.ply", binary=False)

        assert get_ply_info(path)["format"] == "ascii"
        np.testing.assert_allclose(read_ply_points(path), points)

    def test_non_finite_rejected(self, tmp_path):
        with pytest.raises(ExportError, match="finite"):
            write_ply(np.array([[0.0, 0.0, -np.inf]]), tmp_path / "points.ply")

    def test_get_ply_info_missing(self, tmp_path):
        with pytest.raises(ExportError, match="not found"):
            get_ply_info(tmp_path / "missing.ply")
