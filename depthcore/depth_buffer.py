"""
Depth Buffer

Owns the raw per-pixel depth encoding delivered by the host and decodes
individual pixels into meters.

Supported encodings (single plane only):
- 4 bytes per pixel: little-endian float32, meters
- 2 bytes per pixel: little-endian uint16, millimeters
"""

import struct
from dataclasses import dataclass
from typing import Optional

import numpy as np

# Returned for pixels without a measurement (zero, negative or NaN depth).
# Downstream consumers rely on this exact value.
INVALID_DEPTH = 99999.0

# uint16 depth is stored in millimeters
MILLIMETERS_TO_METERS = 0.001

SUPPORTED_STRIDES = (2, 4)

_FLOAT32 = struct.Struct('<f')
_UINT16 = struct.Struct('<H')


class DepthFormatError(Exception):
    """Depth frame violates the host contract (plane count, stride, size)."""
    pass


@dataclass(frozen=True)
class DepthFrame:
    """A depth image as pushed by the host's depth source."""
    data: bytes
    width: int
    height: int
    pixel_stride: int
    plane_count: int = 1


def is_valid_depth(depth: float) -> bool:
    """True if a decoded depth is a real measurement, not the sentinel."""
    return depth != INVALID_DEPTH


def check_frame(frame: DepthFrame) -> None:
    """
    Validate a depth frame against the host contract.

    Raises:
        DepthFormatError: if the frame is multi-plane, uses an unsupported
            stride, or its byte length does not match its dimensions.
    """
    if frame.plane_count != 1:
        raise DepthFormatError(f"Plane count is not 1 (got {frame.plane_count})")
    if frame.pixel_stride not in SUPPORTED_STRIDES:
        raise DepthFormatError(f"Unsupported depth stride: {frame.pixel_stride} bytes")
    if frame.width < 0 or frame.height < 0:
        raise DepthFormatError(f"Invalid depth dimensions: {frame.width}x{frame.height}")

    expected = frame.width * frame.height * frame.pixel_stride
    if len(frame.data) != expected:
        raise DepthFormatError(
            f"Depth buffer is {len(frame.data)} bytes, expected {expected} "
            f"for {frame.width}x{frame.height} @ {frame.pixel_stride} bytes/pixel"
        )


class DepthBuffer:
    """
    Current depth image, replaced wholesale on each new frame.

    Storage is a single bytearray that is only reallocated when the byte
    length of the incoming frame differs from the current allocation.
    """

    def __init__(self):
        self._raw = bytearray()
        self.width = 0
        self.height = 0
        self.stride = 4
        self.reallocations = 0

    @property
    def storage(self) -> bytearray:
        """The backing byte storage (identity is stable across same-size frames)."""
        return self._raw

    @property
    def is_empty(self) -> bool:
        return len(self._raw) == 0

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def replace(self, frame: DepthFrame) -> None:
        """
        Copy a new depth frame into the buffer.

        Raises:
            DepthFormatError: if the frame violates the host contract
        """
        check_frame(frame)

        num_bytes = len(frame.data)
        if len(self._raw) != num_bytes:
            self._raw = bytearray(num_bytes)
            self.reallocations += 1
        self._raw[:] = frame.data

        self.width = frame.width
        self.height = frame.height
        self.stride = frame.pixel_stride

    def decode_depth(self, x: int, y: int) -> float:
        """
        Depth in meters at pixel (x, y).

        In portrait mode, (0, 0) is the top right of the screen and
        (width, height) is the bottom left. Screen orientation does not
        change pixel locations.

        Returns INVALID_DEPTH when the pixel has no measurement or no frame
        has arrived yet.

        Raises:
            IndexError: if (x, y) lies outside the buffer
            DepthFormatError: if the stored stride is unsupported
        """
        if self.is_empty:
            return INVALID_DEPTH

        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} depth buffer")

        index = y * self.width + x
        offset = self.stride * index
        if self.stride == 4:
            depth = _FLOAT32.unpack_from(self._raw, offset)[0]
        elif self.stride == 2:
            depth = _UINT16.unpack_from(self._raw, offset)[0] * MILLIMETERS_TO_METERS
        else:
            raise DepthFormatError(f"Unsupported depth stride: {self.stride} bytes")

        if depth > 0:
            return depth
        return INVALID_DEPTH

    def to_meters(self) -> Optional[np.ndarray]:
        """
        Decode the whole buffer into a (height, width) float32 array in meters.

        Pixels without a measurement hold INVALID_DEPTH. Returns None if no
        frame has arrived yet.
        """
        if self.is_empty:
            return None

        if self.stride == 4:
            depth = np.frombuffer(self._raw, dtype='<f4').astype(np.float32)
        elif self.stride == 2:
            depth = np.frombuffer(self._raw, dtype='<u2').astype(np.float32) * np.float32(MILLIMETERS_TO_METERS)
        else:
            raise DepthFormatError(f"Unsupported depth stride: {self.stride} bytes")

        depth = depth.reshape(self.height, self.width)
        with np.errstate(invalid='ignore'):
            invalid = ~(depth > 0)
        depth[invalid] = INVALID_DEPTH
        return depth


def depth_frame_from_array(depth: np.ndarray) -> DepthFrame:
    """
    Pack a 2D depth array into a host-style depth frame.

    float arrays are encoded as float32 meters (stride 4); uint16 arrays are
    passed through as millimeters (stride 2).
    """
    if depth.ndim != 2:
        raise DepthFormatError(f"Depth array must be 2D, got shape {depth.shape}")

    height, width = depth.shape
    if depth.dtype == np.uint16:
        data = depth.astype('<u2').tobytes()
        stride = 2
    elif np.issubdtype(depth.dtype, np.floating):
        data = depth.astype('<f4').tobytes()
        stride = 4
    else:
        raise DepthFormatError(f"Unsupported depth dtype: {depth.dtype}")

    return DepthFrame(data=data, width=width, height=height, pixel_stride=stride)
