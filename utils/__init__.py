"""Utility functions for the AR depth core."""

from .matrix import (
    compose_transform,
    is_identity,
    rotation_about_z,
    transform_point,
    validate_transform,
    extract_position,
    extract_rotation,
)
from .validation import (
    validate_manifest,
    validate_frames,
    validate_session_package,
)

__all__ = [
    "compose_transform",
    "is_identity",
    "rotation_about_z",
    "transform_point",
    "validate_transform",
    "extract_position",
    "extract_rotation",
    "validate_manifest",
    "validate_frames",
    "validate_session_package",
]
