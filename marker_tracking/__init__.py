"""Fiducial marker pose tracking with temporal filtering."""

from .config import ConfigError, FilterConfig, TrackerConfig
from .marker_types import CameraIntrinsics, FilteredPose, ImageBuffer
from .pipeline import MarkerPosePipeline

__all__ = [
    "CameraIntrinsics",
    "ConfigError",
    "FilterConfig",
    "FilteredPose",
    "ImageBuffer",
    "MarkerPosePipeline",
    "TrackerConfig",
]
