"""Stepped-projector / software-triggered camera acquisition for phase-shift scans."""

from .core.controller import AcquisitionCoordinator, exposure_wait_ms, stabilization_wait_ms
from .core.errors import (
    ConfigurationError,
    DeviceError,
    FramePersistError,
    FringeCaptureError,
    TransientDeviceError,
    ValidationError,
)
from .core.models import (
    AcquisitionReport,
    CameraSettings,
    FringeParams,
    PatternTiming,
    ScanRequest,
    TimingConfig,
)
from .io.frame_sink import FrameSink
from .patterns.generator import FringePatternGenerator

__version__ = "0.1.0"

__all__ = [
    "AcquisitionCoordinator",
    "AcquisitionReport",
    "CameraSettings",
    "ConfigurationError",
    "DeviceError",
    "FramePersistError",
    "FrameSink",
    "FringeCaptureError",
    "FringeParams",
    "FringePatternGenerator",
    "PatternTiming",
    "ScanRequest",
    "TimingConfig",
    "TransientDeviceError",
    "ValidationError",
    "exposure_wait_ms",
    "stabilization_wait_ms",
]
