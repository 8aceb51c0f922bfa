"""Camera device-control interface and simulated backend."""

from .base import CameraBase, FloatValue, FrameHandler
from .mock import SimulatedCamera

__all__ = ["CameraBase", "FloatValue", "FrameHandler", "SimulatedCamera"]
