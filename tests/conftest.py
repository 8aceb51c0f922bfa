from __future__ import annotations

import pytest

from fringe_capture.camera.mock import SimulatedCamera
from fringe_capture.core.models import CameraSettings, FringeParams, ScanRequest, TimingConfig
from fringe_capture.projector.mock import SimulatedProjector


class RecordingSleep:
    """Stand-in for time.sleep that records requested waits without blocking."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def projector():
    return SimulatedProjector()


@pytest.fixture
def make_camera(projector):
    cameras: list[SimulatedCamera] = []

    def _make(**kwargs) -> SimulatedCamera:
        kwargs.setdefault("width", 32)
        kwargs.setdefault("height", 16)
        kwargs.setdefault("scene", projector.current_image)
        cam = SimulatedCamera(**kwargs)
        cameras.append(cam)
        return cam

    yield _make
    for cam in cameras:
        cam.join_deliveries()


@pytest.fixture
def make_request(tmp_path):
    def _make(steps: int = 4, **kwargs) -> ScanRequest:
        kwargs.setdefault("output_dir", str(tmp_path / "images"))
        kwargs.setdefault(
            "timing",
            TimingConfig(exposure_buffer_ms=200, max_exposure_wait_ms=1000, default_exposure_wait_ms=200),
        )
        kwargs.setdefault("camera", CameraSettings())
        fringe = FringeParams(width=32, height=16, frequency=2, intensity=100, offset=128, steps=steps)
        return ScanRequest(fringe=fringe, **kwargs)

    return _make
