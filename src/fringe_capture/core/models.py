"""
Core data models for fringe acquisition sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Literal, Tuple, Dict, Any, Optional

import numpy as np

from fringe_capture.core.errors import ValidationError


Orientation = Literal["vertical", "horizontal"]

# Requests below zero (or None) leave the device's current mode untouched.
KEEP_CURRENT = -1.0


def is_keep_current(value: Optional[float]) -> bool:
    return value is None or float(value) < 0.0


@dataclass(slots=True)
class FringeParams:
    """
    Parameters for one 2N phase-shift fringe sequence.
    """
    width: int
    height: int
    frequency: int = 32
    intensity: int = 100
    offset: int = 128
    noise_std: float = 0.0
    steps: int = 4
    seed: Optional[int] = None

    def validate(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValidationError(f"Pattern size must be positive, got {self.width}x{self.height}")
        if int(self.frequency) <= 0:
            raise ValidationError(f"Fringe frequency must be positive, got {self.frequency}")
        if int(self.steps) <= 0:
            raise ValidationError(f"Phase steps must be >= 1, got {self.steps}")
        if float(self.noise_std) < 0.0:
            raise ValidationError(f"noise_std must be >= 0, got {self.noise_std}")

    @property
    def N(self) -> int:
        return int(self.steps)

    @property
    def total_frames(self) -> int:
        return 2 * int(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class FringePattern:
    """Single-channel 8-bit fringe image tagged with orientation and phase step."""
    image: np.ndarray
    orientation: Orientation
    phase_index: int

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(slots=True)
class PatternTiming:
    """Projector timing and illumination shared by one pattern set (microseconds)."""
    exposure_us: int = 4000
    pre_exposure_us: int = 3000
    post_exposure_us: int = 3000
    illumination: str = "blue"
    invert: bool = False
    one_bit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PatternSet:
    """
    Ordered group of patterns uploaded to the projector's pattern table.
    """
    exposure_time_us: int
    pre_exposure_time_us: int
    post_exposure_time_us: int
    illumination: str
    invert: bool
    vertical: bool
    one_bit: bool
    array_count: int
    patterns: list[FringePattern] = field(default_factory=list)

    @property
    def images(self) -> list[np.ndarray]:
        return [p.image for p in self.patterns]

    @property
    def cycle_time_us(self) -> int:
        return int(self.pre_exposure_time_us) + int(self.exposure_time_us) + int(self.post_exposure_time_us)

    def describe(self) -> Dict[str, Any]:
        return {
            "exposure_time_us": int(self.exposure_time_us),
            "pre_exposure_time_us": int(self.pre_exposure_time_us),
            "post_exposure_time_us": int(self.post_exposure_time_us),
            "illumination": self.illumination,
            "invert": bool(self.invert),
            "vertical": bool(self.vertical),
            "one_bit": bool(self.one_bit),
            "array_count": int(self.array_count),
            "image_count": len(self.patterns),
        }


@dataclass(slots=True)
class CameraSettings:
    """
    Requested camera setpoints. None or negative means keep the current value/mode.
    """
    exposure_us: Optional[float] = 10000.0
    gain: Optional[float] = 5.0
    frame_rate: Optional[float] = 10.0
    trigger_delay_us: Optional[float] = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CameraParameterSpec:
    """Outcome of applying one requested camera parameter."""
    name: str
    requested: Optional[float]
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    applied: Optional[float] = None
    outcome: Literal["kept", "applied", "rejected"] = "kept"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class TimingConfig:
    """Wall-clock waits of the acquisition loop, in milliseconds."""
    startup_delay_ms: int = 200
    stabilization_margin_ms: int = 10
    exposure_buffer_ms: int = 500
    max_exposure_wait_ms: int = 5000
    default_exposure_wait_ms: int = 1000

    def validate(self) -> None:
        for name in (
            "startup_delay_ms",
            "stabilization_margin_ms",
            "exposure_buffer_ms",
            "max_exposure_wait_ms",
            "default_exposure_wait_ms",
        ):
            if int(getattr(self, name)) < 0:
                raise ValidationError(f"{name} must be >= 0, got {getattr(self, name)}")
        self.stabilization_margin_ms = max(10, int(self.stabilization_margin_ms))
        self.max_exposure_wait_ms = min(5000, int(self.max_exposure_wait_ms))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ScanRequest:
    """
    Everything one acquisition run needs, passed explicitly by the caller.
    """
    fringe: FringeParams
    output_dir: str = "images"
    pattern_timing: PatternTiming = field(default_factory=PatternTiming)
    # None reuses pattern_timing for the horizontal set.
    pattern_timing_horizontal: Optional[PatternTiming] = None
    camera: CameraSettings = field(default_factory=CameraSettings)
    timing: TimingConfig = field(default_factory=TimingConfig)
    camera_serial: Optional[str] = None
    led_current: Optional[Tuple[float, float, float]] = None
    save_patterns: bool = False
    write_meta: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_frames"] = self.fringe.total_frames
        return data


@dataclass(slots=True)
class CapturedFrame:
    """A frame delivered by the camera, with its delivery-assigned identity."""
    width: int
    height: int
    pixels: np.ndarray
    index: int
    orientation: Orientation
    path: Optional[str] = None


@dataclass(slots=True)
class AcquisitionSession:
    """
    Per-run state: totals, the two pattern sets, and the current step.
    """
    steps_per_orientation: int
    pattern_sets: list[PatternSet] = field(default_factory=list)
    step_index: int = 0

    @property
    def total_frames(self) -> int:
        return 2 * int(self.steps_per_orientation)

    def is_vertical(self, index: int) -> bool:
        """1-based frame/step index is vertical iff it falls in the first N."""
        return int(index) <= int(self.steps_per_orientation)

    def orientation_for(self, index: int) -> Orientation:
        return "vertical" if self.is_vertical(index) else "horizontal"

    def pattern_set_for(self, index: int) -> PatternSet:
        if len(self.pattern_sets) != 2:
            raise RuntimeError("Pattern sets not loaded")
        return self.pattern_sets[0] if self.is_vertical(index) else self.pattern_sets[1]


@dataclass(slots=True)
class AcquisitionReport:
    """
    Outcome of one run, persisted to meta.json.
    """
    status: str = "pending"
    error: Optional[str] = None
    total_frames: int = 0
    steps_completed: int = 0
    trigger_failures: int = 0
    missed_frames: int = 0
    frames_saved: int = 0
    frames_discarded: int = 0
    io_errors: int = 0
    frames_found: int = 0
    missing_files: list[str] = field(default_factory=list)
    parameters: list[Dict[str, Any]] = field(default_factory=list)
    trigger_command: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
