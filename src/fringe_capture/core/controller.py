"""Acquisition coordinator: steps the projector, triggers the camera, and tears down."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Literal, Optional

from fringe_capture.camera.base import CameraBase
from fringe_capture.core.errors import ConfigurationError, DeviceError, ValidationError
from fringe_capture.core.models import (
    AcquisitionReport,
    AcquisitionSession,
    FringePattern,
    PatternSet,
    PatternTiming,
    ScanRequest,
    TimingConfig,
)
from fringe_capture.core.parameters import (
    ParameterClamp,
    TriggerCapability,
    configure_base,
    parameter_table,
)
from fringe_capture.io.frame_sink import FrameSink
from fringe_capture.io.run_store import RunStore
from fringe_capture.patterns.generator import FringePatternGenerator
from fringe_capture.projector.base import ProjectorBase


State = Literal[
    "IDLE",
    "DEVICE_READY",
    "PATTERNS_LOADED",
    "PROJECTING",
    "STEPPING",
    "STABILIZING",
    "TRIGGERING",
    "AWAITING_EXPOSURE",
    "COMPLETED",
    "TEARDOWN",
]

log = logging.getLogger(__name__)


def stabilization_wait_ms(pattern_set: PatternSet, margin_ms: int = 10) -> int:
    """(pre + exposure + post) / 1000 ms, at least 1 ms, plus a margin of at least 10 ms."""
    ms = max(1, pattern_set.cycle_time_us // 1000)
    return ms + max(10, int(margin_ms))


def exposure_wait_ms(exposure_us: Optional[float], timing: TimingConfig) -> int:
    """Exposure plus readout/transfer buffer, capped. Unknown exposure uses the default wait."""
    cap = min(5000, int(timing.max_exposure_wait_ms))
    if exposure_us is None:
        return min(int(timing.default_exposure_wait_ms), cap)
    return min(int(float(exposure_us) / 1000.0) + int(timing.exposure_buffer_ms), cap)


def build_pattern_sets(
    patterns: list[FringePattern],
    timing: PatternTiming,
    width: int,
    height: int,
    horizontal_timing: Optional[PatternTiming] = None,
) -> list[PatternSet]:
    """
    Split 2N generated patterns into the vertical (first N) and horizontal (last N) sets.
    `horizontal_timing` defaults to `timing`.
    """
    if len(patterns) % 2 != 0 or not patterns:
        raise ValidationError(f"Expected 2N patterns, got {len(patterns)}")
    n = len(patterns) // 2
    sets = []
    per_set = (
        (True, patterns[:n], width, timing),
        (False, patterns[n:], height, horizontal_timing or timing),
    )
    for vertical, chunk, count, set_timing in per_set:
        sets.append(
            PatternSet(
                exposure_time_us=int(set_timing.exposure_us),
                pre_exposure_time_us=int(set_timing.pre_exposure_us),
                post_exposure_time_us=int(set_timing.post_exposure_us),
                illumination=str(set_timing.illumination),
                invert=bool(set_timing.invert),
                vertical=vertical,
                one_bit=bool(set_timing.one_bit),
                array_count=int(count),
                patterns=list(chunk),
            )
        )
    return sets


class AcquisitionCoordinator:
    """
    Orchestrates projector stepping, software triggering and teardown for one
    phase-shift scan. Runs synchronously on the calling thread; frames arrive on
    the camera's delivery thread and are handled by the session's FrameSink.
    """

    def __init__(
        self,
        projector: ProjectorBase,
        camera: CameraBase,
        generator: Optional[FringePatternGenerator] = None,
        sleep: Callable[[float], None] = time.sleep,
        continuous_projection: bool = True,
    ) -> None:
        self.projector = projector
        self.camera = camera
        self.generator = generator or FringePatternGenerator()
        self.continuous_projection = continuous_projection
        self._sleep = sleep

        self._lock = threading.Lock()
        self._state: State = "IDLE"
        self._running = False
        self._last_error: Optional[str] = None
        self.transitions: list[State] = []

        self.session: Optional[AcquisitionSession] = None
        self.sink: Optional[FrameSink] = None
        self.capability: Optional[TriggerCapability] = None
        self.report = AcquisitionReport()

        self._projector_connected = False
        self._camera_open = False
        self._grabbing = False
        self._projecting = False

    # -- public API ----------------------------------------------------------------

    def run(self, request: ScanRequest) -> bool:
        """
        Execute one acquisition. Returns True when the stepping loop ran to the
        end; soft errors (trigger failures, missed or unsaved frames) are
        recorded on `self.report` but do not change the result.
        """
        with self._lock:
            if self._running:
                raise RuntimeError("Acquisition already running")
            self._running = True
            self._last_error = None
        self.transitions = []
        self.report = AcquisitionReport(started_at=datetime.now().isoformat())
        self.session = None
        self.sink = None
        self.capability = None
        store = RunStore(request.output_dir)
        ok = False
        try:
            self._enter("IDLE")
            request.timing.validate()
            patterns = self.generator.generate_sequence(request.fringe)
            n = request.fringe.N
            self.session = AcquisitionSession(steps_per_orientation=n)
            self.sink = FrameSink(request.output_dir, self.session.total_frames, n)
            self.report.total_frames = self.session.total_frames
            self.sink.prepare()

            self._device_ready(request)
            self._load_patterns(request, patterns, store)
            self._start_projection(request.timing)
            self._acquire(request.timing)
            self._enter("COMPLETED")
            self.report.status = "completed"
            ok = True
        except (ValidationError, ConfigurationError) as exc:
            self.report.status = "aborted"
            self.report.error = str(exc)
            log.error("Acquisition aborted in %s: %s", self._state, exc)
        except Exception as exc:
            self.report.status = "error"
            self.report.error = str(exc)
            log.exception("Acquisition failed")
        finally:
            self.teardown()
            self._finish(request, store)
            with self._lock:
                self._last_error = self.report.error
                self._running = False
        return ok

    def teardown(self) -> None:
        """
        Release whatever was acquired, in reverse order. Safe to call repeatedly
        and after partial setup: each resource is released at most once.
        """
        self._enter("TEARDOWN")
        if self._projecting:
            self._projecting = False
            self._release("stop projection", self.projector.stop)
        if self._grabbing:
            self._grabbing = False
            self._release("stop grabbing", self.camera.stop_grabbing)
        if self._camera_open:
            self._camera_open = False
            self._release("close camera", self.camera.close)
        if self._projector_connected:
            self._projector_connected = False
            self._release("disconnect projector", self.projector.disconnect)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            session = self.session
            return {
                "state": self._state,
                "running": self._running,
                "step_index": session.step_index if session else 0,
                "total_steps": session.total_frames if session else 0,
                "last_error": self._last_error,
            }

    # -- state transitions ---------------------------------------------------------

    def _device_ready(self, request: ScanRequest) -> None:
        try:
            self.projector.connect()
        except DeviceError as exc:
            raise ConfigurationError(f"Projector connection failed: {exc}") from exc
        self._projector_connected = True
        log.info("Projector connected: %s", type(self.projector).__name__)

        try:
            self.camera.open(request.camera_serial)
        except DeviceError as exc:
            raise ConfigurationError(f"Camera open failed: {exc}") from exc
        self._camera_open = True

        self.capability = configure_base(self.camera)
        self.report.trigger_command = self.capability.command
        specs = ParameterClamp(self.camera).apply_all(parameter_table(request.camera))
        self.report.parameters = [s.to_dict() for s in specs]

        try:
            self.camera.register_frame_handler(self.sink.on_frame)
            self.camera.start_grabbing()
        except DeviceError as exc:
            raise ConfigurationError(f"Camera grabbing setup failed: {exc}") from exc
        self._grabbing = True
        self._enter("DEVICE_READY")

    def _load_patterns(self, request: ScanRequest, patterns: list[FringePattern], store: RunStore) -> None:
        fringe = request.fringe
        sets = build_pattern_sets(
            patterns,
            request.pattern_timing,
            fringe.width,
            fringe.height,
            horizontal_timing=request.pattern_timing_horizontal,
        )
        if any(len(ps.patterns) != fringe.N for ps in sets):
            raise ValidationError("Pattern set size does not match phase steps")
        self.session.pattern_sets = sets
        log.info("Vertical patterns: %d, horizontal patterns: %d", len(sets[0].patterns), len(sets[1].patterns))
        try:
            self.projector.populate_pattern_table(sets)
        except DeviceError as exc:
            raise ConfigurationError(f"Pattern table upload failed: {exc}") from exc

        if request.led_current is not None:
            try:
                self.projector.set_led_current(*request.led_current)
            except DeviceError as exc:
                log.warning("LED current not applied, continuing: %s", exc)
        if request.save_patterns:
            store.save_patterns(patterns)
        self._enter("PATTERNS_LOADED")

    def _start_projection(self, timing: TimingConfig) -> None:
        try:
            self.projector.project(self.continuous_projection)
        except DeviceError as exc:
            raise ConfigurationError(f"Projection start failed: {exc}") from exc
        self._projecting = True
        self._enter("PROJECTING")
        self._wait_ms(timing.startup_delay_ms)

    def _acquire(self, timing: TimingConfig) -> None:
        session = self.session
        total = session.total_frames
        # Fixed step count; the device's per-set display counter resets between pattern sets.
        for i in range(1, total + 1):
            with self._lock:
                session.step_index = i
            self._enter("STEPPING")
            try:
                self.projector.step()
            except DeviceError as exc:
                raise ConfigurationError(f"Projector step {i}/{total} failed: {exc}") from exc

            self._enter("STABILIZING")
            wait = stabilization_wait_ms(session.pattern_set_for(i), timing.stabilization_margin_ms)
            log.info("Step %d/%d (%s): stabilizing %d ms", i, total, session.orientation_for(i), wait)
            self._wait_ms(wait)

            self._enter("TRIGGERING")
            self.sink.drain()
            try:
                self.camera.execute_command(self.capability.command)
            except DeviceError as exc:
                self.report.trigger_failures += 1
                log.warning("Software trigger for step %d failed, skipping: %s", i, exc)
                self.report.steps_completed = i
                continue

            self._enter("AWAITING_EXPOSURE")
            wait = exposure_wait_ms(self._current_exposure_us(), timing)
            frame = self.sink.wait_for_frame(wait / 1000.0)
            if frame is None:
                self.report.missed_frames += 1
                latest = self.sink.mailbox.peek()
                log.warning(
                    "No frame delivered within %d ms after step %d (latest frame: %s)",
                    wait,
                    i,
                    latest.index if latest is not None else "none",
                )
            else:
                log.info("Step %d/%d captured as frame %d", i, total, frame.index)
            self.report.steps_completed = i

    # -- helpers -------------------------------------------------------------------

    def _current_exposure_us(self) -> Optional[float]:
        try:
            return float(self.camera.get_float("ExposureTime").current)
        except DeviceError as exc:
            log.debug("ExposureTime unavailable: %s", exc)
            return None

    def _wait_ms(self, ms: int) -> None:
        self._sleep(max(0, int(ms)) / 1000.0)

    def _enter(self, state: State) -> None:
        with self._lock:
            self._state = state
        self.transitions.append(state)
        log.info("State -> %s", state)

    def _release(self, what: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as exc:
            log.warning("Teardown: %s failed: %s", what, exc)

    def _finish(self, request: ScanRequest, store: RunStore) -> None:
        report = self.report
        report.finished_at = datetime.now().isoformat()
        if self.sink is None:
            return
        stats = self.sink.stats()
        report.frames_saved = stats["saved"]
        report.frames_discarded = stats["discarded"]
        report.io_errors = stats["io_errors"]
        verification = self.sink.verify()
        report.frames_found = verification.found
        report.missing_files = verification.missing
        log.info(
            "Acquisition %s: %d/%d frames on disk in %s",
            report.status,
            verification.found,
            verification.expected,
            self.sink.save_dir,
        )
        if request.write_meta:
            extra = {
                "patterns": self.generator.pattern_metadata(request.fringe),
                "pattern_sets": [ps.describe() for ps in self.session.pattern_sets],
            }
            try:
                store.save_meta(request, report, extra)
            except OSError as exc:
                log.error("Failed to write meta.json: %s", exc)
