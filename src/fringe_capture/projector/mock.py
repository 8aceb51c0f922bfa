"""Simulated stepped-pattern projector."""

from __future__ import annotations

import threading
from typing import Iterable, Optional

import numpy as np

from fringe_capture.core.errors import DeviceError
from fringe_capture.core.models import PatternSet
from fringe_capture.projector.base import ProjectorBase


class SimulatedProjector(ProjectorBase):
    """
    Projector stand-in that keeps the uploaded pattern table in memory.

    `fail_on` names operations that raise DeviceError: "connect", "upload",
    "project", "stop", "led", or "step:<n>" for the n-th step (1-based).
    """

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.connected = False
        self.projecting = False
        self.pattern_sets: list[PatternSet] = []
        self.led_current: Optional[tuple[float, float, float]] = None
        self.steps = 0
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.stop_calls = 0
        self._table: list[np.ndarray] = []
        self._cursor = -1
        self._lock = threading.Lock()

    def connect(self) -> None:
        self.connect_calls += 1
        if "connect" in self.fail_on:
            raise DeviceError("Projector not found", name="connect")
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        if not self.connected:
            raise DeviceError("Projector already disconnected", name="disconnect")
        self.connected = False

    def populate_pattern_table(self, pattern_sets: list[PatternSet]) -> None:
        self._require_connected()
        if "upload" in self.fail_on:
            raise DeviceError("Pattern table upload failed", name="populate_pattern_table")
        self.pattern_sets = list(pattern_sets)
        self._table = [img for ps in pattern_sets for img in ps.images]
        self._cursor = -1

    def project(self, continuous: bool) -> None:
        self._require_connected()
        if "project" in self.fail_on:
            raise DeviceError("Projection start failed", name="project")
        if not self._table:
            raise DeviceError("Pattern table is empty", name="project")
        self.projecting = True

    def step(self) -> None:
        if not self.projecting:
            raise DeviceError("Projector is not projecting", name="step")
        if f"step:{self.steps + 1}" in self.fail_on:
            raise DeviceError(f"Step {self.steps + 1} failed", name="step")
        with self._lock:
            self.steps += 1
            self._cursor = (self._cursor + 1) % len(self._table)

    def stop(self) -> None:
        self.stop_calls += 1
        if "stop" in self.fail_on:
            raise DeviceError("Projection stop failed", name="stop")
        self.projecting = False

    def set_led_current(self, red: float, green: float, blue: float) -> None:
        self._require_connected()
        if "led" in self.fail_on:
            raise DeviceError("LED current rejected", name="LEDCurrent")
        self.led_current = (float(red), float(green), float(blue))

    def current_image(self) -> Optional[np.ndarray]:
        """Pattern currently on the DMD, or None before the first step."""
        with self._lock:
            if self._cursor < 0 or not self.projecting:
                return None
            return self._table[self._cursor]

    def _require_connected(self) -> None:
        if not self.connected:
            raise DeviceError("Projector not connected", name="connect")
