"""Projector base interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from fringe_capture.core.errors import DeviceError
from fringe_capture.core.models import PatternSet


class ProjectorBase(ABC):
    """
    Stepped-pattern projector: upload a pattern table, start projection, advance one pattern per step.

    Implementations raise DeviceError when the device rejects an operation.
    """

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def populate_pattern_table(self, pattern_sets: list[PatternSet]) -> None:
        pass

    @abstractmethod
    def project(self, continuous: bool) -> None:
        pass

    @abstractmethod
    def step(self) -> None:
        """Advance to the next pattern. No acknowledgement of optical stability is given."""
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    def set_led_current(self, red: float, green: float, blue: float) -> None:
        """Optional: set LED drive currents as fractions of maximum."""
        raise DeviceError(f"{type(self).__name__} does not support LED current control", name="LEDCurrent")
