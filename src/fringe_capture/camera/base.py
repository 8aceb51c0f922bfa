"""Camera base interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np


FrameHandler = Callable[[np.ndarray], object]


@dataclass(slots=True)
class FloatValue:
    """Live value and device-reported range of a float feature."""
    current: float
    minimum: float
    maximum: float


class CameraBase(ABC):
    """
    String-keyed device-control interface of a software-triggered camera.

    Implementations raise DeviceError whenever the device rejects an operation.
    Frames are delivered asynchronously to the registered handler from the
    device's own thread(s).
    """

    @abstractmethod
    def open(self, serial: Optional[str] = None) -> None:
        """Open the device with the given serial, or the first one when None/"NULL"."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the device and release its handle."""
        pass

    @abstractmethod
    def set_enum_by_name(self, name: str, symbol: str) -> None:
        pass

    @abstractmethod
    def set_enum(self, name: str, value: int) -> None:
        pass

    @abstractmethod
    def get_enum(self, name: str) -> int:
        pass

    @abstractmethod
    def get_float(self, name: str) -> FloatValue:
        pass

    @abstractmethod
    def set_float(self, name: str, value: float) -> None:
        pass

    @abstractmethod
    def get_bool(self, name: str) -> bool:
        pass

    @abstractmethod
    def set_bool(self, name: str, value: bool) -> None:
        pass

    @abstractmethod
    def execute_command(self, name: str) -> None:
        pass

    @abstractmethod
    def register_frame_handler(self, handler: FrameHandler) -> None:
        pass

    @abstractmethod
    def start_grabbing(self) -> None:
        pass

    @abstractmethod
    def stop_grabbing(self) -> None:
        pass
