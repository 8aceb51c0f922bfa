"""Simulated software-triggered camera with a GenICam-style parameter table."""

from __future__ import annotations

from pathlib import Path
import itertools
import threading
import time
from typing import Callable, Iterable, Optional

import numpy as np
from PIL import Image

from fringe_capture.camera.base import CameraBase, FloatValue, FrameHandler
from fringe_capture.core.errors import DeviceError


ENUMS: dict[str, dict[str, int]] = {
    "PixelFormat": {"Mono8": 0x01080001, "RGB8Packed": 0x02180014},
    "TriggerSelector": {"FrameStart": 0, "FrameBurstStart": 6},
    "TriggerMode": {"Off": 0, "On": 1},
    "TriggerSource": {"Line0": 0, "Line1": 1, "Software": 7},
    "AcquisitionMode": {"SingleFrame": 0, "MultiFrame": 1, "Continuous": 2},
    "ExposureAuto": {"Off": 0, "Once": 1, "Continuous": 2},
    "GainAuto": {"Off": 0, "Once": 1, "Continuous": 2},
}

FLOATS: dict[str, tuple[float, float, float]] = {
    # name: (current, min, max)
    "ExposureTime": (20000.0, 15.0, 9_999_475.0),
    "Gain": (0.0, 0.0, 17.0),
    "AcquisitionFrameRate": (30.0, 0.1, 200.0),
    "TriggerDelay": (0.0, 0.0, 32_000_000.0),
}

COMMANDS = {"TriggerSoftware", "FrameTriggerSoftware"}


class SimulatedCamera(CameraBase):
    """
    In-memory camera that renders a frame on each software trigger and delivers it
    from its own thread, like a vendor SDK image callback.

    Frames come from `scene()` (e.g. the projector's current pattern), else from
    images in `data_dir` in sequence, else a flat gray field.

    Failure injection:
      - reject: feature names, or "Name=Symbol" pairs, whose writes raise DeviceError
      - failing_triggers / dropped_triggers / duplicated_triggers: 1-based trigger numbers
      - fail_open: open() raises DeviceError
    """

    def __init__(
        self,
        width: int = 640,
        height: int = 480,
        scene: Optional[Callable[[], Optional[np.ndarray]]] = None,
        data_dir: Optional[str] = None,
        delivery_delay_s: float = 0.0,
        reject: Iterable[str] = (),
        failing_triggers: Iterable[int] = (),
        dropped_triggers: Iterable[int] = (),
        duplicated_triggers: Iterable[int] = (),
        fail_open: bool = False,
        failing_queries: Iterable[str] = (),
    ) -> None:
        self.width = int(width)
        self.height = int(height)
        self.scene = scene
        self.data_dir = Path(data_dir) if data_dir else None
        self.delivery_delay_s = float(delivery_delay_s)
        self.reject = set(reject)
        self.failing_triggers = set(failing_triggers)
        self.dropped_triggers = set(dropped_triggers)
        self.duplicated_triggers = set(duplicated_triggers)
        self.fail_open = fail_open
        self.failing_queries = set(failing_queries)

        self.enums = {name: 0 for name in ENUMS}
        self.enums["PixelFormat"] = ENUMS["PixelFormat"]["RGB8Packed"]
        self.enums["ExposureAuto"] = ENUMS["ExposureAuto"]["Continuous"]
        self.enums["GainAuto"] = ENUMS["GainAuto"]["Continuous"]
        self.floats = {name: list(v) for name, v in FLOATS.items()}
        self.bools: dict[str, bool] = {"AcquisitionFrameRateEnable": False}

        self.serial: Optional[str] = None
        self.opened = False
        self.grabbing = False
        self.open_calls = 0
        self.close_calls = 0
        self.stop_grabbing_calls = 0
        self.triggers = 0
        self.commands: list[str] = []
        self.writes: list[tuple[str, object]] = []

        self._handler: Optional[FrameHandler] = None
        self._iter = None
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    # -- lifecycle -----------------------------------------------------------------

    def open(self, serial: Optional[str] = None) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise DeviceError("No camera found", name="open", code=0x80000006)
        if self.opened:
            raise DeviceError("Camera already open", name="open")
        if self.data_dir is not None:
            if not self.data_dir.exists():
                raise DeviceError(f"Mock data dir not found: {self.data_dir}", name="open")
            files = sorted(p for p in self.data_dir.iterdir() if p.suffix.lower() in {".png", ".jpg", ".jpeg"})
            if not files:
                raise DeviceError(f"No mock images in {self.data_dir}", name="open")
            self._iter = itertools.cycle(files)
        self.serial = None if serial in (None, "", "NULL") else serial
        self.opened = True

    def close(self) -> None:
        self.close_calls += 1
        if not self.opened:
            raise DeviceError("Camera handle already released", name="close")
        self.opened = False
        self._iter = None

    def register_frame_handler(self, handler: FrameHandler) -> None:
        self._require_open()
        self._handler = handler

    def start_grabbing(self) -> None:
        self._require_open()
        self.grabbing = True

    def stop_grabbing(self) -> None:
        self.stop_grabbing_calls += 1
        if not self.grabbing:
            raise DeviceError("Camera is not grabbing", name="stop_grabbing")
        self.grabbing = False

    # -- parameters ----------------------------------------------------------------

    def set_enum_by_name(self, name: str, symbol: str) -> None:
        self._require_open()
        self._check_reject(name, symbol)
        table = ENUMS.get(name)
        if table is None or symbol not in table:
            raise DeviceError(f"Unsupported enum entry {name}={symbol}", name=name, code=0x80000106)
        self.enums[name] = table[symbol]
        self.writes.append((name, symbol))

    def set_enum(self, name: str, value: int) -> None:
        self._require_open()
        self._check_reject(name, str(value))
        table = ENUMS.get(name)
        if table is None or int(value) not in table.values():
            raise DeviceError(f"Unsupported enum value {name}={value}", name=name, code=0x80000106)
        self.enums[name] = int(value)
        self.writes.append((name, int(value)))

    def get_enum(self, name: str) -> int:
        self._require_open()
        if name in self.failing_queries or name not in self.enums:
            raise DeviceError(f"Cannot read {name}", name=name)
        return int(self.enums[name])

    def get_float(self, name: str) -> FloatValue:
        self._require_open()
        if name in self.failing_queries or name not in self.floats:
            raise DeviceError(f"Cannot read {name}", name=name)
        cur, lo, hi = self.floats[name]
        return FloatValue(current=cur, minimum=lo, maximum=hi)

    def set_float(self, name: str, value: float) -> None:
        self._require_open()
        self._check_reject(name)
        if name not in self.floats:
            raise DeviceError(f"Unknown float feature {name}", name=name)
        _, lo, hi = self.floats[name]
        if not lo <= float(value) <= hi:
            raise DeviceError(f"{name}={value} out of range [{lo}, {hi}]", name=name, code=0x80000107)
        self.floats[name][0] = float(value)
        self.writes.append((name, float(value)))

    def get_bool(self, name: str) -> bool:
        self._require_open()
        if name in self.failing_queries or name not in self.bools:
            raise DeviceError(f"Cannot read {name}", name=name)
        return self.bools[name]

    def set_bool(self, name: str, value: bool) -> None:
        self._require_open()
        self._check_reject(name)
        self.bools[name] = bool(value)
        self.writes.append((name, bool(value)))

    # -- triggering ----------------------------------------------------------------

    def execute_command(self, name: str) -> None:
        self._require_open()
        if name not in COMMANDS:
            raise DeviceError(f"Unknown command {name}", name=name)
        self.commands.append(name)
        with self._lock:
            self.triggers += 1
            number = self.triggers
        if number in self.failing_triggers:
            raise DeviceError(f"Software trigger {number} rejected", name=name, code=0x80000003)
        if not self.grabbing or not self._software_triggered():
            return
        if number in self.dropped_triggers:
            return
        copies = 2 if number in self.duplicated_triggers else 1
        frame = self._render()
        t = threading.Thread(target=self._deliver, args=(frame, copies), daemon=True)
        with self._lock:
            self._threads = [th for th in self._threads if th.is_alive()]
            self._threads.append(t)
        t.start()

    @property
    def pending_deliveries(self) -> int:
        with self._lock:
            return sum(1 for t in self._threads if t.is_alive())

    def join_deliveries(self, timeout: float = 2.0) -> None:
        """Wait for all pending delivery threads (test helper)."""
        with self._lock:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout=timeout)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]

    def _deliver(self, frame: np.ndarray, copies: int) -> None:
        if self.delivery_delay_s > 0:
            time.sleep(self.delivery_delay_s)
        handler = self._handler
        if handler is None:
            return
        for _ in range(copies):
            # The SDK reuses its buffer once the callback returns.
            handler(frame.copy())

    def _render(self) -> np.ndarray:
        img = self.scene() if self.scene is not None else None
        if img is None and self._iter is not None:
            img = np.array(Image.open(next(self._iter)).convert("L"), dtype=np.uint8)
        if img is None:
            return np.full((self.height, self.width), 128, dtype=np.uint8)
        if img.shape[:2] != (self.height, self.width):
            img = np.array(Image.fromarray(img).resize((self.width, self.height)), dtype=np.uint8)
        if img.ndim == 3 and self.enums["PixelFormat"] == ENUMS["PixelFormat"]["Mono8"]:
            img = np.array(Image.fromarray(img).convert("L"), dtype=np.uint8)
        return img.astype(np.uint8)

    def _software_triggered(self) -> bool:
        return (
            self.enums["TriggerMode"] == ENUMS["TriggerMode"]["On"]
            and self.enums["TriggerSource"] == ENUMS["TriggerSource"]["Software"]
        )

    def _check_reject(self, name: str, symbol: str | None = None) -> None:
        if name in self.reject or (symbol is not None and f"{name}={symbol}" in self.reject):
            raise DeviceError(f"Device rejected {name}", name=name, code=0x80000106)

    def _require_open(self) -> None:
        if not self.opened:
            raise DeviceError("Camera not open", name="handle", code=0x80000000)
