"""
Frame sink: identity, persistence and arrival signalling for asynchronously
delivered camera frames.
"""

from __future__ import annotations

import itertools
import logging
import queue
import re
import threading
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional

import numpy as np
from PIL import Image

from fringe_capture.core.errors import FramePersistError
from fringe_capture.core.models import CapturedFrame, Orientation


log = logging.getLogger(__name__)

FRAME_NAME_RE = re.compile(r"^I(\d{3,})_([VH])\.png$")


def frame_orientation(index: int, steps_per_orientation: int) -> Orientation:
    return "vertical" if int(index) <= int(steps_per_orientation) else "horizontal"


def frame_filename(index: int, steps_per_orientation: int) -> str:
    """I001_V.png ... I<N>_V.png, then I<N+1>_H.png ... I<2N>_H.png."""
    tag = "V" if frame_orientation(index, steps_per_orientation) == "vertical" else "H"
    return f"I{int(index):03d}_{tag}.png"


@dataclass(slots=True)
class VerificationReport:
    expected: int
    found: int
    missing: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.found == self.expected

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["complete"] = self.complete
        return data


class FrameMailbox:
    """Single-slot holder of the most recent frame plus a freshness flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[CapturedFrame] = None
        self._fresh = False

    def put(self, frame: CapturedFrame) -> None:
        with self._lock:
            self._frame = frame
            self._fresh = True

    def take(self) -> Optional[CapturedFrame]:
        """Return the latest frame if not yet taken, else None."""
        with self._lock:
            if not self._fresh:
                return None
            self._fresh = False
            return self._frame

    def peek(self) -> Optional[CapturedFrame]:
        with self._lock:
            return self._frame


class FrameSink:
    """
    Session-owned receiver registered as the camera's frame handler.

    Each arrival takes index = 1 + previous counter value, independent of which
    step triggered it. Indices beyond total_frames are discarded. Persistence
    failures are logged and counted, never raised to the delivery thread.
    """

    def __init__(self, save_dir: str | Path, total_frames: int, steps_per_orientation: int) -> None:
        self.save_dir = Path(save_dir)
        self.total_frames = int(total_frames)
        self.steps_per_orientation = int(steps_per_orientation)
        self.mailbox = FrameMailbox()

        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._arrivals: queue.Queue[CapturedFrame] = queue.Queue(maxsize=max(1, self.total_frames))
        self.received = 0
        self.saved = 0
        self.discarded = 0
        self.io_errors = 0

    def prepare(self) -> Path:
        self.save_dir.mkdir(parents=True, exist_ok=True)
        return self.save_dir

    def next_index(self) -> int:
        with self._counter_lock:
            return next(self._counter)

    def on_frame(self, pixels: np.ndarray) -> Optional[CapturedFrame]:
        """Frame handler invoked from the camera's delivery thread."""
        idx = self.next_index()
        height, width = int(pixels.shape[0]), int(pixels.shape[1])
        log.debug("Frame received: %dx%d index %d/%d", width, height, idx, self.total_frames)
        with self._stats_lock:
            self.received += 1
        if idx > self.total_frames:
            with self._stats_lock:
                self.discarded += 1
            log.warning("Discarding spurious frame %d (expected %d)", idx, self.total_frames)
            return None

        frame = CapturedFrame(
            width=width,
            height=height,
            pixels=np.array(pixels, dtype=np.uint8, copy=True),
            index=idx,
            orientation=frame_orientation(idx, self.steps_per_orientation),
        )
        try:
            frame.path = str(self.persist(frame))
        except FramePersistError as exc:
            with self._stats_lock:
                self.io_errors += 1
            log.error("Failed to save frame %d: %s", idx, exc)
        else:
            with self._stats_lock:
                self.saved += 1

        self.mailbox.put(frame)
        try:
            self._arrivals.put_nowait(frame)
        except queue.Full:
            log.debug("Arrival channel full; frame %d not signalled", idx)
        return frame

    def persist(self, frame: CapturedFrame) -> Path:
        path = self.save_dir / frame_filename(frame.index, self.steps_per_orientation)
        try:
            self.save_dir.mkdir(parents=True, exist_ok=True)
            img = Image.fromarray(np.ascontiguousarray(frame.pixels))
            if img.mode != "L":
                img = img.convert("L")
            img.save(path, format="PNG")
        except (OSError, ValueError, TypeError) as exc:
            raise FramePersistError(f"{path}: {exc}") from exc
        return path

    def wait_for_frame(self, timeout: float) -> Optional[CapturedFrame]:
        """Block until a frame arrives or `timeout` seconds pass."""
        try:
            return self._arrivals.get(timeout=max(0.0, float(timeout)))
        except queue.Empty:
            return None

    def drain(self) -> int:
        """Drop arrivals not yet consumed; returns how many were dropped."""
        dropped = 0
        while True:
            try:
                self._arrivals.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1

    def expected_filenames(self) -> list[str]:
        return [frame_filename(i, self.steps_per_orientation) for i in range(1, self.total_frames + 1)]

    def verify(self) -> VerificationReport:
        """Count expected files actually present on disk."""
        missing = [name for name in self.expected_filenames() if not (self.save_dir / name).is_file()]
        return VerificationReport(
            expected=self.total_frames,
            found=self.total_frames - len(missing),
            missing=missing,
        )

    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return {
                "received": self.received,
                "saved": self.saved,
                "discarded": self.discarded,
                "io_errors": self.io_errors,
            }
