"""Pygame-based fullscreen HDMI projector with a software-stepped pattern table."""

from __future__ import annotations

import os
import time
from typing import Optional

import numpy as np
import pygame

from fringe_capture.core.errors import DeviceError
from fringe_capture.core.models import PatternSet
from fringe_capture.projector.base import ProjectorBase


class PygameProjector(ProjectorBase):
    """
    HDMI projector driven through a pygame window.

    The uploaded pattern table is held in host memory; `project` opens the
    window on a black frame and each `step` presents the next pattern.
    """

    def __init__(
        self,
        fullscreen: bool = True,
        screen_index: int | None = None,
        present_delay_s: float = 0.008,
    ) -> None:
        self.fullscreen = fullscreen
        self.screen_index = screen_index
        self.present_delay_s = float(present_delay_s)
        self.screen: Optional[pygame.Surface] = None
        self._opened = False
        self._connected = False
        self._table: list[np.ndarray] = []
        self._cursor = -1

    def connect(self) -> None:
        if self._connected:
            return
        if self.screen_index is not None:
            os.environ["SDL_VIDEO_FULLSCREEN_DISPLAY"] = str(self.screen_index)
        try:
            pygame.display.init()
        except pygame.error as exc:
            raise DeviceError(f"Pygame display init failed: {exc}", name="connect") from exc
        self._connected = True

    def disconnect(self) -> None:
        if not self._connected:
            raise DeviceError("Projector already disconnected", name="disconnect")
        if self._opened:
            self._close_window()
        pygame.display.quit()
        self._connected = False

    def populate_pattern_table(self, pattern_sets: list[PatternSet]) -> None:
        if not self._connected:
            raise DeviceError("Projector not connected", name="populate_pattern_table")
        table: list[np.ndarray] = []
        for ps in pattern_sets:
            for img in ps.images:
                if img.ndim != 2:
                    raise DeviceError("Expected 2D grayscale pattern", name="populate_pattern_table")
                table.append(255 - img if ps.invert else img)
        if not table:
            raise DeviceError("Pattern table is empty", name="populate_pattern_table")
        self._table = table
        self._cursor = -1

    def project(self, continuous: bool) -> None:
        if not self._connected:
            raise DeviceError("Projector not connected", name="project")
        if not self._table:
            raise DeviceError("Pattern table is empty", name="project")
        if not self._opened:
            self._open_window()
        self.screen.fill((0, 0, 0))
        pygame.display.flip()
        pygame.event.pump()

    def step(self) -> None:
        if not self._opened or self.screen is None:
            raise DeviceError("Display not opened", name="step")
        self._cursor = (self._cursor + 1) % len(self._table)
        self._show_gray(self._table[self._cursor])

    def stop(self) -> None:
        if not self._opened:
            return
        self._close_window()

    def current_image(self) -> Optional[np.ndarray]:
        if self._cursor < 0 or not self._opened:
            return None
        return self._table[self._cursor]

    def _open_window(self) -> None:
        try:
            flags = pygame.FULLSCREEN if self.fullscreen else 0
            try:
                self.screen = pygame.display.set_mode((0, 0), flags, vsync=1)
            except (TypeError, pygame.error):
                self.screen = pygame.display.set_mode((0, 0), flags)
        except pygame.error as exc:
            raise DeviceError(
                "Pygame display init failed. If you see EGL_BAD_ACCESS, try setting "
                "SDL_VIDEODRIVER to 'kmsdrm' (console) or 'wayland'/'x11' (desktop).",
                name="project",
            ) from exc
        pygame.display.set_caption("Fringe Projector")
        self._opened = True

    def _close_window(self) -> None:
        if self.screen is not None:
            # Leave the projector dark rather than on the last fringe.
            self.screen.fill((0, 0, 0))
            pygame.display.flip()
            pygame.event.pump()
        self.screen = None
        self._opened = False
        self._cursor = -1

    def _show_gray(self, image: np.ndarray) -> None:
        rgb = np.repeat(image[:, :, None], 3, axis=2)
        surf = pygame.surfarray.make_surface(rgb.swapaxes(0, 1))
        if surf.get_size() != self.screen.get_size():
            # Scale pattern to fill the projector display.
            surf = pygame.transform.smoothscale(surf, self.screen.get_size())
        self.screen.blit(surf, (0, 0))
        pygame.display.flip()
        pygame.event.pump()
        # Let compositor/driver settle before the stabilization wait starts.
        time.sleep(self.present_delay_s)
