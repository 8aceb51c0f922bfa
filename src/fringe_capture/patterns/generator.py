"""Fringe pattern generator."""

from __future__ import annotations

import numpy as np

from fringe_capture.core.models import FringeParams, FringePattern, Orientation


class FringePatternGenerator:
    """
    Generate 2N phase-shifted sinusoidal fringe patterns: N vertical, then N horizontal.

    gray = round(clip(offset + intensity * sin(2*pi*f*t + 2*pi*p/N) [+ noise], 0, 255))
    with t = x / width for vertical fringes and t = y / height for horizontal ones.
    """

    def generate_sequence(self, params: FringeParams) -> list[FringePattern]:
        params.validate()
        rng = np.random.default_rng(params.seed) if params.noise_std > 0 else None

        patterns: list[FringePattern] = []
        for orientation in ("vertical", "horizontal"):
            for p in range(params.N):
                image = self._render(params, orientation, p, rng)
                patterns.append(FringePattern(image=image, orientation=orientation, phase_index=p))
        return patterns

    def generate_images(self, params: FringeParams) -> list[np.ndarray]:
        return [p.image for p in self.generate_sequence(params)]

    @staticmethod
    def _render(
        params: FringeParams,
        orientation: Orientation,
        p: int,
        rng: np.random.Generator | None,
    ) -> np.ndarray:
        width, height = int(params.width), int(params.height)
        intensity = float(np.clip(int(params.intensity), 0, 255))
        offset = float(np.clip(int(params.offset), 0, 255))
        phase = 2.0 * np.pi * p / params.N

        if orientation == "vertical":
            t = np.arange(width, dtype=np.float64) / width
        else:
            t = np.arange(height, dtype=np.float64) / height
        profile = offset + intensity * np.sin(2.0 * np.pi * int(params.frequency) * t + phase)

        if orientation == "vertical":
            gray = np.tile(profile, (height, 1))
            if rng is not None:
                gray = gray + rng.normal(0.0, params.noise_std, size=gray.shape)
        else:
            # Horizontal fringes are constant along a row; noise is drawn once per row.
            if rng is not None:
                profile = profile + rng.normal(0.0, params.noise_std, size=profile.shape)
            gray = np.repeat(profile[:, None], width, axis=1)

        # Round half away from zero on the clipped, non-negative values.
        return np.floor(np.clip(gray, 0.0, 255.0) + 0.5).astype(np.uint8)

    def pattern_metadata(self, params: FringeParams) -> dict:
        """
        Metadata describing the phase layout of one generated sequence.
        """
        n = params.N
        return {
            "steps": n,
            "total_frames": params.total_frames,
            "frequency_cycles": int(params.frequency),
            "period_px_vertical": float(params.width) / max(int(params.frequency), 1),
            "period_px_horizontal": float(params.height) / max(int(params.frequency), 1),
            "phase_shifts_rad": [float(2.0 * np.pi * p / n) for p in range(n)],
            "order": ["vertical"] * n + ["horizontal"] * n,
            "deterministic": float(params.noise_std) == 0.0 or params.seed is not None,
        }
