"""Run storage utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import numpy as np
from PIL import Image

from fringe_capture.core.models import AcquisitionReport, FringePattern, ScanRequest
from fringe_capture.io.frame_sink import FRAME_NAME_RE


class RunStore:
    """Filesystem-backed storage for one acquisition output directory."""

    def __init__(self, root: str | Path = "images") -> None:
        self.root = Path(root)

    def prepare(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def save_pattern(self, index: int, pattern: FringePattern) -> Path:
        pat_dir = self.root / "patterns"
        pat_dir.mkdir(exist_ok=True, parents=True)
        tag = "V" if pattern.orientation == "vertical" else "H"
        out_path = pat_dir / f"P{index:03d}_{tag}.png"
        Image.fromarray(pattern.image).save(out_path)
        return out_path

    def save_patterns(self, patterns: list[FringePattern]) -> List[Path]:
        return [self.save_pattern(i, p) for i, p in enumerate(patterns, start=1)]

    def save_meta(
        self,
        request: ScanRequest,
        report: AcquisitionReport,
        extra: dict[str, Any] | None = None,
    ) -> Path:
        self.prepare()
        data = {"request": request.to_dict(), **report.to_dict()}
        if extra:
            data.update(extra)
        out_path = self.root / "meta.json"
        out_path.write_text(json.dumps(data, indent=2))
        return out_path

    def load_meta(self) -> dict[str, Any]:
        return json.loads((self.root / "meta.json").read_text())

    def capture_paths(self) -> List[Path]:
        """Saved frames in index order; only the I<nnn>_<V|H>.png scheme is recognised."""
        if not self.root.exists():
            raise FileNotFoundError(f"Output directory not found: {self.root}")
        indexed = []
        for p in self.root.glob("*.png"):
            m = FRAME_NAME_RE.match(p.name)
            if m:
                indexed.append((int(m.group(1)), p))
        indexed.sort(key=lambda x: x[0])
        return [p for _, p in indexed]

    def load_captures(self) -> List[np.ndarray]:
        return [np.array(Image.open(p)) for p in self.capture_paths()]
