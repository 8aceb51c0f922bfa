"""YAML configuration loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml

from fringe_capture.core.errors import ValidationError
from fringe_capture.core.models import (
    CameraSettings,
    FringeParams,
    PatternTiming,
    ScanRequest,
    TimingConfig,
)


DEFAULT_CONFIG_PATH = Path("config/default.yaml")


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> dict:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    data = yaml.safe_load(cfg_path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"{cfg_path}: top level must be a mapping")
    return data


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _pattern_timing(section: dict, base: PatternTiming) -> PatternTiming:
    return PatternTiming(
        exposure_us=int(section.get("exposure_us", base.exposure_us)),
        pre_exposure_us=int(section.get("pre_exposure_us", base.pre_exposure_us)),
        post_exposure_us=int(section.get("post_exposure_us", base.post_exposure_us)),
        illumination=str(section.get("illumination", base.illumination)),
        invert=bool(section.get("invert", base.invert)),
        one_bit=bool(section.get("one_bit", base.one_bit)),
    )


def scan_request_from_config(cfg: dict) -> ScanRequest:
    proj_cfg = cfg.get("projector", {}) or {}
    pat_cfg = cfg.get("patterns", {}) or {}
    ptime_cfg = cfg.get("pattern_timing", {}) or {}
    cam_cfg = cfg.get("camera", {}) or {}
    timing_cfg = cfg.get("timing", {}) or {}
    storage_cfg = cfg.get("storage", {}) or {}

    width = int(proj_cfg.get("width", 1920))
    height = int(proj_cfg.get("height", 1080))
    led = proj_cfg.get("led_current")
    if led is not None:
        if len(led) != 3:
            raise ValidationError("projector.led_current must be [red, green, blue]")
        led = tuple(float(v) for v in led)

    seed = pat_cfg.get("seed")
    fringe = FringeParams(
        width=width,
        height=height,
        frequency=int(pat_cfg.get("frequency", 32)),
        intensity=int(pat_cfg.get("intensity", 100)),
        offset=int(pat_cfg.get("offset", 128)),
        noise_std=float(pat_cfg.get("noise_std", 0.0)),
        steps=int(pat_cfg.get("steps", 4)),
        seed=None if seed is None else int(seed),
    )
    pattern_timing = _pattern_timing(ptime_cfg, PatternTiming())
    # Keys missing from the horizontal section fall back to pattern_timing.
    horizontal_cfg = cfg.get("pattern_timing_horizontal")
    pattern_timing_horizontal = None if not horizontal_cfg else _pattern_timing(horizontal_cfg, pattern_timing)
    camera = CameraSettings(
        exposure_us=_opt_float(cam_cfg.get("exposure_us", 10000.0)),
        gain=_opt_float(cam_cfg.get("gain", 5.0)),
        frame_rate=_opt_float(cam_cfg.get("frame_rate", 10.0)),
        trigger_delay_us=_opt_float(cam_cfg.get("trigger_delay_us", 0.0)),
    )
    timing = TimingConfig(
        startup_delay_ms=int(timing_cfg.get("startup_delay_ms", 200)),
        stabilization_margin_ms=int(timing_cfg.get("stabilization_margin_ms", 10)),
        exposure_buffer_ms=int(timing_cfg.get("exposure_buffer_ms", 500)),
        max_exposure_wait_ms=int(timing_cfg.get("max_exposure_wait_ms", 5000)),
        default_exposure_wait_ms=int(timing_cfg.get("default_exposure_wait_ms", 1000)),
    )
    serial = cam_cfg.get("serial")
    return ScanRequest(
        fringe=fringe,
        output_dir=str(storage_cfg.get("output_dir", "images")),
        pattern_timing=pattern_timing,
        pattern_timing_horizontal=pattern_timing_horizontal,
        camera=camera,
        timing=timing,
        camera_serial=None if serial in (None, "", "NULL") else str(serial),
        led_current=led,
        save_patterns=bool(storage_cfg.get("save_patterns", False)),
        write_meta=bool(storage_cfg.get("write_meta", True)),
    )
