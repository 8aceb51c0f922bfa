"""Entry point for fringe_capture: run one acquisition from config/default.yaml."""

from __future__ import annotations

import os

from fringe_capture.camera.mock import SimulatedCamera
from fringe_capture.core.config import load_config, scan_request_from_config
from fringe_capture.core.controller import AcquisitionCoordinator
from fringe_capture.core.logging import setup_logging
from fringe_capture.patterns.generator import FringePatternGenerator


def _create_projector(cfg: dict):
    proj_cfg = cfg.get("projector", {}) or {}
    proj_type = proj_cfg.get("type", "simulated")
    if proj_type == "pygame":
        driver = proj_cfg.get("driver")
        if driver:
            os.environ["SDL_VIDEODRIVER"] = str(driver)
        from fringe_capture.projector.pygame_projector import PygameProjector
        return PygameProjector(
            fullscreen=bool(proj_cfg.get("fullscreen", True)),
            screen_index=proj_cfg.get("screen_index"),
        )
    if proj_type == "simulated":
        from fringe_capture.projector.mock import SimulatedProjector
        return SimulatedProjector()
    raise RuntimeError("projector.type must be pygame or simulated")


def _create_camera(cfg: dict, projector) -> SimulatedCamera:
    cam_cfg = cfg.get("camera", {}) or {}
    cam_type = cam_cfg.get("type", "simulated")
    if cam_type != "simulated":
        raise RuntimeError("camera.type must be simulated")
    return SimulatedCamera(
        width=int(cam_cfg.get("width", 640)),
        height=int(cam_cfg.get("height", 480)),
        scene=getattr(projector, "current_image", None),
        data_dir=cam_cfg.get("mock_data"),
    )


def main() -> int:
    cfg = load_config()
    log_cfg = cfg.get("logging", {}) or {}
    log = setup_logging(
        log_dir=str(log_cfg.get("log_dir", "logs")),
        level=str(log_cfg.get("level", "INFO")).upper(),
    )

    request = scan_request_from_config(cfg)
    projector = _create_projector(cfg)
    camera = _create_camera(cfg, projector)
    coordinator = AcquisitionCoordinator(projector, camera, FringePatternGenerator())

    ok = coordinator.run(request)
    report = coordinator.report
    if ok:
        log.info("Acquisition complete: %d/%d frames saved to %s", report.frames_found, report.total_frames, request.output_dir)
    else:
        log.error("Acquisition failed: %s", report.error)
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
