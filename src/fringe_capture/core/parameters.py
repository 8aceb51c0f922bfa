"""
Camera parameter application: mandatory base trigger setup, one-time trigger
capability probe, and range-clamped optional setpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fringe_capture.camera.base import CameraBase
from fringe_capture.core.errors import ConfigurationError, DeviceError, TransientDeviceError
from fringe_capture.core.models import CameraParameterSpec, CameraSettings, is_keep_current


log = logging.getLogger(__name__)

TRIGGER_SELECTOR_FRAME_START = 0
TRIGGER_SELECTOR_FRAME_BURST_START = 6
TRIGGER_MODE_ON = 1
AUTO_OFF = 0

FRAME_START_COMMAND = "FrameTriggerSoftware"
GENERIC_TRIGGER_COMMAND = "TriggerSoftware"


def clamp(value: float, lo: float, hi: float) -> float:
    if lo > hi:
        raise ValueError(f"Invalid range [{lo}, {hi}]")
    return max(lo, min(hi, value))


@dataclass(frozen=True, slots=True)
class ParameterRule:
    """
    One row of the declarative parameter table.

    `auto_feature` is an enum switched to Off before the value is written;
    `enable_feature` is a bool switched on before the value is written.
    """
    name: str
    requested: Optional[float]
    auto_feature: Optional[str] = None
    enable_feature: Optional[str] = None
    mandatory: bool = False


def parameter_table(settings: CameraSettings) -> list[ParameterRule]:
    return [
        ParameterRule("ExposureTime", settings.exposure_us, auto_feature="ExposureAuto", mandatory=True),
        ParameterRule("Gain", settings.gain, auto_feature="GainAuto"),
        ParameterRule("AcquisitionFrameRate", settings.frame_rate, enable_feature="AcquisitionFrameRateEnable"),
        ParameterRule("TriggerDelay", settings.trigger_delay_us),
    ]


class ParameterClamp:
    """
    Turn requested setpoints into safe device values.

    A keep-current request leaves the feature (and its automatic mode) alone.
    Otherwise the automatic mode is switched off and the value is clamped to
    the live [min, max] range before writing. Rejection of a mandatory rule
    raises ConfigurationError; optional rejections are logged and reported.
    """

    def __init__(self, camera: CameraBase) -> None:
        self.camera = camera

    def apply(self, rule: ParameterRule) -> CameraParameterSpec:
        spec = CameraParameterSpec(name=rule.name, requested=rule.requested)
        if is_keep_current(rule.requested):
            spec.requested = None
            spec.outcome = "kept"
            log.info("%s: keeping current value/mode", rule.name)
            return spec
        try:
            self._write(rule, spec)
        except TransientDeviceError as exc:
            spec.outcome = "rejected"
            spec.error = str(exc)
            if rule.mandatory:
                raise ConfigurationError(f"Failed to apply {rule.name}: {exc}") from exc
            log.warning("Optional parameter %s rejected, continuing: %s", rule.name, exc)
            return spec
        spec.outcome = "applied"
        log.info("%s: %s [%s, %s]", rule.name, spec.applied, spec.minimum, spec.maximum)
        return spec

    def apply_all(self, rules: list[ParameterRule]) -> list[CameraParameterSpec]:
        return [self.apply(rule) for rule in rules]

    def _write(self, rule: ParameterRule, spec: CameraParameterSpec) -> None:
        # Auto-off and enable switches are best effort; the value write decides the outcome.
        if rule.auto_feature:
            self._best_effort(rule.name, self.camera.set_enum, rule.auto_feature, AUTO_OFF)
        if rule.enable_feature:
            self._best_effort(rule.name, self.camera.set_bool, rule.enable_feature, True)
        try:
            rng = self.camera.get_float(rule.name)
            spec.minimum = float(rng.minimum)
            spec.maximum = float(rng.maximum)
            value = clamp(float(rule.requested), spec.minimum, spec.maximum)
            self.camera.set_float(rule.name, value)
        except (DeviceError, ValueError) as exc:
            raise TransientDeviceError(str(exc)) from exc
        spec.applied = value

    def _best_effort(self, name: str, setter, feature: str, value) -> None:
        try:
            setter(feature, value)
        except DeviceError as exc:
            log.warning("%s: could not set %s=%s, continuing: %s", name, feature, value, exc)


@dataclass(frozen=True, slots=True)
class TriggerCapability:
    """Trigger selector resolved once at DeviceReady and the software command it implies."""
    selector: Optional[int]
    command: str


def _require(what: str, fn, *args) -> None:
    try:
        fn(*args)
    except DeviceError as exc:
        raise ConfigurationError(f"Base camera setting {what} rejected: {exc}") from exc


def configure_base(camera: CameraBase) -> TriggerCapability:
    """
    Apply Mono8 + software-triggered continuous acquisition, then probe the
    active trigger selector once. Any mandatory rejection raises ConfigurationError.
    """
    _require("PixelFormat=Mono8", camera.set_enum_by_name, "PixelFormat", "Mono8")
    try:
        camera.set_enum_by_name("TriggerSelector", "FrameStart")
    except DeviceError as exc:
        log.warning("TriggerSelector=FrameStart rejected (%s); falling back to FrameBurstStart", exc)
        try:
            camera.set_enum("TriggerSelector", TRIGGER_SELECTOR_FRAME_BURST_START)
        except DeviceError as exc2:
            log.warning("TriggerSelector fallback rejected, keeping device default: %s", exc2)
    _require("TriggerMode=On", camera.set_enum, "TriggerMode", TRIGGER_MODE_ON)
    _require("TriggerSource=Software", camera.set_enum_by_name, "TriggerSource", "Software")
    _require("AcquisitionMode=Continuous", camera.set_enum_by_name, "AcquisitionMode", "Continuous")
    return probe_trigger_capability(camera)


def probe_trigger_capability(camera: CameraBase) -> TriggerCapability:
    try:
        selector = camera.get_enum("TriggerSelector")
    except DeviceError as exc:
        log.warning("Cannot read TriggerSelector (%s); using %s", exc, GENERIC_TRIGGER_COMMAND)
        return TriggerCapability(selector=None, command=GENERIC_TRIGGER_COMMAND)
    command = FRAME_START_COMMAND if selector == TRIGGER_SELECTOR_FRAME_START else GENERIC_TRIGGER_COMMAND
    log.info("Trigger selector %s resolved; software trigger command %s", selector, command)
    return TriggerCapability(selector=selector, command=command)
