"""Error taxonomy for acquisition sessions."""

from __future__ import annotations


class FringeCaptureError(Exception):
    """Base class for all acquisition errors."""


class ValidationError(FringeCaptureError, ValueError):
    """Malformed generation or timing parameters. Fatal at construction."""


class ConfigurationError(FringeCaptureError, RuntimeError):
    """Device open/connect, base trigger setup or pattern upload failed. Fatal."""


class TransientDeviceError(FringeCaptureError, RuntimeError):
    """A single trigger or optional parameter was rejected. Logged, not fatal."""


class FramePersistError(FringeCaptureError, OSError):
    """A delivered frame could not be written. Logged and counted."""


class DeviceError(FringeCaptureError, RuntimeError):
    """
    Raised by device collaborators when the device rejects an operation.
    """

    def __init__(self, message: str, name: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.name = name
        self.code = code

    def __str__(self) -> str:
        text = super().__str__()
        if self.code is not None:
            text = f"{text} (code 0x{self.code:x})"
        return text
