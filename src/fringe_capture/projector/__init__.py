"""Projector pattern-upload/stepping interface and backends."""

from .base import ProjectorBase
from .mock import SimulatedProjector

__all__ = ["ProjectorBase", "SimulatedProjector"]
