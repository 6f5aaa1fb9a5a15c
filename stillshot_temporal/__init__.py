"""Stillshot temporal filters."""

from .detection_memory import DetectionMemory

__all__ = ["DetectionMemory"]
