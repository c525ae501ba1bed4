"""Logical device layer - hardware-agnostic device abstractions."""

from autohdr.devices.camera import Camera, CameraSettings, numeric_iso_choices
from autohdr.devices.liveview import LiveView

__all__ = [
    # Camera
    "Camera",
    "CameraSettings",
    "numeric_iso_choices",
    # Live view
    "LiveView",
]
