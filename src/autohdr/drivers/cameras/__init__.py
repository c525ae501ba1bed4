"""Camera driver module.

Provides the capability port the analysis core talks to and a digital
twin implementation for development without a tethered body.

Protocols:
    CameraPort: ISO/aperture/exposure control, exposure stepping, live
        view and full-resolution capture

Implementations:
    DigitalTwinCamera: Simulated camera rendering a synthetic HDR scene
"""

from __future__ import annotations

from autohdr.drivers.cameras.twin import (
    DEFAULT_APERTURE_CHOICES,
    DEFAULT_EXPOSURE_SCALE,
    DEFAULT_ISO_CHOICES,
    DigitalTwinCamera,
    DigitalTwinConfig,
    exposure_seconds,
)
from autohdr.drivers.cameras.types import CameraPort, PreviewFrame

__all__ = [
    # Protocols / types
    "CameraPort",
    "PreviewFrame",
    # Digital twin
    "DEFAULT_APERTURE_CHOICES",
    "DEFAULT_EXPOSURE_SCALE",
    "DEFAULT_ISO_CHOICES",
    "DigitalTwinCamera",
    "DigitalTwinConfig",
    "exposure_seconds",
]
