"""Hardware drivers for tethered cameras.

Real tethering drivers implement ``autohdr.drivers.cameras.CameraPort``
outside this package; the digital twin ships here for development and
tests:

    from autohdr.drivers.cameras import DigitalTwinCamera
"""

from autohdr.drivers import cameras

__all__ = [
    "cameras",
]
