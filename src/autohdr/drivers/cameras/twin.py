"""Digital Twin Camera - Simulated tethered camera for development and tests.

Implements the CameraPort protocol without hardware. The twin renders a
synthetic high-dynamic-range scene whose brightness follows the commanded
exposure, so the bracketing analysis sees over-exposure fall as the
exposure is shortened and under-exposure fall as it is lengthened.

Scene model:
    The scene is a horizontal luminance ramp spanning ``scene_stops`` stops
    centred on the metering exposure. A pixel at relative luminance ``s``
    (in stops) exposed for ``t`` seconds renders as
    ``128 * 2 ** (s + log2(t / t_meter))``, clipped to 0..255.

Hardware quirks that can be simulated:
    - ``settle_frames``: after an exposure change the next N previews are
      still taken with the previous exposure (and report it), like a body
      that has not finished applying a setting.
    - ``fail_captures``: 0-based full-resolution capture numbers that fail.
    - ``disconnect()``: every later call raises CameraDisconnectedError.

Example:
    from autohdr.drivers.cameras.twin import DigitalTwinCamera

    camera = DigitalTwinCamera()
    frame = camera.capture_preview()
    camera.step_exposure_down(camera.current_exposure())
    path = camera.capture(Path("/tmp/Image_0"))  # -> /tmp/Image_0.jpg
"""

from __future__ import annotations

import math
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, final

import cv2
import numpy as np

from autohdr.drivers.cameras.types import PreviewFrame
from autohdr.errors import (
    CameraDisconnectedError,
    CameraError,
    CaptureFailedError,
    ExposureLimitError,
)
from autohdr.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_APERTURE_CHOICES",
    "DEFAULT_EXPOSURE_SCALE",
    "DEFAULT_ISO_CHOICES",
    "DigitalTwinCamera",
    "DigitalTwinConfig",
    "exposure_seconds",
]

# =============================================================================
# Constants
# =============================================================================

# Third-stop shutter speeds, longest first (gphoto2 ordering)
DEFAULT_EXPOSURE_SCALE: tuple[str, ...] = (
    "30", "25", "20", "15", "13", "10", "8", "6", "5", "4", "3.2", "2.5",
    "2", "1.6", "1.3", "1", "0.8", "0.6", "0.5", "0.4", "0.3",
    "1/4", "1/5", "1/6", "1/8", "1/10", "1/13", "1/15", "1/20", "1/25",
    "1/30", "1/40", "1/50", "1/60", "1/80", "1/100", "1/125", "1/160",
    "1/200", "1/250", "1/320", "1/400", "1/500", "1/640", "1/800",
    "1/1000", "1/1250", "1/1600", "1/2000", "1/2500", "1/3200", "1/4000",
)  # fmt: skip

# Includes non-numeric entries real bodies report
DEFAULT_ISO_CHOICES: tuple[str, ...] = (
    "Auto", "100", "200", "400", "800", "1600", "3200", "6400", "Hi 1",
)  # fmt: skip

DEFAULT_APERTURE_CHOICES: tuple[str, ...] = ("2.8", "4", "5.6", "8", "11", "16")

# Mid-gray byte value for a pixel at the metering exposure
_MID_GRAY = 128.0

_JPEG_QUALITY = 90


def exposure_seconds(value: str) -> float:
    """Convert a shutter-speed string to seconds.

    Accepts fractions ("1/250"), decimals ("0.8", "2.5") and the seconds
    suffix some bodies use ('2"' or "2s").

    Args:
        value: Shutter speed as reported by the camera.

    Returns:
        Exposure time in seconds.

    Raises:
        ValueError: If the value is not a timed exposure (e.g. "bulb").

    Example:
        >>> exposure_seconds("1/250")
        0.004
        >>> exposure_seconds('2"')
        2.0
    """
    text = value.strip().rstrip('"s')
    if "/" in text:
        num, den = text.split("/", 1)
        return float(num) / float(den)
    return float(text)


@dataclass
class DigitalTwinConfig:
    """Configuration for digital twin camera behavior.

    Attributes:
        exposure_scale: Shutter speeds offered, longest first.
        iso_choices: ISO values reported (may contain non-numeric entries).
        aperture_choices: Apertures reported (empty simulates a manual lens).
        iso: Initial ISO.
        aperture: Initial aperture.
        exposure: Initial exposure; also the metering exposure of the scene.
        scene_stops: Dynamic range of the synthetic scene in stops.
        preview_size: Live-view frame size as (width, height).
        capture_size: Full-resolution shot size as (width, height).
        settle_frames: Previews still taken with the previous exposure after
            each exposure change.
        fail_captures: 0-based capture numbers that raise CaptureFailedError.
    """

    exposure_scale: Sequence[str] = DEFAULT_EXPOSURE_SCALE
    iso_choices: Sequence[str] = DEFAULT_ISO_CHOICES
    aperture_choices: Sequence[str] = DEFAULT_APERTURE_CHOICES
    iso: str = "100"
    aperture: str = "8"
    exposure: str = "1/60"
    scene_stops: float = 12.0
    preview_size: tuple[int, int] = (64, 48)
    capture_size: tuple[int, int] = (320, 240)
    settle_frames: int = 0
    fail_captures: frozenset[int] = field(default_factory=frozenset)


@final
class DigitalTwinCamera:
    """Simulated tethered camera implementing CameraPort.

    Thread safety: internal state is guarded by a lock so the twin can be
    shared by a live-view thread and a capture worker, although callers
    normally serialize access through ``autohdr.devices.Camera``.
    """

    def __init__(self, config: DigitalTwinConfig | None = None) -> None:
        """Create a twin with the given behavior.

        Args:
            config: Simulation settings (default: DigitalTwinConfig()).

        Raises:
            ValueError: If the initial exposure is not on the exposure scale.
        """
        self._config = config or DigitalTwinConfig()
        self._scale = tuple(self._config.exposure_scale)
        if self._config.exposure not in self._scale:
            raise ValueError(
                f"Initial exposure {self._config.exposure!r} not in exposure scale"
            )

        self._lock = threading.Lock()
        self._iso = self._config.iso
        self._aperture = self._config.aperture
        self._commanded_exposure = self._config.exposure
        self._applied_exposure = self._config.exposure
        self._pending_frames = 0
        self._meter_seconds = exposure_seconds(self._config.exposure)

        self._frame_count = 0
        self._capture_count = 0
        self._connected = True
        self.captures: list[dict[str, Any]] = []

    def __repr__(self) -> str:
        return (
            f"DigitalTwinCamera(iso={self._iso!r}, aperture={self._aperture!r}, "
            f"exposure={self._applied_exposure!r})"
        )

    # -------------------------------------------------------------------------
    # Simulation controls
    # -------------------------------------------------------------------------

    def disconnect(self) -> None:
        """Simulate the body being unplugged."""
        with self._lock:
            self._connected = False
        logger.info("Digital twin disconnected")

    @property
    def capture_count(self) -> int:
        """Number of full-resolution captures attempted so far."""
        return self._capture_count

    def _check_connected(self) -> None:
        if not self._connected:
            raise CameraDisconnectedError("Camera disconnected")

    # -------------------------------------------------------------------------
    # CameraPort: settings
    # -------------------------------------------------------------------------

    def current_iso(self) -> str:
        with self._lock:
            self._check_connected()
            return self._iso

    def current_aperture(self) -> str:
        with self._lock:
            self._check_connected()
            return self._aperture

    def current_exposure(self) -> str:
        with self._lock:
            self._check_connected()
            return self._applied_exposure

    def set_iso(self, value: str) -> None:
        with self._lock:
            self._check_connected()
            if value not in self._config.iso_choices:
                raise CameraError(f"ISO {value!r} not supported")
            self._iso = value

    def set_aperture(self, value: str) -> None:
        with self._lock:
            self._check_connected()
            if not self._config.aperture_choices:
                # Manual lens: only the empty value is accepted
                if value:
                    raise CameraError("Lens has no automatic aperture")
                return
            if value not in self._config.aperture_choices:
                raise CameraError(f"Aperture {value!r} not supported")
            self._aperture = value

    def set_exposure(self, value: str) -> None:
        with self._lock:
            self._check_connected()
            self._command_exposure(value)

    def _command_exposure(self, value: str) -> None:
        """Command a new exposure (lock held)."""
        if value not in self._scale:
            raise CameraError(f"Exposure {value!r} not supported")
        self._commanded_exposure = value
        if self._config.settle_frames > 0 and value != self._applied_exposure:
            self._pending_frames = self._config.settle_frames
        else:
            self._applied_exposure = value
            self._pending_frames = 0

    def step_exposure_down(self, from_exposure: str) -> str:
        with self._lock:
            self._check_connected()
            index = self._index_of(from_exposure)
            if index + 1 >= len(self._scale):
                raise ExposureLimitError("down", from_exposure)
            value = self._scale[index + 1]
            self._command_exposure(value)
        logger.debug("Twin exposure stepped", direction="down", exposure=value)
        return value

    def step_exposure_up(self, from_exposure: str) -> str:
        with self._lock:
            self._check_connected()
            index = self._index_of(from_exposure)
            if index - 1 < 0:
                raise ExposureLimitError("up", from_exposure)
            value = self._scale[index - 1]
            self._command_exposure(value)
        logger.debug("Twin exposure stepped", direction="up", exposure=value)
        return value

    def _index_of(self, exposure: str) -> int:
        try:
            return self._scale.index(exposure)
        except ValueError:
            raise CameraError(f"Exposure {exposure!r} not supported") from None

    def exposure_scale(self) -> Sequence[str]:
        return self._scale

    def iso_choices(self) -> Sequence[str]:
        return tuple(self._config.iso_choices)

    def aperture_choices(self) -> Sequence[str]:
        return tuple(self._config.aperture_choices)

    # -------------------------------------------------------------------------
    # CameraPort: acquisition
    # -------------------------------------------------------------------------

    def capture_preview(self) -> PreviewFrame:
        """Render one live-view frame at the applied exposure.

        Each preview counts toward settling a pending exposure change: the
        frame is rendered with the old exposure and only afterwards does the
        commanded one become applied.
        """
        with self._lock:
            self._check_connected()
            exposure = self._applied_exposure
            if self._pending_frames > 0:
                self._pending_frames -= 1
                if self._pending_frames == 0:
                    self._applied_exposure = self._commanded_exposure
            self._frame_count += 1
            number = self._frame_count

        width, height = self._config.preview_size
        return PreviewFrame(
            image=self.render(exposure, width, height),
            exposure=exposure,
            sequence_number=number,
        )

    def capture(self, base_path: Path) -> Path:
        """Render a full-resolution shot and write it as JPEG."""
        with self._lock:
            self._check_connected()
            number = self._capture_count
            self._capture_count += 1
            if number in self._config.fail_captures:
                logger.warning("Twin capture failure injected", capture=number)
                raise CaptureFailedError(f"Capture {number} failed")
            # A shot always waits for settings to apply
            self._applied_exposure = self._commanded_exposure
            self._pending_frames = 0
            settings = {
                "iso": self._iso,
                "aperture": self._aperture,
                "exposure": self._applied_exposure,
            }

        width, height = self._config.capture_size
        rgb = self.render(settings["exposure"], width, height)
        ok, jpeg = cv2.imencode(
            ".jpg",
            cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR),
            [cv2.IMWRITE_JPEG_QUALITY, _JPEG_QUALITY],
        )
        if not ok:
            raise CaptureFailedError("JPEG encoding failed")

        path = Path(base_path).with_name(Path(base_path).name + ".jpg")
        try:
            path.write_bytes(jpeg.tobytes())
        except OSError as e:
            raise CaptureFailedError(f"Could not write {path}: {e}") from e

        self.captures.append({"path": path, **settings})
        logger.debug("Twin capture complete", path=str(path), **settings)
        return path

    def render(self, exposure: str, width: int, height: int) -> NDArray[Any]:
        """Render the synthetic scene at an exposure.

        Args:
            exposure: Shutter speed from the exposure scale.
            width: Image width in pixels.
            height: Image height in pixels.

        Returns:
            RGB uint8 array of shape (height, width, 3).
        """
        if width <= 0 or height <= 0:
            return np.zeros((max(height, 0), max(width, 0), 3), dtype=np.uint8)
        offset = math.log2(exposure_seconds(exposure) / self._meter_seconds)
        half = self._config.scene_stops / 2.0
        stops = np.linspace(-half, half, num=width, dtype=np.float64)
        row = np.clip(_MID_GRAY * np.power(2.0, stops + offset), 0, 255)
        gray = np.rint(row).astype(np.uint8)
        plane = np.broadcast_to(gray, (height, width))
        return np.ascontiguousarray(np.stack([plane, plane, plane], axis=-1))

    def close(self) -> None:
        logger.debug("Digital twin closed")
