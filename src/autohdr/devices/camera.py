"""Logical camera device with driver injection.

Wraps a CameraPort driver (real tethering driver or digital twin) and is
the single owner of the physical device for the whole application. The
live-view producer, the analysis state machine and the capture worker all
go through one Camera instance, and every driver call is serialized by
its lock because the device has no concept of concurrent sessions.

Adds on top of the raw driver:
- an optional exposure ceiling for the upper boundary search
- snapshot/restore of ISO, aperture and exposure
- exposure identity by position on the camera's exposure scale
- translation of unexpected driver exceptions to CameraError

Example:
    from autohdr.devices import Camera
    from autohdr.drivers.cameras.twin import DigitalTwinCamera

    with Camera(DigitalTwinCamera(), max_exposure="1/4") as camera:
        start = camera.snapshot()
        camera.step_exposure_up(camera.current_exposure())
        camera.restore(start)
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from autohdr.errors import CameraError, ExposureLimitError
from autohdr.observability import get_logger

if TYPE_CHECKING:
    from autohdr.drivers.cameras import CameraPort, PreviewFrame

logger = get_logger(__name__)

__all__ = [
    "Camera",
    "CameraSettings",
    "numeric_iso_choices",
]

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CameraSettings:
    """ISO, aperture and exposure applied on the camera at one moment.

    Used as the analysis StartParameters snapshot and by the capture
    runner to put the camera back after a run.
    """

    iso: str
    aperture: str
    exposure: str


def numeric_iso_choices(choices: Sequence[str]) -> list[str]:
    """Keep only the ISO values that are plain positive numbers.

    Bodies report entries such as "Auto", "Max" or "Hi 1" alongside the
    numeric ISO speeds; those cannot be used for a bracket.

    Example:
        >>> numeric_iso_choices(["Auto", "100", "200", "Hi 1"])
        ['100', '200']
    """
    result = []
    for value in choices:
        try:
            if int(value) > 0:
                result.append(value)
        except ValueError:
            continue
    return result


class Camera:
    """Serialized, hardware-agnostic access to the tethered camera.

    Injectable Dependencies:
        - driver: CameraPort implementation (required)

    Thread Safety:
        All methods are safe to call from any thread. A re-entrant lock
        makes multi-call sequences (snapshot, apply) atomic with respect to
        the other users of the device; hold ``camera.lock`` to group more.

    Attributes:
        max_exposure: Longest exposure the upper boundary search may
            command, or None for no ceiling.
    """

    def __init__(self, driver: CameraPort, max_exposure: str | None = None) -> None:
        """Create the logical camera around a driver.

        Args:
            driver: CameraPort implementation.
            max_exposure: Optional exposure ceiling. A value that is not on
                the driver's exposure scale disables the ceiling.
        """
        self._driver = driver
        self._lock = threading.RLock()
        self.max_exposure = max_exposure

    def __repr__(self) -> str:
        return f"Camera(driver={self._driver!r}, max_exposure={self.max_exposure!r})"

    def __enter__(self) -> Camera:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def driver(self) -> CameraPort:
        """The wrapped driver."""
        return self._driver

    @property
    def lock(self) -> threading.RLock:
        """Lock serializing hardware access."""
        return self._lock

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run one driver call under the lock, translating failures.

        Raises:
            CameraError: Driver errors pass through unchanged; anything
                else the driver raises is wrapped.
        """
        with self._lock:
            try:
                return fn(*args)
            except CameraError:
                raise
            except Exception as e:
                logger.error("Camera driver failure", operation=operation, error=str(e))
                raise CameraError(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def current_iso(self) -> str:
        return self._call("current_iso", self._driver.current_iso)

    def current_aperture(self) -> str:
        return self._call("current_aperture", self._driver.current_aperture)

    def current_exposure(self) -> str:
        return self._call("current_exposure", self._driver.current_exposure)

    def set_iso(self, value: str) -> None:
        self._call("set_iso", self._driver.set_iso, value)

    def set_aperture(self, value: str) -> None:
        self._call("set_aperture", self._driver.set_aperture, value)

    def set_exposure(self, value: str) -> None:
        self._call("set_exposure", self._driver.set_exposure, value)

    def snapshot(self) -> CameraSettings:
        """Read ISO, aperture and exposure in one locked operation.

        Raises:
            CameraError: If any value cannot be read.
        """
        with self._lock:
            return CameraSettings(
                iso=self.current_iso(),
                aperture=self.current_aperture(),
                exposure=self.current_exposure(),
            )

    def apply(self, settings: CameraSettings) -> None:
        """Apply ISO, aperture and exposure in one locked operation.

        An empty aperture (manual lens) is left untouched.

        Raises:
            CameraError: If the driver rejects a value.
        """
        with self._lock:
            self.set_iso(settings.iso)
            if settings.aperture:
                self.set_aperture(settings.aperture)
            self.set_exposure(settings.exposure)

    def restore(self, settings: CameraSettings) -> bool:
        """Put the camera back to ``settings``, logging instead of raising.

        Used on exit paths where the outcome that ended a run must still
        be reported even if the camera has gone away.

        Returns:
            True if the settings were applied, False if the driver failed.
        """
        try:
            self.apply(settings)
        except CameraError as e:
            logger.error(
                "Could not restore camera settings",
                iso=settings.iso,
                aperture=settings.aperture,
                exposure=settings.exposure,
                error=str(e),
            )
            return False
        logger.debug(
            "Camera settings restored",
            iso=settings.iso,
            aperture=settings.aperture,
            exposure=settings.exposure,
        )
        return True

    # -------------------------------------------------------------------------
    # Exposure scale
    # -------------------------------------------------------------------------

    def exposure_scale(self) -> tuple[str, ...]:
        """Every exposure the camera offers, longest first."""
        return tuple(self._call("exposure_scale", self._driver.exposure_scale))

    def exposure_index(self, exposure: str) -> int | None:
        """Position of ``exposure`` on the scale (0 = longest), or None."""
        try:
            return self.exposure_scale().index(exposure)
        except ValueError:
            return None

    def same_exposure(self, a: str | None, b: str | None) -> bool:
        """Whether two exposure values designate the same scale entry.

        Exposure identity is the position on the camera's scale, not the
        display string; values off the scale fall back to exact equality.
        """
        if a is None or b is None:
            return a is b
        if a == b:
            return True
        index_a = self.exposure_index(a)
        return index_a is not None and index_a == self.exposure_index(b)

    def step_exposure_down(self, from_exposure: str) -> str:
        """Apply the next shorter exposure.

        Raises:
            ExposureLimitError: At the short end of the scale.
            CameraError: If the driver fails.
        """
        value = self._call(
            "step_exposure_down", self._driver.step_exposure_down, from_exposure
        )
        logger.debug("Exposure stepped", direction="down", exposure=value)
        return value

    def step_exposure_up(self, from_exposure: str) -> str:
        """Apply the next longer exposure, honouring ``max_exposure``.

        Raises:
            ExposureLimitError: At the long end of the scale or when the
                ceiling has been reached.
            CameraError: If the driver fails.
        """
        with self._lock:
            if self.max_exposure is not None:
                ceiling = self.exposure_index(self.max_exposure)
                current = self.exposure_index(from_exposure)
                if ceiling is not None and current is not None and current <= ceiling:
                    logger.info(
                        "Exposure ceiling reached",
                        exposure=from_exposure,
                        max_exposure=self.max_exposure,
                    )
                    raise ExposureLimitError("up", from_exposure)
            value = self._call(
                "step_exposure_up", self._driver.step_exposure_up, from_exposure
            )
        logger.debug("Exposure stepped", direction="up", exposure=value)
        return value

    def numeric_iso_choices(self) -> list[str]:
        return numeric_iso_choices(self._call("iso_choices", self._driver.iso_choices))

    def aperture_choices(self) -> list[str]:
        return list(self._call("aperture_choices", self._driver.aperture_choices))

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    def capture_preview(self) -> PreviewFrame:
        return self._call("capture_preview", self._driver.capture_preview)

    def capture(self, base_path: Path) -> Path:
        """Take a full-resolution shot; the driver appends the extension.

        Raises:
            CaptureFailedError: If the shot could not be transferred.
            CameraError: On any other driver failure.
        """
        path = self._call("capture", self._driver.capture, Path(base_path))
        logger.info("Shot captured", path=str(path))
        return path

    def close(self) -> None:
        """Release the driver. Safe to call more than once."""
        self._call("close", self._driver.close)
