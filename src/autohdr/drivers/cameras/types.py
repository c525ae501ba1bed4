"""Camera capability port types.

The analysis core talks to a tethered camera only through the
CameraPort protocol defined here. Real drivers (gphoto2 and friends)
live outside this package; the digital twin in ``twin.py`` implements the
same protocol for development and tests.

Exposure scale convention:
    ``exposure_scale()`` is ordered the way tethering drivers list shutter
    speeds: index 0 is the LONGEST exposure (brightest image), the last
    index the shortest. ``step_exposure_up`` moves one index toward 0,
    ``step_exposure_down`` one index toward the end.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "CameraPort",
    "PreviewFrame",
]


@dataclass(slots=True)
class PreviewFrame:
    """A decoded live-view frame.

    Attributes:
        image: RGB pixel buffer, shape (height, width, 3), dtype uint8.
        exposure: Exposure value the driver reports the frame was taken
            with, or None when the driver cannot tell.
        sequence_number: Frame number within the live-view stream.
        timestamp: When the frame was acquired.
    """

    image: NDArray[Any]
    exposure: str | None = None
    sequence_number: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def width(self) -> int:
        """Frame width in pixels (0 for an empty buffer)."""
        return int(self.image.shape[1]) if self.image.ndim >= 2 else 0

    @property
    def height(self) -> int:
        """Frame height in pixels (0 for an empty buffer)."""
        return int(self.image.shape[0]) if self.image.ndim >= 2 else 0


@runtime_checkable
class CameraPort(Protocol):  # pragma: no cover
    """Protocol for a tethered camera exposing ISO, aperture and exposure.

    Every operation may fail with ``autohdr.errors.CameraError`` (or a
    subclass). Implementations never retry on their own; failures propagate
    to the caller which decides what the control loop does next.
    """

    def current_iso(self) -> str:
        """Return the ISO value currently applied on the camera.

        Raises:
            CameraError: If the camera cannot be queried.
        """
        ...

    def current_aperture(self) -> str:
        """Return the aperture currently applied (may be "" for manual lenses).

        Raises:
            CameraError: If the camera cannot be queried.
        """
        ...

    def current_exposure(self) -> str:
        """Return the exposure (shutter speed) the camera has applied.

        Right after ``set_exposure`` or a step, a real body may still report
        the previous value until it has finished applying the new one.

        Raises:
            CameraError: If the camera cannot be queried.
        """
        ...

    def set_iso(self, value: str) -> None:
        """Apply an ISO value.

        Raises:
            CameraError: If the value is rejected or the camera is gone.
        """
        ...

    def set_aperture(self, value: str) -> None:
        """Apply an aperture value.

        Raises:
            CameraError: If the value is rejected or the camera is gone.
        """
        ...

    def set_exposure(self, value: str) -> None:
        """Apply an exposure value from ``exposure_scale()``.

        Raises:
            CameraError: If the value is rejected or the camera is gone.
        """
        ...

    def step_exposure_down(self, from_exposure: str) -> str:
        """Apply the next shorter exposure after ``from_exposure``.

        Args:
            from_exposure: Exposure to step from.

        Returns:
            The exposure value now commanded.

        Raises:
            ExposureLimitError: If ``from_exposure`` is the shortest value.
            CameraError: If the camera rejects the new value.
        """
        ...

    def step_exposure_up(self, from_exposure: str) -> str:
        """Apply the next longer exposure after ``from_exposure``.

        Args:
            from_exposure: Exposure to step from.

        Returns:
            The exposure value now commanded.

        Raises:
            ExposureLimitError: If ``from_exposure`` is the longest value.
            CameraError: If the camera rejects the new value.
        """
        ...

    def exposure_scale(self) -> Sequence[str]:
        """Return every exposure the camera offers, longest first."""
        ...

    def iso_choices(self) -> Sequence[str]:
        """Return every ISO value the camera offers, as reported."""
        ...

    def aperture_choices(self) -> Sequence[str]:
        """Return every aperture the lens offers (empty for manual lenses)."""
        ...

    def capture_preview(self) -> PreviewFrame:
        """Acquire one live-view frame.

        Raises:
            CameraError: If no frame could be acquired.
        """
        ...

    def capture(self, base_path: Path) -> Path:
        """Take a full-resolution shot and store it on the local filesystem.

        Args:
            base_path: Destination without extension. The driver appends the
                extension of the file the camera produced.

        Returns:
            Path of the written file.

        Raises:
            CaptureFailedError: If the shot could not be taken or transferred.
        """
        ...

    def close(self) -> None:
        """Release the camera. Safe to call more than once."""
        ...
