"""Exception hierarchy for autohdr.

Hardware-limit, capacity, frame-not-ready, capture and composition
failures each have their own type so callers can tell them apart.

    AutoHdrError
    ├── CameraError
    │   ├── CameraDisconnectedError
    │   ├── ExposureLimitError
    │   └── CaptureFailedError
    ├── SequenceError
    │   ├── HardwareLimitError
    │   └── ShotCapacityError
    ├── FrameNotReadyError
    ├── CaptureError
    └── CompositionError
"""

from __future__ import annotations


class AutoHdrError(Exception):
    """Base exception for autohdr."""


# --- Camera ---


class CameraError(AutoHdrError):
    """Raised when a camera driver operation fails."""


class CameraDisconnectedError(CameraError):
    """Raised when the camera is no longer reachable."""


class ExposureLimitError(CameraError):
    """Raised when the exposure scale has no further value in a direction.

    Attributes:
        direction: "up" (longer exposure) or "down" (shorter exposure).
        exposure: Exposure the step was attempted from.
    """

    def __init__(self, direction: str, exposure: str) -> None:
        super().__init__(f"No exposure {direction} from {exposure!r}: limit reached")
        self.direction = direction
        self.exposure = exposure


class CaptureFailedError(CameraError):
    """Raised when a full-resolution shot cannot be transferred."""


# --- Analysis ---


class SequenceError(AutoHdrError):
    """Raised when an analysis run terminates without a shot list."""


class HardwareLimitError(SequenceError):
    """Raised when seeking a boundary runs off the camera's exposure scale."""


class ShotCapacityError(SequenceError):
    """Raised when the bracket needs more shots than the configured maximum.

    Attributes:
        required: Total shots the bracket would need (boundaries included).
        maximum: Configured maximum shot count.
    """

    def __init__(self, required: int, maximum: int) -> None:
        super().__init__("Maximum shots in sequence exceeded")
        self.required = required
        self.maximum = maximum


class FrameNotReadyError(AutoHdrError):
    """Raised when a frame has no pixels to rate (zero width or height).

    Never surfaced to users; the analysis waits for the next frame.
    """


# --- Capture / composition ---


class CaptureError(AutoHdrError):
    """Raised when a capture run stops on a failed shot.

    Attributes:
        index: 0-based index of the shot that failed.
    """

    def __init__(self, index: int, message: str = "Sequence capture failed") -> None:
        super().__init__(message)
        self.index = index


class CompositionError(AutoHdrError):
    """Raised when a composition request is invalid."""
