"""Exposure rating of live-view frames.

Counts over-exposed or under-exposed pixels of an RGB frame against byte
thresholds and reports them as an integer percentage.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
from numpy.typing import NDArray

from autohdr.errors import FrameNotReadyError

__all__ = [
    "DEFAULT_BLACK_THRESHOLD",
    "DEFAULT_WHITE_THRESHOLD",
    "ExposureKind",
    "ExposureThresholds",
    "rate_exposure",
]

DEFAULT_WHITE_THRESHOLD = 254
DEFAULT_BLACK_THRESHOLD = 5


class ExposureKind(Enum):
    """Which pixel test ``rate_exposure`` runs."""

    OVER = "over"
    UNDER = "under"


@dataclass(frozen=True, slots=True)
class ExposureThresholds:
    """Byte thresholds for the pixel tests.

    Attributes:
        white: A pixel with any channel >= white is over-exposed.
        black: A pixel with every channel <= black is under-exposed.
    """

    white: int = DEFAULT_WHITE_THRESHOLD
    black: int = DEFAULT_BLACK_THRESHOLD

    def __post_init__(self) -> None:
        for name in ("white", "black"):
            value = getattr(self, name)
            if not 0 <= value <= 255:
                raise ValueError(f"{name} threshold must be in 0..255, got {value}")


def rate_exposure(
    image: NDArray[Any] | None,
    kind: ExposureKind,
    thresholds: ExposureThresholds,
) -> int:
    """Percentage of pixels over- or under-exposed.

    Args:
        image: RGB buffer of shape (H, W, C) with C >= 3 (extra channels
            such as alpha are ignored), or a (H, W) grayscale buffer.
        kind: OVER tests against ``thresholds.white``, UNDER against
            ``thresholds.black``.
        thresholds: Byte thresholds.

    Returns:
        ``matching * 100 // (width * height)``, in 0..100.

    Raises:
        FrameNotReadyError: If the frame is missing or has zero width or
            height. This is not a measurement; wait for the next frame.

    Example:
        >>> gray = np.full((4, 4, 3), 128, dtype=np.uint8)
        >>> rate_exposure(gray, ExposureKind.OVER, ExposureThresholds())
        0
    """
    if image is None or image.ndim < 2:
        raise FrameNotReadyError("No frame available")
    height, width = int(image.shape[0]), int(image.shape[1])
    if width == 0 or height == 0:
        raise FrameNotReadyError(f"Empty frame ({width}x{height})")

    pixels = image[..., :3] if image.ndim == 3 else image[..., np.newaxis]

    if kind is ExposureKind.OVER:
        matching = np.any(pixels >= thresholds.white, axis=-1)
    else:
        matching = np.all(pixels <= thresholds.black, axis=-1)

    return int(np.count_nonzero(matching)) * 100 // (width * height)
