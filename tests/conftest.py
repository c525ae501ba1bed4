"""Pytest configuration and fixtures for autohdr tests.

Provides a digital twin camera, the logical Camera around it and small
frame builders so tests can drive the analysis without hardware.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import numpy as np
import pytest

from autohdr.devices.camera import Camera
from autohdr.drivers.cameras import DigitalTwinCamera, DigitalTwinConfig, PreviewFrame
from autohdr.observability import reset_logging


@pytest.fixture(autouse=True)
def _reset_logging_state() -> Iterator[None]:
    """Drop handlers installed by a test (CLI tests force a new config)."""
    yield
    reset_logging()


@pytest.fixture
def twin() -> DigitalTwinCamera:
    """Digital twin with default settings (ISO 100, f/8, 1/60)."""
    return DigitalTwinCamera()


@pytest.fixture
def make_twin() -> Callable[..., DigitalTwinCamera]:
    """Factory for twins with custom DigitalTwinConfig fields.

    Example:
        def test_slow_body(make_twin):
            twin = make_twin(settle_frames=2)
    """

    def _make(**kwargs: object) -> DigitalTwinCamera:
        return DigitalTwinCamera(DigitalTwinConfig(**kwargs))

    return _make


@pytest.fixture
def camera(twin: DigitalTwinCamera) -> Camera:
    """Logical camera around the default twin."""
    return Camera(twin)


@pytest.fixture
def make_frame() -> Callable[..., PreviewFrame]:
    """Factory for uniform RGB preview frames.

    Args (of the returned callable):
        value: Byte value of every channel, or an (r, g, b) triple.
        width: Frame width.
        height: Frame height.
        exposure: Exposure tag of the frame.
    """

    def _make(
        value: int | tuple[int, int, int] = 128,
        width: int = 8,
        height: int = 8,
        exposure: str | None = None,
    ) -> PreviewFrame:
        image = np.zeros((height, width, 3), dtype=np.uint8)
        image[...] = value
        return PreviewFrame(image=image, exposure=exposure)

    return _make


@pytest.fixture
def capture_folder(tmp_path: Path) -> Path:
    return tmp_path / "captures"
