"""AutoHDR configuration.

Values the analysis, capture and composition read from the configuration
store: camera parameter keys, pixel thresholds, shot spacing, output
folders and the shot naming scheme. Loading and saving the store itself
is left to the caller; ``from_mapping`` accepts the parsed sections.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autohdr.capture.composition import (
    DEFAULT_COMPOSER_PROGRAM,
    DEFAULT_HDR_NAME,
    DEFAULT_LDR_NAME,
)
from autohdr.capture.runner import DEFAULT_SHOT_PREFIX
from autohdr.devices.liveview import DEFAULT_QUEUE_SIZE
from autohdr.sequence.model import Criteria
from autohdr.sequence.rating import (
    DEFAULT_BLACK_THRESHOLD,
    DEFAULT_WHITE_THRESHOLD,
    ExposureThresholds,
)

__all__ = [
    "DEFAULT_EV_GAP",
    "DEFAULT_SHOTS_PER_EV",
    "AutoHdrConfig",
    "CameraKeys",
]

# =============================================================================
# Constants
# =============================================================================

# Shot gap in exposure-scale steps is ev_gap * shots_per_ev
DEFAULT_EV_GAP = 2
DEFAULT_SHOTS_PER_EV = 3


def _default_folder() -> Path:
    """Get default capture/composition folder.

    Shots and merge results land in the working directory unless a folder
    is configured.

    Returns:
        Current working directory at the time the config is created.
    """
    return Path.cwd()


@dataclass(frozen=True, slots=True)
class CameraKeys:
    """Camera-specific names of the ISO, aperture and exposure settings.

    Tethering drivers look settings up by these names; gphoto2 uses the
    defaults.
    """

    iso: str = "iso"
    aperture: str = "aperture"
    exposure: str = "shutterspeed"


@dataclass
class AutoHdrConfig:
    """Configuration for analysis, capture and composition.

    Attributes:
        camera_keys: Driver names of the ISO/aperture/exposure settings.
        white_threshold: Byte value from which a channel is over-exposed.
        black_threshold: Byte value up to which a channel is under-exposed.
        ev_gap: EV between two consecutive shots of a bracket.
        shots_per_ev: Exposure-scale steps per EV (3 for third stops).
        lower: Over-exposed percentage ending the lower boundary search.
        upper: Under-exposed percentage ending the upper boundary search.
        max_shots: Maximum bracket size, boundaries included.
        capture_folder: Directory shots are written to.
        composition_folder: Directory merge results are written to.
        shot_prefix: Shot file name prefix; shot ``i`` is ``<prefix><i>``.
        max_exposure: Longest exposure the upper search may command.
        frame_queue_size: Capacity of the live-view frame channel.
        composer_program: HDR merge executable.
        hdr_name: HDR output file name.
        ldr_name: Tone-mapped output file name.

    Raises:
        ValueError: If a threshold is outside 0..255 or the gap is not
            positive.
    """

    camera_keys: CameraKeys = field(default_factory=CameraKeys)

    # Analysis
    white_threshold: int = DEFAULT_WHITE_THRESHOLD
    black_threshold: int = DEFAULT_BLACK_THRESHOLD
    ev_gap: int = DEFAULT_EV_GAP
    shots_per_ev: int = DEFAULT_SHOTS_PER_EV
    lower: int = 1
    upper: int = 1
    max_shots: int = 10
    max_exposure: str | None = None
    frame_queue_size: int = DEFAULT_QUEUE_SIZE

    # Capture
    capture_folder: Path = field(default_factory=_default_folder)
    shot_prefix: str = DEFAULT_SHOT_PREFIX

    # Composition
    composition_folder: Path = field(default_factory=_default_folder)
    composer_program: str = DEFAULT_COMPOSER_PROGRAM
    hdr_name: str = DEFAULT_HDR_NAME
    ldr_name: str = DEFAULT_LDR_NAME

    def __post_init__(self) -> None:
        self.capture_folder = Path(self.capture_folder)
        self.composition_folder = Path(self.composition_folder)
        # Raises ValueError on out-of-range bytes
        self.thresholds()
        if self.ev_gap <= 0 or self.shots_per_ev <= 0:
            raise ValueError(
                f"Shot gap must be positive (ev_gap={self.ev_gap}, "
                f"shots_per_ev={self.shots_per_ev})"
            )
        if self.frame_queue_size < 1:
            raise ValueError(f"frame_queue_size must be >= 1, got {self.frame_queue_size}")

    @property
    def shot_gap(self) -> int:
        """Maximum exposure-scale steps between two adjacent shots."""
        return self.ev_gap * self.shots_per_ev

    @property
    def hdr_path(self) -> Path:
        return self.composition_folder / self.hdr_name

    @property
    def ldr_path(self) -> Path:
        return self.composition_folder / self.ldr_name

    def thresholds(self) -> ExposureThresholds:
        return ExposureThresholds(white=self.white_threshold, black=self.black_threshold)

    def criteria(self) -> Criteria:
        """Configured criteria, clamped into their valid ranges."""
        return Criteria.clamped(self.lower, self.upper, self.max_shots)

    def shot_name(self, index: int) -> str:
        """File name (without extension) of the shot at ``index``."""
        return f"{self.shot_prefix}{index}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> AutoHdrConfig:
        """Build a config from parsed store sections.

        Recognised sections and attributes (all optional)::

            camera:      key_iso, key_ap, key_exp
            analysis:    white_threshold, black_threshold, ev_gap, ev_exp
            capture:     folder
            composition: folder

        A folder of "default" means the working directory. Numeric values
        may be strings.

        Raises:
            ValueError: If a numeric value does not parse or is out of range.
        """
        camera = data.get("camera", {})
        analysis = data.get("analysis", {})
        capture = data.get("capture", {})
        composition = data.get("composition", {})

        return cls(
            camera_keys=CameraKeys(
                iso=camera.get("key_iso", "iso"),
                aperture=camera.get("key_ap", "aperture"),
                exposure=camera.get("key_exp", "shutterspeed"),
            ),
            white_threshold=int(analysis.get("white_threshold", DEFAULT_WHITE_THRESHOLD)),
            black_threshold=int(analysis.get("black_threshold", DEFAULT_BLACK_THRESHOLD)),
            ev_gap=int(analysis.get("ev_gap", DEFAULT_EV_GAP)),
            shots_per_ev=int(analysis.get("ev_exp", DEFAULT_SHOTS_PER_EV)),
            capture_folder=_folder(capture.get("folder")),
            composition_folder=_folder(composition.get("folder")),
        )


def _folder(value: str | None) -> Path:
    if value is None or value == "default":
        return _default_folder()
    return Path(value)
