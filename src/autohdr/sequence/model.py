"""Sequence data model.

Value types shared by the analysis state machine, the capture runner and
the persistence boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from autohdr.devices.camera import CameraSettings

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "MIN_SHOTS",
    "Criteria",
    "SequenceRecord",
    "SequenceState",
    "ShotParameters",
    "StartParameters",
]

# Both boundaries always count toward the maximum
MIN_SHOTS = 2

#: Snapshot of the camera taken when an analysis run starts.
StartParameters = CameraSettings


class SequenceState(Enum):
    """Analysis phase. Exactly one value is current per state machine."""

    IDLE = "idle"
    START = "start"
    SEEKING_LOWER = "seeking_lower"
    LOWER_FOUND = "lower_found"
    SEEKING_UPPER = "seeking_upper"
    UPPER_FOUND = "upper_found"


@dataclass
class ShotParameters:
    """One planned or captured exposure.

    Attributes:
        iso: ISO value to apply.
        aperture: Aperture value to apply ("" for manual lenses).
        exposure: Exposure value from the camera's exposure scale.
        preview: Live-view image the boundary was found on, if any.
        path: File written by the capture runner, None until captured.
    """

    iso: str
    aperture: str
    exposure: str
    preview: NDArray[Any] | None = field(default=None, repr=False, compare=False)
    path: Path | None = None

    def settings(self) -> CameraSettings:
        """ISO, aperture and exposure as a camera settings triple."""
        return CameraSettings(iso=self.iso, aperture=self.aperture, exposure=self.exposure)


@dataclass(frozen=True, slots=True)
class Criteria:
    """Stopping criteria of the boundary search.

    Attributes:
        lower: Over-exposed percentage (1..100) below which the lower
            boundary is found.
        upper: Under-exposed percentage (1..100) below which the upper
            boundary is found.
        max_shots: Maximum bracket size, boundaries included (>= 2).

    Raises:
        ValueError: If a value is out of range. Use ``clamped()`` for raw
            operator input.
    """

    lower: int = 1
    upper: int = 1
    max_shots: int = 10

    def __post_init__(self) -> None:
        for name in ("lower", "upper"):
            value = getattr(self, name)
            if not 1 <= value <= 100:
                raise ValueError(f"{name} must be in 1..100, got {value}")
        if self.max_shots < MIN_SHOTS:
            raise ValueError(f"max_shots must be >= {MIN_SHOTS}, got {self.max_shots}")

    @classmethod
    def clamped(cls, lower: int, upper: int, max_shots: int) -> Criteria:
        """Build criteria from raw input, clamping instead of rejecting.

        Percentages <= 0 become 1 and > 100 become 100; a maximum below 2
        becomes 2.

        Example:
            >>> Criteria.clamped(0, 250, 1)
            Criteria(lower=1, upper=100, max_shots=2)
        """
        return cls(
            lower=_clamp_percent(lower),
            upper=_clamp_percent(upper),
            max_shots=max(int(max_shots), MIN_SHOTS),
        )


def _clamp_percent(value: int) -> int:
    return min(max(int(value), 1), 100)


@dataclass
class SequenceRecord:
    """Saved-sequence value exchanged with the persistence layer.

    Carries the criteria and the ordered ISO/aperture/exposure triples of a
    bracket. Previews and file paths are never part of a record.

    The mapping form mirrors the saved-sequence attributes::

        {
            "criteria": {"lower": 1, "upper": 1, "max_nb": 10},
            "shots": [{"ISO": "100", "aperture": "8", "exposure": "1/60"}],
        }
    """

    criteria: Criteria
    shots: list[ShotParameters] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "criteria": {
                "lower": self.criteria.lower,
                "upper": self.criteria.upper,
                "max_nb": self.criteria.max_shots,
            },
            "shots": [
                {"ISO": shot.iso, "aperture": shot.aperture, "exposure": shot.exposure}
                for shot in self.shots
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SequenceRecord:
        """Parse the mapping form, clamping the criteria.

        Numeric fields may be strings, as attribute-based formats store them.

        Raises:
            ValueError: If a required key is missing or not numeric.
        """
        try:
            raw = data["criteria"]
            criteria = Criteria.clamped(
                int(raw["lower"]), int(raw["upper"]), int(raw["max_nb"])
            )
            shots = [
                ShotParameters(
                    iso=str(item["ISO"]),
                    aperture=str(item.get("aperture", "")),
                    exposure=str(item["exposure"]),
                )
                for item in data.get("shots", [])
            ]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid sequence record: {e}") from e
        return cls(criteria=criteria, shots=shots)
