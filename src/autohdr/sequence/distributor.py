"""Shot distribution between two bracket boundaries."""

from __future__ import annotations

from collections.abc import Sequence

from autohdr.errors import ShotCapacityError
from autohdr.observability import get_logger
from autohdr.sequence.model import ShotParameters

logger = get_logger(__name__)

__all__ = ["distribute_shots"]


def distribute_shots(
    first: ShotParameters,
    last: ShotParameters,
    stops: int,
    gap: int,
    max_shots: int,
    scale: Sequence[str],
) -> list[ShotParameters]:
    """Build the ordered bracket from its two boundary shots.

    Intermediate exposures are taken every ``gap`` steps of the exposure
    scale, walking from ``first`` toward ``last``, so no two adjacent shots
    are more than ``gap`` steps apart. Intermediates reuse the ISO and
    aperture of ``first``.

    Args:
        first: Boundary the bracket starts with (capture order).
        last: Boundary the bracket ends with.
        stops: Scale steps travelled between the boundaries.
        gap: Maximum scale steps between adjacent shots (> 0).
        max_shots: Maximum bracket size, boundaries included.
        scale: Camera exposure scale.

    Returns:
        ``[first, *intermediates, last]``, or ``[first]`` when
        ``stops == 0``. The result is a new list; the boundary objects are
        reused as is.

    Raises:
        ShotCapacityError: If the bracket needs more than ``max_shots``
            shots. Nothing is truncated.
        ValueError: If ``gap`` is not positive or a boundary exposure is
            not on ``scale``.

    Example:
        >>> scale = [str(i) for i in range(20)]
        >>> lo = ShotParameters("100", "8", "12")
        >>> hi = ShotParameters("100", "8", "0")
        >>> [s.exposure for s in distribute_shots(lo, hi, 12, 6, 10, scale)]
        ['12', '6', '0']
    """
    if gap <= 0:
        raise ValueError(f"Shot gap must be positive, got {gap}")

    if stops == 0:
        return [first]

    needed = stops // gap - 1
    if stops % gap:
        needed += 1

    if needed > max_shots - 2:
        logger.warning(
            "Bracket exceeds maximum shots",
            stops=stops,
            gap=gap,
            required=needed + 2,
            max_shots=max_shots,
        )
        raise ShotCapacityError(needed + 2, max_shots)

    if needed <= 0:
        return [first, last]

    scale = list(scale)
    try:
        index_first = scale.index(first.exposure)
        index_last = scale.index(last.exposure)
    except ValueError as e:
        raise ValueError(f"Boundary exposure not on scale: {e}") from e

    step = gap if index_last > index_first else -gap
    intermediates = []
    index = index_first + step
    while (index < index_last) if step > 0 else (index > index_last):
        intermediates.append(
            ShotParameters(iso=first.iso, aperture=first.aperture, exposure=scale[index])
        )
        index += step

    return [first, *intermediates, last]
