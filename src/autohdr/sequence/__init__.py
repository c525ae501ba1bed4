"""Exposure-bracketing analysis.

Rates live-view frames, searches the lower and upper exposure boundaries
and distributes the bracket between them.

Example:
    from autohdr.sequence import SequenceStateMachine, SequenceState

    machine = SequenceStateMachine(camera, shot_gap=6)
    machine.start_computing()
"""

from autohdr.sequence.distributor import distribute_shots
from autohdr.sequence.machine import (
    LOWER_LIMIT_MESSAGE,
    UPPER_LIMIT_MESSAGE,
    SequenceHooks,
    SequenceStateMachine,
    SequenceStatus,
)
from autohdr.sequence.model import (
    Criteria,
    SequenceRecord,
    SequenceState,
    ShotParameters,
    StartParameters,
)
from autohdr.sequence.rating import (
    DEFAULT_BLACK_THRESHOLD,
    DEFAULT_WHITE_THRESHOLD,
    ExposureKind,
    ExposureThresholds,
    rate_exposure,
)

__all__ = [
    # Model
    "Criteria",
    "SequenceRecord",
    "SequenceState",
    "ShotParameters",
    "StartParameters",
    # Rating
    "DEFAULT_BLACK_THRESHOLD",
    "DEFAULT_WHITE_THRESHOLD",
    "ExposureKind",
    "ExposureThresholds",
    "rate_exposure",
    # Distribution
    "distribute_shots",
    # State machine
    "LOWER_LIMIT_MESSAGE",
    "UPPER_LIMIT_MESSAGE",
    "SequenceHooks",
    "SequenceStateMachine",
    "SequenceStatus",
]
