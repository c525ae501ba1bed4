"""Test helper functions for autohdr.

Provides protocol compliance verification and a driver loop for the
analysis state machine.

Example:
    from tests.helpers import assert_implements_protocol
    from autohdr.drivers.cameras import CameraPort

    def test_my_driver_implements_protocol():
        assert_implements_protocol(MyDriver(), CameraPort)
"""

from __future__ import annotations

from typing import Any, Protocol

from autohdr.sequence.model import SequenceState

# Bracket the default twin scene produces with criteria (1, 1, 10) and a
# shot gap of 6, starting from 1/60
DEFAULT_BRACKET = ["1/2000", "1/500", "1/125", "1/30", "1/20"]

# Scale steps travelled for DEFAULT_BRACKET (15 down, 5 up)
DEFAULT_STOPS = 20


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a Protocol interface.

    Uses isinstance() (the Protocol must be @runtime_checkable) and lists
    the missing public members on failure.

    Args:
        instance: Object to check for protocol compliance.
        protocol: @runtime_checkable Protocol class.

    Raises:
        AssertionError: If instance doesn't implement protocol.

    Example:
        >>> assert_implements_protocol(DigitalTwinCamera(), CameraPort)
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_methods = {
        attr for attr in set(dir(protocol)) - object_attrs if not attr.startswith("_")
    }
    missing = sorted(m for m in protocol_methods if not hasattr(instance, m))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(instances: list[Any], protocol: type[Protocol]) -> None:
    """Assert that all instances in a list implement a Protocol.

    Raises:
        AssertionError: If any instance doesn't implement protocol.
    """
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


def run_to_idle(machine: Any, camera: Any, max_frames: int = 500) -> int:
    """Feed live-view frames to a state machine until it is idle.

    Args:
        machine: SequenceStateMachine with a run in progress.
        camera: Camera the frames are acquired from.
        max_frames: Frames after which the run is considered stuck.

    Returns:
        Number of frames fed.

    Raises:
        AssertionError: If the run is still going after max_frames.
    """
    for fed in range(max_frames):
        if machine.state is SequenceState.IDLE:
            return fed
        machine.process_frame(camera.capture_preview())
    raise AssertionError(f"Analysis still {machine.state} after {max_frames} frames")
