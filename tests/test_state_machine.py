"""Tests for the sequence state machine.

Drives full analysis runs against the digital twin and checks the state
transitions, the boundary searches, frame admission after exposure
changes and the camera-restore guarantee on every exit path.

Test Categories:
    - Successful runs: bracket content, statuses, completion hook
    - Failure runs: exposure limits, shot capacity, camera failures
    - Frame admission: stale and not-ready frames
    - Commands: abort, accept, reject, criteria, records
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from autohdr.devices.camera import Camera, CameraSettings
from autohdr.drivers.cameras import DigitalTwinCamera, PreviewFrame
from autohdr.errors import HardwareLimitError, SequenceError, ShotCapacityError
from autohdr.sequence import (
    LOWER_LIMIT_MESSAGE,
    UPPER_LIMIT_MESSAGE,
    Criteria,
    SequenceHooks,
    SequenceRecord,
    SequenceState,
    SequenceStateMachine,
    SequenceStatus,
    ShotParameters,
)
from tests.helpers import DEFAULT_BRACKET, DEFAULT_STOPS, run_to_idle


class Recorder:
    """Collects every hook invocation of a state machine."""

    def __init__(self) -> None:
        self.statuses: list[SequenceStatus] = []
        self.completed: list[list[ShotParameters]] = []
        self.errors: list[SequenceError] = []

    def hooks(self) -> SequenceHooks:
        return SequenceHooks(
            on_status=self.statuses.append,
            on_complete=lambda shots: self.completed.append(list(shots)),
            on_error=self.errors.append,
        )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def machine(camera: Camera, recorder: Recorder) -> SequenceStateMachine:
    return SequenceStateMachine(camera, shot_gap=6, hooks=recorder.hooks())


def _settings(twin: DigitalTwinCamera) -> CameraSettings:
    return CameraSettings(
        iso=twin.current_iso(),
        aperture=twin.current_aperture(),
        exposure=twin.current_exposure(),
    )


START = CameraSettings(iso="100", aperture="8", exposure="1/60")


# =============================================================================
# Successful runs
# =============================================================================


class TestSuccessfulRun:
    """Full run against the default twin scene (12 stops metered at 1/60)."""

    def test_bracket_spans_both_boundaries(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        """The default scene yields a five-shot bracket.

        Arrangement:
        Criteria (1, 1, 10) and a gap of 6 scale steps. The lower search
        walks 15 steps down to 1/2000, the upper 5 steps up to 1/20.

        Assertion Strategy:
        Shots are ordered lower boundary first, three intermediates are
        spaced by the gap and the state machine ends idle.
        """
        assert machine.start_computing() is True
        run_to_idle(machine, camera)

        assert machine.state is SequenceState.IDLE
        assert [shot.exposure for shot in machine.shots] == DEFAULT_BRACKET
        assert machine.stops == DEFAULT_STOPS
        assert machine.last_error is None
        assert all(shot.iso == "100" and shot.aperture == "8" for shot in machine.shots)

    def test_boundaries_keep_their_preview(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)

        shots = machine.shots
        assert shots[0].preview is not None
        assert shots[-1].preview is not None
        assert all(shot.preview is None for shot in shots[1:-1])
        assert all(shot.path is None for shot in shots)

    def test_camera_restored_after_success(
        self, machine: SequenceStateMachine, camera: Camera, twin: DigitalTwinCamera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        assert _settings(twin) == START
        assert machine.start_parameters == START

    def test_status_sequence(
        self, machine: SequenceStateMachine, camera: Camera, recorder: Recorder
    ) -> None:
        """Statuses report 10, 50 and 100 percent with their phase texts."""
        machine.start_computing()
        run_to_idle(machine, camera)

        assert [(s.state, s.message, s.progress) for s in recorder.statuses] == [
            (SequenceState.START, "Computing sequence...", 10),
            (SequenceState.LOWER_FOUND, "Found lower criteria.", 50),
            (
                SequenceState.IDLE,
                "Measurements completed ! Capture will take 5 shot(s).",
                100,
            ),
        ]

    def test_completion_hook_receives_bracket(
        self, machine: SequenceStateMachine, camera: Camera, recorder: Recorder
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        assert len(recorder.completed) == 1
        assert [s.exposure for s in recorder.completed[0]] == DEFAULT_BRACKET
        assert recorder.errors == []

    def test_upper_search_restarts_from_start_exposure(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        """After the lower boundary the commanded exposure is the start one."""
        machine.start_computing()
        while machine.state is SequenceState.SEEKING_LOWER:
            machine.process_frame(camera.capture_preview())
        assert machine.state is SequenceState.SEEKING_UPPER
        assert machine.commanded_exposure == "1/60"
        assert camera.current_exposure() == "1/60"

    def test_explicit_start_parameters_are_applied(
        self, machine: SequenceStateMachine, camera: Camera, twin: DigitalTwinCamera
    ) -> None:
        start = CameraSettings(iso="200", aperture="5.6", exposure="1/60")
        machine.start_computing(start)
        assert _settings(twin) == start
        run_to_idle(machine, camera)
        assert _settings(twin) == start
        assert all(s.iso == "200" and s.aperture == "5.6" for s in machine.shots)

    def test_mid_gray_scene_collapses_to_single_shot(
        self, make_twin: Callable[..., DigitalTwinCamera]
    ) -> None:
        """A scene without clipped pixels finds both boundaries at start."""
        camera = Camera(make_twin(scene_stops=0.0))
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        run_to_idle(machine, camera)
        assert [s.exposure for s in machine.shots] == ["1/60"]
        assert machine.stops == 0

    def test_second_run_replaces_bracket(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        machine.set_criteria(50, 50, 10)
        machine.start_computing()
        assert machine.shots == []
        run_to_idle(machine, camera)
        assert 0 < len(machine.shots) < len(DEFAULT_BRACKET)


class TestStaleFrames:
    """Frames taken before an exposure change settled are not rated."""

    def test_settle_frames_do_not_change_bracket(
        self, make_twin: Callable[..., DigitalTwinCamera]
    ) -> None:
        camera = Camera(make_twin(settle_frames=2))
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        run_to_idle(machine, camera)
        assert [s.exposure for s in machine.shots] == DEFAULT_BRACKET
        assert machine.stops == DEFAULT_STOPS

    def test_stale_frame_is_not_an_attempt(
        self, make_twin: Callable[..., DigitalTwinCamera]
    ) -> None:
        """One stale frame follows each step and leaves stops unchanged.

        Arrangement:
        Twin with one settle frame per exposure change.

        Assertion Strategy:
        Frame 1 steps down (stops 1); frame 2 still shows 1/60 and is
        dropped; frame 3 is taken at 1/80 and steps again.
        """
        camera = Camera(make_twin(settle_frames=1))
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()

        machine.process_frame(camera.capture_preview())
        assert machine.stops == 1
        assert machine.commanded_exposure == "1/80"

        machine.process_frame(camera.capture_preview())
        assert machine.stops == 1

        machine.process_frame(camera.capture_preview())
        assert machine.stops == 2

    def test_untagged_frame_dropped_while_camera_settles(
        self,
        make_twin: Callable[..., DigitalTwinCamera],
        make_frame: Callable[..., PreviewFrame],
    ) -> None:
        camera = Camera(make_twin(settle_frames=3))
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        machine.process_frame(camera.capture_preview())
        assert machine.stops == 1

        # Camera still reports 1/60 while 1/80 is commanded
        machine.process_frame(make_frame(value=255))
        assert machine.stops == 1
        assert machine.state is SequenceState.SEEKING_LOWER

    def test_frame_tagged_with_other_exposure_dropped(
        self, machine: SequenceStateMachine, make_frame: Callable[..., PreviewFrame]
    ) -> None:
        machine.start_computing()
        machine.process_frame(make_frame(value=0, exposure="1/30"))
        assert machine.state is SequenceState.SEEKING_LOWER
        assert machine.stops == 0

    def test_zero_size_frame_ignored(
        self, machine: SequenceStateMachine, make_frame: Callable[..., PreviewFrame]
    ) -> None:
        machine.start_computing()
        state = machine.process_frame(make_frame(width=0, height=0))
        assert state is SequenceState.SEEKING_LOWER
        assert machine.stops == 0
        assert machine.last_error is None

    def test_frames_ignored_when_idle(
        self, machine: SequenceStateMachine, make_frame: Callable[..., PreviewFrame]
    ) -> None:
        assert machine.process_frame(make_frame()) is SequenceState.IDLE
        assert machine.shots == []


# =============================================================================
# Failure runs
# =============================================================================


class TestShotCapacity:
    """Brackets needing more than max_shots end the run."""

    def test_small_maximum_fails(
        self,
        camera: Camera,
        twin: DigitalTwinCamera,
        recorder: Recorder,
    ) -> None:
        machine = SequenceStateMachine(
            camera, shot_gap=6, criteria=Criteria(1, 1, 4), hooks=recorder.hooks()
        )
        machine.start_computing()
        run_to_idle(machine, camera)

        assert machine.state is SequenceState.IDLE
        assert machine.shots == []
        assert isinstance(machine.last_error, ShotCapacityError)
        assert str(machine.last_error) == "Maximum shots in sequence exceeded"
        assert recorder.errors == [machine.last_error]
        assert recorder.completed == []
        assert _settings(twin) == START

    def test_gap_of_one_step_fails(self, camera: Camera) -> None:
        """A one-step gap over 20 stops needs 21 shots."""
        machine = SequenceStateMachine(camera, shot_gap=1)
        machine.start_computing()
        run_to_idle(machine, camera)
        assert isinstance(machine.last_error, ShotCapacityError)
        assert machine.last_error.required == 21
        assert machine.shots == []


class TestHardwareLimits:
    """Running off the exposure scale ends the run with a limit message."""

    def test_lower_limit(self, make_twin: Callable[..., DigitalTwinCamera]) -> None:
        """Starting at the shortest exposure leaves nowhere to step down."""
        twin = make_twin(exposure="1/4000")
        camera = Camera(twin)
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        machine.process_frame(camera.capture_preview())

        assert machine.state is SequenceState.IDLE
        assert isinstance(machine.last_error, HardwareLimitError)
        assert str(machine.last_error) == LOWER_LIMIT_MESSAGE
        assert machine.shots == []
        assert twin.current_exposure() == "1/4000"

    def test_upper_limit_from_ceiling(self, twin: DigitalTwinCamera) -> None:
        """The ceiling is reached before the upper boundary (1/20) is found."""
        camera = Camera(twin, max_exposure="1/30")
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        run_to_idle(machine, camera)

        assert isinstance(machine.last_error, HardwareLimitError)
        assert str(machine.last_error) == UPPER_LIMIT_MESSAGE
        assert machine.shots == []
        assert _settings(twin) == START

    def test_limit_error_chains_camera_cause(
        self, make_twin: Callable[..., DigitalTwinCamera]
    ) -> None:
        camera = Camera(make_twin(exposure="1/4000"))
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        machine.process_frame(camera.capture_preview())
        assert machine.last_error is not None
        assert machine.last_error.__cause__ is not None


class TestCameraFailure:
    """Driver failures end the run as a generic sequence error."""

    def test_disconnect_mid_run(
        self,
        machine: SequenceStateMachine,
        camera: Camera,
        twin: DigitalTwinCamera,
        make_frame: Callable[..., PreviewFrame],
        recorder: Recorder,
    ) -> None:
        machine.start_computing()
        machine.process_frame(camera.capture_preview())
        twin.disconnect()
        machine.process_frame(make_frame())

        assert machine.state is SequenceState.IDLE
        assert isinstance(machine.last_error, SequenceError)
        assert not isinstance(machine.last_error, HardwareLimitError)
        assert "Camera failure" in str(machine.last_error)
        assert recorder.errors == [machine.last_error]

    def test_start_fails_when_camera_unreachable(
        self, machine: SequenceStateMachine, twin: DigitalTwinCamera
    ) -> None:
        twin.disconnect()
        assert machine.start_computing() is False
        assert machine.state is SequenceState.IDLE
        assert "Camera not ready" in str(machine.last_error)


# =============================================================================
# Commands
# =============================================================================


class TestStartComputing:
    def test_rejected_while_running(self, machine: SequenceStateMachine) -> None:
        assert machine.start_computing() is True
        assert machine.start_computing() is False
        assert machine.state is SequenceState.SEEKING_LOWER

    def test_enters_seeking_lower(self, machine: SequenceStateMachine) -> None:
        machine.start_computing()
        assert machine.state is SequenceState.SEEKING_LOWER
        assert machine.stops == 0
        assert machine.commanded_exposure == "1/60"

    def test_invalid_gap(self, camera: Camera) -> None:
        with pytest.raises(ValueError, match="gap"):
            SequenceStateMachine(camera, shot_gap=0)


class TestAbort:
    def test_abort_restores_camera(
        self,
        machine: SequenceStateMachine,
        camera: Camera,
        twin: DigitalTwinCamera,
        recorder: Recorder,
    ) -> None:
        machine.start_computing()
        for _ in range(4):
            machine.process_frame(camera.capture_preview())
        assert twin.current_exposure() != "1/60"

        assert machine.abort() is True
        assert machine.state is SequenceState.IDLE
        assert machine.shots == []
        assert _settings(twin) == START
        assert recorder.statuses[-1].message == "Computation aborted."
        assert recorder.statuses[-1].progress == 0

    def test_abort_when_idle(self, machine: SequenceStateMachine) -> None:
        assert machine.abort() is False


class TestAcceptReject:
    def test_accept_returns_bracket_and_restores(
        self, machine: SequenceStateMachine, camera: Camera, twin: DigitalTwinCamera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        camera.set_exposure("1/4000")

        shots = machine.accept()
        assert shots is machine.shots
        assert [s.exposure for s in shots] == DEFAULT_BRACKET
        assert twin.current_exposure() == "1/60"

    def test_accept_without_bracket(self, machine: SequenceStateMachine) -> None:
        with pytest.raises(SequenceError, match="No sequence"):
            machine.accept()

    def test_accept_while_running(self, machine: SequenceStateMachine) -> None:
        machine.start_computing()
        with pytest.raises(SequenceError, match="still running"):
            machine.accept()

    def test_reject_clears_bracket(
        self, machine: SequenceStateMachine, camera: Camera, twin: DigitalTwinCamera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        camera.set_exposure("1/4000")

        machine.reject()
        assert machine.shots == []
        assert twin.current_exposure() == "1/60"

    def test_reject_while_running(self, machine: SequenceStateMachine) -> None:
        machine.start_computing()
        with pytest.raises(SequenceError):
            machine.reject()


class TestCriteria:
    def test_set_criteria_clamps(self, machine: SequenceStateMachine) -> None:
        criteria = machine.set_criteria(0, 150, 1)
        assert criteria == Criteria(lower=1, upper=100, max_shots=2)
        assert machine.criteria == criteria

    def test_looser_criteria_shrink_bracket(self, camera: Camera) -> None:
        """Accepting more clipped pixels stops both searches earlier."""
        machine = SequenceStateMachine(camera, shot_gap=6, criteria=Criteria(20, 20, 10))
        machine.start_computing()
        run_to_idle(machine, camera)
        assert machine.last_error is None
        assert machine.stops < DEFAULT_STOPS


class TestRecords:
    def test_round_trip_through_machine(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        record = machine.to_record()

        other = SequenceStateMachine(camera)
        other.load_record(SequenceRecord.from_dict(record.to_dict()))
        assert [s.exposure for s in other.shots] == DEFAULT_BRACKET
        assert other.criteria == machine.criteria

    def test_record_excludes_previews(
        self, machine: SequenceStateMachine, camera: Camera
    ) -> None:
        machine.start_computing()
        run_to_idle(machine, camera)
        assert all(s.preview is None for s in machine.to_record().shots)

    def test_load_while_running(self, machine: SequenceStateMachine) -> None:
        machine.start_computing()
        with pytest.raises(SequenceError):
            machine.load_record(SequenceRecord(criteria=Criteria()))
