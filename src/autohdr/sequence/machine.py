"""Sequence state machine - the exposure-bracketing control loop.

Consumes live-view frames one at a time and drives the camera through two
boundary searches:

1. SeekingLower: shorten the exposure until the over-exposed share of the
   frame drops below ``criteria.lower``. That exposure is the lower
   (darkest) boundary.
2. SeekingUpper: from the start exposure, lengthen it until the
   under-exposed share drops below ``criteria.upper``. That exposure is
   the upper (brightest) boundary.

The shot distributor then fills the bracket between both boundaries.

State transitions::

    IDLE --start_computing()--> START --> SEEKING_LOWER
    SEEKING_LOWER --frame under criteria--> LOWER_FOUND --> SEEKING_UPPER
    SEEKING_UPPER --frame under criteria--> UPPER_FOUND --> IDLE (shots ready)
    any seeking state --error or abort()--> IDLE (camera restored)

START, LOWER_FOUND and UPPER_FOUND are passed through within the call that
enters them; a frame is only ever processed in a seeking state.

Frame admission:
    After an exposure change a camera keeps delivering frames taken with
    the previous exposure for a while. A frame is only rated when the
    camera reports the exposure last commanded and, if the frame carries
    its own exposure tag, that tag matches too. Other frames are dropped
    without counting as an attempt.

Threading:
    ``process_frame`` is meant to be called from a single consumer (see
    ``autohdr.devices.liveview``). An internal re-entrant lock keeps
    ``abort()``, ``accept()`` and ``reject()`` from other threads safe
    against an in-flight frame. Hooks run with the lock held.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from itertools import count
from typing import TYPE_CHECKING, Protocol

from autohdr.errors import (
    CameraError,
    ExposureLimitError,
    FrameNotReadyError,
    HardwareLimitError,
    SequenceError,
    ShotCapacityError,
)
from autohdr.observability import get_logger
from autohdr.sequence.distributor import distribute_shots
from autohdr.sequence.model import (
    Criteria,
    SequenceRecord,
    SequenceState,
    ShotParameters,
    StartParameters,
)
from autohdr.sequence.rating import ExposureKind, ExposureThresholds, rate_exposure

if TYPE_CHECKING:
    from autohdr.devices.camera import Camera
    from autohdr.drivers.cameras import PreviewFrame

logger = get_logger(__name__)

__all__ = [
    "LOWER_LIMIT_MESSAGE",
    "UPPER_LIMIT_MESSAGE",
    "SequenceHooks",
    "SequenceStateMachine",
    "SequenceStatus",
]

# =============================================================================
# Status texts
# =============================================================================

STATUS_COMPUTING = "Computing sequence..."
STATUS_LOWER_FOUND = "Found lower criteria."
STATUS_ABORTED = "Computation aborted."
LOWER_LIMIT_MESSAGE = "Reached camera under-exposition limit"
UPPER_LIMIT_MESSAGE = "Reached maximum exposition"

PROGRESS_START = 10
PROGRESS_LOWER_FOUND = 50
PROGRESS_DONE = 100

_SEEKING = (SequenceState.SEEKING_LOWER, SequenceState.SEEKING_UPPER)


def _completed_message(total: int) -> str:
    return f"Measurements completed ! Capture will take {total} shot(s)."


@dataclass(frozen=True, slots=True)
class SequenceStatus:
    """Progress event of an analysis run.

    Attributes:
        state: Phase the event was emitted in.
        message: Human-readable phase text.
        progress: Rough completion in percent.
    """

    state: SequenceState
    message: str
    progress: int


# --- Event Hooks ---


class OnStatusCallback(Protocol):  # pragma: no cover
    """Callback protocol for analysis status events."""

    def __call__(self, status: SequenceStatus) -> None: ...


class OnCompleteCallback(Protocol):  # pragma: no cover
    """Callback protocol for a completed analysis."""

    def __call__(self, shots: list[ShotParameters]) -> None: ...


class OnSequenceErrorCallback(Protocol):  # pragma: no cover
    """Callback protocol for a terminated analysis."""

    def __call__(self, error: SequenceError) -> None: ...


@dataclass(slots=True)
class SequenceHooks:
    """Optional callbacks for analysis events.

    Attributes:
        on_status: Called on every phase change with text and progress.
        on_complete: Called with the bracket when a run succeeds.
        on_error: Called with the error when a run terminates on failure.
    """

    on_status: OnStatusCallback | None = None
    on_complete: OnCompleteCallback | None = None
    on_error: OnSequenceErrorCallback | None = None


class SequenceStateMachine:
    """Owner of the analysis state, criteria, start snapshot and bracket.

    Injectable Dependencies:
        - camera: Logical Camera (required)
        - thresholds: Pixel byte thresholds
        - hooks: SequenceHooks for status/result events

    Attributes:
        criteria: Stopping criteria used by the next run.
        last_error: Error that ended the most recent run, or None.

    Example:
        machine = SequenceStateMachine(camera, shot_gap=6)
        machine.start_computing()
        while machine.state is not SequenceState.IDLE:
            machine.process_frame(camera.capture_preview())
        print([shot.exposure for shot in machine.shots])
    """

    def __init__(
        self,
        camera: Camera,
        *,
        shot_gap: int = 6,
        thresholds: ExposureThresholds | None = None,
        criteria: Criteria | None = None,
        hooks: SequenceHooks | None = None,
    ) -> None:
        """Create an idle state machine.

        Args:
            camera: Logical camera shared with live view and capture.
            shot_gap: Maximum exposure-scale steps between adjacent shots.
            thresholds: White/black byte thresholds (defaults 254/5).
            criteria: Initial stopping criteria (default Criteria()).
            hooks: Event callbacks.

        Raises:
            ValueError: If shot_gap is not positive.
        """
        if shot_gap <= 0:
            raise ValueError(f"Shot gap must be positive, got {shot_gap}")
        self._camera = camera
        self._shot_gap = shot_gap
        self._thresholds = thresholds or ExposureThresholds()
        self.criteria = criteria or Criteria()
        self._hooks = hooks or SequenceHooks()

        self._lock = threading.RLock()
        self._state = SequenceState.IDLE
        self._shots: list[ShotParameters] = []
        self.last_error: SequenceError | None = None

        # Per-run fields, reset on start
        self._run_ids = count(1)
        self._run_id = 0
        self._start: StartParameters | None = None
        self._commanded: str | None = None
        self._stops = 0
        self._lower: ShotParameters | None = None
        self._upper: ShotParameters | None = None

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SequenceState:
        return self._state

    @property
    def shots(self) -> list[ShotParameters]:
        """The bracket of the last successful run (or loaded record).

        The list itself is owned by the state machine; the capture runner
        only writes each shot's ``path``.
        """
        return self._shots

    @property
    def start_parameters(self) -> StartParameters | None:
        """Camera snapshot of the current or last run."""
        return self._start

    @property
    def stops(self) -> int:
        """Exposure-scale steps travelled so far in the current run."""
        return self._stops

    @property
    def commanded_exposure(self) -> str | None:
        """Exposure last commanded to the camera by this run."""
        return self._commanded

    @property
    def shot_gap(self) -> int:
        return self._shot_gap

    @property
    def thresholds(self) -> ExposureThresholds:
        return self._thresholds

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def set_criteria(self, lower: int, upper: int, max_shots: int) -> Criteria:
        """Set criteria from raw input, clamping out-of-range values."""
        with self._lock:
            self.criteria = Criteria.clamped(lower, upper, max_shots)
            return self.criteria

    def start_computing(self, start_parameters: StartParameters | None = None) -> bool:
        """Begin an analysis run.

        Args:
            start_parameters: Settings to start from. They are applied to
                the camera before the search; by default the camera's current
                settings are snapshotted.

        Returns:
            True if the run started, False if a run was already in progress
            or the camera could not be prepared (see ``last_error``).
        """
        with self._lock:
            if self._state is not SequenceState.IDLE:
                logger.warning("Analysis already running", state=self._state.value)
                return False

            self._run_id = next(self._run_ids)
            self._set_state(SequenceState.START)
            self._shots.clear()
            self._start = None
            self._stops = 0
            self._lower = None
            self._upper = None
            self.last_error = None

            try:
                if start_parameters is None:
                    self._start = self._camera.snapshot()
                else:
                    self._start = start_parameters
                    self._camera.apply(start_parameters)
            except CameraError as e:
                self._fail(SequenceError(f"Camera not ready: {e}"), e)
                return False

            self._commanded = self._start.exposure
            logger.info(
                "Analysis started",
                run=self._run_id,
                iso=self._start.iso,
                aperture=self._start.aperture,
                exposure=self._start.exposure,
                lower=self.criteria.lower,
                upper=self.criteria.upper,
                max_shots=self.criteria.max_shots,
                gap=self._shot_gap,
            )
            self._emit_status(STATUS_COMPUTING, PROGRESS_START)
            self._set_state(SequenceState.SEEKING_LOWER)
            return True

    def process_frame(self, frame: PreviewFrame) -> SequenceState:
        """Advance the search with one live-view frame.

        Never raises for analysis failures: they end the run, restore the
        camera and are reported through ``on_error`` and ``last_error``.

        Returns:
            The state after processing the frame.
        """
        with self._lock:
            if self._state not in _SEEKING:
                return self._state
            lower_search = self._state is SequenceState.SEEKING_LOWER

            try:
                if not self._admissible(frame):
                    return self._state
                if lower_search:
                    self._seek_lower(frame)
                else:
                    self._seek_upper(frame)
            except FrameNotReadyError:
                logger.debug("Frame not ready", sequence=frame.sequence_number)
            except ExposureLimitError as e:
                message = LOWER_LIMIT_MESSAGE if lower_search else UPPER_LIMIT_MESSAGE
                self._fail(HardwareLimitError(message), e)
            except ShotCapacityError as e:
                self._fail(e)
            except CameraError as e:
                self._fail(SequenceError(f"Camera failure: {e}"), e)
            return self._state

    def abort(self) -> bool:
        """Cancel the running analysis and restore the camera.

        Returns:
            True if a run was aborted, False if already idle.
        """
        with self._lock:
            if self._state is SequenceState.IDLE:
                return False
            logger.info("Analysis aborted", run=self._run_id, state=self._state.value)
            self._shots.clear()
            self._restore()
            self._set_state(SequenceState.IDLE)
            self._emit_status(STATUS_ABORTED, 0)
            return True

    def accept(self) -> list[ShotParameters]:
        """Accept the computed bracket for capture.

        Restores the start parameters and hands back the shot list.

        Raises:
            SequenceError: If a run is in progress or there is no bracket.
        """
        with self._lock:
            self._require_result()
            self._restore()
            logger.info("Sequence accepted", run=self._run_id, shots=len(self._shots))
            return self._shots

    def reject(self) -> None:
        """Discard the computed bracket and restore the start parameters."""
        with self._lock:
            if self._state is not SequenceState.IDLE:
                raise SequenceError("Analysis still running")
            self._restore()
            self._shots.clear()
            logger.info("Sequence rejected", run=self._run_id)

    def load_record(self, record: SequenceRecord) -> None:
        """Replace criteria and bracket with a saved sequence.

        Raises:
            SequenceError: If a run is in progress.
        """
        with self._lock:
            if self._state is not SequenceState.IDLE:
                raise SequenceError("Analysis still running")
            self.criteria = Criteria.clamped(
                record.criteria.lower, record.criteria.upper, record.criteria.max_shots
            )
            self._shots.clear()
            self._shots.extend(
                ShotParameters(iso=s.iso, aperture=s.aperture, exposure=s.exposure)
                for s in record.shots
            )
            logger.info("Sequence loaded", shots=len(self._shots))

    def to_record(self) -> SequenceRecord:
        """Current criteria and bracket as a saved-sequence record."""
        with self._lock:
            return SequenceRecord(
                criteria=self.criteria,
                shots=[
                    ShotParameters(iso=s.iso, aperture=s.aperture, exposure=s.exposure)
                    for s in self._shots
                ],
            )

    # -------------------------------------------------------------------------
    # Transition logic (lock held)
    # -------------------------------------------------------------------------

    def _admissible(self, frame: PreviewFrame) -> bool:
        applied = self._camera.current_exposure()
        if not self._camera.same_exposure(applied, self._commanded):
            logger.debug(
                "Stale frame discarded",
                applied=applied,
                commanded=self._commanded,
            )
            return False
        if frame.exposure is not None and not self._camera.same_exposure(
            frame.exposure, self._commanded
        ):
            logger.debug(
                "Stale frame discarded",
                frame_exposure=frame.exposure,
                commanded=self._commanded,
            )
            return False
        return True

    def _seek_lower(self, frame: PreviewFrame) -> None:
        rate = rate_exposure(frame.image, ExposureKind.OVER, self._thresholds)
        logger.debug("Over-exposure rated", exposure=self._commanded, rate=rate)
        if rate < self.criteria.lower:
            self._lower = self._boundary(frame)
            self._lower_found()
            return
        self._commanded = self._camera.step_exposure_down(self._commanded)
        self._stops += 1

    def _lower_found(self) -> None:
        self._set_state(SequenceState.LOWER_FOUND)
        logger.info(
            "Lower boundary found",
            run=self._run_id,
            exposure=self._lower.exposure,
            stops=self._stops,
        )
        # Upper search starts over from the start parameters
        self._camera.apply(self._start)
        self._commanded = self._start.exposure
        self._emit_status(STATUS_LOWER_FOUND, PROGRESS_LOWER_FOUND)
        self._set_state(SequenceState.SEEKING_UPPER)

    def _seek_upper(self, frame: PreviewFrame) -> None:
        rate = rate_exposure(frame.image, ExposureKind.UNDER, self._thresholds)
        logger.debug("Under-exposure rated", exposure=self._commanded, rate=rate)
        if rate < self.criteria.upper:
            self._upper = self._boundary(frame)
            self._upper_found()
            return
        self._commanded = self._camera.step_exposure_up(self._commanded)
        self._stops += 1

    def _upper_found(self) -> None:
        self._set_state(SequenceState.UPPER_FOUND)
        logger.info(
            "Upper boundary found",
            run=self._run_id,
            exposure=self._upper.exposure,
            stops=self._stops,
        )
        shots = distribute_shots(
            self._lower,
            self._upper,
            self._stops,
            self._shot_gap,
            self.criteria.max_shots,
            self._camera.exposure_scale(),
        )
        self._shots[:] = shots
        self._restore()
        self._set_state(SequenceState.IDLE)
        logger.info(
            "Analysis completed",
            run=self._run_id,
            shots=len(shots),
            exposures=[shot.exposure for shot in shots],
        )
        self._emit_status(_completed_message(len(shots)), PROGRESS_DONE)
        if self._hooks.on_complete:
            self._hooks.on_complete(self._shots)

    def _boundary(self, frame: PreviewFrame) -> ShotParameters:
        return ShotParameters(
            iso=self._camera.current_iso(),
            aperture=self._camera.current_aperture(),
            exposure=self._commanded,
            preview=frame.image,
        )

    def _fail(self, error: SequenceError, cause: Exception | None = None) -> None:
        if cause is not None:
            error.__cause__ = cause
        self._shots.clear()
        self.last_error = error
        self._restore()
        self._set_state(SequenceState.IDLE)
        logger.error(
            "Analysis failed",
            run=self._run_id,
            error=str(error),
            cause=str(cause) if cause else None,
            stops=self._stops,
        )
        if self._hooks.on_error:
            self._hooks.on_error(error)

    def _restore(self) -> None:
        if self._start is not None:
            self._camera.restore(self._start)

    def _require_result(self) -> None:
        if self._state is not SequenceState.IDLE:
            raise SequenceError("Analysis still running")
        if not self._shots:
            raise SequenceError("No sequence to capture")

    def _set_state(self, state: SequenceState) -> None:
        if state is not self._state:
            logger.debug(
                "Sequence state changed",
                run=self._run_id,
                old=self._state.value,
                new=state.value,
            )
        self._state = state

    def _emit_status(self, message: str, progress: int) -> None:
        if self._hooks.on_status:
            self._hooks.on_status(SequenceStatus(self._state, message, progress))
