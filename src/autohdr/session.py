"""AutoHDR session - the object graph of one tethered camera.

Built once at startup and passed around explicitly: one logical Camera
shared by the live view, the analysis state machine and the capture
runner, plus the composer. No module-level instances exist.

    driver ─▶ Camera ─┬─▶ LiveView ──frames──▶ SequenceStateMachine
                      └─▶ CaptureRunner ──paths──▶ Composer

Example:
    from autohdr.config import AutoHdrConfig
    from autohdr.drivers.cameras import DigitalTwinCamera
    from autohdr.session import AutoHdrSession

    with AutoHdrSession(DigitalTwinCamera(), AutoHdrConfig()) as session:
        shots = session.analyze(timeout=30)
        report = session.accept().result()
        result = session.compose()
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING

from autohdr.capture.composition import (
    Composer,
    CompositionResult,
    LuminanceHdrComposer,
    captured_paths,
)
from autohdr.capture.runner import CaptureHooks, CaptureReport, CaptureRunner
from autohdr.config import AutoHdrConfig
from autohdr.devices.camera import Camera
from autohdr.devices.liveview import LiveView
from autohdr.errors import CameraError, SequenceError
from autohdr.observability import get_logger
from autohdr.sequence.machine import SequenceHooks, SequenceStateMachine, SequenceStatus
from autohdr.sequence.model import (
    SequenceRecord,
    SequenceState,
    ShotParameters,
    StartParameters,
)

if TYPE_CHECKING:
    from autohdr.drivers.cameras import CameraPort

logger = get_logger(__name__)

__all__ = [
    "AutoHdrSession",
    "SessionHooks",
]


@dataclass(slots=True)
class SessionHooks:
    """Presentation-layer callbacks.

    Attributes:
        sequence: Analysis status/result callbacks.
        capture: Capture progress/result callbacks.
    """

    sequence: SequenceHooks | None = None
    capture: CaptureHooks | None = None


class AutoHdrSession:
    """Owns the camera and every component that uses it.

    Thread Safety:
        Commands may be issued from any thread. Frames are processed on the
        live-view consumer thread and captures on the runner's worker.
    """

    def __init__(
        self,
        driver: CameraPort,
        config: AutoHdrConfig | None = None,
        *,
        composer: Composer | None = None,
        hooks: SessionHooks | None = None,
        frame_interval: float = 0.0,
    ) -> None:
        """Wire the components around a camera driver.

        Args:
            driver: Tethered camera driver (or digital twin).
            config: Configuration (default AutoHdrConfig()).
            composer: HDR merge backend (default luminance-hdr-cli).
            hooks: Presentation-layer callbacks.
            frame_interval: Minimum seconds between live-view frames.
        """
        self.config = config or AutoHdrConfig()
        self._hooks = hooks or SessionHooks()
        self._frame_interval = frame_interval
        self._analysis_done = threading.Event()
        self._analysis_done.set()
        self._liveview_error: SequenceError | None = None

        self.camera = Camera(driver, max_exposure=self.config.max_exposure)
        self.machine = SequenceStateMachine(
            self.camera,
            shot_gap=self.config.shot_gap,
            thresholds=self.config.thresholds(),
            criteria=self.config.criteria(),
            hooks=SequenceHooks(
                on_status=self._on_status,
                on_complete=self._on_complete,
                on_error=self._on_error,
            ),
        )
        self.runner = CaptureRunner(
            self.camera,
            self.config.capture_folder,
            name_fn=self.config.shot_name,
            hooks=self._hooks.capture,
        )
        self.composer = composer or LuminanceHdrComposer(self.config.composer_program)
        self._liveview: LiveView | None = None

    def __enter__(self) -> AutoHdrSession:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def shots(self) -> list[ShotParameters]:
        return self.machine.shots

    # -------------------------------------------------------------------------
    # Live view
    # -------------------------------------------------------------------------

    def start_live_view(self) -> None:
        """Start delivering frames to the state machine (idempotent)."""
        if self._liveview is not None and self._liveview.is_running:
            return
        self._liveview = LiveView(
            self.camera,
            self.machine.process_frame,
            queue_size=self.config.frame_queue_size,
            interval=self._frame_interval,
            on_error=self._on_liveview_error,
        )
        self._liveview.start()

    def stop_live_view(self) -> None:
        if self._liveview is not None:
            self._liveview.stop()
            self._liveview = None

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def start_computing(self, start_parameters: StartParameters | None = None) -> bool:
        """Start an analysis run fed by the live view; returns immediately.

        Returns:
            True if the run started (see SequenceStateMachine.start_computing).
        """
        self._liveview_error = None
        self._analysis_done.clear()
        started = self.machine.start_computing(start_parameters)
        if not started:
            if self.machine.state is SequenceState.IDLE:
                self._analysis_done.set()
            return False
        self.start_live_view()
        return True

    def wait_for_analysis(self, timeout: float | None = None) -> bool:
        """Block until the running analysis ends; False on timeout."""
        return self._analysis_done.wait(timeout)

    def abort_computing(self) -> bool:
        aborted = self.machine.abort()
        self._analysis_done.set()
        return aborted

    def analyze(
        self,
        start_parameters: StartParameters | None = None,
        timeout: float | None = None,
    ) -> list[ShotParameters]:
        """Run an analysis to completion.

        Returns:
            The computed bracket.

        Raises:
            SequenceError: If the run failed, timed out or could not start.
        """
        if not self.start_computing(start_parameters):
            raise self.machine.last_error or SequenceError("Analysis already running")
        if not self.wait_for_analysis(timeout):
            self.abort_computing()
            raise SequenceError(f"Analysis timed out after {timeout}s")
        if self._liveview_error is not None:
            raise self._liveview_error
        if self.machine.last_error is not None:
            raise self.machine.last_error
        if not self.machine.shots:
            raise SequenceError("Analysis aborted")
        return self.machine.shots

    def reject(self) -> None:
        self.machine.reject()

    # -------------------------------------------------------------------------
    # Capture / composition
    # -------------------------------------------------------------------------

    def accept(self) -> Future[CaptureReport]:
        """Accept the bracket and capture it on the runner's worker.

        Raises:
            SequenceError: If there is no bracket to capture.
        """
        return self.runner.start(self.machine.accept())

    def capture(self) -> CaptureReport:
        """Accept the bracket and capture it on the calling thread."""
        return self.runner.run(self.machine.accept())

    def abort_capture(self) -> None:
        self.runner.cancel()

    def compose(self) -> CompositionResult:
        """Merge the captured bracket into the composition folder.

        Raises:
            CompositionError: If the bracket was not fully captured.
        """
        paths = captured_paths(self.machine.shots)
        self.config.composition_folder.mkdir(parents=True, exist_ok=True)
        return self.composer.compose(paths, self.config.hdr_path, self.config.ldr_path)

    def abort_composition(self) -> None:
        self.composer.cancel()

    # -------------------------------------------------------------------------
    # Saved sequences
    # -------------------------------------------------------------------------

    def load_record(self, record: SequenceRecord) -> None:
        self.machine.load_record(record)

    def to_record(self) -> SequenceRecord:
        return self.machine.to_record()

    def close(self) -> None:
        """Stop every activity and release the camera."""
        if self.machine.state is not SequenceState.IDLE:
            self.abort_computing()
        self.stop_live_view()
        self.runner.shutdown()
        try:
            self.camera.close()
        except CameraError as e:
            logger.warning("Camera close failed", error=str(e))
        logger.info("Session closed")

    # -------------------------------------------------------------------------
    # Hook plumbing
    # -------------------------------------------------------------------------

    def _on_status(self, status: SequenceStatus) -> None:
        logger.info("Analysis status", state=status.state.value, message=status.message)
        hooks = self._hooks.sequence
        if hooks and hooks.on_status:
            hooks.on_status(status)
        if status.state is SequenceState.IDLE:
            self._analysis_done.set()

    def _on_complete(self, shots: list[ShotParameters]) -> None:
        hooks = self._hooks.sequence
        if hooks and hooks.on_complete:
            hooks.on_complete(shots)
        self._analysis_done.set()

    def _on_error(self, error: SequenceError) -> None:
        hooks = self._hooks.sequence
        if hooks and hooks.on_error:
            hooks.on_error(error)
        self._analysis_done.set()

    def _on_liveview_error(self, error: CameraError) -> None:
        if self.machine.state is SequenceState.IDLE:
            return
        failure = SequenceError(f"Live view stopped: {error}")
        failure.__cause__ = error
        self._liveview_error = failure
        self.machine.abort()
        hooks = self._hooks.sequence
        if hooks and hooks.on_error:
            hooks.on_error(failure)
        self._analysis_done.set()
