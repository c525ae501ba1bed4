"""Capture runner - executes a computed bracket on the camera.

Shots are taken strictly in list order. The first failed shot ends the
run; shots captured before it keep their paths. A cancellation request is
honoured before the next shot starts. The camera settings in effect
before the run are put back on every exit.

Example:
    runner = CaptureRunner(camera, Path("captures"))
    future = runner.start(machine.accept())
    report = future.result()
    if report.outcome is CaptureOutcome.FAILED:
        print(report.error)
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from autohdr.errors import CameraError, CaptureError
from autohdr.observability import LogContext, get_logger

if TYPE_CHECKING:
    from autohdr.devices.camera import Camera
    from autohdr.sequence.model import ShotParameters

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_SHOT_PREFIX",
    "CaptureHooks",
    "CaptureOutcome",
    "CaptureReport",
    "CaptureRunner",
    "default_shot_name",
]

DEFAULT_SHOT_PREFIX = "Image_"


def default_shot_name(index: int) -> str:
    """File name (without extension) of the shot at ``index``."""
    return f"{DEFAULT_SHOT_PREFIX}{index}"


class CaptureOutcome(Enum):
    """How a capture run ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CaptureReport:
    """Summary of one capture run.

    Attributes:
        outcome: COMPLETED, CANCELLED or FAILED.
        captured: Shots captured successfully (they are the first ones).
        total: Shots in the bracket.
        failed_index: 0-based index of the failed shot, if any.
        error: The capture error, if any.
    """

    outcome: CaptureOutcome
    captured: int
    total: int
    failed_index: int | None = None
    error: CaptureError | None = None


# --- Event Hooks ---


class OnProgressCallback(Protocol):  # pragma: no cover
    """Callback protocol for capture progress."""

    def __call__(self, index: int, total: int) -> None: ...


class OnCaptureErrorCallback(Protocol):  # pragma: no cover
    """Callback protocol for a failed shot."""

    def __call__(self, error: CaptureError) -> None: ...


class OnFinishedCallback(Protocol):  # pragma: no cover
    """Callback protocol for the end of a capture run."""

    def __call__(self, report: CaptureReport) -> None: ...


@dataclass(slots=True)
class CaptureHooks:
    """Optional callbacks for capture events.

    Attributes:
        on_progress: Called with (shots done, total) after each shot.
        on_error: Called once when a shot fails.
        on_finished: Called with the report at the end of every run.
    """

    on_progress: OnProgressCallback | None = None
    on_error: OnCaptureErrorCallback | None = None
    on_finished: OnFinishedCallback | None = None


class CaptureRunner:
    """Takes the shots of a bracket one after another.

    Runs either synchronously (``run``) or on its own single worker thread
    (``start``) so the live view and callers stay responsive. Only the
    ``path`` of each shot is written.
    """

    def __init__(
        self,
        camera: Camera,
        folder: Path,
        *,
        name_fn: Callable[[int], str] = default_shot_name,
        hooks: CaptureHooks | None = None,
    ) -> None:
        """Create a runner.

        Args:
            camera: Shared logical camera.
            folder: Directory the shots are written to (created if needed).
            name_fn: Maps a 0-based shot index to a file name without
                extension; the driver appends the extension.
            hooks: Event callbacks.
        """
        self._camera = camera
        self.folder = Path(folder)
        self._name_fn = name_fn
        self._hooks = hooks or CaptureHooks()
        self._cancel = threading.Event()
        self._running = threading.Event()
        self._executor: ThreadPoolExecutor | None = None

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def run(self, shots: Sequence[ShotParameters]) -> CaptureReport:
        """Capture every shot on the calling thread.

        Never raises for shot failures; they are reported in the returned
        CaptureReport and through the hooks.
        """
        self._cancel.clear()
        return self._execute(shots)

    def start(self, shots: Sequence[ShotParameters]) -> Future[CaptureReport]:
        """Capture every shot on the runner's worker thread.

        Raises:
            RuntimeError: If a run is already in progress.
        """
        if self._running.is_set():
            raise RuntimeError("Capture already running")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="autohdr-capture"
            )
        self._cancel.clear()
        return self._executor.submit(self._execute, shots)

    def cancel(self) -> None:
        """Stop before the next shot; shots already taken are kept."""
        if self._running.is_set():
            logger.info("Capture cancel requested")
        self._cancel.set()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel any run and release the worker thread."""
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _execute(self, shots: Sequence[ShotParameters]) -> CaptureReport:
        self._running.set()
        total = len(shots)
        try:
            with LogContext(capture_folder=str(self.folder)):
                report = self._capture_all(shots, total)
        finally:
            self._running.clear()
        if self._hooks.on_finished:
            self._hooks.on_finished(report)
        return report

    def _capture_all(self, shots: Sequence[ShotParameters], total: int) -> CaptureReport:
        for shot in shots:
            shot.path = None

        logger.info("Capture started", total=total)
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            saved = self._camera.snapshot()
        except (OSError, CameraError) as e:
            return self._failed(0, 0, total, e)

        captured = 0
        try:
            for index, shot in enumerate(shots):
                if self._cancel.is_set():
                    logger.info("Capture cancelled", captured=captured, total=total)
                    return CaptureReport(CaptureOutcome.CANCELLED, captured, total)
                try:
                    self._camera.apply(shot.settings())
                    shot.path = self._camera.capture(self.folder / self._name_fn(index))
                except CameraError as e:
                    return self._failed(index, captured, total, e)
                captured += 1
                logger.debug(
                    "Shot done",
                    index=index,
                    exposure=shot.exposure,
                    path=str(shot.path),
                )
                if self._hooks.on_progress:
                    self._hooks.on_progress(index + 1, total)
        finally:
            self._camera.restore(saved)

        logger.info("Capture completed", total=total)
        return CaptureReport(CaptureOutcome.COMPLETED, captured, total)

    def _failed(
        self, index: int, captured: int, total: int, cause: Exception
    ) -> CaptureReport:
        error = CaptureError(index, f"Sequence capture failed at shot {index + 1}: {cause}")
        error.__cause__ = cause
        logger.error(
            "Capture failed",
            index=index,
            captured=captured,
            total=total,
            error=str(cause),
        )
        if self._hooks.on_error:
            self._hooks.on_error(error)
        return CaptureReport(
            CaptureOutcome.FAILED,
            captured,
            total,
            failed_index=index,
            error=error,
        )
