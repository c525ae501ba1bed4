"""Composition invoker - merges captured shots with an external HDR tool.

The merge itself is delegated to ``luminance-hdr-cli`` (or any program
accepting the same arguments)::

    luminance-hdr-cli --save <hdr> --output <ldr> <shot> [<shot> ...]

Failing to start, crashing, exiting normally with a status code and being
cancelled are reported as distinct outcomes.
"""

from __future__ import annotations

import subprocess  # nosec B404 - Runs the configured HDR merge program
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from autohdr.errors import CompositionError
from autohdr.observability import get_logger

if TYPE_CHECKING:
    from autohdr.sequence.model import ShotParameters

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_COMPOSER_PROGRAM",
    "DEFAULT_HDR_NAME",
    "DEFAULT_LDR_NAME",
    "Composer",
    "CompositionOutcome",
    "CompositionResult",
    "LuminanceHdrComposer",
    "build_command",
    "captured_paths",
]

DEFAULT_COMPOSER_PROGRAM = "luminance-hdr-cli"
DEFAULT_HDR_NAME = "hdr_result.tif"
DEFAULT_LDR_NAME = "ldr_result.tif"

# Characters of tool stderr kept in a failure message
_STDERR_TAIL = 500


class CompositionOutcome(Enum):
    """How a composition attempt ended."""

    FINISHED = "finished"
    FAILED_TO_START = "failed_to_start"
    CRASHED = "crashed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class CompositionResult:
    """Result of one composition attempt.

    Attributes:
        outcome: See CompositionOutcome.
        exit_code: Process exit status for FINISHED, the terminating signal
            (negative) for CRASHED/CANCELLED, None if it never started.
        message: Human-readable detail.
    """

    outcome: CompositionOutcome
    exit_code: int | None
    message: str

    @property
    def succeeded(self) -> bool:
        """True only for a normal exit with status 0."""
        return self.outcome is CompositionOutcome.FINISHED and self.exit_code == 0


@runtime_checkable
class Composer(Protocol):  # pragma: no cover
    """Protocol for an HDR merge backend."""

    def compose(
        self, paths: Sequence[Path], hdr_path: Path, ldr_path: Path
    ) -> CompositionResult:
        """Merge ``paths`` (capture order) into HDR and LDR outputs.

        Blocks until the merge ends. Never raises for tool failures; they
        are reported in the result.
        """
        ...

    def cancel(self) -> None:
        """Terminate a running merge. No-op when idle."""
        ...


def build_command(
    program: str, paths: Sequence[Path], hdr_path: Path, ldr_path: Path
) -> list[str]:
    """Command line of the merge tool.

    Example:
        >>> build_command("luminance-hdr-cli", [Path("a.jpg")], Path("h.tif"),
        ...               Path("l.tif"))
        ['luminance-hdr-cli', '--save', 'h.tif', '--output', 'l.tif', 'a.jpg']
    """
    return [
        program,
        "--save",
        str(hdr_path),
        "--output",
        str(ldr_path),
        *(str(path) for path in paths),
    ]


def captured_paths(shots: Sequence[ShotParameters]) -> list[Path]:
    """File paths of a fully captured bracket, in capture order.

    Raises:
        CompositionError: If the bracket is empty or a shot was not captured.
    """
    if not shots:
        raise CompositionError("No shots to compose")
    missing = [index for index, shot in enumerate(shots) if shot.path is None]
    if missing:
        raise CompositionError(f"Shots not captured: {missing}")
    return [shot.path for shot in shots]


class LuminanceHdrComposer:
    """Runs luminance-hdr-cli (or a compatible program) as a subprocess.

    Thread Safety:
        ``cancel()`` may be called from any thread while ``compose()``
        blocks in another.
    """

    def __init__(
        self,
        program: str = DEFAULT_COMPOSER_PROGRAM,
        *,
        timeout: float | None = None,
    ) -> None:
        """Create a composer.

        Args:
            program: Executable name or path.
            timeout: Seconds before a running merge is killed and reported
                as CRASHED; None waits indefinitely.
        """
        self.program = program
        self._timeout = timeout
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._cancelled = False

    def compose(
        self, paths: Sequence[Path], hdr_path: Path, ldr_path: Path
    ) -> CompositionResult:
        """Run the merge tool and wait for it.

        Raises:
            CompositionError: If ``paths`` is empty.
        """
        if not paths:
            raise CompositionError("No shots to compose")
        command = build_command(self.program, paths, hdr_path, ldr_path)
        logger.info(
            "Composition started",
            program=self.program,
            shots=len(paths),
            hdr=str(hdr_path),
            ldr=str(ldr_path),
        )

        with self._lock:
            self._cancelled = False
            try:
                process = subprocess.Popen(  # nosec B603 - Program from local config
                    command,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
            except OSError as e:
                logger.error("Composer failed to start", program=self.program, error=str(e))
                return CompositionResult(
                    CompositionOutcome.FAILED_TO_START, None, f"{self.program}: {e}"
                )
            self._process = process

        try:
            _, stderr = process.communicate(timeout=self._timeout)
            timed_out = False
        except subprocess.TimeoutExpired:
            process.kill()
            _, stderr = process.communicate()
            timed_out = True
        finally:
            with self._lock:
                self._process = None
                cancelled = self._cancelled

        return self._result(process.returncode, stderr or "", cancelled, timed_out)

    def cancel(self) -> None:
        """Kill the running merge, if any."""
        with self._lock:
            self._cancelled = True
            if self._process is not None and self._process.poll() is None:
                logger.info("Composition cancel requested", pid=self._process.pid)
                self._process.kill()

    def _result(
        self, code: int, stderr: str, cancelled: bool, timed_out: bool
    ) -> CompositionResult:
        detail = stderr.strip()[-_STDERR_TAIL:]
        if cancelled:
            logger.info("Composition cancelled", exit_code=code)
            return CompositionResult(CompositionOutcome.CANCELLED, code, "Cancelled")
        if timed_out:
            logger.error("Composition timed out", timeout=self._timeout)
            return CompositionResult(
                CompositionOutcome.CRASHED, code, f"Timed out after {self._timeout}s"
            )
        if code < 0:
            logger.error("Composer crashed", signal=-code, stderr=detail)
            return CompositionResult(
                CompositionOutcome.CRASHED, code, detail or f"Killed by signal {-code}"
            )
        if code != 0:
            logger.warning("Composer exited with error", exit_code=code, stderr=detail)
        else:
            logger.info("Composition finished")
        return CompositionResult(
            CompositionOutcome.FINISHED, code, detail or f"Exited with status {code}"
        )
