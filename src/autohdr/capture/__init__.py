"""Bracket capture and HDR composition.

Example:
    from autohdr.capture import CaptureRunner, LuminanceHdrComposer

    report = CaptureRunner(camera, Path("captures")).run(shots)
    result = LuminanceHdrComposer().compose(
        captured_paths(shots), Path("hdr_result.tif"), Path("ldr_result.tif")
    )
"""

from autohdr.capture.composition import (
    DEFAULT_COMPOSER_PROGRAM,
    DEFAULT_HDR_NAME,
    DEFAULT_LDR_NAME,
    Composer,
    CompositionOutcome,
    CompositionResult,
    LuminanceHdrComposer,
    build_command,
    captured_paths,
)
from autohdr.capture.runner import (
    DEFAULT_SHOT_PREFIX,
    CaptureHooks,
    CaptureOutcome,
    CaptureReport,
    CaptureRunner,
    default_shot_name,
)

__all__ = [
    # Runner
    "DEFAULT_SHOT_PREFIX",
    "CaptureHooks",
    "CaptureOutcome",
    "CaptureReport",
    "CaptureRunner",
    "default_shot_name",
    # Composition
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
