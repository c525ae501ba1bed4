"""Live-view frame delivery.

One producer thread acquires preview frames from the camera continuously;
one consumer thread hands them, one at a time and in arrival order, to a
frame handler (normally ``SequenceStateMachine.process_frame``). The two
are joined by a bounded queue: when the handler falls behind, the
producer blocks instead of piling frames up.

Example:
    live = LiveView(camera, machine.process_frame, queue_size=2)
    live.start()
    ...
    live.stop()
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from autohdr.errors import CameraError
from autohdr.observability import get_logger

if TYPE_CHECKING:
    from autohdr.devices.camera import Camera
    from autohdr.drivers.cameras import PreviewFrame

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_MAX_ERRORS",
    "DEFAULT_QUEUE_SIZE",
    "LiveView",
]

DEFAULT_QUEUE_SIZE = 2
DEFAULT_MAX_ERRORS = 3

# Poll period for queue waits so stop() is noticed promptly
_POLL_SECONDS = 0.05


class LiveView:
    """Producer/consumer pair delivering preview frames to one handler.

    Attributes:
        frames_produced: Frames acquired from the camera.
        frames_delivered: Frames handed to the handler.
    """

    def __init__(
        self,
        camera: Camera,
        on_frame: Callable[[PreviewFrame], Any],
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        interval: float = 0.0,
        max_errors: int = DEFAULT_MAX_ERRORS,
        on_error: Callable[[CameraError], Any] | None = None,
    ) -> None:
        """Create a stopped live view.

        Args:
            camera: Shared logical camera.
            on_frame: Handler called from the consumer thread for each frame.
            queue_size: Capacity of the frame channel (>= 1).
            interval: Minimum seconds between two acquisitions.
            max_errors: Consecutive acquisition failures after which the
                producer gives up and ``on_error`` is called.
            on_error: Called with the last failure when the producer gives up.

        Raises:
            ValueError: If queue_size or max_errors is below 1.
        """
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")
        if max_errors < 1:
            raise ValueError(f"max_errors must be >= 1, got {max_errors}")
        self._camera = camera
        self._on_frame = on_frame
        self._on_error = on_error
        self._interval = interval
        self._max_errors = max_errors
        self._queue: queue.Queue[PreviewFrame] = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._producer: threading.Thread | None = None
        self._consumer: threading.Thread | None = None
        self.frames_produced = 0
        self.frames_delivered = 0

    @property
    def is_running(self) -> bool:
        return self._producer is not None and self._producer.is_alive()

    def start(self) -> None:
        """Start the producer and consumer threads.

        Raises:
            RuntimeError: If already running.
        """
        if self._producer is not None:
            raise RuntimeError("Live view already started")
        self._stop_event.clear()
        self._producer = threading.Thread(
            target=self._produce, name="autohdr-liveview-producer", daemon=True
        )
        self._consumer = threading.Thread(
            target=self._consume, name="autohdr-liveview-consumer", daemon=True
        )
        self._consumer.start()
        self._producer.start()
        logger.info("Live view started", queue_size=self._queue.maxsize)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop both threads and drop undelivered frames.

        Safe to call from the frame handler itself; the calling thread is
        not joined.
        """
        self._stop_event.set()
        current = threading.current_thread()
        for thread in (self._producer, self._consumer):
            if thread is not None and thread is not current:
                thread.join(timeout)
        self._producer = None
        self._consumer = None
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        logger.info(
            "Live view stopped",
            produced=self.frames_produced,
            delivered=self.frames_delivered,
            dropped=dropped,
        )

    def __enter__(self) -> LiveView:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    # -------------------------------------------------------------------------
    # Threads
    # -------------------------------------------------------------------------

    def _produce(self) -> None:
        errors = 0
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                frame = self._camera.capture_preview()
            except CameraError as e:
                errors += 1
                logger.warning(
                    "Preview acquisition failed", error=str(e), consecutive=errors
                )
                if errors >= self._max_errors:
                    logger.error("Live view giving up", errors=errors)
                    self._stop_event.set()
                    if self._on_error:
                        self._on_error(e)
                    return
                continue
            errors = 0
            self.frames_produced += 1

            while not self._stop_event.is_set():
                try:
                    self._queue.put(frame, timeout=_POLL_SECONDS)
                    break
                except queue.Full:
                    continue

            remaining = self._interval - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)

    def _consume(self) -> None:
        while not self._stop_event.is_set():
            try:
                frame = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            self.frames_delivered += 1
            try:
                self._on_frame(frame)
            except Exception as e:
                logger.error(
                    "Frame handler failed",
                    sequence=frame.sequence_number,
                    error=str(e),
                )
