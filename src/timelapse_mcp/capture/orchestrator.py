"""Time-lapse capture orchestrator.

CaptureOrchestrator runs one sequence at a time. It owns the camera,
fires the capture pipeline on a timer and absorbs stop requests that
arrive while a capture is running.

Threading model:
    dispatcher thread   Processes events one at a time, in arrival order.
                        The only thread that reads or writes SequenceState.
    capture worker      Single-thread executor running the pipeline
                        (acquire, focus, capture, write).
    scheduler threads   Post TimerFired events.
    caller threads      Post commands and block on their reply Future.

State machine:
    IDLE --start--> ACTIVE --timer--> CAPTURE_IN_FLIGHT
    CAPTURE_IN_FLIGHT --success--> ACTIVE (re-armed) or IDLE (limit / stop)
    CAPTURE_IN_FLIGHT --failure--> IDLE
    ACTIVE --stop--> IDLE
    CAPTURE_IN_FLIGHT --stop--> stop latched, honored on completion

Example:
    camera = CameraResourceHandle(driver)
    writer = FrameWriter(data_dir)
    settings = StaticSettingsProvider(SequenceSettings(limit=10))

    with CaptureOrchestrator(camera, writer, settings) as orchestrator:
        orchestrator.start("garden")
        orchestrator.wait_until_idle()
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any

from timelapse_mcp.capture.errors import (
    AlreadyRunningError,
    CaptureError,
    NotRunningError,
    ResourceUnavailableError,
)
from timelapse_mcp.capture.interfaces import (
    ErrorNotifier,
    LoggingErrorNotifier,
    LoggingStatusSink,
    SettingsProvider,
    StaticSettingsProvider,
    StatusSink,
)
from timelapse_mcp.capture.settings import SequenceSettings, default_sequence_id
from timelapse_mcp.capture.state import (
    CaptureFailed,
    CaptureSucceeded,
    Event,
    Phase,
    SequenceState,
    Shutdown,
    StartCommand,
    StatusQuery,
    StatusSnapshot,
    StopCommand,
    TimerFired,
)
from timelapse_mcp.devices.clock import (
    Clock,
    Scheduler,
    SystemClock,
    ThreadingScheduler,
    TimerHandle,
)
from timelapse_mcp.observability import CaptureStats, LogContext, get_logger

if TYPE_CHECKING:
    from timelapse_mcp.data.frame_writer import FrameWriter
    from timelapse_mcp.devices.camera import CameraResourceHandle

logger = get_logger(__name__)

#: Seconds close() waits for an in-flight capture before giving up.
DEFAULT_CLOSE_TIMEOUT = 30.0


class CaptureOrchestrator:
    """Single-flight time-lapse state machine.

    All public methods are thread-safe. Blocking methods must not be
    called from collaborator callbacks (status sink, notifier), which run
    on the dispatcher thread; doing so raises RuntimeError.

    Attributes:
        stats: Rolling statistics of pipeline attempts.
    """

    def __init__(
        self,
        camera: CameraResourceHandle,
        writer: FrameWriter,
        settings: SettingsProvider | None = None,
        status_sink: StatusSink | None = None,
        notifier: ErrorNotifier | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        stats: CaptureStats | None = None,
    ) -> None:
        """Create the orchestrator and start its dispatcher thread.

        Args:
            camera: Camera handle, exclusively owned from here on.
            writer: Frame writer for captured frames.
            settings: Settings read at every start (default: built-in
                SequenceSettings).
            status_sink: Receives a snapshot after each transition
                (default LoggingStatusSink).
            notifier: Receives failure descriptions (default
                LoggingErrorNotifier).
            clock: Time source (default SystemClock).
            scheduler: One-shot timers (default ThreadingScheduler on clock).
            stats: Statistics collector (default new CaptureStats).
        """
        self._camera = camera
        self._writer = writer
        self._settings_provider = settings or StaticSettingsProvider()
        self._status_sink = status_sink or LoggingStatusSink()
        self._notifier = notifier or LoggingErrorNotifier()
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or ThreadingScheduler(self._clock)
        self.stats = stats or CaptureStats()

        # Dispatcher-owned
        self._state = SequenceState()
        self._settings = SequenceSettings()
        self._replies: list[tuple[Future[Any], Any, BaseException | None]] = []

        self._events: queue.Queue[Event] = queue.Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="timelapse-capture"
        )

        # Guards the fields below, which mirror dispatcher progress for waiters
        self._cond = threading.Condition()
        self._pending_events = 0
        self._phase = Phase.IDLE
        self._closed = False

        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="timelapse-dispatcher", daemon=True
        )
        self._dispatcher.start()

    def __enter__(self) -> CaptureOrchestrator:
        """Return self for use in a with-block."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the orchestrator; exceptions are not suppressed."""
        self.close()

    def __repr__(self) -> str:
        """Return orchestrator summary for logs."""
        return f"CaptureOrchestrator(phase={self._phase.value}, closed={self._closed})"

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def start(
        self,
        sequence_id: str | None = None,
        strict: bool = False,
        timeout: float | None = None,
    ) -> bool:
        """Start a new sequence.

        Settings are loaded from the settings provider now; the first frame
        is captured one interval later.

        Args:
            sequence_id: Output directory name. None names the sequence
                after the current local date and time.
            strict: Raise AlreadyRunningError instead of returning False
                when a sequence is already running.
            timeout: Seconds to wait for the dispatcher (None = forever).

        Returns:
            True if a sequence was started, False if one was already running.

        Raises:
            AlreadyRunningError: Only with strict=True.
            ValueError: If the settings or the sequence id are invalid.
            RuntimeError: If called from a collaborator callback or after
                close().
        """
        if sequence_id is None:
            sequence_id = default_sequence_id(self._clock.now().astimezone())
        return self._command(
            StartCommand(sequence_id=sequence_id, strict=strict), timeout
        )

    def stop(self, strict: bool = False, timeout: float | None = None) -> None:
        """Stop the running sequence.

        Takes effect immediately when waiting between ticks. A capture in
        progress is allowed to finish and its frame is kept; the sequence
        stops when it completes. Stopping twice is the same as stopping
        once.

        Args:
            strict: Raise NotRunningError when no sequence is running.
            timeout: Seconds to wait for the dispatcher (None = forever).

        Raises:
            NotRunningError: Only with strict=True.
            RuntimeError: If called from a collaborator callback or after
                close().
        """
        self._command(StopCommand(strict=strict), timeout)

    def status(self, timeout: float | None = None) -> StatusSnapshot:
        """Publish the current snapshot to the status sink and return it."""
        return self._command(StatusQuery(), timeout)

    def close(self, timeout: float = DEFAULT_CLOSE_TIMEOUT) -> None:
        """Shut down: stop the sequence, wait for a capture, stop threads.

        Idempotent. If a capture is still running after ``timeout``
        seconds the orchestrator shuts down anyway. The late frame is
        discarded and the camera is closed once the capture returns.
        """
        self._ensure_not_dispatcher()
        with self._cond:
            if self._closed:
                return

        self.stop(timeout=timeout)
        if not self.wait_until_idle(timeout):
            logger.warning("Capture still in flight at close", timeout_s=timeout)

        shutdown = Shutdown()
        with self._cond:
            self._closed = True
        self._post(shutdown)
        try:
            shutdown.reply.result(timeout)
        finally:
            self._dispatcher.join(timeout)
            if self.phase is Phase.CAPTURE_IN_FLIGHT:
                # The capture worker closes the camera once the stuck call returns
                logger.warning("Camera release deferred until capture returns")
                self._executor.submit(self._camera.release)
                self._executor.shutdown(wait=False)
            else:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._camera.release()
        logger.info("Orchestrator closed")

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        """Phase as of the last processed event."""
        with self._cond:
            return self._phase

    @property
    def closed(self) -> bool:
        """True once close() has started."""
        with self._cond:
            return self._closed

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no sequence is running and no event is pending.

        Returns:
            True if idle, False on timeout.
        """
        self._ensure_not_dispatcher()
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending_events == 0 and self._phase is Phase.IDLE,
                timeout,
            )

    def wait_until_settled(self, timeout: float | None = None) -> bool:
        """Block until no capture is in flight and no event is pending.

        A running sequence waiting for its next tick counts as settled.

        Returns:
            True if settled, False on timeout.
        """
        self._ensure_not_dispatcher()
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending_events == 0
                and self._phase is not Phase.CAPTURE_IN_FLIGHT,
                timeout,
            )

    # -------------------------------------------------------------------------
    # Event plumbing
    # -------------------------------------------------------------------------

    def _ensure_not_dispatcher(self) -> None:
        if threading.current_thread() is self._dispatcher:
            raise RuntimeError(
                "Blocking orchestrator call from a collaborator callback"
            )

    def _command(self, event: Any, timeout: float | None) -> Any:
        self._ensure_not_dispatcher()
        with self._cond:
            if self._closed:
                raise RuntimeError("Orchestrator is closed")
        self._post(event)
        reply: Future[Any] = event.reply
        return reply.result(timeout)

    def _post(self, event: Event) -> None:
        with self._cond:
            self._pending_events += 1
        self._events.put(event)

    def _dispatch_loop(self) -> None:
        logger.debug("Dispatcher started")
        while True:
            event = self._events.get()
            try:
                self._handle(event)
            except Exception as e:
                logger.exception("Event handler failed", event=type(event).__name__)
                reply = getattr(event, "reply", None)
                if reply is not None:
                    self._reject(reply, e)
            finally:
                with self._cond:
                    self._pending_events -= 1
                    self._phase = self._state.phase
                    self._cond.notify_all()
                # Replies go out after the mirror so callers never observe
                # a phase older than their own command
                self._flush_replies()
            if isinstance(event, Shutdown):
                break
        logger.debug("Dispatcher stopped")

    def _handle(self, event: Event) -> None:
        if isinstance(event, TimerFired):
            self._on_timer_fired(event)
        elif isinstance(event, CaptureSucceeded):
            self._on_capture_succeeded(event)
        elif isinstance(event, CaptureFailed):
            self._on_capture_failed(event)
        elif isinstance(event, StartCommand):
            self._on_start(event)
        elif isinstance(event, StopCommand):
            self._on_stop(event)
        elif isinstance(event, StatusQuery):
            self._resolve(event.reply, self._publish())
        elif isinstance(event, Shutdown):
            self._on_shutdown(event)
        else:
            logger.warning("Unknown event", event=type(event).__name__)

    # -------------------------------------------------------------------------
    # Handlers (dispatcher thread only)
    # -------------------------------------------------------------------------

    def _on_start(self, command: StartCommand) -> None:
        state = self._state
        if state.running:
            if command.strict:
                self._reject(
                    command.reply,
                    AlreadyRunningError(
                        f"Sequence {state.sequence_id!r} is already running"
                    ),
                )
            else:
                logger.debug("Start ignored, already running", sequence_id=state.sequence_id)
                self._resolve(command.reply, False)
            return

        try:
            settings = self._settings_provider.load()
            self._writer.sequence_path(command.sequence_id)  # validates the name
        except ValueError as e:
            logger.warning("Start rejected", sequence_id=command.sequence_id, error=str(e))
            self._reject(command.reply, e)
            return

        self._settings = settings
        self._camera.configure(settings.camera_id, settings.image_format)

        now = self._clock.now()
        state.phase = Phase.ACTIVE
        state.start_time = now
        state.next_index = 0
        state.limit = settings.limit
        state.interval = settings.interval
        state.sequence_id = command.sequence_id
        state.stop_requested = False
        state.tick_time = None

        logger.info(
            "Sequence started",
            sequence_id=state.sequence_id,
            **settings.to_dict(),
        )
        self._publish()
        self._arm(now + state.interval)
        self._resolve(command.reply, True)

    def _on_stop(self, command: StopCommand) -> None:
        state = self._state
        if state.phase is Phase.IDLE:
            if command.strict:
                self._reject(command.reply, NotRunningError("No sequence is running"))
            else:
                logger.debug("Stop ignored, not running")
                self._resolve(command.reply, None)
            return

        if state.phase is Phase.CAPTURE_IN_FLIGHT:
            if not state.stop_requested:
                logger.info(
                    "Stop deferred until capture completes",
                    sequence_id=state.sequence_id,
                    index=state.next_index,
                )
            state.stop_requested = True
        else:
            self._finish_sequence("stopped")
        self._resolve(command.reply, None)

    def _on_timer_fired(self, event: TimerFired) -> None:
        state = self._state
        if event.handle is not state.timer or state.phase is not Phase.ACTIVE:
            logger.debug(
                "Ignoring stale timer",
                timer_id=event.handle.timer_id,
                phase=state.phase.value,
            )
            return

        state.timer = None
        state.tick_time = self._clock.now()
        state.phase = Phase.CAPTURE_IN_FLIGHT
        assert state.sequence_id is not None
        self._executor.submit(
            self._run_pipeline, state.sequence_id, state.next_index, self._settings
        )

    def _on_capture_succeeded(self, event: CaptureSucceeded) -> None:
        state = self._state
        if state.phase is not Phase.CAPTURE_IN_FLIGHT:
            logger.warning("Unexpected capture completion", index=event.index)
            return

        self.stats.record_capture(event.duration_ms, success=True)
        state.next_index += 1

        if state.stop_requested:
            self._finish_sequence("stopped")
            return
        if state.limit != 0 and state.next_index >= state.limit:
            self._finish_sequence("limit reached")
            return

        state.phase = Phase.ACTIVE
        if not self._settings.keep_camera_warm:
            self._camera.release()
        self._publish()
        assert state.tick_time is not None
        self._arm(state.tick_time + state.interval)

    def _on_capture_failed(self, event: CaptureFailed) -> None:
        state = self._state
        if state.phase is not Phase.CAPTURE_IN_FLIGHT:
            logger.warning("Unexpected capture failure event", index=event.index)
            return

        error = event.error
        self.stats.record_capture(event.duration_ms, success=False, error_kind=error.kind)
        logger.error(
            "Capture failed, stopping sequence",
            sequence_id=state.sequence_id,
            index=event.index,
            kind=error.kind,
            error=str(error),
        )
        self._camera.release()
        self._notify(f"Frame {event.index} of {state.sequence_id!r} failed: {error}")
        self._finish_sequence(f"failed: {error.kind}")

    def _on_shutdown(self, event: Shutdown) -> None:
        state = self._state
        if state.phase is Phase.ACTIVE:
            self._finish_sequence("shutdown")
        elif state.phase is Phase.CAPTURE_IN_FLIGHT:
            logger.warning("Shutting down with capture in flight", index=state.next_index)
        self._scheduler_cancel()
        self._resolve(event.reply, None)

    # -------------------------------------------------------------------------
    # Helpers (dispatcher thread only)
    # -------------------------------------------------------------------------

    def _resolve(self, reply: Future[Any], result: Any) -> None:
        self._replies.append((reply, result, None))

    def _reject(self, reply: Future[Any], error: BaseException) -> None:
        self._replies.append((reply, None, error))

    def _flush_replies(self) -> None:
        replies, self._replies = self._replies, []
        for reply, result, error in replies:
            if reply.done():
                continue
            if error is not None:
                reply.set_exception(error)
            else:
                reply.set_result(result)

    def _arm(self, trigger_at: datetime) -> None:
        self._state.timer = self._scheduler.arm(trigger_at, self._timer_callback)

    def _timer_callback(self, handle: TimerHandle) -> None:
        # Scheduler thread
        self._post(TimerFired(handle=handle))

    def _scheduler_cancel(self) -> None:
        if self._state.timer is not None:
            self._scheduler.cancel(self._state.timer)
            self._state.timer = None

    def _finish_sequence(self, reason: str) -> None:
        state = self._state
        self._scheduler_cancel()
        self._camera.release()
        state.phase = Phase.IDLE
        state.start_time = None
        state.stop_requested = False
        state.tick_time = None
        logger.info(
            "Sequence finished",
            sequence_id=state.sequence_id,
            reason=reason,
            images_captured=state.next_index,
        )
        self._publish()

    def _publish(self) -> StatusSnapshot:
        snapshot = self._state.snapshot()
        try:
            self._status_sink.publish(snapshot)
        except Exception:
            logger.exception("Status sink failed")
        return snapshot

    def _notify(self, message: str) -> None:
        try:
            self._notifier.notify(message)
        except Exception:
            logger.exception("Error notifier failed")

    # -------------------------------------------------------------------------
    # Pipeline (capture worker thread)
    # -------------------------------------------------------------------------

    def _run_pipeline(
        self, sequence_id: str, index: int, settings: SequenceSettings
    ) -> None:
        started = self._clock.monotonic()
        with LogContext(sequence_id=sequence_id, index=index):
            try:
                self._camera.acquire()
                if settings.autofocus:
                    self._camera.focus(settings.focus_attempts)
                data = self._camera.capture_frame()
                if self.closed:
                    logger.warning("Frame discarded, orchestrator closed")
                    return
                self._writer.write(sequence_id, index, data, settings.image_format)
            except CaptureError as e:
                result: Event = CaptureFailed(
                    index=index, error=e, duration_ms=self._elapsed_ms(started)
                )
            except Exception as e:
                logger.exception("Unexpected pipeline error")
                wrapped = ResourceUnavailableError(f"Unexpected capture error: {e}")
                wrapped.__cause__ = e
                result = CaptureFailed(
                    index=index, error=wrapped, duration_ms=self._elapsed_ms(started)
                )
            else:
                result = CaptureSucceeded(
                    index=index, duration_ms=self._elapsed_ms(started)
                )
        self._post(result)

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock.monotonic() - started) * 1000.0
