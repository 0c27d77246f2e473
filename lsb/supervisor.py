"""
Process Supervisor for the log stream bridge.

Owns the producer process and runs the decode -> enrich -> submit pipeline
on a single thread.  Any decode failure kills the producer and starts a new
one after a constant delay; cancellation observed at submit time stops the
loop cleanly.
"""

from typing import Optional, Callable
from .interfaces import (
    ProducerLauncherInterface, ProducerProcessInterface, SinkInterface,
    CancelTokenLike, ClockInterface, LoggerInterface, SupervisorState,
    SupervisorStats, LaunchError, Cancelled,
)
from .enricher import RecordEnricher
from .stream_decoder import StreamDecoder, DecoderState, DecodeError


StateCallback = Callable[[SupervisorState, SupervisorState], None]


class ProcessSupervisor:
    """
    Runs the producer process and feeds its output to the sink.

    States:
    - STARTING: launch producer, fresh DecoderState
    - STREAMING: decode, enrich, submit
    - RESTARTING: kill producer, constant delay, back to STARTING
    - STOPPED: cancellation observed (or launch failure limit reached)
    """

    def __init__(
        self,
        launcher: ProducerLauncherInterface,
        decoder: StreamDecoder,
        enricher: RecordEnricher,
        sink: SinkInterface,
        cancel: CancelTokenLike,
        clock: ClockInterface,
        logger: LoggerInterface,
        restart_delay: float = 1.0,
        max_launch_failures: int = 0,  # 0 = retry forever
        on_state_change: Optional[StateCallback] = None,
        on_batch: Optional[Callable[[SupervisorStats], None]] = None,
    ):
        if restart_delay < 0:
            raise ValueError("restart_delay must not be negative")
        self._launcher = launcher
        self._decoder = decoder
        self._enricher = enricher
        self._sink = sink
        self._cancel = cancel
        self._clock = clock
        self._logger = logger
        self._restart_delay = restart_delay
        self._max_launch_failures = max_launch_failures
        self._on_state_change = on_state_change
        self._on_batch = on_batch

        self._state = SupervisorState.STARTING
        self._process: Optional[ProducerProcessInterface] = None
        self._decoder_state: Optional[DecoderState] = None
        self._consecutive_launch_failures = 0
        self._stats = SupervisorStats()

    @property
    def state(self) -> SupervisorState:
        """Current supervisor state."""
        return self._state

    @property
    def process(self) -> Optional[ProducerProcessInterface]:
        """Producer currently being streamed (None between runs)."""
        return self._process

    @property
    def decoder_state(self) -> Optional[DecoderState]:
        """Decode state of the current run (for testing)."""
        return self._decoder_state

    @property
    def stats(self) -> SupervisorStats:
        return self._stats

    def run(self) -> None:
        """Drive the state machine until STOPPED."""
        self._logger.info("Supervisor starting")
        try:
            while self._state != SupervisorState.STOPPED:
                if self._state == SupervisorState.STARTING:
                    self._start()
                elif self._state == SupervisorState.STREAMING:
                    self._stream()
                elif self._state == SupervisorState.RESTARTING:
                    self._restart()
        finally:
            self._release()
        self._logger.info(f"Supervisor stopped ({self._stats.as_dict()})")

    def _set_state(self, new_state: SupervisorState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._logger.debug(f"State {old_state.value} -> {new_state.value}")
        if self._on_state_change:
            self._on_state_change(old_state, new_state)

    def _start(self) -> None:
        if self._cancel.is_cancelled():
            self._set_state(SupervisorState.STOPPED)
            return

        try:
            self._process = self._launcher.launch()
        except LaunchError as e:
            self._stats.launch_failures += 1
            self._consecutive_launch_failures += 1
            self._logger.error(f"Failed to start producer: {e}")
            if 0 < self._max_launch_failures <= self._consecutive_launch_failures:
                self._logger.error(
                    f"Giving up after {self._consecutive_launch_failures} failed launches"
                )
                self._set_state(SupervisorState.STOPPED)
                return
            self._set_state(SupervisorState.RESTARTING)
            return

        self._consecutive_launch_failures = 0
        self._stats.launches += 1
        # A partial buffer from a previous process is meaningless for this one.
        self._decoder_state = DecoderState()
        self._logger.info(f"Producer started (pid {self._process.pid})")
        self._set_state(SupervisorState.STREAMING)

    def _stream(self) -> None:
        try:
            payloads = self._decoder.decode(self._decoder_state, self._process)
        except DecodeError as e:
            self._stats.decode_errors += 1
            self._logger.error(f"Failed to decode: {e}")
            self._set_state(SupervisorState.RESTARTING)
            return

        batch = self._enricher.enrich(payloads)

        try:
            self._sink.submit(self._cancel, batch)
        except Cancelled:
            self._logger.info("Cancelled, stopping")
            self._set_state(SupervisorState.STOPPED)
            return
        except Exception as e:
            # Delivery problems are the sink's to retry; the decode position is still good.
            self._stats.send_errors += 1
            self._logger.error(f"Sending batch: {e}")
            return

        self._stats.batches_sent += 1
        self._stats.records_sent += len(batch)
        if self._on_batch:
            self._on_batch(self._stats)

    def _restart(self) -> None:
        if self._process is not None:
            self._stats.restarts += 1
        self._release()
        self._clock.sleep(self._restart_delay)
        self._set_state(SupervisorState.STARTING)

    def _release(self) -> None:
        """Kill the current producer (if any) and drop its decode state."""
        process = self._process
        self._process = None
        self._decoder_state = None
        if process is None:
            return
        try:
            process.kill()
        except OSError as e:
            self._logger.warning(f"Failed to kill producer (pid {process.pid}): {e}")
