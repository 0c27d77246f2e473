"""
Tests for the process supervisor state machine.

Everything runs on the calling thread: MockLauncher hands out scripted
producers, MockClock makes restart delays instant, and the loop ends either
through the cancel token or the launch failure limit.
"""

import pytest

from lsb.enricher import RecordEnricher
from lsb.interfaces import Cancelled, SupervisorState
from lsb.mocks import MockClock, MockLauncher, MockLogger, MockProducerProcess, MockSink
from lsb.sink import CancelToken
from lsb.stream_decoder import StreamDecoder
from lsb.supervisor import ProcessSupervisor


def make_supervisor(launcher, sink=None, cancel=None, **kwargs):
    clock = MockClock()
    logger = MockLogger()
    sink = sink or MockSink()
    cancel = cancel or CancelToken()
    enricher = RecordEnricher(clock=clock, tag=sink.resolve_tag("oslog"))
    supervisor = ProcessSupervisor(
        launcher=launcher,
        decoder=StreamDecoder(clock=clock),
        enricher=enricher,
        sink=sink,
        cancel=cancel,
        clock=clock,
        logger=logger,
        **kwargs,
    )
    return supervisor, sink, clock, logger


def data(sink):
    return [r.data for r in sink.records]


class TestStreaming:
    """Normal operation and restarts."""

    def test_records_reach_sink_enriched(self):
        proc = MockProducerProcess([b'[{\n"a":1\n},{\n"b":2\n},{\n'])
        launcher = MockLauncher([proc])
        supervisor, sink, clock, _ = make_supervisor(launcher, max_launch_failures=1)

        supervisor.run()

        assert data(sink) == [b'{"a":1}', b'{"b":2}']
        assert all(r.tag == 1 for r in sink.records)
        assert all(r.ts == sink.records[0].ts for r in sink.records)
        assert supervisor.stats.batches_sent == 1
        assert supervisor.stats.records_sent == 2

    def test_decode_failure_restarts_with_constant_delay(self):
        """Each closed stream kills the producer and relaunches after restart_delay."""
        p1 = MockProducerProcess([b'[{\n"a":1\n},{\n'])
        p2 = MockProducerProcess([b'[{\n"b":2\n},{\n'])
        launcher = MockLauncher([p1, p2])
        supervisor, sink, clock, logger = make_supervisor(
            launcher, restart_delay=2.0, max_launch_failures=1
        )

        supervisor.run()

        assert data(sink) == [b'{"a":1}', b'{"b":2}']
        assert p1.kill_count >= 1
        assert p2.kill_count >= 1
        assert clock.get_sleep_calls() == [2.0, 2.0]
        assert supervisor.stats.restarts == 2
        assert supervisor.stats.decode_errors == 2
        assert supervisor.stats.launches == 2
        assert supervisor.state == SupervisorState.STOPPED
        assert logger.contains("Failed to decode", level="ERROR")

    def test_restart_uses_fresh_decoder_state(self):
        """Bytes buffered for a dead producer must not leak into the next one."""
        p1 = MockProducerProcess([b'[{\n"a":1\n},{\n"partial":', OSError("read failed")])
        p2 = MockProducerProcess([b'[{\n"b":2\n},{\n'])
        launcher = MockLauncher([p1, p2])
        seen = []

        def on_state_change(old, new):
            if new == SupervisorState.STREAMING:
                state = supervisor.decoder_state
                seen.append((state, state.buffer, state.preamble_consumed))

        supervisor, sink, _, _ = make_supervisor(
            launcher, max_launch_failures=1, on_state_change=on_state_change
        )
        supervisor.run()

        assert data(sink) == [b'{"a":1}', b'{"b":2}']
        assert len(seen) == 2
        assert seen[0][0] is not seen[1][0]
        assert seen[1][1:] == (b"", False)

    def test_state_transitions(self):
        proc = MockProducerProcess([b'[{\n"a":1\n},{\n'])
        launcher = MockLauncher([proc])
        transitions = []
        supervisor, _, _, _ = make_supervisor(
            launcher,
            max_launch_failures=1,
            on_state_change=lambda old, new: transitions.append((old, new)),
        )

        supervisor.run()

        S = SupervisorState
        assert transitions == [
            (S.STARTING, S.STREAMING),
            (S.STREAMING, S.RESTARTING),
            (S.RESTARTING, S.STARTING),
            (S.STARTING, S.STOPPED),
        ]

    def test_rejects_negative_restart_delay(self):
        with pytest.raises(ValueError):
            make_supervisor(MockLauncher(), restart_delay=-1)


class TestLaunchFailures:
    """Producer unavailability is retried, never fatal by default."""

    def test_retries_launch_until_success(self):
        proc = MockProducerProcess([b'[{\n"a":1\n},{\n'])
        launcher = MockLauncher([None, None, proc])
        sink = MockSink()
        sink.cancel_after(1)
        supervisor, _, clock, logger = make_supervisor(launcher, sink=sink)

        supervisor.run()

        assert data(sink) == [b'{"a":1}']
        assert launcher.attempts == 3
        # Two failed launches, then one restart after the stream closed.
        assert clock.get_sleep_calls() == [1.0, 1.0, 1.0]
        assert supervisor.stats.launch_failures == 2
        assert logger.contains("Failed to start producer", level="ERROR")

    def test_gives_up_after_limit(self):
        launcher = MockLauncher([None] * 10)
        supervisor, _, clock, logger = make_supervisor(
            launcher, restart_delay=0.5, max_launch_failures=5
        )

        supervisor.run()

        assert supervisor.state == SupervisorState.STOPPED
        assert launcher.attempts == 5
        assert clock.get_sleep_calls() == [0.5] * 4
        assert logger.contains("Giving up", level="ERROR")

    def test_cancel_stops_launch_loop(self):
        cancel = CancelToken()
        cancel.cancel()
        launcher = MockLauncher([None])
        supervisor, _, _, _ = make_supervisor(launcher, cancel=cancel)

        supervisor.run()

        assert supervisor.state == SupervisorState.STOPPED
        assert launcher.attempts == 0


class TestCancellation:
    """Cancellation is observed at submit and stops delivery immediately."""

    def test_no_submissions_after_cancel(self):
        proc = MockProducerProcess([
            b'[{\n"a":1\n},{\n',
            b'"b":2\n},{\n',
            b'"c":3\n},{\n',
        ])
        launcher = MockLauncher([proc])
        sink = MockSink()
        sink.cancel_after(1)
        supervisor, _, clock, logger = make_supervisor(launcher, sink=sink)

        supervisor.run()

        assert data(sink) == [b'{"a":1}']
        # One more decode-submit cycle ran, then the loop stopped.
        assert sink.submit_calls == 2
        assert proc.remaining() == 1
        assert supervisor.state == SupervisorState.STOPPED
        assert supervisor.process is None
        assert proc.kill_count == 1
        assert clock.get_sleep_calls() == []
        assert logger.get_messages("ERROR") == []

    def test_cancelled_error_from_sink_stops_without_restart(self):
        proc = MockProducerProcess([b'[{\n"a":1\n},{\n', b'"b":2\n},{\n'])
        launcher = MockLauncher([proc, MockProducerProcess()])
        sink = MockSink()
        sink.fail_next(Cancelled("context cancelled"))
        supervisor, _, _, _ = make_supervisor(launcher, sink=sink)

        supervisor.run()

        assert sink.records == []
        assert launcher.attempts == 1
        assert supervisor.stats.restarts == 0


class TestSubmitFailures:
    """Transient sink errors are logged; the producer keeps streaming."""

    def test_send_error_keeps_same_process(self):
        proc = MockProducerProcess([
            b'[{\n"a":1\n},{\n',
            b'"b":2\n},{\n',
            b'"c":3\n},{\n',
        ])
        launcher = MockLauncher([proc])
        sink = MockSink()
        sink.fail_next()
        sink.cancel_after(1)
        pids = []
        sink.on_submit = lambda s: pids.append(supervisor.process.pid)
        supervisor, _, _, logger = make_supervisor(launcher, sink=sink)

        supervisor.run()

        assert data(sink) == [b'{"b":2}']
        assert launcher.attempts == 1
        assert len(set(pids)) == 1
        assert pids[0] == proc.pid
        assert supervisor.stats.send_errors == 1
        assert supervisor.stats.restarts == 0
        assert logger.contains("Sending batch", level="ERROR")

    def test_unexpected_exception_is_treated_as_transient(self):
        proc = MockProducerProcess([b'[{\n"a":1\n},{\n', b'"b":2\n},{\n'])
        launcher = MockLauncher([proc])
        sink = MockSink()
        sink.fail_next(RuntimeError("socket reset"))
        sink.cancel_after(1)
        supervisor, _, _, _ = make_supervisor(launcher, sink=sink)

        supervisor.run()

        assert data(sink) == [b'{"b":2}']
        assert supervisor.stats.send_errors == 1
