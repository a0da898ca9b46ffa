#!/usr/bin/env python3
"""
test_session.py -- Tests for the session controller.

Tests cover:
  * Lazy calibration and state transitions
  * Status / behind-scan / pickup-complete / unknown dispatch
  * Sequence mismatch is non-fatal
  * Inertial sample on every poll
  * Outbound pose estimate and pickup-target gating
  * Concurrent outbound senders keep wire order
  * Link failure and shutdown propagation

Run:  python3 -m pytest cortexlink/tests/test_session.py -v
"""

import copy
import math
import threading
import time

import numpy as np
import pytest

# Allow running from repo root
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from cortexlink.errors import LinkClosed, LinkIOError, LinkTimeout
from cortexlink.link import Link
from cortexlink.odometry import STRAIGHT_SCALE
from cortexlink.protocol import (
    MessageType, encode_frame, encode_pickup_targets, encode_status,
)
from cortexlink.sensor import StaticInertialSensor
from cortexlink.session import SessionController, SessionState


# ── Fixtures ────────────────────────────────────────────────────────────────

class _FakePort:
    """In-memory serial port: scripted inbound bytes, captured outbound."""
    def __init__(self, rx: bytes = b""):
        self.rx = bytearray(rx)
        self.tx = bytearray()

    def feed(self, data: bytes) -> None:
        self.rx += data

    def read(self, n: int) -> bytes:
        chunk = bytes(self.rx[:n])
        del self.rx[:n]
        return chunk

    def write(self, data: bytes) -> int:
        self.tx += data
        return len(data)


class _SlowPort(_FakePort):
    """Write yields mid-call so concurrent senders interleave."""
    def write(self, data: bytes) -> int:
        time.sleep(0.0005)
        return super().write(data)


class _Clock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def _status(seq: int, left: int, right: int) -> bytes:
    return encode_frame(MessageType.STATUS, seq, encode_status(left, right))


def _session(rx: bytes = b"", sensor=None, port_cls=_FakePort, **kw):
    port = port_cls(rx)
    clock = _Clock()
    events = []
    kw.setdefault("cal_samples", 10)
    s = SessionController(
        Link(ser=port), sensor or StaticInertialSensor(),
        clock=clock,
        on_behind_scan=lambda: events.append("behind"),
        on_pickup_complete=lambda targets: events.append(("picked", targets)),
        **kw,
    )
    return s, port, clock, events


# ── Lifecycle ───────────────────────────────────────────────────────────────

class TestLifecycle:
    def test_starts_uncalibrated(self):
        s, *_ = _session()
        assert s.state is SessionState.UNCALIBRATED
        assert s.inertial.calibrated is False

    def test_start_calibrates_once(self):
        sensor = StaticInertialSensor()
        s, *_ = _session(sensor=sensor, imu_settings={"gyro_range_dps": 2000})
        cal = s.start()
        assert s.state is SessionState.READY
        assert cal.n_samples == 10
        assert sensor.settings == {"gyro_range_dps": 2000}
        reads = sensor.reads
        assert s.start() is cal
        assert sensor.reads == reads

    def test_poll_calibrates_lazily(self):
        s, *_ = _session(_status(1, 0, 0))
        s.poll()
        assert s.state is SessionState.READY

    def test_start_seeds_odometry_clock(self):
        s, port, clock, _ = _session()
        clock.t = 100.0
        s.start()
        port.feed(_status(1, 10, 10))
        clock.t = 100.5
        res = s.poll()
        assert res.odometry.dt == pytest.approx(0.5)


# ── Dispatch ────────────────────────────────────────────────────────────────

class TestDispatch:
    def test_status_produces_odometry(self):
        s, port, clock, _ = _session()
        s.start()
        clock.t = 1.0
        port.feed(b"\x13\x37" + _status(5, 100, 100))
        res = s.poll()
        assert res.sequence_ok
        assert res.frame.skipped == 2
        assert res.odometry is not None
        assert res.odometry.distance == pytest.approx(100 * STRAIGHT_SCALE)
        np.testing.assert_allclose(res.odometry.linear_velocity[:2],
                                   [100 * STRAIGHT_SCALE, 0.0])
        assert s.skipped_bytes == 2

    def test_behind_scan_notifies(self):
        s, port, _, events = _session()
        port.feed(encode_frame(MessageType.BEHIND_SCAN_REQUEST, 1))
        res = s.poll()
        assert res.odometry is None
        assert res.inertial is not None
        assert events == ["behind"]

    def test_unknown_type_is_noop(self):
        s, port, _, events = _session()
        s.start()
        port.feed(_status(10, 50, 60))
        s.poll()
        odom_before = copy.deepcopy(s.odometry.state)
        seq_before = copy.deepcopy(s.sequence.__dict__)

        port.feed(encode_frame(7, 99) + encode_frame(7, 99))
        r1 = s.poll()
        r2 = s.poll()
        for r in (r1, r2):
            assert r.odometry is None
            assert r.frame.known is False
            assert r.inertial is not None
        assert s.odometry.state == odom_before
        assert s.sequence.__dict__ == seq_before
        assert events == []
        assert s.sequence_errors == 0

    def test_every_poll_samples_imu(self):
        sensor = StaticInertialSensor(accel=(0.0, 0.0, 1.0))
        s, port, clock, _ = _session(sensor=sensor)
        port.feed(_status(1, 0, 0) + encode_frame(MessageType.BEHIND_SCAN_REQUEST, 1))
        clock.t = 3.0
        for _ in range(2):
            res = s.poll()
            assert res.inertial.t == 3.0
            assert res.inertial.linear_acceleration[2] == pytest.approx(9.80665)


# ── Sequence handling ───────────────────────────────────────────────────────

class TestSequence:
    def test_mismatch_is_non_fatal(self):
        s, port, clock, _ = _session()
        s.start()
        port.feed(_status(1, 0, 0) + _status(3, 10, 10) + _status(2, 20, 20))
        results = []
        for k in range(3):
            clock.t = k + 1.0
            results.append(s.poll())
        assert [r.sequence_ok for r in results] == [True, False, True]
        # the mismatched frame still drives odometry
        assert results[1].odometry is not None
        assert s.odometry.state.last_left_count == 20
        assert s.sequence_errors == 1

    def test_mismatch_logged(self, caplog):
        s, port, _, _ = _session()
        port.feed(_status(1, 0, 0) + _status(9, 0, 0))
        with caplog.at_level("WARNING", logger="cortexlink.session"):
            s.poll()
            s.poll()
        assert "Message count invalid (9) for type 1" in caplog.text

    def test_per_type_bootstrap_option(self):
        s, port, _, _ = _session(bootstrap_per_type=True)
        port.feed(_status(40, 0, 0) + encode_frame(MessageType.BEHIND_SCAN_REQUEST, 200))
        assert s.poll().sequence_ok
        assert s.poll().sequence_ok


# ── Pickup flow ─────────────────────────────────────────────────────────────

class TestPickup:
    def test_targets_sent_when_ready(self):
        s, port, *_ = _session()
        assert s.ready_for_pickup
        assert s.send_pickup_targets([(1, 2, 3), (4, 5, 6)]) is True
        assert bytes(port.tx) == encode_frame(
            MessageType.PICKUP_COMPLETE, 1, encode_pickup_targets([(1, 2, 3), (4, 5, 6)]))
        assert s.ready_for_pickup is False

    def test_targets_ignored_while_busy(self):
        s, port, *_ = _session()
        s.send_pickup_targets([(1, 2, 3)])
        sent = bytes(port.tx)
        assert s.send_pickup_targets([(9, 9, 9)]) is False
        assert bytes(port.tx) == sent
        assert s.picked_targets == [(1.0, 2.0, 3.0)]

    def test_pickup_complete_rearms_and_forwards(self):
        s, port, _, events = _session()
        s.send_pickup_targets([(1, 2, 3)])
        port.feed(encode_frame(MessageType.PICKUP_COMPLETE, 1))
        res = s.poll()
        assert res.odometry is None
        assert s.ready_for_pickup is True
        assert events == [("picked", [(1.0, 2.0, 3.0)])]
        assert s.send_pickup_targets([(7, 8, 9)]) is True
        # second batch carries outbound counter 2
        assert port.tx[-15:-12] == bytes([0xFA, MessageType.PICKUP_COMPLETE, 2])

    def test_too_many_targets_rejected(self):
        s, port, *_ = _session()
        with pytest.raises(ValueError):
            s.send_pickup_targets([(0, 0, 0)] * 5)
        assert s.ready_for_pickup is True
        assert port.tx == bytearray()


# ── Pose estimate ───────────────────────────────────────────────────────────

class TestPoseEstimate:
    def test_wire_bytes(self):
        s, port, *_ = _session()
        data = s.send_pose_estimate(12.8, 34.1, math.pi / 2)
        assert data == bytes([0xFA, MessageType.STATUS, 1, 12, 34, 1])
        assert bytes(port.tx) == data

    def test_non_finite_pose_not_sent(self):
        s, port, *_ = _session()
        with pytest.raises(ValueError):
            s.send_pose_estimate(float("nan"), 0, 0)
        assert port.tx == bytearray()
        s.send_pose_estimate(0, 0, 0)
        assert port.tx[2] == 1

    def test_counter_advances(self):
        s, port, *_ = _session()
        for _ in range(3):
            s.send_pose_estimate(0, 0, 0)
        assert port.tx[2::6] == bytes([1, 2, 3])

    def test_outbound_does_not_disturb_inbound(self):
        s, port, *_ = _session()
        s.send_pose_estimate(0, 0, 0)
        port.feed(_status(1, 0, 0) + _status(2, 0, 0))
        assert s.poll().sequence_ok
        assert s.poll().sequence_ok


# ── Concurrent senders ───────────────────────────────────────────────────

def _run_threads(n, target):
    start = threading.Barrier(n)
    def _go():
        start.wait()
        target()
    threads = [threading.Thread(target=_go) for _ in range(n)]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=10.0)
    assert not any(th.is_alive() for th in threads)


class TestConcurrentSenders:
    def test_pose_counters_in_wire_order(self):
        s, port, *_ = _session(port_cls=_SlowPort)

        def _sender():
            for _ in range(50):
                s.send_pose_estimate(1, 2, 3)

        _run_threads(4, _sender)
        assert len(port.tx) == 200 * 6
        assert port.tx[2::6] == bytes((k + 1) % 256 for k in range(200))

    def test_only_one_pickup_batch_while_busy(self):
        s, port, *_ = _session(port_cls=_SlowPort)
        results = []

        def _sender():
            results.append(s.send_pickup_targets([(1, 2, 3)]))

        _run_threads(8, _sender)
        assert results.count(True) == 1
        assert len(port.tx) == 15
        assert s.ready_for_pickup is False

    def test_pickup_complete_while_sending(self):
        s, port, _, events = _session(port_cls=_SlowPort)
        s.start()
        sent = []

        def _sender():
            for _ in range(20):
                if s.send_pickup_targets([(4, 5, 6)]):
                    sent.append(1)

        th = threading.Thread(target=_sender)
        th.start()
        for k in range(20):
            port.feed(encode_frame(MessageType.PICKUP_COMPLETE, k + 1))
            s.poll()
        th.join(timeout=10.0)
        assert not th.is_alive()
        # every batch on the wire was recorded, counters strictly increasing
        assert len(port.tx) == 15 * len(sent)
        assert port.tx[2::15] == bytes(range(1, len(sent) + 1))
        assert len(events) == 20


# ── Failures and shutdown ───────────────────────────────────────────────────

class TestFailures:
    def test_dead_link_raises_timeout(self):
        s, *_ = _session()
        s.start()
        with pytest.raises(LinkTimeout):
            s.poll()

    def test_truncated_frame_raises(self):
        s, port, *_ = _session()
        port.feed(_status(1, 0, 0)[:7])
        with pytest.raises(LinkIOError):
            s.poll()

    def test_poll_after_close(self):
        s, port, *_ = _session(_status(1, 0, 0))
        s.close()
        assert s.closed
        with pytest.raises(LinkClosed):
            s.poll()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
