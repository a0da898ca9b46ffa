#!/usr/bin/env python3
"""
session.py -- Poll loop and outbound paths for one cortex link.

State machine
-------------
  UNCALIBRATED --start()--> READY   (terminal until close())

``start()`` configures the IMU and runs the bias calibration; ``poll()``
calls it on first use.  Each poll then:

  1. reads one frame (resyncing on the start marker),
  2. validates its sequence counter (mismatch is logged, never fatal),
  3. dispatches on type:
       status          -> odometry update
       behind-scan     -> on_behind_scan()
       pickup complete -> ready_for_pickup = True, on_pickup_complete(targets)
       unknown         -> nothing
  4. takes one inertial sample regardless of type.

Link failures (:class:`LinkIOError` and subclasses) propagate to the caller
and end the session.

Outbound, called from the messaging layer whenever it has new data:
  send_pose_estimate(x, y, yaw)
  send_pickup_targets(coords)     only while ready_for_pickup

Both may run on other threads than the poll loop.  ``lock`` serializes
counter stamping with the write, and the pickup handshake with dispatch.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .calibration import DEFAULT_SAMPLES, InertialCalibration
from .errors import LinkClosed
from .inertial import InertialSample, InertialStateBuilder
from .link import Link
from .odometry import STRAIGHT_SCALE, TURN_SCALE, OdometryEngine, OdometryUpdate
from .protocol import (
    Frame, MessageType, decode_status, encode_frame, encode_pickup_targets,
    encode_pose_estimate, read_frame,
)
from .sensor import InertialSensor
from .sequence import SequenceTracker

log = logging.getLogger(__name__)

Target = Tuple[float, float, float]


class SessionState(enum.Enum):
    UNCALIBRATED = "uncalibrated"
    READY = "ready"


@dataclass
class PollResult:
    """What one poll produced."""
    frame: Frame
    sequence_ok: bool
    inertial: InertialSample
    odometry: Optional[OdometryUpdate] = None


class SessionController:
    """Owns the link, sequence counters, odometry and IMU state."""

    def __init__(self,
                 link: Link,
                 sensor: InertialSensor,
                 *,
                 straight_scale: float = STRAIGHT_SCALE,
                 turn_scale: float = TURN_SCALE,
                 cal_samples: int = DEFAULT_SAMPLES,
                 imu_covariance: float = 0.0,
                 imu_settings: Optional[dict] = None,
                 bootstrap_per_type: bool = False,
                 resync_on_mismatch: bool = False,
                 on_behind_scan: Optional[Callable[[], None]] = None,
                 on_pickup_complete: Optional[Callable[[List[Target]], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.link = link
        self.cal_samples = cal_samples
        self.imu_settings = dict(imu_settings or {})
        self.on_behind_scan = on_behind_scan
        self.on_pickup_complete = on_pickup_complete
        self.clock = clock

        self.sequence = SequenceTracker(bootstrap_per_type=bootstrap_per_type,
                                        resync_on_mismatch=resync_on_mismatch)
        self.odometry = OdometryEngine(straight_scale=straight_scale,
                                       turn_scale=turn_scale)
        self.inertial = InertialStateBuilder(sensor, covariance_diagonal=imu_covariance)

        self.state = SessionState.UNCALIBRATED
        self.ready_for_pickup = True
        self.picked_targets: List[Target] = []
        self._shutting_down = False
        # Guards outbound counters + writes and the pickup handshake
        self.lock = threading.Lock()

        # -- Bookkeeping --
        self.frames = 0
        self.sequence_errors = 0
        self.skipped_bytes = 0

    # -- Lifecycle -------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._shutting_down

    def start(self) -> InertialCalibration:
        """Configure and calibrate the IMU, then go READY.  Blocking."""
        if self.state is SessionState.READY:
            return self.inertial.calibration
        self.inertial.sensor.configure(**self.imu_settings)
        cal = self.inertial.calibrate(self.cal_samples)
        self.odometry.reset_clock(self.clock())
        self.state = SessionState.READY
        return cal

    def close(self) -> None:
        """Stop the poll loop and interrupt any blocked read."""
        self._shutting_down = True
        self.link.cancel()

    # -- Inbound ---------------------------------------------------------------

    def poll(self) -> PollResult:
        """Block for one frame and return what it produced."""
        if self._shutting_down:
            raise LinkClosed("Session closed")
        if self.state is SessionState.UNCALIBRATED:
            self.start()

        frame = read_frame(self.link.read_exact)
        self.frames += 1
        self.skipped_bytes += frame.skipped

        if frame.known:
            seq_ok = self.sequence.validate(frame.message_type, frame.sequence)
            if not seq_ok:
                self.sequence_errors += 1
                log.warning("Message count invalid (%d) for type %d",
                            frame.sequence, frame.message_type)
        else:
            seq_ok = False
            log.debug("Ignoring unknown message type %d", frame.message_type)

        odom = self._dispatch(frame)
        imu = self.inertial.sample(self.clock())
        return PollResult(frame=frame, sequence_ok=seq_ok, inertial=imu, odometry=odom)

    def _dispatch(self, frame: Frame) -> Optional[OdometryUpdate]:
        msg_type = frame.message_type

        if msg_type == MessageType.STATUS:
            left, right = decode_status(frame.payload)
            return self.odometry.update(left, right, self.clock())

        if msg_type == MessageType.BEHIND_SCAN_REQUEST:
            if self.on_behind_scan is not None:
                self.on_behind_scan()
            return None

        if msg_type == MessageType.PICKUP_COMPLETE:
            with self.lock:
                self.ready_for_pickup = True
                picked = list(self.picked_targets)
            if self.on_pickup_complete is not None:
                self.on_pickup_complete(picked)
            return None

        return None

    # -- Outbound --------------------------------------------------------------

    def send_pose_estimate(self, x: float, y: float, yaw: float) -> bytes:
        """Send an externally fused pose to the cortex.  Returns the frame."""
        payload = encode_pose_estimate(x, y, yaw)
        with self.lock:
            seq = self.sequence.next_outbound(MessageType.STATUS)
            data = encode_frame(MessageType.STATUS, seq, payload)
            self.link.write(data)
        return data

    def send_pickup_targets(self, coords: Iterable[Sequence[float]]) -> bool:
        """
        Tell the cortex which objects to collect next.

        Ignored (returns False) while the cortex is still busy with the
        previous batch, i.e. until it reports pickup complete.
        """
        targets = [tuple(float(v) for v in c) for c in coords]
        payload = encode_pickup_targets(targets)
        with self.lock:
            if not self.ready_for_pickup:
                return False
            seq = self.sequence.next_outbound(MessageType.PICKUP_COMPLETE)
            self.link.write(encode_frame(MessageType.PICKUP_COMPLETE, seq, payload))
            self.picked_targets = targets
            self.ready_for_pickup = False
        return True
