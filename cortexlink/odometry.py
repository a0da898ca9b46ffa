#!/usr/bin/env python3
"""
odometry.py -- Differential-drive dead reckoning from quadrature counts.

Each status frame carries the absolute left/right encoder counts.  The
engine differences them against the previous frame and integrates:

    avg      = (dL + dR) / 2              forward ticks
    half     = (dR - dL) / 2              turning ticks
    dist     = avg  * STRAIGHT_SCALE      robot frame
    dtheta   = half * TURN_SCALE          rad
    heading  = theta + dtheta             updated heading drives this step
    dx, dy   = dist * (cos, sin)(heading) world frame

No filtering and no wrapping of theta: error grows without bound and is
expected to be fused with external corrections upstream.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

log = logging.getLogger(__name__)

# -- Hardware constants (empirical) -------------------------------------------
STRAIGHT_SCALE = 0.716457354   # distance per averaged tick
TURN_SCALE     = 0.00377       # rad per half-difference tick

# -- Covariances (x, y, z, rotx, roty, rotz) ----------------------------------
ODOM_POSE_COVARIANCE  = np.diag([0.01] * 6)
ODOM_TWIST_COVARIANCE = np.diag([0.01] * 6)

_I32_SPAN = 1 << 32
_I32_HALF = 1 << 31


def encoder_delta(new: int, old: int) -> int:
    """Signed 32-bit difference, correct across counter wraparound."""
    return ((new - old + _I32_HALF) % _I32_SPAN) - _I32_HALF


def yaw_to_quaternion(yaw: float) -> np.ndarray:
    """Yaw-only rotation as a unit quaternion, scalar-first [w, x, y, z]."""
    h = 0.5 * yaw
    return np.array([math.cos(h), 0.0, 0.0, math.sin(h)])


def quaternion_to_yaw(q) -> float:
    """Yaw (rad) of a scalar-first quaternion."""
    w, x, y, z = q
    return math.atan2(2.0 * (w*z + x*y), 1.0 - 2.0 * (y*y + z*z))


@dataclass
class OdometryState:
    """Everything the engine carries from one status frame to the next."""
    last_left_count: int = 0
    last_right_count: int = 0
    global_x: float = 0.0
    global_y: float = 0.0
    global_theta: float = 0.0          # rad, unbounded
    last_update_time: float = 0.0      # s


@dataclass
class OdometryUpdate:
    """Pose/velocity record produced by one status frame."""
    t: float
    dt: float
    dx: float
    dy: float
    dtheta: float
    distance: float
    heading: float                     # rad, heading used for this step
    position: np.ndarray               # [x, y, z]  world frame
    orientation: np.ndarray            # [w, x, y, z]  yaw only
    linear_velocity: np.ndarray        # [vx, vy, vz]
    angular_velocity: np.ndarray       # [wx, wy, wz]
    pose_covariance: np.ndarray = field(default_factory=lambda: ODOM_POSE_COVARIANCE.copy())
    twist_covariance: np.ndarray = field(default_factory=lambda: ODOM_TWIST_COVARIANCE.copy())

    @property
    def velocity_valid(self) -> bool:
        return self.dt > 0


class OdometryEngine:
    """Integrates encoder counts into a persistent world-frame pose."""

    def __init__(self,
                 straight_scale: float = STRAIGHT_SCALE,
                 turn_scale: float = TURN_SCALE,
                 state: Optional[OdometryState] = None,
                 pose_covariance: np.ndarray = ODOM_POSE_COVARIANCE,
                 twist_covariance: np.ndarray = ODOM_TWIST_COVARIANCE):
        self.straight_scale = straight_scale
        self.turn_scale = turn_scale
        self.state = state if state is not None else OdometryState()
        self.pose_covariance = np.asarray(pose_covariance, dtype=float)
        self.twist_covariance = np.asarray(twist_covariance, dtype=float)

    def reset_clock(self, now: float) -> None:
        self.state.last_update_time = now

    def update(self, left_count: int, right_count: int, now: float) -> OdometryUpdate:
        """Process one pair of absolute encoder counts taken at *now*."""
        s = self.state

        left_delta = encoder_delta(left_count, s.last_left_count)
        right_delta = encoder_delta(right_count, s.last_right_count)
        s.last_left_count = left_count
        s.last_right_count = right_count

        avg = (left_delta + right_delta) / 2.0
        half_diff = (right_delta - left_delta) / 2.0

        dt = now - s.last_update_time
        s.last_update_time = now

        distance = avg * self.straight_scale
        dtheta = half_diff * self.turn_scale

        # The step direction uses the heading *after* this rotation.
        heading = s.global_theta + dtheta
        dx = math.cos(heading) * distance
        dy = math.sin(heading) * distance

        if dt > 0:
            vx, vy, vtheta = dx / dt, dy / dt, dtheta / dt
        else:
            log.warning("Non-positive odometry dt (%.6f s); velocity unavailable", dt)
            vx = vy = vtheta = math.nan

        s.global_x += dx
        s.global_y += dy
        s.global_theta += dtheta

        return OdometryUpdate(
            t=now,
            dt=dt,
            dx=dx,
            dy=dy,
            dtheta=dtheta,
            distance=distance,
            heading=heading,
            position=np.array([s.global_x, s.global_y, 0.0]),
            orientation=yaw_to_quaternion(heading),
            linear_velocity=np.array([vx, vy, 0.0]),
            angular_velocity=np.array([0.0, 0.0, vtheta]),
            pose_covariance=self.pose_covariance.copy(),
            twist_covariance=self.twist_covariance.copy(),
        )
