#!/usr/bin/env python3
"""
inertial.py — Bias-corrected angular rate and linear acceleration.

Samples are free-running (not framed on the cortex link); the session
takes one per poll.  Conversion per axis:

  gyro  roll/pitch   raw · DPS_TO_RPS
  gyro  yaw          (raw − bias) · DPS_TO_RPS
  accel x/y          (raw − bias) · GRAVITY
  accel z            raw · GRAVITY

No covariance is estimated.  The reported covariances are a fixed
diagonal (zero by default).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .calibration import DEFAULT_SAMPLES, InertialCalibration, calibrate
from .errors import CalibrationIncomplete
from .sensor import PITCH, ROLL, X, Y, YAW, Z, InertialSensor

# ── Unit conversions ────────────────────────────────────────────────────────
DPS_TO_RPS = 0.01745        # rad/s per °/s
GRAVITY    = 9.80665        # m/s² per g


def _fixed_cov(diag: float) -> np.ndarray:
    return np.eye(3) * diag


@dataclass
class InertialSample:
    """One bias-corrected IMU reading."""
    t: float
    angular_velocity: np.ndarray       # [wx, wy, wz]  rad/s
    linear_acceleration: np.ndarray    # [ax, ay, az]  m/s²
    angular_velocity_covariance: np.ndarray = field(default_factory=lambda: _fixed_cov(0.0))
    linear_acceleration_covariance: np.ndarray = field(default_factory=lambda: _fixed_cov(0.0))


class InertialStateBuilder:
    """Owns the IMU calibration and turns raw reads into samples."""

    def __init__(self, sensor: InertialSensor, covariance_diagonal: float = 0.0):
        self.sensor = sensor
        self.covariance_diagonal = covariance_diagonal
        self.calibration: Optional[InertialCalibration] = None

    @property
    def calibrated(self) -> bool:
        return self.calibration is not None

    def calibrate(self, sample_count: int = DEFAULT_SAMPLES) -> InertialCalibration:
        self.calibration = calibrate(self.sensor, sample_count)
        return self.calibration

    def sample(self, t: float = 0.0) -> InertialSample:
        cal = self.calibration
        if cal is None:
            raise CalibrationIncomplete("IMU sample requested before calibration")

        s = self.sensor
        gyro = np.array([
            s.read_gyro(ROLL),
            s.read_gyro(PITCH),
            s.read_gyro(YAW) - cal.gyro_bias,
        ]) * DPS_TO_RPS
        accel = np.array([
            s.read_accel(X) - cal.accel_bias[0],
            s.read_accel(Y) - cal.accel_bias[1],
            s.read_accel(Z),
        ]) * GRAVITY

        return InertialSample(
            t=t,
            angular_velocity=gyro,
            linear_acceleration=accel,
            angular_velocity_covariance=_fixed_cov(self.covariance_diagonal),
            linear_acceleration_covariance=_fixed_cov(self.covariance_diagonal),
        )
