#!/usr/bin/env python3
"""
calibration.py — Static bias estimation for the robot's IMU.

Reads *n* samples while the robot is at rest and averages:
  • x / y accel   (g)     — planar accelerometer offsets
  • yaw gyro      (°/s)   — heading-rate offset

Z accel and roll/pitch gyro are not calibrated; there is no reference
data for those axes on this platform.

The caller must ensure the robot is **stationary** during calibration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .sensor import X, Y, YAW, InertialSensor

log = logging.getLogger(__name__)

DEFAULT_SAMPLES = 1000


@dataclass(frozen=True)
class InertialCalibration:
    """Bias offsets estimated from a static capture.  Arrays are read-only."""
    accel_bias: np.ndarray    # [bax, bay]  g
    gyro_bias: float          # yaw  °/s
    n_samples: int
    std_accel: np.ndarray     # per-axis accel std  (noise floor metric)
    std_gyro: float

    def summary(self) -> str:
        ba = self.accel_bias
        sa = self.std_accel
        return (
            f"Calibration ({self.n_samples} samples)\n"
            f"  Accel bias: [{ba[0]:+.4f}, {ba[1]:+.4f}] g\n"
            f"  Yaw bias  : {self.gyro_bias:+.4f} °/s\n"
            f"  σ accel   : [{sa[0]:.4f}, {sa[1]:.4f}] g\n"
            f"  σ yaw     : {self.std_gyro:.4f} °/s\n"
        )


def calibrate(sensor: InertialSensor,
              sample_count: int = DEFAULT_SAMPLES) -> InertialCalibration:
    """
    Sample *sensor* *sample_count* times and return the mean offsets.

    Blocks for as long as the sensor takes to answer; not cancellable.
    """
    if sample_count < 1:
        raise ValueError(f"Need ≥1 sample for calibration, got {sample_count}")

    log.info("IMU calibrating (%d samples), keep the robot still", sample_count)
    raw = np.empty((sample_count, 3))
    for i in range(sample_count):
        raw[i, 0] = sensor.read_accel(X)
        raw[i, 1] = sensor.read_accel(Y)
        raw[i, 2] = sensor.read_gyro(YAW)

    # Mean taken around the first reading: exact for a constant stream.
    mean = raw[0] + (raw - raw[0]).mean(axis=0)
    std = raw.std(axis=0)
    accel_bias = mean[:2].copy()
    std_accel = std[:2].copy()
    accel_bias.flags.writeable = False
    std_accel.flags.writeable = False
    cal = InertialCalibration(
        accel_bias=accel_bias,
        gyro_bias=float(mean[2]),
        n_samples=sample_count,
        std_accel=std_accel,
        std_gyro=float(std[2]),
    )
    log.info("IMU calibration done: accel bias %s g, yaw bias %+.4f °/s",
             np.array2string(cal.accel_bias, precision=4), cal.gyro_bias)
    return cal
