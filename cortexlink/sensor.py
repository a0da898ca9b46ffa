#!/usr/bin/env python3
"""
sensor.py — Inertial sensor interface.

The IMU's own driver lives outside this package.  Anything that provides
``read_accel(axis)`` (g), ``read_gyro(axis)`` (deg/s) and ``configure()``
can be handed to the session.  Readings are scaled to physical units but
not bias-corrected.
"""

from __future__ import annotations

from typing import Protocol, Sequence

# ── Axis indices ────────────────────────────────────────────────────────────
X, Y, Z = 0, 1, 2
ROLL, PITCH, YAW = X, Y, Z


class InertialSensor(Protocol):
    def configure(self, **settings) -> None: ...
    def read_accel(self, axis: int) -> float: ...
    def read_gyro(self, axis: int) -> float: ...


class StaticInertialSensor:
    """
    Sensor stand-in that always reports the same readings.

    Defaults to a level platform at rest (1 g on Z, no rotation).  Used for
    bench runs without an IMU wired up, and by the tests.
    """

    def __init__(self, accel: Sequence[float] = (0.0, 0.0, 1.0),
                 gyro: Sequence[float] = (0.0, 0.0, 0.0)):
        self.accel = list(accel)
        self.gyro = list(gyro)
        self.settings: dict = {}
        self.reads = 0

    def configure(self, **settings) -> None:
        self.settings.update(settings)

    def read_accel(self, axis: int) -> float:
        self.reads += 1
        return float(self.accel[axis])

    def read_gyro(self, axis: int) -> float:
        self.reads += 1
        return float(self.gyro[axis])
