#!/usr/bin/env python3
"""
dashboard.py — Real-time odometry / IMU dashboard with matplotlib.

Four-panel live visualization:
  ┌─────────────────┬─────────────────┐
  │  Path (x, y)    │    Heading      │
  │  world frame    │    (rad)        │
  ├─────────────────┼─────────────────┤
  │  Velocity       │   IMU accel     │
  │  (vx, vy, w)    │   (m/s²)        │
  └─────────────────┴─────────────────┘

Usage
-----
  python3 -m cortexlink.dashboard --no-imu                 # auto-detect port
  python3 -m cortexlink.dashboard /dev/ttyUSB0 --no-imu    # explicit port
  python3 -m cortexlink.dashboard --window 20              # 20 s rolling window
"""

from __future__ import annotations

import argparse
import sys
import threading
import time

import numpy as np
import matplotlib
matplotlib.use("TkAgg")
import matplotlib.pyplot as plt
import matplotlib.gridspec as gridspec
from matplotlib.animation import FuncAnimation

from .errors import LinkClosed, LinkIOError
from .link import BAUD, IDLE_TIMEOUT, Link, find_port
from .sensor import StaticInertialSensor
from .session import PollResult, SessionController

# ── Circular buffer for rolling plots ──────────────────────────────────────

class RingBuffer:
    """Fixed-size ring buffer backed by numpy arrays."""
    def __init__(self, maxlen: int, ncols: int = 1):
        self.maxlen = maxlen
        self.ncols = ncols
        self.data = np.zeros((maxlen, ncols))
        self.idx = 0
        self.full = False

    def __len__(self) -> int:
        return self.maxlen if self.full else self.idx

    def append(self, row: np.ndarray | list | tuple) -> None:
        self.data[self.idx] = row
        self.idx += 1
        if self.idx >= self.maxlen:
            self.idx = 0
            self.full = True

    def get(self) -> np.ndarray:
        if self.full:
            return np.roll(self.data, -self.idx, axis=0)
        return self.data[:self.idx]


# ── Shared state between poll thread and plot thread ───────────────────────

class SharedState:
    def __init__(self, ring_len: int, path_len: int = 20_000):
        self.lock = threading.Lock()
        self.path = RingBuffer(path_len, 2)     # x, y  (whole run)
        self.odom_t = RingBuffer(ring_len, 1)   # relative time of odom rows
        self.heading = RingBuffer(ring_len, 1)  # theta (rad)
        self.velocity = RingBuffer(ring_len, 3) # vx, vy, w
        self.imu_t = RingBuffer(ring_len, 1)
        self.accel = RingBuffer(ring_len, 3)    # ax, ay, az  (m/s²)
        self.frames = 0
        self.sequence_errors = 0
        self.hz = 0.0
        self.cal_done = False
        self.error: str | None = None

    def record(self, res: PollResult, t_rel: float) -> None:
        """Append one poll result.  Caller holds the lock."""
        self.frames += 1
        self.imu_t.append([t_rel])
        self.accel.append(res.inertial.linear_acceleration)
        o = res.odometry
        if o is not None:
            self.path.append(o.position[:2])
            self.odom_t.append([t_rel])
            self.heading.append([o.heading])
            v = np.nan_to_num([o.linear_velocity[0], o.linear_velocity[1],
                               o.angular_velocity[2]])
            self.velocity.append(v)


# ── Poll thread ─────────────────────────────────────────────────────────────

def _poll_thread(shared: SharedState, session: SessionController) -> None:
    session.start()
    with shared.lock:
        shared.cal_done = True

    t_start = time.monotonic()
    try:
        while not session.closed:
            res = session.poll()
            t_rel = time.monotonic() - t_start
            with shared.lock:
                shared.record(res, t_rel)
                shared.sequence_errors = session.sequence_errors
                if t_rel > 0:
                    shared.hz = shared.frames / t_rel
    except LinkClosed:
        pass
    except LinkIOError as e:
        with shared.lock:
            shared.error = str(e)


# ── Dashboard ──────────────────────────────────────────────────────────────

def _build_dashboard(shared: SharedState, window_sec: float):
    plt.style.use("dark_background")
    fig = plt.figure(figsize=(14, 8))
    fig.canvas.manager.set_window_title("Cortex Odometry Dashboard")

    gs = gridspec.GridSpec(2, 2, hspace=0.35, wspace=0.30,
                           left=0.08, right=0.96, top=0.92, bottom=0.08)

    # ── Panel 1: Path ──
    ax_path = fig.add_subplot(gs[0, 0])
    ax_path.set_title("Path (world)", fontsize=11, pad=8)
    ax_path.set_xlabel("x")
    ax_path.set_ylabel("y")
    ax_path.set_aspect("equal", adjustable="datalim")
    line_path, = ax_path.plot([], [], lw=1.5, color="#FCC419")
    dot_robot, = ax_path.plot([], [], "o", color="#FF6B6B", ms=6)
    ax_path.grid(alpha=0.2)

    # ── Panel 2: Heading ──
    ax_hdg = fig.add_subplot(gs[0, 1])
    ax_hdg.set_title("Heading (unwrapped)", fontsize=11, pad=8)
    ax_hdg.set_ylabel("rad")
    ax_hdg.set_xlabel("time (s)")
    line_hdg, = ax_hdg.plot([], [], lw=1.5, color="#DA77F2")
    ax_hdg.grid(alpha=0.2)

    # ── Panel 3: Velocity ──
    ax_vel = fig.add_subplot(gs[1, 0])
    ax_vel.set_title("Velocity", fontsize=11, pad=8)
    ax_vel.set_xlabel("time (s)")
    line_vx, = ax_vel.plot([], [], lw=1, color="#FF6B6B", label="Vx")
    line_vy, = ax_vel.plot([], [], lw=1, color="#51CF66", label="Vy")
    line_w,  = ax_vel.plot([], [], lw=1.5, color="#339AF0", label="ω")
    ax_vel.legend(loc="upper right", fontsize=8)
    ax_vel.grid(alpha=0.2)

    # ── Panel 4: IMU acceleration ──
    ax_acc = fig.add_subplot(gs[1, 1])
    ax_acc.set_title("IMU Linear Acceleration", fontsize=11, pad=8)
    ax_acc.set_ylabel("m/s²")
    ax_acc.set_xlabel("time (s)")
    line_ax, = ax_acc.plot([], [], lw=1, color="#FF6B6B", label="X")
    line_ay, = ax_acc.plot([], [], lw=1, color="#51CF66", label="Y")
    line_az, = ax_acc.plot([], [], lw=1, color="#339AF0", label="Z")
    ax_acc.legend(loc="upper right", fontsize=8)
    ax_acc.grid(alpha=0.2)

    # ── Status bar ──
    status_text = fig.text(0.5, 0.97, "Calibrating …", ha="center", fontsize=12,
                           color="#FCC419", fontweight="bold")

    def _xlim(t):
        if len(t) > 1:
            return max(0, t[-1] - window_sec), t[-1]
        return 0, window_sec

    # ── Animation update ──
    def _update(frame):
        with shared.lock:
            path = shared.path.get().copy()
            ot = shared.odom_t.get().flatten()
            hdg = shared.heading.get().flatten()
            vel = shared.velocity.get().copy()
            it = shared.imu_t.get().flatten()
            acc = shared.accel.get().copy()
            frames = shared.frames
            seq_err = shared.sequence_errors
            hz = shared.hz
            cal_done = shared.cal_done
            error = shared.error

        if error:
            status_text.set_text(f"LINK FAILURE: {error}")
            status_text.set_color("#FF6B6B")
            return []
        if not cal_done:
            status_text.set_text("⏳  Calibrating IMU —  keep the robot still")
            status_text.set_color("#FCC419")
            return []

        if len(path) > 0:
            line_path.set_data(path[:, 0], path[:, 1])
            dot_robot.set_data([path[-1, 0]], [path[-1, 1]])
            ax_path.relim()
            ax_path.autoscale_view()

        if len(ot) > 0:
            t_min, t_max = _xlim(ot)
            line_hdg.set_data(ot, hdg)
            ax_hdg.set_xlim(t_min, t_max)
            ax_hdg.set_ylim(hdg.min() - 0.5, hdg.max() + 0.5)

            line_vx.set_data(ot, vel[:, 0])
            line_vy.set_data(ot, vel[:, 1])
            line_w.set_data(ot, vel[:, 2])
            ax_vel.set_xlim(t_min, t_max)
            v_max = max(np.abs(vel).max() * 1.2, 1.0)
            ax_vel.set_ylim(-v_max, v_max)

        if len(it) > 0:
            t_min, t_max = _xlim(it)
            line_ax.set_data(it, acc[:, 0])
            line_ay.set_data(it, acc[:, 1])
            line_az.set_data(it, acc[:, 2])
            ax_acc.set_xlim(t_min, t_max)
            a_max = max(np.abs(acc).max() * 1.2, 12)
            ax_acc.set_ylim(-a_max, a_max)

        status_text.set_text(
            f"Frames: {frames}   │   Seq errors: {seq_err}   │   {hz:.0f} Hz"
        )
        status_text.set_color("#51CF66" if seq_err == 0 else "#FF922B")
        return []

    ani = FuncAnimation(fig, _update, interval=100, blit=False, cache_frame_data=False)
    return fig, ani


# ── Main ────────────────────────────────────────────────────────────────────

def main() -> None:
    ap = argparse.ArgumentParser(description="Cortex dashboard — real-time visualization")
    ap.add_argument("port", nargs="?", help="Serial port (auto-detect)")
    ap.add_argument("-b", "--baud", type=int, default=BAUD)
    ap.add_argument("--timeout", type=float, default=IDLE_TIMEOUT,
                    help=f"Seconds without data before LINK FAILURE (default {IDLE_TIMEOUT})")
    ap.add_argument("--cal-samples", type=int, default=1000,
                    help="IMU calibration samples (default 1000)")
    ap.add_argument("--window", type=float, default=10.0,
                    help="Rolling plot window in seconds (default 10)")
    ap.add_argument("--no-imu", action="store_true",
                    help="Use a stationary stand-in instead of a real IMU")
    args = ap.parse_args()

    if not args.no_imu:
        sys.exit("ERROR: No IMU driver supplied.  Pass --no-imu for a bench run.")

    port = args.port or find_port()
    if not port:
        sys.exit("ERROR: No serial port found.")

    try:
        link = Link(port, args.baud, timeout=args.timeout)
    except LinkIOError as e:
        sys.exit(f"ERROR: {e}")
    session = SessionController(link, StaticInertialSensor(),
                                cal_samples=args.cal_samples)

    # Ring buffer size: ~window * status rate
    shared = SharedState(int(args.window * 100))

    t = threading.Thread(target=_poll_thread, args=(shared, session), daemon=True)
    t.start()

    print(f"\n  Cortex Dashboard — {port} @ {args.baud} baud")
    print(f"  Keep the robot still for IMU calibration …\n")

    # ── Launch plot (blocks on main thread) ──
    fig, ani = _build_dashboard(shared, args.window)
    try:
        plt.show()
    finally:
        session.close()
        link.close()


if __name__ == "__main__":
    main()
