#!/usr/bin/env python3
"""
driver.py -- Console driver for the cortex link.

Opens the serial link, calibrates the IMU, then polls frames and prints
the dead-reckoned pose, velocity and IMU readings as they arrive.

Usage
-----
  python3 -m cortexlink.driver                        # auto-detect port
  python3 -m cortexlink.driver /dev/ttyUSB0           # explicit port
  python3 -m cortexlink.driver --csv > run.csv        # log to CSV
  python3 -m cortexlink.driver --cal-samples 2000     # longer calibration
  python3 -m cortexlink.driver --no-imu               # bench run, no IMU

Workflow
--------
1. Keep the robot STILL at startup -> IMU bias calibration.
2. Drive around -> one line per status frame from the cortex.
3. Ctrl+C -> shutdown summary.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import time

from .errors import LinkClosed, LinkIOError
from .link import BAUD, IDLE_TIMEOUT, Link, find_port
from .odometry import STRAIGHT_SCALE, TURN_SCALE, quaternion_to_yaw
from .protocol import MessageType
from .sensor import InertialSensor, StaticInertialSensor
from .session import PollResult, SessionController

log = logging.getLogger(__name__)

CSV_HEADER = ("frame,type,seq,seq_ok,t,x,y,theta,vx,vy,vtheta,"
              "gx,gy,gz,ax,ay,az")


def format_row(count: int, res: PollResult) -> str:
    """One CSV row; pose fields are blank for non-status frames."""
    f = res.frame
    imu = res.inertial
    if res.odometry is not None:
        o = res.odometry
        pose = (f"{o.position[0]:.4f},{o.position[1]:.4f},"
                f"{quaternion_to_yaw(o.orientation):.5f},"
                f"{o.linear_velocity[0]:.4f},{o.linear_velocity[1]:.4f},"
                f"{o.angular_velocity[2]:.5f}")
    else:
        pose = ",,,,,"
    w = imu.angular_velocity
    a = imu.linear_acceleration
    return (f"{count},{f.message_type},{f.sequence},{1 if res.sequence_ok else 0},"
            f"{imu.t:.6f},{pose},"
            f"{w[0]:.4f},{w[1]:.4f},{w[2]:.4f},{a[0]:.3f},{a[1]:.3f},{a[2]:.3f}")


def format_live(res: PollResult) -> str:
    o = res.odometry
    seq = "ok " if res.sequence_ok else "BAD"
    return (f"  seq {res.frame.sequence:3d} [{seq}]  "
            f"x={o.position[0]:+9.2f}  y={o.position[1]:+9.2f}  "
            f"th={o.heading:+8.3f} rad  "
            f"v=({o.linear_velocity[0]:+7.2f}, {o.linear_velocity[1]:+7.2f})  "
            f"w={o.angular_velocity[2]:+6.3f}  "
            f"az={res.inertial.linear_acceleration[2]:+6.2f}")


def run(session: SessionController, csv: bool = False) -> int:
    """Poll until the session is closed or the link fails.  Returns frame count."""
    count = 0
    if csv:
        print(CSV_HEADER)
    while not session.closed:
        try:
            res = session.poll()
        except LinkClosed:
            break
        count += 1
        if csv:
            print(format_row(count, res))
        elif res.odometry is not None:
            sys.stdout.write("\r" + format_live(res))
            sys.stdout.flush()
        elif res.frame.known:
            print(f"\n  << {MessageType(res.frame.message_type).name} (seq {res.frame.sequence})")
    return count


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Cortex link -- odometry + IMU driver")
    ap.add_argument("port", nargs="?", help="Serial port or pyserial URL (auto-detect)")
    ap.add_argument("-b", "--baud", type=int, default=BAUD)
    ap.add_argument("--timeout", type=float, default=IDLE_TIMEOUT,
                    help=f"Seconds without data before the link counts as dead "
                         f"(default {IDLE_TIMEOUT})")
    ap.add_argument("--cal-samples", type=int, default=1000,
                    help="IMU calibration samples (default 1000)")
    ap.add_argument("--straight-scale", type=float, default=STRAIGHT_SCALE)
    ap.add_argument("--turn-scale", type=float, default=TURN_SCALE)
    ap.add_argument("--bootstrap-per-type", action="store_true",
                    help="Seed sequence counters per message type")
    ap.add_argument("--resync", action="store_true",
                    help="Accept the received counter after a mismatch")
    ap.add_argument("--no-imu", action="store_true",
                    help="Use a stationary stand-in instead of a real IMU")
    ap.add_argument("--csv", action="store_true", help="CSV output mode")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def main(argv=None, sensor: InertialSensor = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if sensor is None:
        if not args.no_imu:
            sys.exit("ERROR: No IMU driver supplied.  Pass --no-imu for a bench run.")
        sensor = StaticInertialSensor()

    port = args.port or find_port()
    if not port:
        sys.exit("ERROR: No serial port found.")

    try:
        link = Link(port, args.baud, timeout=args.timeout)
    except LinkIOError as e:
        sys.exit(f"ERROR: {e}")

    session = SessionController(
        link, sensor,
        straight_scale=args.straight_scale,
        turn_scale=args.turn_scale,
        cal_samples=args.cal_samples,
        bootstrap_per_type=args.bootstrap_per_type,
        resync_on_mismatch=args.resync,
        on_behind_scan=lambda: log.info("Cortex requested behind-scan"),
        on_pickup_complete=lambda t: log.info("Cortex picked up %d object(s)", len(t)),
    )

    def _sigint(*_):
        session.close()
    signal.signal(signal.SIGINT, _sigint)

    # -- Phase 1: Calibration --
    if not args.csv:
        print(f"\n{'='*62}")
        print(f"  Cortex link -- odometry + IMU")
        print(f"{'='*62}")
        print(f"  Port: {port} @ {args.baud} baud")
        print(f"{'='*62}\n")
        print(f"  >> Keep the robot STILL -- calibrating ({args.cal_samples} samples) ...",
              flush=True)

    cal = session.start()
    if not args.csv:
        print(f"  >> Calibration done.\n")
        print(cal.summary())

    # -- Phase 2: Polling --
    t0 = time.monotonic()
    status = 0
    try:
        count = run(session, csv=args.csv)
    except LinkIOError as e:
        log.error("Link failure: %s", e)
        count = session.frames
        status = 1
    finally:
        link.close()

    # -- Shutdown --
    elapsed = time.monotonic() - t0
    hz = count / elapsed if elapsed > 0 else 0
    if not args.csv:
        pose = session.odometry.state
        print(f"\n\n{'='*62}")
        print(f"  Processed {count} frames in {elapsed:.1f} s  ({hz:.0f} Hz)")
        print(f"  Sequence errors: {session.sequence_errors}  |  "
              f"Skipped bytes: {session.skipped_bytes}")
        print(f"  Final pose: x={pose.global_x:+.2f}  y={pose.global_y:+.2f}  "
              f"theta={pose.global_theta:+.3f} rad")
        print(f"{'='*62}\n")
    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
