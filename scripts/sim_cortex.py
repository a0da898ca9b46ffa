#!/usr/bin/env python3
"""
sim_cortex.py
=============
Simulated cortex for exercising the host session without hardware.

Writes a scripted drive (straight, spin in place, straight) as framed
bytes into a pyserial ``loop://`` port, with line noise between frames,
one dropped status frame and a behind-scan / pickup exchange, then polls
it through :class:`SessionController` and checks the result.

Scenarios:
  1. Resync        – noise before every marker is skipped
  2. Sequence      – one dropped frame gives exactly one mismatch (resync on)
  3. Odometry      – final pose matches the closed-form trajectory
  4. Dispatch      – behind-scan / pickup-complete callbacks fire
  5. Outbound      – pose estimate and pickup targets on the wire

Each check prints [PASS] / [FAIL] and a final summary.
"""

import math
import os
import random
import sys

import serial

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cortexlink.link import Link
from cortexlink.odometry import STRAIGHT_SCALE, TURN_SCALE
from cortexlink.protocol import (
    MessageType, encode_frame, encode_pickup_targets, encode_pose_estimate,
    encode_status,
)
from cortexlink.sensor import StaticInertialSensor
from cortexlink.session import SessionController

# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────
PASS = 0; FAIL = 0

def chk(cond, msg):
    global PASS, FAIL
    if cond:
        print(f"  [PASS] {msg}")
        PASS += 1
    else:
        print(f"  [FAIL] {msg}")
        FAIL += 1

DT = 0.05
LEGS = [                      # (frames, left ticks/frame, right ticks/frame)
    (20,  50,  50),
    (20, -30,  30),
    (20,  40,  40),
]
DROP_AT = 30                  # status frame index never sent


class Cortex:
    """Generates the wire bytes the cortex would send."""
    def __init__(self, seed=405):
        self.rng = random.Random(seed)
        self.seq = {t: 0 for t in MessageType}
        self.left = self.right = 0
        self.noise_bytes = 0

    def _noise(self):
        n = self.rng.randint(0, 3)
        self.noise_bytes += n
        return bytes(self.rng.choice([0x00, 0x13, 0xF9, 0xFB]) for _ in range(n))

    def frame(self, msg_type, payload=b"", send=True):
        self.seq[msg_type] = (self.seq[msg_type] + 1) % 256
        if not send:
            return b""
        return self._noise() + encode_frame(msg_type, self.seq[msg_type], payload)

    def status(self, dl, dr, send=True):
        self.left += dl
        self.right += dr
        return self.frame(MessageType.STATUS, encode_status(self.left, self.right), send)


def expected_pose():
    x = y = th = 0.0
    i = 0
    for n, dl, dr in LEGS:
        for _ in range(n):
            if i == DROP_AT:
                # the next frame carries two frames' worth of ticks
                dl2, dr2 = 2 * dl, 2 * dr
            elif i == DROP_AT - 1:
                i += 1
                continue
            else:
                dl2, dr2 = dl, dr
            dist = (dl2 + dr2) / 2.0 * STRAIGHT_SCALE
            th += (dr2 - dl2) / 2.0 * TURN_SCALE
            x += math.cos(th) * dist
            y += math.sin(th) * dist
            i += 1
    return x, y, th


# ═══════════════════════════════════════════════════════════════════
# Run
# ═══════════════════════════════════════════════════════════════════
def main():
    ser = serial.serial_for_url("loop://", timeout=0.2)
    link = Link(ser=ser, timeout=0.2)

    cortex = Cortex()
    wire = bytearray()
    i = 0
    for n, dl, dr in LEGS:
        for _ in range(n):
            wire += cortex.status(dl, dr, send=(i != DROP_AT - 1))
            i += 1
    wire += cortex.frame(MessageType.BEHIND_SCAN_REQUEST)
    wire += cortex.frame(MessageType.PICKUP_COMPLETE)
    sent_status = sum(n for n, _, _ in LEGS) - 1

    t = [0.0]
    events = []
    session = SessionController(
        link, StaticInertialSensor(), cal_samples=100,
        resync_on_mismatch=True, clock=lambda: t[0],
        on_behind_scan=lambda: events.append("behind"),
        on_pickup_complete=lambda tg: events.append(("picked", tg)),
    )
    session.start()

    # outbound before the run so the cortex has a batch to pick up
    targets = [(10, 20, 0), (30, 40, 0)]
    session.send_pickup_targets(targets)
    echoed = link.read_exact(3 + 12)

    ser.write(bytes(wire))

    odom = None
    for _ in range(sent_status + 2):
        t[0] += DT
        res = session.poll()
        if res.odometry is not None:
            odom = res.odometry

    print("\n══ SCENARIO 1: resync ══")
    chk(session.skipped_bytes == cortex.noise_bytes,
        f"skipped {session.skipped_bytes} noise bytes (sent {cortex.noise_bytes})")
    chk(session.frames == sent_status + 2, f"{session.frames} frames decoded")

    print("\n══ SCENARIO 2: sequence ══")
    chk(session.sequence_errors == 1,
        f"one dropped frame -> {session.sequence_errors} mismatch")

    print("\n══ SCENARIO 3: odometry ══")
    ex, ey, eth = expected_pose()
    st = session.odometry.state
    chk(abs(st.global_x - ex) < 1e-6, f"x = {st.global_x:.4f} (expect {ex:.4f})")
    chk(abs(st.global_y - ey) < 1e-6, f"y = {st.global_y:.4f} (expect {ey:.4f})")
    chk(abs(st.global_theta - eth) < 1e-9, f"theta = {st.global_theta:.5f} (expect {eth:.5f})")
    chk(odom is not None and abs(odom.linear_velocity[0] - 40 * STRAIGHT_SCALE
                                 * math.cos(eth) / DT) < 1e-6,
        "last-step velocity = step / dt")

    print("\n══ SCENARIO 4: dispatch ══")
    chk(events[0] == "behind", "behind-scan request forwarded")
    chk(events[1] == ("picked", [(10.0, 20.0, 0.0), (30.0, 40.0, 0.0)]),
        "pickup complete forwards the batch sent earlier")
    chk(session.ready_for_pickup, "ready for the next batch")

    print("\n══ SCENARIO 5: outbound ══")
    chk(echoed == encode_frame(MessageType.PICKUP_COMPLETE, 1,
                               encode_pickup_targets(targets)),
        f"pickup targets frame {echoed.hex(' ')}")
    session.send_pose_estimate(123.9, -4.2, 1.57)
    pose = link.read_exact(6)
    chk(pose == encode_frame(MessageType.STATUS, 1, encode_pose_estimate(123.9, -4.2, 1.57)),
        f"pose estimate frame {pose.hex(' ')}")

    link.close()
    print(f"\n{'═'*40}\n  {PASS} passed, {FAIL} failed\n{'═'*40}")
    sys.exit(1 if FAIL else 0)


if __name__ == "__main__":
    main()
