#!/usr/bin/env python3
"""
stream_frames.py — Read & verify cortex frames from the UART

Frame format:
  [0xFA]            — start marker
  [TYPE]            — 1 status, 2 behind-scan request, 3 pickup complete
  [SEQ]             — per-type counter, wraps 255 → 0
  [payload]         — status: 10 bytes, quad counts LE int32 at offsets 1, 5

Usage:
  python3 scripts/stream_frames.py                    # live stream (Ctrl+C to stop)
  python3 scripts/stream_frames.py /dev/ttyUSB0       # explicit port
  python3 scripts/stream_frames.py -n 200             # stop after 200 frames
  python3 scripts/stream_frames.py --verify           # capture & verify report
  python3 scripts/stream_frames.py --raw              # hex dump
  python3 scripts/stream_frames.py --csv > data.csv   # CSV output
"""

import os
import sys
import time
import signal
import argparse

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cortexlink.errors import LinkClosed, LinkIOError
from cortexlink.link import BAUD, IDLE_TIMEOUT, Link, find_port
from cortexlink.protocol import MessageType, decode_status, encode_frame, read_frame
from cortexlink.sequence import SequenceTracker


class Stats:
    def __init__(self):
        self.total = self.seq_err = self.skipped = self.unknown = 0
        self.by_type = {t: 0 for t in MessageType}
        self.t0 = self.tN = None

    def rate(self):
        if self.t0 and self.tN and self.total > 1:
            dt = self.tN - self.t0
            return (self.total - 1) / dt if dt > 0 else 0
        return 0

    def report(self):
        r = self.rate()
        ok = self.seq_err == 0 and self.unknown == 0
        return (
            f"\n{'═'*56}\n"
            f"  FRAME VERIFICATION SUMMARY\n"
            f"{'═'*56}\n"
            f"  Frames received   : {self.total}\n"
            f"  Status            : {self.by_type[MessageType.STATUS]}\n"
            f"  Behind-scan req.  : {self.by_type[MessageType.BEHIND_SCAN_REQUEST]}\n"
            f"  Pickup complete   : {self.by_type[MessageType.PICKUP_COMPLETE]}\n"
            f"  Unknown type      : {self.unknown}\n"
            f"  Sequence errors   : {self.seq_err}\n"
            f"  Skipped bytes     : {self.skipped}\n"
            f"  Frame rate        : {r:.1f} Hz\n"
            f"{'═'*56}\n"
            f"  {'✅ ALL GOOD' if self.total > 0 and ok else '❌ ISSUES DETECTED' if self.total > 0 else '❌ NO FRAMES — check wiring & cortex'}\n"
        )


def main():
    ap = argparse.ArgumentParser(description="Cortex frame stream viewer")
    ap.add_argument("port", nargs="?", help="Serial port (auto-detect if omitted)")
    ap.add_argument("-n", "--num", type=int, default=0, help="Stop after N frames (0=forever)")
    ap.add_argument("-b", "--baud", type=int, default=BAUD)
    ap.add_argument("--timeout", type=float, default=IDLE_TIMEOUT)
    ap.add_argument("--raw", action="store_true", help="Hex dump mode")
    ap.add_argument("--csv", action="store_true", help="CSV output")
    ap.add_argument("--verify", action="store_true", help="Capture 500 frames & report")
    args = ap.parse_args()

    port = args.port or find_port()
    if not port:
        sys.exit("ERROR: No serial port found. Is the cortex connected?")
    if args.verify and args.num == 0:
        args.num = 500

    try:
        link = Link(port, args.baud, timeout=args.timeout)
    except LinkIOError as e:
        sys.exit(f"ERROR: {e}")

    st = Stats()
    seq = SequenceTracker()
    signal.signal(signal.SIGINT, lambda *_: link.cancel())

    if args.csv:
        print("frame,type,seq,seq_ok,skipped,left,right")
    elif not args.raw:
        print(f"\nOpening {port} @ {args.baud} baud …\n")
        print(f"{'#':>6}  {'type':<20} {'seq':>4} {'ok':>3} {'skip':>5}  "
              f"{'left':>12} {'right':>12}  {'Hz':>6}")
        print("─" * 80)

    try:
        while not (0 < args.num <= st.total):
            frame = read_frame(link.read_exact)

            now = time.monotonic()
            if st.t0 is None:
                st.t0 = now
            st.tN = now
            st.total += 1
            st.skipped += frame.skipped

            if frame.known:
                st.by_type[MessageType(frame.message_type)] += 1
                seq_ok = seq.validate(frame.message_type, frame.sequence)
                if not seq_ok:
                    st.seq_err += 1
                name = MessageType(frame.message_type).name
            else:
                st.unknown += 1
                seq_ok = False
                name = f"UNKNOWN({frame.message_type})"

            left = right = ""
            if frame.message_type == MessageType.STATUS:
                left, right = decode_status(frame.payload)

            if args.raw:
                wire = encode_frame(frame.message_type, frame.sequence, frame.payload)
                print(f"[{st.total:5d}] {wire.hex(' ')}")
            elif args.csv:
                print(f"{st.total},{frame.message_type},{frame.sequence},"
                      f"{1 if seq_ok else 0},{frame.skipped},{left},{right}")
            else:
                line = (f"{st.total:6d}  {name:<20} {frame.sequence:4d} "
                        f"{'✓' if seq_ok else '✗':>3} {frame.skipped:5d}  "
                        f"{left!s:>12} {right!s:>12}  {st.rate():6.0f}")
                sys.stdout.write(f"\r{line}")
                sys.stdout.flush()
                # Print full line every 100 frames so scroll shows history
                if st.total % 100 == 0:
                    sys.stdout.write("\n")
    except LinkClosed:
        pass
    except LinkIOError as e:
        print(f"\nLink failure: {e}", file=sys.stderr)
    finally:
        link.close()

    if not args.csv:
        print()
    print(st.report())


if __name__ == "__main__":
    main()
