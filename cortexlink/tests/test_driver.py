#!/usr/bin/env python3
"""
test_driver.py -- Tests for the console driver.

Tests cover:
  * Default read timeout tolerates short lulls in cortex traffic
  * run() survives a lull shorter than the timeout and stops on close

Run:  python3 -m pytest cortexlink/tests/test_driver.py -v
"""

import threading
import time

import pytest
import serial

# Allow running from repo root
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from cortexlink.driver import build_parser, run
from cortexlink.link import IDLE_TIMEOUT, READ_TIMEOUT, Link
from cortexlink.protocol import MessageType, encode_frame, encode_status
from cortexlink.sensor import StaticInertialSensor
from cortexlink.session import SessionController


def _status(seq: int) -> bytes:
    return encode_frame(MessageType.STATUS, seq, encode_status(seq, seq))


class TestParser:
    def test_default_timeout_is_idle_timeout(self):
        args = build_parser().parse_args([])
        assert args.timeout == IDLE_TIMEOUT
        assert IDLE_TIMEOUT > READ_TIMEOUT

    def test_timeout_override(self):
        assert build_parser().parse_args(["--timeout", "5"]).timeout == 5.0


class TestRun:
    def test_lull_shorter_than_timeout(self, capsys):
        ser = serial.serial_for_url("loop://", timeout=0.5)
        link = Link(ser=ser)
        session = SessionController(link, StaticInertialSensor(), cal_samples=5)
        session.start()

        def _cortex():
            ser.write(_status(1))
            time.sleep(0.2)                 # quiet spell on the link
            ser.write(_status(2))
            time.sleep(0.05)
            session.close()

        th = threading.Thread(target=_cortex)
        th.start()
        count = run(session, csv=True)
        th.join(timeout=2.0)
        link.close()

        assert count == 2
        assert session.sequence_errors == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("frame,type,seq")
        assert len(lines) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
