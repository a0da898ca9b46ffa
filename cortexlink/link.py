#!/usr/bin/env python3
"""
link.py — Blocking byte transport to the cortex over a serial port.

The cortex speaks a fixed-format binary protocol (see :mod:`protocol`) on a
plain UART.  This module only moves bytes: exact-length reads and writes,
with a read timeout so a dead link surfaces as :class:`LinkTimeout` instead
of hanging forever.

Any pyserial URL works as *port*, which is handy on the bench:
  /dev/ttyUSB0          real adapter
  loop://               loopback (writes come back as reads)
  socket://host:port    cortex simulator over TCP
"""

from __future__ import annotations

import glob
import logging
import threading
from typing import Optional

import serial
import serial.tools.list_ports

from .errors import LinkClosed, LinkIOError, LinkTimeout

log = logging.getLogger(__name__)

# ── Link defaults ───────────────────────────────────────────────────────────
BAUD         = 115_200
READ_TIMEOUT = 0.5        # s, per read() call
IDLE_TIMEOUT = 2.0        # s, console tools: longest lull before the link counts as dead


def find_port() -> Optional[str]:
    """Auto-detect the cortex's USB-serial adapter."""
    for p in serial.tools.list_ports.comports():
        d = ((p.description or "") + (p.manufacturer or "")).lower()
        if any(k in d for k in ("ftdi", "prolific", "pl2303", "vex", "cortex", "uart")):
            return p.device
    ports = sorted(glob.glob("/dev/ttyUSB*")) + sorted(glob.glob("/dev/ttyACM*"))
    return ports[0] if ports else None


class Link:
    """
    Exact-length reader/writer owning one connection to the cortex.

    Every read and write runs under a single lock, so the poll loop and the
    outbound send paths can share one link from different threads.  Reads
    and writes may interleave on the wire between calls.

    Parameters
    ----------
    port : str, optional
        Device path or pyserial URL.  Auto-detected when omitted.
    baud : int
        Serial baud rate.
    timeout : float
        Seconds to wait for data before raising :class:`LinkTimeout`.
    ser : object, optional
        An already open stream with ``read(n)`` / ``write(b)``.  When given,
        *port* and *baud* are ignored.
    """

    def __init__(self, port: Optional[str] = None, baud: int = BAUD,
                 timeout: float = READ_TIMEOUT, ser=None):
        if ser is None:
            port = port or find_port()
            if port is None:
                raise LinkIOError("No serial port found.  Is the cortex connected?")
            try:
                ser = serial.serial_for_url(port, baudrate=baud, timeout=timeout)
            except (serial.SerialException, OSError) as e:
                raise LinkIOError(f"Cannot open {port}: {e}") from e
            log.info("Opened %s @ %d baud (timeout %.2f s)", port, baud, timeout)
        self.port = port
        self.timeout = timeout
        self._ser = ser
        self._lock = threading.Lock()
        self._closing = threading.Event()

    # -- Context manager -------------------------------------------------------

    def __enter__(self) -> "Link":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- I/O -------------------------------------------------------------------

    @property
    def closing(self) -> bool:
        return self._closing.is_set()

    def read_exact(self, n: int) -> bytes:
        """Block until exactly *n* bytes are read."""
        if n == 0:
            return b""
        buf = bytearray()
        with self._lock:
            while len(buf) < n:
                if self._closing.is_set():
                    raise LinkClosed("Link closed")
                try:
                    chunk = self._ser.read(n - len(buf))
                except (serial.SerialException, OSError, ValueError) as e:
                    if self._closing.is_set():
                        raise LinkClosed("Link closed during read") from e
                    raise LinkIOError(f"Read failed: {e}") from e
                if not chunk:
                    if self._closing.is_set():
                        raise LinkClosed("Link closed during read")
                    raise LinkTimeout(
                        f"Timed out after {len(buf)}/{n} bytes "
                        f"({self.timeout} s without data)")
                buf.extend(chunk)
        return bytes(buf)

    def write(self, data: bytes) -> None:
        """Write the whole of *data*."""
        with self._lock:
            if self._closing.is_set():
                raise LinkClosed("Link closed")
            try:
                written = self._ser.write(data)
                if hasattr(self._ser, "flush"):
                    self._ser.flush()
            except (serial.SerialException, OSError, ValueError) as e:
                raise LinkIOError(f"Write failed: {e}") from e
        if written is not None and written != len(data):
            raise LinkIOError(f"Short write: {written}/{len(data)} bytes")

    # -- Shutdown --------------------------------------------------------------

    def cancel(self) -> None:
        """Request shutdown and interrupt an in-flight read if possible."""
        self._closing.set()
        cancel_read = getattr(self._ser, "cancel_read", None)
        if cancel_read is not None:
            try:
                cancel_read()
            except (serial.SerialException, OSError) as e:
                log.debug("cancel_read failed: %s", e)

    def close(self) -> None:
        self.cancel()
        with self._lock:
            close = getattr(self._ser, "close", None)
            if close is not None:
                close()
