"""
errors.py — Exception hierarchy for the cortex link.

Only link-level failures and programming errors are exceptions.  Protocol
anomalies (noise before a start marker, sequence mismatches, unknown
message types) are handled in-line and never abort a session.
"""


class CortexLinkError(Exception):
    """Base class for all cortexlink errors."""


class LinkIOError(CortexLinkError):
    """Read/write failure or stream closure.  The session cannot continue."""


class LinkTimeout(LinkIOError):
    """No data arrived within the configured read timeout."""


class LinkClosed(LinkIOError):
    """The link was shut down, either before or during a read."""


class CalibrationIncomplete(CortexLinkError):
    """Inertial sample requested before the bias calibration ran."""
