"""Error types raised across the trace explorer.

Only FetchFailure is ever shown to the user. MalformedSpan and StaleResponse
are caught close to where they are raised: a malformed record is dropped and
counted, a stale response is discarded.
"""

from typing import Optional


class TraceExplorerError(Exception):
    """Base class for explorer errors."""


class MalformedSpan(TraceExplorerError):
    """A span record is missing required fields or has unusable values.

    Parameters
    ----------
    message : str
        Human readable description.
    fields : list of str, optional
        Names of the offending fields, as they appear on the wire.
    """

    def __init__(self, message: str, fields: Optional[list] = None):
        super().__init__(message)
        self.fields = fields or []


class FetchFailure(TraceExplorerError):
    """A request to one of the trace services failed.

    Covers both transport errors (connection refused, timeout) and
    non-success responses. ``status_code`` is None when no response arrived.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class StaleResponse(TraceExplorerError):
    """A fetch completed for a trace (or flame option set) no longer selected."""

    def __init__(self, trace_id: str, seq: int):
        super().__init__(f"stale response for trace {trace_id!r} (request #{seq})")
        self.trace_id = trace_id
        self.seq = seq
