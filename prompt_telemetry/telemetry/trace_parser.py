"""
W3C Trace Context ``traceparent`` parsing.

Format: ``version-traceid-spanid-traceflags``, e.g.
``00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01``.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

_HEX = re.compile(r"[0-9a-fA-F]+")
_SEGMENT_LENGTHS = (2, 32, 16, 2)


class TraceParent(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    trace_id: str
    span_id: str
    trace_flags: str
    sampled: bool


def _is_hex(value: str, length: int) -> bool:
    return len(value) == length and bool(_HEX.fullmatch(value))


def _is_all_zeros(value: str) -> bool:
    return set(value) == {"0"}


def parse_trace_parent(value: Any) -> Optional[TraceParent]:
    """
    Parse a traceparent header into its fields.

    Returns None for anything malformed: wrong segment count, wrong segment
    length, non-hex characters, or an all-zero trace/span id. Field casing is
    preserved as received.
    """
    if not value or not isinstance(value, str):
        return None

    parts = value.strip().split("-")
    if len(parts) != len(_SEGMENT_LENGTHS):
        return None

    if not all(_is_hex(part, n) for part, n in zip(parts, _SEGMENT_LENGTHS)):
        return None

    version, trace_id, span_id, trace_flags = parts
    if _is_all_zeros(trace_id) or _is_all_zeros(span_id):
        return None

    return TraceParent(
        version=version,
        trace_id=trace_id,
        span_id=span_id,
        trace_flags=trace_flags,
        sampled=(int(trace_flags, 16) & 0x01) == 0x01,
    )


def format_trace_parent(trace_parent: TraceParent) -> str:
    return "-".join(
        (
            trace_parent.version,
            trace_parent.trace_id,
            trace_parent.span_id,
            trace_parent.trace_flags,
        )
    )
