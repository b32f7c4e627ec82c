"""Pytest configuration and fixtures for trace explorer tests."""

from typing import Any, Dict, List, Optional

import pytest
import respx


@pytest.fixture
def respx_mock():
    """Fixture that provides a respx mock router.

    Configuration:
        - assert_all_mocked=False: Allows unmocked requests to pass through.
          Prevents failures from background HTTP calls (e.g., Reflex init).
        - assert_all_called=True: Every route a test declares must be hit,
          which catches typos in mocked trace API paths.
    """
    with respx.mock(assert_all_mocked=False, assert_all_called=True) as mock:
        yield mock


def make_span(
    span_id: str,
    service: str,
    name: str,
    start: int,
    end: int,
    parent: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a raw span record the way the trace store returns it."""
    record = {
        "spanId": span_id,
        "parentSpanId": parent or "",
        "name": name,
        "service": service,
        "startUnixNanos": start,
        "endUnixNanos": end,
    }
    record.update(extra)
    return record


@pytest.fixture
def span_record():
    """Factory for raw span records."""
    return make_span


def make_chain(depth: int, service: str = "svc") -> List[Dict[str, Any]]:
    """A single path of ``depth`` spans, each nested inside its parent."""
    return [
        make_span(
            f"s{i}",
            service,
            f"op{i}",
            i,
            2 * depth - i,
            parent=f"s{i - 1}" if i else None,
        )
        for i in range(depth)
    ]


@pytest.fixture
def span_chain():
    """Factory for deeply nested raw span records."""
    return make_chain
