"""Tests for small utility helpers."""

from __future__ import annotations

import threading

import pytest

from eyeris.errors import RequestCancelled
from eyeris.utils.deadlines import RequestContext
from eyeris.utils.text import strip_code_fences


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"a": 1}', '{"a": 1}'),
        ('  {"a": 1}\n', '{"a": 1}'),
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}\n```', '{"a": 1}'),
        ('```{"a": 1}```', '{"a": 1}'),
        ('```\n{"a": 1,\n"b": 2}\n```', '{"a": 1,\n"b": 2}'),
        ("```unterminated", "```unterminated"),
    ],
)
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected


def test_context_without_deadline():
    context = RequestContext()
    assert context.remaining() is None
    assert context.bound(5.0) == 5.0
    assert context.bound(None) is None
    context.check("anything")


def test_context_bounds_to_deadline():
    now = [100.0]
    context = RequestContext(10.0, clock=lambda: now[0])

    assert context.bound(30.0) == 10.0
    assert context.bound(2.0) == 2.0
    now[0] = 108.0
    assert context.remaining() == pytest.approx(2.0)

    now[0] = 111.0
    assert context.expired()
    with pytest.raises(RequestCancelled):
        context.check("provider call")


def test_context_cancellation():
    event = threading.Event()
    context = RequestContext(cancel_event=event)
    assert context.cancel_event is event

    context.cancel()

    assert context.cancelled
    with pytest.raises(RequestCancelled):
        context.check("preprocessing")
    with pytest.raises(RequestCancelled):
        context.sleep(1.0)


def test_context_sleep_zero_is_noop():
    RequestContext().sleep(0)
