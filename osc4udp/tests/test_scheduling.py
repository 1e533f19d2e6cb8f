#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/tests/test_scheduling.py
# <pep8 compliant>

import threading
import time

import pytest

from osc4udp.oscscheduling import *


def test_deadline2timeout():
    assert deadline2timeout(None) is None
    assert deadline2timeout(0) == 0
    assert deadline2timeout(time.time() - 10) == 0
    assert deadline2timeout(time.time() + 10) == pytest.approx(10, abs=0.5)


def test_timeout2deadline():
    assert timeout2deadline(None) is None
    assert timeout2deadline(5) == pytest.approx(time.time() + 5, abs=0.5)


def test_earliest_deadline():
    assert earliest_deadline() is None
    assert earliest_deadline(None, None) is None
    assert earliest_deadline(None, 5.0, 3.0) == 3.0


def test_context_deadline_or_timeout():
    with pytest.raises(ValueError):
        ServeContext(deadline=time.time(), timeout=1)
    ctx = ServeContext()
    assert ctx.deadline is None
    assert ctx.remaining() is None
    assert not ctx.done


def test_context_expiration():
    ctx = ServeContext(timeout=0.05)
    assert not ctx.expired
    assert not ctx.wait(1.0)        # Bounded by the deadline.
    time.sleep(0.01)
    assert ctx.expired
    assert ctx.done
    assert not ctx.cancelled
    assert ctx.remaining() == 0


def test_context_cancel_from_other_thread():
    ctx = ServeContext()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    start = time.time()
    assert ctx.wait(5.0)
    assert time.time() - start < 2.0
    assert ctx.cancelled
    assert ctx.done
    timer.join()


def test_backoff_sequence():
    backoff = Backoff()
    delays = [backoff.next_delay() for i in range(10)]
    assert delays[:4] == [0.005, 0.01, 0.02, 0.04]
    assert delays[-1] == 1.0
    assert max(delays) == 1.0
    backoff.reset()
    assert backoff.next_delay() == 0.005
