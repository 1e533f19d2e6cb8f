#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/oscscheduling.py
# <pep8 compliant>
"""Time limits and cancellation of blocking operations.

Deadlines are *absolute* times in seconds, in same time base as
time.time(). Timeouts are relative delays in seconds.

A :class:`ServeContext` groups an optional deadline and a cancellation
flag. It governs only the waiting for incoming datagrams, packets already
received continue their processing.
"""

import threading
import time

__all__ = [
    "deadline2timeout",
    "timeout2deadline",
    "earliest_deadline",
    "ServeContext",
    "Backoff",
    ]


def deadline2timeout(deadlinetime):
    """Convert a deadline time into a timeout delay.

    :param deadlinetime: absolute time limit in seconds, None for
        infinite wait, zero for immediate return.
    :type deadlinetime: float (or None)
    :return: corresponding timeout (0 => 0, None => None)
    :rtype: float (or None)
    """
    if deadlinetime is None:
        timeout = None
    elif deadlinetime == 0:
        timeout = 0
    else:
        timeout = deadlinetime - time.time()
        if timeout < 0:
            timeout = 0
    return timeout


def timeout2deadline(timeout):
    """Convert a timeout delay into a deadline time (None stay None)."""
    if timeout is None:
        return None
    return time.time() + timeout


def earliest_deadline(*deadlines):
    """Return the nearest of some deadlines, ignoring None ones."""
    known = [d for d in deadlines if d is not None]
    if not known:
        return None
    return min(known)


class ServeContext(object):
    """Deadline and cancellation for a serve loop.

    :ivar deadline: absolute time when serving must stop, or None.
    :type deadline: float
    """
    def __init__(self, deadline=None, timeout=None):
        if deadline is not None and timeout is not None:
            raise ValueError("OSC serve context use deadline or timeout, "
                             "not both")
        if timeout is not None:
            deadline = timeout2deadline(timeout)
        self.deadline = deadline
        self._cancelevent = threading.Event()

    def __repr__(self):
        return "ServeContext(deadline={!r}, cancelled={!r})".format(
                    self.deadline, self.cancelled)

    def cancel(self):
        """Request end of serving, wake up waiting threads."""
        self._cancelevent.set()

    @property
    def cancelled(self):
        return self._cancelevent.is_set()

    @property
    def expired(self):
        return self.deadline is not None and time.time() >= self.deadline

    @property
    def done(self):
        """True once cancelled or after the deadline."""
        return self.cancelled or self.expired

    def remaining(self):
        """Seconds until the deadline (None without deadline)."""
        return deadline2timeout(self.deadline)

    def wait(self, timeout=None):
        """Sleep up to timeout seconds, return early if cancelled.

        The wait is also bounded by the context deadline.

        :return: True if the context has been cancelled.
        :rtype: bool
        """
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        return self._cancelevent.wait(timeout)


class Backoff(object):
    """Exponential delay for retries after transient errors.

    First delay is mindelay, then it doubles at each call up to maxdelay.
    A reset() restart from mindelay.
    """
    def __init__(self, mindelay=0.005, maxdelay=1.0):
        self.mindelay = mindelay
        self.maxdelay = maxdelay
        self.current = 0

    def next_delay(self):
        if self.current == 0:
            self.current = self.mindelay
        else:
            self.current *= 2
        if self.current > self.maxdelay:
            self.current = self.maxdelay
        return self.current

    def reset(self):
        self.current = 0
