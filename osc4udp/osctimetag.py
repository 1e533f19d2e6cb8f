#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/osctimetag.py
# <pep8 compliant>
"""OSC time tags, 64 bits fixed point NTP time representation.

Time tags are represented by a 64 bit fixed point number. The first 32 bits
specify the number of seconds since midnight on January 1, 1900, and the
last 32 bits specify fractional parts of a second to a precision of about
200 picoseconds. This is the representation used by Internet NTP
timestamps.

The time tag value consisting of 63 zero bits followed by a one in the
least significant bit is a special case meaning "immediately".

Python code deal with :class:`OSCtimetag` named tuples, which are immutable,
and can be converted from/to Unix time (the time.time() base) with the
functions of this module.
"""

from collections import namedtuple
import struct
import time

from .oscerrors import OSCInvalidDataError

__all__ = [
    "OSCtimetag",
    "OSC_IMMEDIATELY",
    "OSCTIME_1_JAN1970",
    "float2timetag",
    "timetag2float",
    "timetag2unixtime",
    "unixtime2timetag",
    ]

# Number of seconds between 1/1/1900 (NTP base time) and 1/1/1970 (Unix epoch).
# See http://www.fourmilab.ch/documents/calendar/
OSCTIME_1_JAN1970 = 2208988800

# Upper bound (excluded) of each 32 bits half.
_HALF_LIMIT = 2 ** 32

_timetag_struct = struct.Struct(">Q")


class OSCtimetag(namedtuple('OSCtimetag', 'sec frac')):
    """
    OSCtimetag(sec, frac) → named tuple

    :attribute int sec: first 32 bits specify the number of seconds since
                        midnight on January 1, 1900,
    :attribute int frac: last 32 bits specify fractional parts of a
                         second to a precision of about 200 picoseconds.
    """
    __slots__ = ()

    def __new__(cls, sec, frac):
        if not (0 <= sec < _HALF_LIMIT and 0 <= frac < _HALF_LIMIT):
            raise OSCInvalidDataError("OSC timetag parts must fill in "
                            "32 bits unsigned: {}, {}".format(sec, frac))
        return super().__new__(cls, sec, frac)

    @classmethod
    def from_value(cls, value):
        """Build a time tag from its 64 bits wire integer value.

        :param value: fixed point 64 bits value.
        :type value: int
        :rtype: OSCtimetag
        """
        return cls(value >> 32, value & 0xFFFFFFFF)

    @classmethod
    def from_unixtime(cls, ftime=None):
        """Build a time tag from a Unix time (None for current time)."""
        return unixtime2timetag(ftime)

    @property
    def value(self):
        """The 64 bits integer transmitted on the wire."""
        return (self.sec << 32) | self.frac

    @property
    def is_immediate(self):
        return self == OSC_IMMEDIATELY

    def to_unixtime(self):
        return timetag2unixtime(self)

    def to_bytes(self):
        """Return the 8 bytes big endian representation."""
        return _timetag_struct.pack(self.value)

    def time_until_due(self, now=None):
        """Compute seconds remaining before the time tag time.

        The result is zero for the immediate time tag and negative when the
        time is already gone.

        :param now: Unix time to use as current time, None to use
            time.time().
        :type now: float
        :return: delay in seconds.
        :rtype: float
        """
        if self.is_immediate:
            return 0.0
        if now is None:
            now = time.time()
        return self.to_unixtime() - now

    def __add__(self, other):
        return float2timetag(timetag2float(self) + other)

    def __sub__(self, other):
        return float2timetag(timetag2float(self) - other)


# Special time tag meaning "immediately".
OSC_IMMEDIATELY = OSCtimetag(0x0, 0x01)


def timetag2float(timetag):
    """Convert a timetag tuple into a float value in seconds from 1/1/1900.

    :param timetag: the tuple time to convert
    :type timetag: OSCtimetag
    :return: same time in seconds, with decimal part
    :rtype: float
    """
    sec, frac = timetag
    return float(sec) + frac / _HALF_LIMIT


def timetag2unixtime(timetag):
    """Convert a timetag tuple into a float value of seconds from 1/1/1970.

    :param timetag: the tuple time to convert
    :type timetag: OSCtimetag
    :return: time in unix seconds, with decimal part
    :rtype: float
    """
    return timetag2float(timetag) - OSCTIME_1_JAN1970


def float2timetag(ftime):
    """Convert a float value of seconds from 1/1/1900 into a timetag tuple.

    :param ftime: number of seconds to convert, with decimal part
    :type ftime: float
    :return: same time in sec,frac tuple
    :rtype: OSCtimetag
    """
    sec = int(ftime)
    frac = int((ftime - sec) * _HALF_LIMIT + 0.5)
    if frac >= _HALF_LIMIT:     # Rounding reached next second.
        sec += 1
        frac -= _HALF_LIMIT
    return OSCtimetag(sec, frac)


def unixtime2timetag(ftime=None):
    """Convert a float value of seconds from 1/1/1970 into a timetag tuple.

    :param ftime: number of seconds to convert, with decimal part.
                  If not specified, use current time.time().
    :type ftime: float
    :return: same time in sec,frac tuple
    :rtype: OSCtimetag
    """
    if ftime is None:
        ftime = time.time()
    return float2timetag(ftime + OSCTIME_1_JAN1970)
