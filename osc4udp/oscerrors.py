#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/oscerrors.py
# <pep8 compliant>
"""Hierarchy of OSC errors.

All errors raised by the package derive from :class:`OSCError`, so callers
can select a whole family (decoding, encoding, registration, transport) by
catching the intermediate class.
"""

__all__ = [
    "OSCError",
    "OSCInvalidRawError",
    "OSCTruncatedInputError",
    "OSCMalformedLengthError",
    "OSCInvalidTypeTagStringError",
    "OSCUnknownTypetagError",
    "OSCInvalidBundleTagError",
    "OSCNestingTooDeepError",
    "OSCInvalidDataError",
    "OSCUnsupportedArgumentTypeError",
    "OSCRegistrationError",
    "OSCInvalidAddressError",
    "OSCDuplicateAddressError",
    "OSCTransportError",
    "OSCTimeoutError",
    "OSCCancelledError",
    ]


class OSCError(Exception):
    """Parent class for OSC errors.
    """
    pass


#========================== RAW DATA DECODING ==============================
class OSCInvalidRawError(OSCError):
    """Problem detected in raw OSC input decoding.
    """
    pass


class OSCTruncatedInputError(OSCInvalidRawError):
    """Raw data ended before the end of a decoded item.
    """
    pass


class OSCMalformedLengthError(OSCInvalidRawError):
    """A length found in raw data is inconsistent with remaining data.
    """
    pass


class OSCInvalidTypeTagStringError(OSCInvalidRawError):
    """Type tag string don't start by a comma.
    """
    pass


class OSCUnknownTypetagError(OSCInvalidRawError):
    """Found an invalid (unknown) type tag.
    """
    pass


class OSCInvalidBundleTagError(OSCInvalidRawError):
    """Bundle raw data don't start by #bundle.
    """
    pass


class OSCNestingTooDeepError(OSCInvalidRawError):
    """Bundles nested deeper than allowed.
    """
    pass


#============================ DATA ENCODING ================================
class OSCInvalidDataError(OSCError):
    """Problem detected in OSC data encoding.
    """
    pass


class OSCUnsupportedArgumentTypeError(OSCInvalidDataError):
    """Python value with no corresponding OSC type.
    """
    pass


#============================ REGISTRATION =================================
class OSCRegistrationError(OSCError):
    """Problem when registering a handler with a dispatcher.
    """
    pass


class OSCInvalidAddressError(OSCRegistrationError):
    """Registered address contains pattern or reserved chars.
    """
    pass


class OSCDuplicateAddressError(OSCRegistrationError):
    """Address already registered.
    """
    pass


#============================== TRANSPORT ==================================
class OSCTransportError(OSCError):
    """Failure of the underlying socket.

    :ivar transient: flag for errors which may disappear by retrying later
        (no buffer space, interrupted call...).
    :type transient: bool
    """
    def __init__(self, message, transient=False):
        super().__init__(message)
        self.transient = transient


class OSCTimeoutError(OSCTransportError):
    """Deadline elapsed before a datagram arrived.
    """
    pass


class OSCCancelledError(OSCTransportError):
    """Waiting has been cancelled via a serve context.
    """
    pass
