#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# File: osc4udp/oscbuildparse.py
# <pep8 compliant>
"""Support for building (encoding) and parsing (decoding) OSC packets.

See http://opensoundcontrol.org/spec-1_0 for complete OSC documentation.

This module is only here to translate OSC packets from/to Python values.
It only depends on Python3 standard modules (and on osctimetag / oscerrors
from this package).

Supported atomic data types
---------------------------

The OSC 1.0 ``ifsbhdtTFN`` type tags are supported, no other one. Values
are mapped to Python types, with small int/float subclasses to select the
64 bits variants:

===================  ====================================
        What            Type tag and corresponding data
===================  ====================================
value None           ``N`` without data
value True           ``T`` without data
value False          ``F`` without data
type int, OSCint32   ``i`` with int32
type OSCint64        ``h`` with int64
type float,          ``f`` with float32
OSCfloat32
type OSCfloat64      ``d`` with float64
type str             ``s`` with string
type bytes           ``b`` with raw binary
type bytearray       ``b`` with raw binary
type memoryview      ``b`` with raw binary
type OSCtimetag      ``t`` with 64 bits time tag
===================  ====================================

Decoding gives back int, OSCint64, float, OSCfloat64, str, bytes,
OSCtimetag, True, False and None, so that a decoded message has the same
type tags as the encoded one.

Out Of Band
-----------

A collection of options can be transmitted to modify some processing
or activate dumps. This is realized via an ``oob`` dictionary parameter
given optionally in top-level functions and transmitted to other
functions while processing:

``str_encode`` / ``str_decode``
    (codec, errors) tuple for strings, default ``('ascii', 'strict')``.
``max_bundle_depth``
    maximum count of nested bundles accepted when decoding, default 32.
``encode_packet_dumpraw`` / ``decode_packet_dumpraw``
    flags to print an hexadecimal dump of processed raw packets.
``dumpfile``
    file where to print dumps, default sys.stdout.
"""

# Note: Use memoryview objects when splitting rawoscdata in parts.
# A memoryview of bytes gives integers when indexed and subviews when
# sliced, without copying data. Happily, struct.unpack() works with
# memoryview as is.

import struct
import sys

from .oscerrors import *
from .oscerrors import __all__ as _errors_all
from .osctimetag import (OSCtimetag, OSC_IMMEDIATELY, OSCTIME_1_JAN1970,
                         unixtime2timetag)
from . import oscmethod

__all__ = [
    # Main functions for users.
    "encode_packet",
    "decode_packet",
    # Top-level structures for OSC encoding/decoding.
    "OSCBundle",
    "OSCMessage",
    # Second level structures for OSC messages arguments.
    "OSCtimetag",
    "OSCint32",
    "OSCint64",
    "OSCfloat32",
    "OSCfloat64",
    # Low level primitives.
    "write_padded_string",
    "read_padded_string",
    "write_blob",
    "read_blob",
    "pad_bytes_needed",
    "osctypetag_for",
    # Top level useful constants.
    "OSC_IMMEDIATELY",
    "OSCTIME_1_JAN1970",
    "MAX_DATAGRAM_SIZE",
    "MAX_BUNDLE_DEPTH",
    # Other functions.
    "dumphex_buffer",
    ] + _errors_all

# Internal constants for type tags.
OSCTYPE_STRING = 's'
OSCTYPE_INT32 = 'i'
OSCTYPE_FLOAT32 = 'f'
OSCTYPE_BLOB = 'b'
OSCTYPE_INT64 = 'h'
OSCTYPE_TIMETAG = 't'
OSCTYPE_FLOAT64 = 'd'
OSCTYPE_TRUE = 'T'
OSCTYPE_FALSE = 'F'
OSCTYPE_NIL = 'N'

# Some data used to identify parts in OSC raw data.
BEGIN_ADDRPATTERN_CODE = ord('/')
BEGIN_BUNDLE_CODE = ord('#')
BEGIN_TYPETAG = ','
BUNDLE_TAG = "#bundle"

# UDP payload ceiling.
MAX_DATAGRAM_SIZE = 65535

# Default for oob 'max_bundle_depth'.
MAX_BUNDLE_DEPTH = 32

# Bytes for padding to fill 4 bytes alignment and eventually a zero termination
# at end of a string.
padding = {}
for i in range(0, 5):
    padding[i] = b'\000' * i

_int32 = struct.Struct(">i")
_int64 = struct.Struct(">q")
_float32 = struct.Struct(">f")
_float64 = struct.Struct(">d")
_uint64 = struct.Struct(">Q")


#===================== ARGUMENTS EXPLICIT TYPES ===========================
# Plain int and float are encoded with 32 bits, these subclasses select the
# type explicitly. They compare equal to their plain values (OSCfloat32 is
# rounded to float32 precision).
class OSCint32(int):
    def __repr__(self):
        return "OSCint32({})".format(int(self))


class OSCint64(int):
    def __repr__(self):
        return "OSCint64({})".format(int(self))


def _as_float32(value):
    """Value rounded to the nearest float32, as sent on the wire."""
    try:
        return _float32.unpack(_float32.pack(value))[0]
    except OverflowError:
        # Out of float32 range, encoding will fail on it.
        return float(value)


class OSCfloat32(float):
    def __new__(cls, value=0.0):
        return float.__new__(cls, _as_float32(float(value)))

    def __repr__(self):
        return "OSCfloat32({!r})".format(float(self))


class OSCfloat64(float):
    def __repr__(self):
        return "OSCfloat64({!r})".format(float(self))


def osctypetag_for(value):
    """Return the OSC type tag char for a Python argument value.

    :param value: one argument of a message.
    :return: type tag char.
    :rtype: str
    """
    # Order matters: bool is an int subclass, OSCtimetag is a tuple.
    if value is None:
        return OSCTYPE_NIL
    if value is True:
        return OSCTYPE_TRUE
    if value is False:
        return OSCTYPE_FALSE
    if isinstance(value, OSCint64):
        return OSCTYPE_INT64
    if isinstance(value, int):
        return OSCTYPE_INT32
    if isinstance(value, OSCfloat64):
        return OSCTYPE_FLOAT64
    if isinstance(value, float):
        return OSCTYPE_FLOAT32
    if isinstance(value, str):
        return OSCTYPE_STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return OSCTYPE_BLOB
    if isinstance(value, OSCtimetag):
        return OSCTYPE_TIMETAG
    raise OSCUnsupportedArgumentTypeError("OSC unsupported argument type "
                    "{} for value {!r}".format(type(value).__name__, value))


#========================= MESSAGES AND BUNDLES ============================
class OSCMessage(object):
    """An OSC address and its ordered list of arguments.

    :code:`OSCMessage(address, *arguments)`

    :ivar str address: a string beginning by ``/``, used by OSC dispatching.
        When received, it is an address pattern which can contain
        ``* ? [] {}`` wildcards.
    :ivar list arguments: values to encode, see module documentation for
        supported types.
    :ivar srcaddr: transport address of the packet source, set when the
        message has been received from the network, else None.
    """
    __hash__ = None

    def __init__(self, address, *arguments):
        self.address = address
        self.arguments = list(arguments)
        self.srcaddr = None

    def append(self, *arguments):
        """Append arguments at the end of arguments list."""
        self.arguments.extend(arguments)

    def clear(self):
        """Clear address and all arguments."""
        self.address = ""
        self.clear_data()

    def clear_data(self):
        """Remove all arguments."""
        del self.arguments[:]

    def count_arguments(self):
        return len(self.arguments)

    @property
    def typetags(self):
        """Type tag string, with its heading ',' char."""
        return BEGIN_TYPETAG + ''.join(osctypetag_for(a)
                                       for a in self.arguments)

    def match(self, address):
        """Test if a literal address match this message address pattern.

        The match is case sensitive.
        """
        return oscmethod.match_pattern(self.address, address)

    def _typedargs(self):
        # float32 values are compared as they go on the wire.
        typedargs = []
        for a in self.arguments:
            tag = osctypetag_for(a)
            if tag == OSCTYPE_FLOAT32:
                a = _as_float32(a)
            typedargs.append((tag, a))
        return typedargs

    def equals(self, other, with_source=False):
        """Compare address and arguments, optionally the source address.
        """
        if not isinstance(other, OSCMessage):
            return False
        if with_source and self.srcaddr != other.srcaddr:
            return False
        return self.address == other.address and \
                    self._typedargs() == other._typedargs()

    def __eq__(self, other):
        if not isinstance(other, OSCMessage):
            return NotImplemented
        return self.equals(other)

    def encode(self, oob=None):
        return encode_packet(self, oob)

    def __repr__(self):
        return "OSCMessage({!r}{})".format(self.address,
                    ''.join(", {!r}".format(a) for a in self.arguments))

    def __str__(self):
        parts = [self.address, self.typetags]
        for arg in self.arguments:
            tag = osctypetag_for(arg)
            if tag == OSCTYPE_NIL:
                parts.append("Nil")
            elif tag == OSCTYPE_BLOB:
                parts.append("blob")
            elif tag == OSCTYPE_TIMETAG:
                parts.append(str(arg.value))
            elif tag in (OSCTYPE_TRUE, OSCTYPE_FALSE):
                parts.append("true" if arg else "false")
            else:
                parts.append(str(arg))
        return ' '.join(parts)


class OSCBundle(object):
    """A time tag and its contained messages and bundles.

    :code:`OSCBundle(timetag=None, *elements)`

    :ivar OSCtimetag timetag: when to execute the bundle content. Can be
        given as a Unix time float at construction, None for now.
    :ivar list messages: contained OSCMessage in receipt/append order.
    :ivar list bundles: contained OSCBundle in receipt/append order.
    :ivar srcaddr: transport address of the packet source, set when the
        bundle has been received from the network, else None.
    """
    __hash__ = None

    def __init__(self, timetag=None, *elements):
        if timetag is None:
            timetag = unixtime2timetag()
        elif not isinstance(timetag, OSCtimetag):
            if isinstance(timetag, bool) or \
                        not isinstance(timetag, (int, float)):
                raise OSCInvalidDataError("OSC bundle timetag must be an "
                            "OSCtimetag or a Unix time, not "
                            "{!r}".format(timetag))
            timetag = unixtime2timetag(timetag)
        self.timetag = timetag
        self.messages = []
        self.bundles = []
        self.srcaddr = None
        for elem in elements:
            self.append(elem)

    def append(self, element):
        """Append a message or a bundle.
        """
        if isinstance(element, OSCMessage):
            self.messages.append(element)
        elif isinstance(element, OSCBundle):
            self.bundles.append(element)
        else:
            raise OSCInvalidDataError("OSC element {!r} is not OSCBundle or "
                    "OSCMessage.".format(element.__class__.__name__))

    def elements(self):
        """Iterate on messages then on bundles (encoding order)."""
        yield from self.messages
        yield from self.bundles

    def __eq__(self, other):
        if not isinstance(other, OSCBundle):
            return NotImplemented
        return self.timetag == other.timetag and \
                self.messages == other.messages and \
                self.bundles == other.bundles

    def encode(self, oob=None):
        return encode_packet(self, oob)

    def __repr__(self):
        return "OSCBundle({!r}, messages={!r}, bundles={!r})".format(
                self.timetag, self.messages, self.bundles)


#====================== PADDED STRINGS AND BLOBS ==========================
def pad_bytes_needed(length):
    """Count of zero bytes to append to a string of length bytes.

    There is always at least one (the string terminator), at most four.
    """
    return 4 * (length // 4 + 1) - length


def _decode_str(rawoscdata, oob):
    """
    :param rawoscdata: raw OSC data to decode
    :type rawoscdata: memoryview
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of decoded bytes, decoded content
    :rtype: int, str
    """
    # Search first zero byte.
    for zeroindex, char in enumerate(rawoscdata):
        if char == 0:
            break
    else:
        raise OSCTruncatedInputError("OSC non terminated string in raw "
                        "data for {}".format(_dumpmv(rawoscdata)))
    byteslength = zeroindex + pad_bytes_needed(zeroindex)
    if byteslength > len(rawoscdata):
        raise OSCTruncatedInputError("OSC missing padding for string in "
                        "raw data for {}".format(_dumpmv(rawoscdata)))
    extract = bytes(rawoscdata[:zeroindex])
    strcodec, error = oob.get('str_decode', ('ascii', 'strict'))
    try:
        val = extract.decode(strcodec, error)
    except UnicodeDecodeError as e:
        raise OSCInvalidRawError("OSC string cannot be decoded with "
                        "{}: {}".format(strcodec, e)) from e
    # Return consumed bytes, value.
    return byteslength, val


def _encode_str(val, tobuffer, oob):
    """
    :param tobuffer: bytes collection to collect built result.
    :type tobuffer: bytearray
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of bytes produced.
    :rtype: int
    """
    strcodec, error = oob.get('str_encode', ('ascii', 'strict'))
    try:
        val = val.encode(strcodec, error)
    except UnicodeEncodeError as e:
        raise OSCInvalidDataError("OSC string cannot be encoded with "
                        "{}: {}".format(strcodec, e)) from e
    if b'\000' in val:
        raise OSCInvalidDataError("OSC string cannot contain zero byte")

    padbytes = padding[pad_bytes_needed(len(val))]
    tobuffer.extend(val)
    tobuffer.extend(padbytes)

    return len(val) + len(padbytes)


def _decode_blob(rawoscdata, oob):
    """
    :param rawoscdata: raw OSC data to decode
    :type rawoscdata: memoryview
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of decoded bytes, decoded content
    :rtype: int, bytes
    """
    count, length = _decode_fixed(rawoscdata, _int32, "blob size")
    # Check length before touching data: its a signed value coming from
    # the network.
    if length < 0 or length > len(rawoscdata) - count:
        raise OSCMalformedLengthError("OSC invalid length {} for blob "
                    "with {} remaining bytes in raw data for {}".format(
                    length, len(rawoscdata) - count, _dumpmv(rawoscdata)))
    padbytes = (4 - length % 4) % 4
    totalsize = count + length + padbytes
    if totalsize > len(rawoscdata):
        raise OSCTruncatedInputError("OSC missing padding for blob in "
                    "raw data for {}".format(_dumpmv(rawoscdata)))
    val = bytes(rawoscdata[count:count + length])
    # Return consumed bytes, value.
    return totalsize, val


def _encode_blob(val, tobuffer, oob):
    """
    :param tobuffer: bytes collection to collect built result.
    :type tobuffer: bytearray
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of bytes produced.
    :rtype: int
    """
    if isinstance(val, memoryview):
        val = val.tobytes()
    length = len(val)
    padbytes = (4 - length % 4) % 4
    tobuffer.extend(_int32.pack(length))
    tobuffer.extend(val)
    tobuffer.extend(padding[padbytes])

    # Return count of produced bytes.
    return 4 + length + padbytes


def write_padded_string(s, oob=None):
    """Encode a string with its zero terminator and padding.

    :param s: the string to encode.
    :type s: str
    :return: encoded bytes, length multiple of 4.
    :rtype: bytes
    """
    tobuffer = bytearray()
    _encode_str(s, tobuffer, oob or {})
    return bytes(tobuffer)


def read_padded_string(rawoscdata, oob=None):
    """Decode a padded string at beginning of raw data.

    :return: decoded string, count of consumed bytes.
    :rtype: str, int
    """
    count, val = _decode_str(memoryview(rawoscdata), oob or {})
    return val, count


def write_blob(data):
    """Encode bytes as an OSC blob (size, data, padding).

    :rtype: bytes
    """
    tobuffer = bytearray()
    _encode_blob(data, tobuffer, {})
    return bytes(tobuffer)


def read_blob(rawoscdata):
    """Decode a blob at beginning of raw data.

    :return: blob data, count of consumed bytes.
    :rtype: bytes, int
    """
    count, val = _decode_blob(memoryview(rawoscdata), {})
    return val, count


#======================= FUNCTIONS FOR BASE TYPES ==========================
def _decode_fixed(rawoscdata, packer, what):
    if len(rawoscdata) < packer.size:
        raise OSCTruncatedInputError("OSC missing bytes for {} ({} needed) "
                    "in raw data for {}".format(what, packer.size,
                    _dumpmv(rawoscdata)))
    return packer.size, packer.unpack(rawoscdata[:packer.size])[0]


def _decode_osc_type(rawoscdata, typetag, oob):
    """Decode an OSC stream into a single base value from its type tag.

    Remaining bytes in the stream must be processed elsewhere (offset by
    count bytes returned).

    .. Note:: the count of consumed bytes may be zero for values directly
              encoded in the type tag.

    :param rawoscdata: sequences of bytes containing OSC data,
    :type rawoscdata: memoryview
    :param typetag: the tag char to identify data type.
    :type typetag: str
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of consumed bytes, decoded value
    """
    if typetag == OSCTYPE_INT32:
        return _decode_fixed(rawoscdata, _int32, "int32")
    elif typetag == OSCTYPE_FLOAT32:
        return _decode_fixed(rawoscdata, _float32, "float32")
    elif typetag == OSCTYPE_STRING:
        return _decode_str(rawoscdata, oob)
    elif typetag == OSCTYPE_BLOB:
        return _decode_blob(rawoscdata, oob)
    elif typetag == OSCTYPE_INT64:
        count, val = _decode_fixed(rawoscdata, _int64, "int64")
        return count, OSCint64(val)
    elif typetag == OSCTYPE_FLOAT64:
        count, val = _decode_fixed(rawoscdata, _float64, "float64")
        return count, OSCfloat64(val)
    elif typetag == OSCTYPE_TIMETAG:
        count, val = _decode_fixed(rawoscdata, _uint64, "timetag")
        return count, OSCtimetag.from_value(val)
    elif typetag == OSCTYPE_TRUE:
        return 0, True
    elif typetag == OSCTYPE_FALSE:
        return 0, False
    elif typetag == OSCTYPE_NIL:
        return 0, None
    raise OSCUnknownTypetagError("OSC unknown type tag {!r} when "
                                 "decoding".format(typetag))


def _encode_osc_type(val, typetag, tobuffer, oob):
    """Encode a single base value as OSC data at the end of a buffer.

    Note: the count of produced bytes may be zero for values directly
    encoded in the type tag.

    :param val: value to encode.
    :param typetag: the tag char to identify data type.
    :type typetag: str
    :param tobuffer: bytes collection to collect built result.
    :type tobuffer: bytearray
    :return: count of bytes produced.
    :rtype: int
    """
    if typetag == OSCTYPE_STRING:
        return _encode_str(val, tobuffer, oob)
    elif typetag == OSCTYPE_BLOB:
        return _encode_blob(val, tobuffer, oob)
    elif typetag == OSCTYPE_TIMETAG:
        rawoscdata = val.to_bytes()
    elif typetag in (OSCTYPE_TRUE, OSCTYPE_FALSE, OSCTYPE_NIL):
        return 0
    else:
        packer = {
            OSCTYPE_INT32: _int32,
            OSCTYPE_INT64: _int64,
            OSCTYPE_FLOAT32: _float32,
            OSCTYPE_FLOAT64: _float64,
            }[typetag]
        try:
            rawoscdata = packer.pack(val)
        except (struct.error, OverflowError) as e:
            raise OSCInvalidDataError("OSC value {!r} don't fit in type "
                        "tag {!r}: {}".format(val, typetag, e)) from e
    tobuffer.extend(rawoscdata)
    return len(rawoscdata)


#==================== FUNCTIONS FOR CONSTRUCTED TYPES =======================
def _decode_message(rawoscdata, oob):
    """Decode a raw OSC message into an OSCMessage.

    :param rawoscdata: raw OSC data to decode
    :type rawoscdata: memoryview
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of decoded bytes, decoded content
    :rtype: int, OSCMessage
    """
    totalcount = 0
    count, address = _decode_str(rawoscdata, oob)
    totalcount += count
    rawoscdata = rawoscdata[count:]

    if not len(rawoscdata):
        raise OSCTruncatedInputError("OSC missing type tags after address "
                                     "{!r}".format(address))
    try:
        count, typetags = _decode_str(rawoscdata, {})
    except OSCTruncatedInputError:
        raise
    except OSCInvalidRawError as e:
        raise OSCInvalidTypeTagStringError("OSC type tags are not ASCII: "
                        "{}".format(_dumpmv(rawoscdata))) from e
    if not typetags.startswith(BEGIN_TYPETAG):
        raise OSCInvalidTypeTagStringError("OSC invalid type tags, don't "
                        "start by ,: {}".format(_dumpmv(rawoscdata)))
    totalcount += count
    rawoscdata = rawoscdata[count:]

    msg = OSCMessage(address)
    # Pass initial ','.
    for tag in typetags[1:]:
        count, arg = _decode_osc_type(rawoscdata, tag, oob)
        totalcount += count
        rawoscdata = rawoscdata[count:]
        msg.arguments.append(arg)

    # Return consumed bytes, message.
    return totalcount, msg


def _encode_message(message, tobuffer, oob):
    """Build OSC representation of a message.

    Message representation is added at the end of tobuffer (generally an
    bytearray).

    :param message: message object to encode.
    :type message: OSCMessage
    :param tobuffer: bytes collection to collect built result.
    :type tobuffer: bytearray
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of bytes produced.
    :rtype: int
    """
    if not message.address.startswith('/'):
        raise OSCInvalidDataError("OSC invalid address beginning: "
                                  "missing /")

    # Arguments payload is built first, type tags are collected meanwhile.
    typetags = [BEGIN_TYPETAG]
    payload = bytearray()
    for arg in message.arguments:
        tag = osctypetag_for(arg)
        typetags.append(tag)
        _encode_osc_type(arg, tag, payload, oob)

    totalcount = 0
    totalcount += _encode_str(message.address, tobuffer, oob)
    totalcount += _encode_str(''.join(typetags), tobuffer, {})
    tobuffer.extend(payload)
    totalcount += len(payload)
    return totalcount


def _decode_bundle(rawoscdata, oob, depth):
    """Decode an OSC bundle raw data into an OSCBundle object.

    :param rawoscdata: sequences of bytes containing OSC data,
    :type rawoscdata: memoryview
    :param oob: out of band extra parameters / options
    :type oob: dict
    :param depth: nesting level of this bundle, 0 for top level.
    :type depth: int
    :return: count of consumed bytes, decoded value
    :rtype: int, OSCBundle
    """
    # An OSC Bundle consists of the OSC-string "#bundle" followed by an OSC
    # Time Tag, followed by zero or more OSC Bundle Elements.
    # An OSC Bundle Element consists of its size and its contents.
    # The size is an int32 representing the number of 8-bit bytes in the
    # contents, and will always be a multiple of 4. The contents are either
    # an OSC Message or an OSC Bundle.
    maxdepth = oob.get('max_bundle_depth', MAX_BUNDLE_DEPTH)
    if depth > maxdepth:
        raise OSCNestingTooDeepError("OSC bundles nested more than {} "
                                     "levels".format(maxdepth))
    totalcount = 0

    count, bundlehead = _decode_str(rawoscdata, oob)
    if bundlehead != BUNDLE_TAG:
        raise OSCInvalidBundleTagError("OSC invalid bundle header {!r} in "
                        "message: {}".format(bundlehead, _dumpmv(rawoscdata)))
    totalcount += count
    rawoscdata = rawoscdata[count:]

    count, timetag = _decode_osc_type(rawoscdata, OSCTYPE_TIMETAG, oob)
    totalcount += count
    rawoscdata = rawoscdata[count:]

    bundle = OSCBundle(timetag)
    elemcount = 0
    while len(rawoscdata):
        elemcount += 1
        # Get size of next element.
        count, size = _decode_fixed(rawoscdata, _int32, "element size")
        if size < 0 or size + count > len(rawoscdata):
            raise OSCMalformedLengthError("OSC invalid bundle element {} "
                    "size: size {} for remaining {} bytes, size&data: "
                    "{}".format(elemcount, size, len(rawoscdata) - count,
                    _dumpmv(rawoscdata)))
        totalcount += count
        rawoscdata = rawoscdata[count:]

        subpart = rawoscdata[:size]
        count, elem = _decode_element(subpart, oob, depth + 1)
        if elem is None:
            raise OSCInvalidRawError("OSC bundle element {} is neither "
                    "a message nor a bundle: {}".format(elemcount,
                    _dumpmv(subpart)))
        if count != size:
            raise OSCMalformedLengthError("OSC bundle element {} declares "
                    "{} bytes but content uses {}".format(elemcount, size,
                    count))
        bundle.append(elem)
        totalcount += size
        rawoscdata = rawoscdata[size:]

    return totalcount, bundle


def _encode_bundle(bundle, tobuffer, oob):
    """Encode a bundle and its elements, messages first then bundles.

    Note: OSC doc indicates that contained bundles must have timetag greater
    or equal than container bundle, but this is not enforced neither checked
    by this function.

    :param tobuffer: bytes collection to collect built result.
    :type tobuffer: bytearray
    :param oob: out of band extra parameters / options
    :type oob: dict
    :return: count of bytes produced.
    :rtype: int
    """
    totalcount = 0
    totalcount += _encode_str(BUNDLE_TAG, tobuffer, {})
    totalcount += _encode_osc_type(bundle.timetag, OSCTYPE_TIMETAG,
                                   tobuffer, oob)
    for elem in bundle.elements():
        # Preserve room for element size.
        elemsizeindex = len(tobuffer)
        totalcount += _encode_osc_type(0, OSCTYPE_INT32, tobuffer, oob)
        if isinstance(elem, OSCBundle):
            elemsize = _encode_bundle(elem, tobuffer, oob)
        else:
            elemsize = _encode_message(elem, tobuffer, oob)
        # Update element size inside bundle encoded data.
        tobuffer[elemsizeindex:elemsizeindex + 4] = _int32.pack(elemsize)
        totalcount += elemsize

    return totalcount


def _decode_element(rawoscdata, oob, depth=0):
    """Internal function - decode bundle element / packet content.

    The first byte is sniffed: ``/`` for a message, ``#`` for a bundle.
    Anything else give a None packet, caller decides if it is an error.

    :param rawoscdata: raw OSC data to decode
    :type rawoscdata: memoryview
    :param oob: out of band extra parameters / options
    :type oob: dict
    :param depth: bundle nesting level
    :type depth: int
    :return: count of consumed bytes, decoded content of the raw data
    :rtype: int, OSCBundle or OSCMessage or None
    """
    if not len(rawoscdata):
        raise OSCTruncatedInputError("OSC empty raw data")
    if rawoscdata[0] == BEGIN_ADDRPATTERN_CODE:
        return _decode_message(rawoscdata, oob)
    elif rawoscdata[0] == BEGIN_BUNDLE_CODE:
        return _decode_bundle(rawoscdata, oob, depth)
    return 0, None


def decode_packet(rawoscdata, oob=None):
    """From a raw OSC packet, build the OSCMessage or OSCBundle.

    Generally the packet come from a received datagram, whose whole size is
    the packet size.

    :param rawoscdata: content of packet data to decode.
    :type rawoscdata: bytes or bytearray or memoryview (indexable bytes)
    :param oob: out of band extra parameters (see module documentation).
    :type oob: dict
    :return: decoded OSC packet, None if the data don't start like a
        message or a bundle.
    :rtype: OSCMessage or OSCBundle or None
    """
    rawoscdata = memoryview(rawoscdata)
    if rawoscdata.format != 'B':
        rawoscdata = rawoscdata.cast('B')

    if oob is None:
        oob = {}

    if oob.get('decode_packet_dumpraw', False):
        print("OSC decoding packet:", file=oob.get('dumpfile', sys.stdout))
        dumphex_buffer(rawoscdata, oob.get('dumpfile', None))

    count, packet = _decode_element(rawoscdata, oob)
    if packet is None:
        return None
    if count != len(rawoscdata):
        raise OSCMalformedLengthError("OSC remaining data after raw "
                    "structures: {}".format(_dumpmv(rawoscdata[count:])))
    return packet


def encode_packet(content, oob=None):
    """From an OSCBundle or an OSCMessage, build OSC raw packet.

    :param content: data of packet to encode
    :type content: OSCMessage or OSCBundle
    :param oob: out of band extra parameters (see module documentation).
    :type oob: dict
    :return: raw representation of the packet
    :rtype: bytes
    """
    if oob is None:
        oob = {}

    tobuffer = bytearray()

    if isinstance(content, OSCBundle):
        _encode_bundle(content, tobuffer, oob)
    elif isinstance(content, OSCMessage):
        _encode_message(content, tobuffer, oob)
    else:
        raise OSCInvalidDataError("OSC content {!r} is not OSCBundle or "
                "OSCMessage.".format(content.__class__.__name__))

    if oob.get('encode_packet_dumpraw', False):
        print("OSC encoded packet:", file=oob.get('dumpfile', sys.stdout))
        dumphex_buffer(tobuffer, oob.get('dumpfile', None))

    return bytes(tobuffer)


#============================== EXTRA TOOLS =================================
def _dumpmv(data, length=20):
    """Return printable version of a memoryview sequence of bytes.

    This function is called everywhere we raise an error and wants to
    attach part of raw data to the exception.

    :param data: some raw data to format.
    :type data: bytes or memoryview
    :param length: how many bytes to dump, length<=0 to dump all bytes.
        Default to 20 bytes.
    :type length: int
    """
    if length <= 0 or length > len(data):
        length = len(data)
    data = bytes(data[:length])
    linetext = ["({} bytes) ".format(length)]
    linetext.extend("{:02x} ".format(v) for v in data)
    linetext.append('   ')
    for v in data:
        if 32 <= v <= 126:
            linetext.append(chr(v))
        else:
            linetext.append('.')
    return "".join(linetext)


def dumphex_buffer(rawdata, tofile=None):
    """Dump hexa codes of OSC stream, group by 4 bytes to identify parts.

    :param rawdata: some raw data to format.
    :type rawdata: bytes
    :param tofile: output stream to receive dump
    :type tofile: file (or file-like)
    """
    if tofile is None:
        tofile = sys.stdout

    linebytes = []
    linetext = []
    ofs = 0
    for i, v in enumerate(bytes(rawdata)):
        linebytes.append("{:02x}".format(v))
        if 32 <= v <= 126:
            linetext.append(chr(v))
        else:
            linetext.append('.')
        if (i + 1) % 16 == 0 or i == len(rawdata) - 1:
            print("{:03d}:{:40s}{}".format(ofs, ''.join(linebytes),
                                            ''.join(linetext)), file=tofile)
            linetext = []
            linebytes = []
            ofs = i + 1     # Index of *next* value.
        elif (i + 1) % 4 == 0:
            linebytes.append(' ')
            linetext.append(' ')
