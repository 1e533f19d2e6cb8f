#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/oscmethod.py
# <pep8 compliant>
"""Routing of OSC messages to registered functions.

Methods are registered at literal addresses. The address of a received
message is an OSC pattern, parsed once (and kept in a cache), and a method
is called when the pattern match its address. So a message sent to
``/mixer/*/gain`` reach methods registered at ``/mixer/1/gain`` and
``/mixer/2/gain``.

A registered function is stored in a MethodFilter, with the argument
scheme telling which parts of the message it wants, an optional extra
value and a logger::

    def handler(msg):
        print("Received", msg)

    methfilter = MethodFilter("/test/1/go", handler)
    msg = OSCMessage("/test/*/go", "One", "Two", 3)
    if methfilter.match(msg.address):
        methfilter(msg)
"""

__all__ = [
    "MethodFilter",
    "OSCPattern",
    "parse_pattern",
    "compile_pattern",
    "match_pattern",
    "check_address",
    "INVALID_ADDRESS_CHARS",
    # OSC handlers argument schemes (combinable tuples)
    "OSCARG_DATAUNPACK",
    "OSCARG_DATA",
    "OSCARG_MESSAGE",
    "OSCARG_ADDRESS",
    "OSCARG_TYPETAGS",
    "OSCARG_EXTRA",
    "OSCARG_METHODFILTER",
    "OSCARG_SRCADDR",
    ]

import functools

from .oscerrors import OSCInvalidAddressError


# Argument schemes of handler functions. Each is a 1 item tuple, add them
# together to get several arguments in the order you need.

# Message arguments, each as a separate parameter.
OSCARG_DATAUNPACK = ("data_unpack",)
# Message arguments as a single tuple.
OSCARG_DATA = ("data",)
# The OSCMessage itself.
OSCARG_MESSAGE = ("message",)
# Address of the message (the pattern it was sent to).
OSCARG_ADDRESS = ("address",)
# Type tags string of the message.
OSCARG_TYPETAGS = ("typetags",)
# Value given at registration.
OSCARG_EXTRA = ("extra",)
# The MethodFilter being called.
OSCARG_METHODFILTER = ("methodfilter",)
# Sender (host, port), None for locally built messages.
OSCARG_SRCADDR = ("srcaddr",)

_OSCARG_SCHEMES = set(OSCARG_DATAUNPACK + OSCARG_DATA + OSCARG_MESSAGE +
                      OSCARG_ADDRESS + OSCARG_TYPETAGS + OSCARG_EXTRA +
                      OSCARG_METHODFILTER + OSCARG_SRCADDR)

# Chars refused in addresses used to register methods.
INVALID_ADDRESS_CHARS = "*?,[]{}# "


def check_address(address):
    """Ensure an address can be used to register a method.

    :param address: literal OSC address.
    :type address: str
    :raise OSCInvalidAddressError: address is empty, don't start by /, or
        contains a pattern/reserved char.
    """
    if not isinstance(address, str) or not address.startswith('/'):
        raise OSCInvalidAddressError("OSC address {!r} must be a string "
                                     "beginning by /".format(address))
    for c in INVALID_ADDRESS_CHARS:
        if c in address:
            raise OSCInvalidAddressError("OSC address {!r} may not contain "
                        "any characters in {!r}".format(address, c))


class MethodFilter(object):
    """Storage of a registered address and corresponding function.

    :ivar address: the literal address messages patterns are matched with.
    :type address: str
    :ivar function: what to call when a message match the address
    :type function: callable
    :ivar argscheme: scheme for passing arguments to handler function.
        Default to OSCARG_MESSAGE (you can combine OSCARG_… in your required
        order).
    :type argscheme: tuple
    :ivar extra: extra parameter for the handler function.
        Default to None.
    :type extra: whatever you need
    :ivar logger: Python logger to trace activity.
        Default to None
    :type logger: logging.Logger
    """
    def __init__(self, address, function, argscheme=OSCARG_MESSAGE,
                 extra=None, logger=None):
        if not callable(function):
            raise TypeError("OSC MethodFilter function must be callable")
        self.address = address
        self.function = function
        for scheme in argscheme:
            if scheme not in _OSCARG_SCHEMES:
                if logger is not None:
                    logger.error("OSC MethodFilter unknown argument scheme %s",
                                 scheme)
                raise ValueError("OSC MethodFilter unknown argument "
                                 "scheme {}".format(scheme))
        self.argscheme = argscheme
        self.extra = extra
        self.logger = logger

    def __repr__(self):
        sres = [repr(self.address), str(self.function)]
        if self.argscheme != OSCARG_MESSAGE:
            sres.append('argscheme={!r}'.format(self.argscheme))
        if self.extra is not None:
            sres.append('extra={!r}'.format(self.extra))
        return "MethodFilter(" + ', '.join(sres) + ")"

    def match(self, msgaddrpattern):
        """Test if a received message address pattern match our address."""
        return match_pattern(msgaddrpattern, self.address)

    def build_args(self, message):
        """Prepare the function arguments following the argument scheme.
        """
        args = []
        for scheme in self.argscheme:
            if scheme == OSCARG_DATAUNPACK[0]:
                args.extend(message.arguments)
            elif scheme == OSCARG_DATA[0]:
                args.append(tuple(message.arguments))
            elif scheme == OSCARG_MESSAGE[0]:
                args.append(message)
            elif scheme == OSCARG_ADDRESS[0]:
                args.append(message.address)
            elif scheme == OSCARG_TYPETAGS[0]:
                args.append(message.typetags)
            elif scheme == OSCARG_EXTRA[0]:
                args.append(self.extra)
            elif scheme == OSCARG_METHODFILTER[0]:
                args.append(self)
            elif scheme == OSCARG_SRCADDR[0]:
                args.append(message.srcaddr)
        return tuple(args)

    def __call__(self, message):
        """Call the function with the message, in the caller context.

        Exceptions from the function are logged when there is a logger,
        else they propagate to the caller.
        """
        args = self.build_args(message)
        try:
            self.function(*args)
        except Exception:
            if self.logger is None:
                raise
            self.logger.exception("OSC failure in method %r processing "
                                  "message %r.", self.address, message)


# ============================ PATTERN MATCHING  ============================
# Kinds of pattern tokens.
_LITERAL = "literal"        # arg: the string
_ANYCHAR = "anychar"        # ?
_ANYSEQ = "anyseq"          # *
_CHARSET = "charset"        # arg: (negate, ((low, high), ...))
_CHOICE = "choice"          # arg: (word, ...)


def _parse_charset(content, expr):
    negate = content.startswith('!')
    if negate:
        content = content[1:]
    if not content:
        raise ValueError("OSC empty [] set in pattern {!r}".format(expr))
    ranges = []
    i = 0
    while i < len(content):
        # A - at set end is a plain char.
        if i + 2 < len(content) and content[i + 1] == '-':
            low, high = content[i], content[i + 2]
            if low > high:
                raise ValueError("OSC invalid range {}-{} in pattern "
                                 "{!r}".format(low, high, expr))
            ranges.append((low, high))
            i += 3
        else:
            ranges.append((content[i], content[i]))
            i += 1
    return negate, tuple(ranges)


def parse_pattern(expr):
    """Split an OSC address pattern into a list of matching tokens.

    OSC pattern syntax:

    - ``*`` zero or more chars
    - ``?`` one char
    - ``[abc]``, ``[a-z]`` one char in the set, ``[!a-z]`` one char out
      of the set
    - ``{foo,bar}`` one of the comma separated strings

    Other chars match themselves. Runs of ``*`` are collapsed into one
    token.

    :param expr: OSC address pattern.
    :type expr: str
    :return: list of (kind, arg) tokens.
    :rtype: list
    :raise ValueError: unclosed ``[`` or ``{``, empty set or reversed range.
    """
    tokens = []
    literal = []
    i = 0
    while i < len(expr):
        c = expr[i]
        if c not in "*?[{":
            literal.append(c)
            i += 1
            continue
        if literal:
            tokens.append((_LITERAL, ''.join(literal)))
            literal = []
        if c == '*':
            if not tokens or tokens[-1][0] != _ANYSEQ:
                tokens.append((_ANYSEQ, None))
            i += 1
        elif c == '?':
            tokens.append((_ANYCHAR, None))
            i += 1
        else:
            closing = ']' if c == '[' else '}'
            end = expr.find(closing, i + 1)
            if end < 0:
                raise ValueError("OSC unclosed {} in pattern {!r}".format(
                                 c, expr))
            content = expr[i + 1:end]
            if c == '[':
                tokens.append((_CHARSET, _parse_charset(content, expr)))
            else:
                words = sorted(set(content.split(',')))
                tokens.append((_CHOICE, tuple(words)))
            i = end + 1
    if literal:
        tokens.append((_LITERAL, ''.join(literal)))
    return tokens


class OSCPattern(object):
    """A parsed OSC address pattern, matched against literal addresses.

    Matching follows all possible positions in the address in parallel,
    token after token, so its time is bounded by the pattern length
    multiplied by the address length, whatever the pattern content.
    """
    def __init__(self, expr):
        self.expr = expr
        self.tokens = parse_pattern(expr)

    def __repr__(self):
        return "OSCPattern({!r})".format(self.expr)

    def match(self, address):
        """Test if the whole literal address match the pattern.

        :rtype: bool
        """
        size = len(address)
        positions = {0}
        for kind, arg in self.tokens:
            if not positions:
                return False
            if kind == _ANYSEQ:
                positions = range(min(positions), size + 1)
                continue
            following = set()
            for pos in positions:
                if kind == _LITERAL:
                    if address.startswith(arg, pos):
                        following.add(pos + len(arg))
                elif kind == _CHOICE:
                    for word in arg:
                        if address.startswith(word, pos):
                            following.add(pos + len(word))
                elif pos >= size:
                    continue
                elif kind == _ANYCHAR:
                    following.add(pos + 1)
                else:
                    negate, ranges = arg
                    c = address[pos]
                    if any(low <= c <= high for low, high in ranges) \
                            != negate:
                        following.add(pos + 1)
            positions = following
        return size in positions


@functools.lru_cache(maxsize=512)
def compile_pattern(expr):
    """Parsed OSCPattern of an OSC pattern, or None for an invalid pattern."""
    try:
        return OSCPattern(expr)
    except ValueError:
        return None


def match_pattern(pattern, address):
    """Test if a literal address match an OSC address pattern.

    An invalid pattern (ex. unbalanced brackets) match nothing.
    """
    compiled = compile_pattern(pattern)
    return compiled is not None and compiled.match(address)
