#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/oscudp.py
# <pep8 compliant>
"""UDP transport of OSC packets, one packet per datagram.

:class:`UdpServer` binds a socket, receives datagrams, decodes them and
posts dispatch of packets to a pool of worker threads, so that its receive
loop never wait for methods execution.

:class:`UdpClient` encodes packets and sends them to a peer.

Blocking receptions are bounded by a deadline and a
:class:`~osc4udp.oscscheduling.ServeContext`, which can be cancelled from
another thread (the socket is polled with a short timeout to check for
cancellation).
"""

import collections
import errno
import socket

from .oscbuildparse import (decode_packet, encode_packet, OSCMessage,
                            OSCBundle, MAX_DATAGRAM_SIZE)
from .oscerrors import (OSCInvalidRawError, OSCInvalidDataError,
                        OSCTransportError, OSCTimeoutError, OSCCancelledError)
from .oscdispatching import Dispatcher
from .oscmethod import OSCARG_MESSAGE
from .oscscheduling import (ServeContext, Backoff, deadline2timeout,
                            earliest_deadline)
from .osctoolspools import WorkQueue

__all__ = [
    "UdpServer",
    "UdpClient",
    "AddrInfo",
    "network_getaddrinfo",
    "select_sockspec",
    "TRANSIENT_ERRNOS",
    ]

# Socket errors after which a receive can simply be retried later.
TRANSIENT_ERRNOS = frozenset(e for e in (
                        getattr(errno, "EAGAIN", None),
                        getattr(errno, "EWOULDBLOCK", None),
                        getattr(errno, "EINTR", None),
                        getattr(errno, "ENOBUFS", None),
                        getattr(errno, "ENOMEM", None),
                        ) if e is not None)

# Default delay between two checks of serve context cancellation.
DEFAULT_POLL_PERIOD = 0.1

# Default count of threads executing dispatch of received packets.
DEFAULT_EXECTHREADS = 10

# To manipulate getaddrinfo() results.
AddrInfo = collections.namedtuple("AddrInfo",
                            "family, type, proto, canonname, sockaddr")


def network_getaddrinfo(options, prefix, family=0, addrtype=0, proto=0):
    """Return socket.getaddrinfo() for the address given in options.

    IP address and port number are set with two separated keys:
        `prefix_host`
        `prefix_port`

    Host "*" is used for all interfaces (a passive address to bind).
    IPV6 addresses may be given within [].

    Other options can be used to specify some parts:
        `prefix_forceipv4` as boolean True
        `prefix_forceipv6` as boolean True

    :param options: dictionnary of options.
    :type options: dict
    :param prefix: keys prefix, like "udpread".
    :type prefix: str
    :param family: protocol family to restrict list of replies.
        Default to 0 (all protocol families).
    :type family: int (overriden by options providen)
    :param addrtype: type of socket to restrict list of replies.
        Default to 0 (all socket types).
    :type addrtype: int
    :param proto: protocol specified to restrict list of replies.
        Default to 0 (all protocols).
    :type proto: int
    :return: list of address informations to use by socket().
    :rtype: [ AddrInfo ]
    """
    flags = 0

    forceipv4 = options.get(prefix + '_forceipv4', False)
    forceipv6 = options.get(prefix + '_forceipv6', False)
    if forceipv4 and forceipv6:
        raise ValueError("OSC {} force IPV4 and IPV6 simultaneously in "
                         "options.".format(prefix))

    host = options.get(prefix + '_host', None)
    port = options.get(prefix + '_port', None)

    if host is None:
        raise ValueError("OSC {} missing host information.".format(prefix))
    if port is None:
        raise ValueError("OSC {} missing port information.".format(prefix))

    if host == "*":     # Our match for all interfaces.
        host = None     # for getaddrinfo()
        flags |= socket.AI_PASSIVE
    else:
        host = host.strip()
        if host.startswith('[') and host.endswith(']'):
            host = host[1:-1]

    if isinstance(port, str):
        port = int(port.strip())

    if forceipv4:
        family = socket.AF_INET
    elif forceipv6:
        family = socket.AF_INET6

    try:
        res = socket.getaddrinfo(host, port, family, addrtype, proto,
                                 flags=flags)
    except socket.gaierror as e:
        raise OSCTransportError("OSC {} cannot resolve {!r}: {}".format(
                                prefix, host, e)) from e
    if not res:
        raise OSCTransportError("OSC {} get no addrinfo for host/port with "
                                "specified protocol/family".format(prefix))

    return [AddrInfo(*r) for r in res]


def select_sockspec(sockspeclist):
    """Choose the address to use among getaddrinfo() results.

    If we have IPV6 and IPV4, we prefer IPV4 (use forceipv6 option to get
    IPV6).
    """
    for spec in sockspeclist:
        if spec.family == socket.AF_INET:
            return spec
    return sockspeclist[0]


def _set_srcaddr(packet, srcaddr):
    # Source address is given to all elements, handlers only see messages.
    packet.srcaddr = srcaddr
    if isinstance(packet, OSCBundle):
        for elem in packet.elements():
            _set_srcaddr(elem, srcaddr)


class UdpServer(object):
    """Reception of OSC packets from UDP datagrams.

    :ivar name: server identification, for logs and threads names.
    :type name: str
    :ivar udpread_host: address of host to bind. Can be a DNS name or an
        IPV4 or IPV6 address, or "*" for all interfaces.
    :type udpread_host: str
    :ivar udpread_port: number of port to bind, 0 for an ephemeral port.
    :type udpread_port: int
    :ivar udpread_buffersize: maximum size of a datagram.
        Default to 65535.
    :type udpread_buffersize: int
    :ivar udpread_reuseaddr: flag to set SO_REUSEADDR on the socket.
        Default to True.
    :type udpread_reuseaddr: bool
    :ivar dispatcher: what execute received packets.
        Default to a new Dispatcher owned by the server.
    :type dispatcher: Dispatcher
    :ivar workqueue: threads executing dispatch of received packets, None
        when dispatch is done inline (execthreadscount option is 0).
    :type workqueue: WorkQueue
    :ivar poll_period: maximum seconds blocked in the socket between two
        checks of serve context cancellation.
        Default to 0.1.
    :type poll_period: float
    :ivar oob: options for packets decoding.
    :type oob: dict
    :ivar context: serve context used by serve_forever().
    :type context: ServeContext
    :ivar logger: Python logger to trace activity.
        Default to None
    :type logger: logging.Logger
    """
    def __init__(self, name, options):
        self.name = name
        self.logger = options.get("logger", None)
        self.udpread_host = options.get("udpread_host", None)
        self.udpread_port = options.get("udpread_port", None)
        self.udpread_buffersize = options.get("udpread_buffersize",
                                              MAX_DATAGRAM_SIZE)
        if not 0 < self.udpread_buffersize <= MAX_DATAGRAM_SIZE:
            raise ValueError("OSC server {!r} buffer size must be in 1.."
                             "{}".format(name, MAX_DATAGRAM_SIZE))
        self.udpread_reuseaddr = options.get("udpread_reuseaddr", True)
        self.poll_period = options.get("poll_period", DEFAULT_POLL_PERIOD)
        self.oob = options.get("oob", {})

        self.sockspec = select_sockspec(network_getaddrinfo(options,
                            "udpread", addrtype=socket.SOCK_DGRAM,
                            proto=socket.IPPROTO_UDP))

        execthreadscount = options.get("execthreadscount",
                                       DEFAULT_EXECTHREADS)
        if execthreadscount > 0:
            self.workqueue = WorkQueue(self.logger)
            self.workqueue.add_working_threads(execthreadscount)
        else:
            self.workqueue = None

        self.dispatcher = options.get("dispatcher", None)
        self.owndispatcher = self.dispatcher is None
        if self.owndispatcher:
            self.dispatcher = Dispatcher(name, {
                                        "logger": self.logger,
                                        "workqueue": self.workqueue,
                                        })

        self.udpsock = None
        self.context = None

    def __repr__(self):
        return "UdpServer({!r}, {!r})".format(self.name,
                                              self.sockspec.sockaddr)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.terminate()

    @property
    def address(self):
        """Bound (host, port) of the socket, None if not opened."""
        if self.udpsock is None:
            return None
        return self.udpsock.getsockname()[:2]

    def open(self):
        if self.udpsock is not None:
            return
        sock = socket.socket(self.sockspec.family, socket.SOCK_DGRAM)
        try:
            if self.udpread_reuseaddr:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(self.sockspec.sockaddr)
        except OSError as e:
            sock.close()
            raise OSCTransportError("OSC server {!r} cannot bind {!r}: "
                        "{}".format(self.name, self.sockspec.sockaddr, e),
                        e.errno in TRANSIENT_ERRNOS) from e
        self.udpsock = sock
        if self.logger is not None:
            self.logger.info("OSC server %r opened on %r", self.name,
                             self.address)

    def close(self):
        if self.udpsock is None:
            return
        self.udpsock.close()
        self.udpsock = None
        if self.logger is not None:
            self.logger.info("OSC server %r closed", self.name)

    def register(self, address, function, argscheme=OSCARG_MESSAGE,
                 extra=None):
        """Register a method in the server dispatcher.

        See Dispatcher.add_method().
        """
        return self.dispatcher.add_method(address, function, argscheme, extra)

    def receive_one(self, deadline=None, context=None):
        """Wait for one datagram and decode it.

        :param deadline: absolute time limit to wait, None for no limit
            (other than the context one).
        :type deadline: float
        :param context: cancellation and deadline of the wait.
        :type context: ServeContext
        :return: decoded packet, or None for a datagram which is not OSC.
        :rtype: OSCMessage or OSCBundle or None
        :raise OSCTimeoutError: the deadline has been reached.
        :raise OSCCancelledError: the context has been cancelled.
        :raise OSCTransportError: socket failure, see its transient flag.
        :raise OSCInvalidRawError: malformed datagram.
        """
        if self.udpsock is None:
            raise OSCTransportError("OSC server {!r} not opened".format(
                                    self.name))
        if context is not None:
            deadline = earliest_deadline(deadline, context.deadline)

        while True:
            if context is not None and context.cancelled:
                raise OSCCancelledError("OSC server {!r} reception "
                                        "cancelled".format(self.name))
            timeout = deadline2timeout(deadline)
            if timeout is not None and timeout <= 0:
                raise OSCTimeoutError("OSC server {!r} reception timeout"
                                      .format(self.name))
            if timeout is None or (self.poll_period is not None and
                                   self.poll_period < timeout):
                timeout = self.poll_period
            self.udpsock.settimeout(timeout)
            try:
                rawoscdata, srcaddr = self.udpsock.recvfrom(
                                                self.udpread_buffersize)
            except socket.timeout:
                continue    # Check cancellation and deadline.
            except OSError as e:
                raise OSCTransportError("OSC server {!r} reception failure: "
                        "{}".format(self.name, e),
                        e.errno in TRANSIENT_ERRNOS) from e
            break

        if self.logger is not None:
            self.logger.debug("OSC server %r received %d bytes from %r",
                              self.name, len(rawoscdata), srcaddr)
        packet = decode_packet(rawoscdata, self.oob)
        if packet is not None:
            _set_srcaddr(packet, srcaddr)
        return packet

    def post_packet(self, packet):
        """Give a received packet to the dispatcher, via the workqueue."""
        if self.workqueue is not None:
            self.workqueue.send_callable(self.dispatcher.dispatch_packet,
                                         (packet,))
        else:
            self.dispatcher.dispatch_packet(packet)

    def serve(self, context=None):
        """Receive and dispatch packets until the context is done.

        Malformed datagrams are logged and dropped. Transient socket errors
        are retried after an increasing delay (5 ms doubling up to 1 s).
        Other transport errors are raised.

        :param context: cancellation and deadline of the serve loop.
            Default to a new context (no deadline).
        :type context: ServeContext
        """
        if context is None:
            context = ServeContext()
        backoff = Backoff()
        if self.logger is not None:
            self.logger.info("OSC server %r start serving", self.name)
        try:
            while True:
                try:
                    packet = self.receive_one(context=context)
                except (OSCTimeoutError, OSCCancelledError):
                    break
                except OSCInvalidRawError as e:
                    backoff.reset()
                    if self.logger is not None:
                        self.logger.warning("OSC server %r dropped invalid "
                                            "datagram: %s", self.name, e)
                    continue
                except OSCTransportError as e:
                    if not e.transient:
                        raise
                    delay = backoff.next_delay()
                    if self.logger is not None:
                        self.logger.warning("OSC server %r transient error, "
                                "retry in %.3f sec: %s", self.name, delay, e)
                    if context.wait(delay):
                        break
                    continue

                backoff.reset()
                if packet is None:
                    if self.logger is not None:
                        self.logger.debug("OSC server %r ignored non OSC "
                                          "datagram", self.name)
                    continue
                self.post_packet(packet)
        finally:
            if self.logger is not None:
                self.logger.info("OSC server %r stop serving", self.name)

    def serve_forever(self):
        """Serve until shutdown() is called (from another thread)."""
        self.context = ServeContext()
        self.serve(self.context)

    def shutdown(self):
        if self.context is not None:
            self.context.cancel()

    def terminate(self):
        """Stop serving, terminate owned threads and close the socket.

        Packets already posted are processed before workers exit.
        """
        self.shutdown()
        if self.owndispatcher:
            self.dispatcher.terminate()
        if self.workqueue is not None:
            self.workqueue.terminate()
            self.workqueue = None
        self.close()


class UdpClient(object):
    """Emission of OSC packets in UDP datagrams.

    Options keys are udpwrite_forceipv4, udpwrite_forceipv6, oob (packets
    encoding options) and logger.
    """
    def __init__(self, host, port, options=None):
        if options is None:
            options = {}
        options = dict(options, udpwrite_host=host, udpwrite_port=port)
        self.logger = options.get("logger", None)
        self.oob = options.get("oob", {})
        self.sockspec = select_sockspec(network_getaddrinfo(options,
                            "udpwrite", addrtype=socket.SOCK_DGRAM,
                            proto=socket.IPPROTO_UDP))
        self.udpsock = socket.socket(self.sockspec.family, socket.SOCK_DGRAM)

    def __repr__(self):
        return "UdpClient({!r})".format(self.sockspec.sockaddr)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def send(self, packet):
        """Send a packet in one datagram.

        :param packet: packet to encode, or already encoded raw data.
        :type packet: OSCMessage or OSCBundle or bytes
        :return: count of bytes sent.
        :rtype: int
        """
        if isinstance(packet, (OSCMessage, OSCBundle)):
            rawoscdata = encode_packet(packet, self.oob)
        else:
            rawoscdata = bytes(packet)
        if len(rawoscdata) > MAX_DATAGRAM_SIZE:
            raise OSCInvalidDataError("OSC packet of {} bytes too large for "
                                      "a datagram".format(len(rawoscdata)))
        if self.logger is not None:
            self.logger.debug("UDP sendto(%r (...), %s)", rawoscdata[:40],
                              self.sockspec.sockaddr)
        try:
            return self.udpsock.sendto(rawoscdata, self.sockspec.sockaddr)
        except OSError as e:
            raise OSCTransportError("OSC client send failure: {}".format(e),
                                    e.errno in TRANSIENT_ERRNOS) from e

    def close(self):
        if self.udpsock is not None:
            self.udpsock.close()
            self.udpsock = None
