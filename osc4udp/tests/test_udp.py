#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/tests/test_udp.py
# <pep8 compliant>

import logging
import socket
import threading
import time

import pytest

from osc4udp.oscbuildparse import (OSCMessage, OSCBundle, OSC_IMMEDIATELY,
                                   encode_packet)
from osc4udp.oscerrors import (OSCInvalidRawError, OSCInvalidDataError,
                               OSCTransportError, OSCTimeoutError,
                               OSCCancelledError)
from osc4udp.oscscheduling import ServeContext
from osc4udp.oscudp import (UdpServer, UdpClient, AddrInfo,
                            network_getaddrinfo, select_sockspec)


def serve_in_thread(server, context):
    thread = threading.Thread(target=server.serve, args=(context,),
                              name="testserve")
    thread.start()
    return thread


def test_server_address(server):
    host, port = server.address
    assert host == "127.0.0.1"
    assert port != 0


def test_receive_one_timeout(server):
    start = time.time()
    with pytest.raises(OSCTimeoutError):
        server.receive_one(deadline=start + 0.1)
    assert time.time() - start >= 0.09


def test_receive_timeout_then_next(server, client):
    client.send(OSCMessage("/address/test1"))
    msg = server.receive_one(deadline=time.time() + 1.0)
    assert msg.address == "/address/test1"
    assert msg.srcaddr[0] == "127.0.0.1"

    # Nothing sent, next reception times out.
    with pytest.raises(OSCTimeoutError):
        server.receive_one(deadline=time.time() + 0.1)

    client.send(OSCMessage("/address/test2", 42))
    msg = server.receive_one(deadline=time.time() + 1.0)
    assert msg == OSCMessage("/address/test2", 42)


def test_receive_one_cancelled(server):
    ctx = ServeContext()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    with pytest.raises(OSCCancelledError):
        server.receive_one(context=ctx)
    timer.join()


def test_receive_one_context_deadline(server):
    with pytest.raises(OSCTimeoutError):
        server.receive_one(context=ServeContext(timeout=0.05))


def test_receive_bundle_source_address(server, client):
    bun = OSCBundle(OSC_IMMEDIATELY, OSCMessage("/in/bundle", "x"),
                    OSCBundle(OSC_IMMEDIATELY, OSCMessage("/deeper")))
    client.send(bun)
    received = server.receive_one(deadline=time.time() + 1.0)
    assert received == bun
    assert received.srcaddr is not None
    assert received.messages[0].srcaddr == received.srcaddr
    assert received.bundles[0].messages[0].srcaddr == received.srcaddr


def test_receive_non_osc_and_malformed(server, client):
    client.send(b"hello")
    assert server.receive_one(deadline=time.time() + 1.0) is None
    client.send(b"/a/b/c\x00\x00")
    with pytest.raises(OSCInvalidRawError):
        server.receive_one(deadline=time.time() + 1.0)


def test_receive_not_opened(logger):
    srv = UdpServer("closed", {"udpread_host": "127.0.0.1",
                               "udpread_port": 0,
                               "execthreadscount": 0,
                               "logger": logger})
    assert srv.address is None
    with pytest.raises(OSCTransportError):
        srv.receive_one(deadline=time.time() + 0.1)
    srv.terminate()


def test_serve_dispatches_exactly_once(server, client, caplog):
    received = []
    arrived = threading.Event()

    def handler(msg):
        received.append(msg)
        if len(received) == 2:
            arrived.set()

    server.register("/address/test", handler)
    ctx = ServeContext()
    thread = serve_in_thread(server, ctx)
    try:
        with caplog.at_level(logging.WARNING, logger="osc"):
            client.send(OSCMessage("/address/test", 1))
            # Dropped, server continue serving.
            client.send(b"/a\x00\x00,i\x00\x00")
            client.send(OSCMessage("/address/*", 2))
            assert arrived.wait(2.0)
            time.sleep(0.1)
    finally:
        ctx.cancel()
        thread.join(2.0)
    assert not thread.is_alive()
    assert sorted(m.arguments[0] for m in received) == [1, 2]
    assert "dropped invalid datagram" in caplog.text


def test_serve_bundles(server, client):
    received = []
    arrived = threading.Event()

    def handler(msg):
        received.append(msg.address)
        arrived.set()

    server.register("/timed", handler)
    ctx = ServeContext()
    thread = serve_in_thread(server, ctx)
    try:
        start = time.time()
        client.send(OSCBundle(start + 0.2, OSCMessage("/timed")))
        assert arrived.wait(2.0)
        assert time.time() - start >= 0.15
    finally:
        ctx.cancel()
        thread.join(2.0)
    assert received == ["/timed"]


def test_serve_returns_at_deadline(server):
    start = time.time()
    server.serve(ServeContext(timeout=0.1))
    assert 0.09 <= time.time() - start < 2.0


def test_serve_forever_and_shutdown(server, client):
    arrived = threading.Event()
    server.register("/ping", lambda msg: arrived.set())
    thread = threading.Thread(target=server.serve_forever)
    thread.start()
    try:
        client.send(OSCMessage("/ping"))
        assert arrived.wait(2.0)
    finally:
        # Context is created by serve_forever().
        while server.context is None:
            time.sleep(0.01)
        server.shutdown()
        thread.join(2.0)
    assert not thread.is_alive()


def test_serve_inline_dispatch(logger):
    srv = UdpServer("inline", {"udpread_host": "127.0.0.1",
                               "udpread_port": 0,
                               "execthreadscount": 0,
                               "poll_period": 0.02,
                               "logger": logger})
    received = []
    srv.register("/inline", lambda msg: received.append(
                                        threading.current_thread().name))
    with srv:
        assert srv.workqueue is None
        cli = UdpClient(*srv.address)
        cli.send(OSCMessage("/inline"))
        cli.close()
        ctx = ServeContext(timeout=0.3)
        thread = serve_in_thread(srv, ctx)
        thread.join(2.0)
    assert received == ["testserve"]
    assert srv.udpsock is None


def test_serve_backoff_on_transient_errors(server):
    calls = []

    def fake_receive_one(deadline=None, context=None):
        calls.append(time.time())
        if len(calls) <= 3:
            raise OSCTransportError("no buffer", transient=True)
        raise OSCCancelledError("stop")

    server.receive_one = fake_receive_one
    server.serve(ServeContext())
    assert len(calls) == 4
    # 5 ms, 10 ms, 20 ms between attempts.
    assert calls[3] - calls[0] >= 0.03


def test_serve_raises_fatal_errors(server):
    def fake_receive_one(deadline=None, context=None):
        raise OSCTransportError("socket closed", transient=False)

    server.receive_one = fake_receive_one
    with pytest.raises(OSCTransportError):
        server.serve(ServeContext())


def test_serve_cancelled_during_backoff(server):
    ctx = ServeContext()

    def fake_receive_one(deadline=None, context=None):
        ctx.cancel()
        raise OSCTransportError("again", transient=True)

    server.receive_one = fake_receive_one
    server.serve(ctx)
    assert ctx.cancelled


def test_client_oversized_packet(client):
    with pytest.raises(OSCInvalidDataError):
        client.send(OSCMessage("/big", b"x" * 70000))


def test_client_sends_raw_data(server, client):
    raw = encode_packet(OSCMessage("/raw", "data"))
    assert client.send(raw) == len(raw)
    assert server.receive_one(deadline=time.time() + 1.0) == \
        OSCMessage("/raw", "data")


def test_server_context_manager(logger):
    with UdpServer("ctxmgr", {"udpread_host": "127.0.0.1",
                              "udpread_port": 0,
                              "logger": logger}) as srv:
        assert srv.udpsock is not None
        assert srv.workqueue is not None
    assert srv.udpsock is None
    assert srv.workqueue is None


def test_server_options_checks():
    with pytest.raises(ValueError):
        UdpServer("nohost", {"udpread_port": 0})
    with pytest.raises(ValueError):
        UdpServer("noport", {"udpread_host": "127.0.0.1"})
    with pytest.raises(ValueError):
        UdpServer("bigbuffer", {"udpread_host": "127.0.0.1",
                                "udpread_port": 0,
                                "udpread_buffersize": 100000})


def test_network_getaddrinfo():
    specs = network_getaddrinfo({"udpread_host": "127.0.0.1",
                                 "udpread_port": "9000"}, "udpread",
                                addrtype=socket.SOCK_DGRAM)
    assert specs[0].family == socket.AF_INET
    assert specs[0].sockaddr == ("127.0.0.1", 9000)
    with pytest.raises(ValueError):
        network_getaddrinfo({"udpread_host": "127.0.0.1",
                             "udpread_port": 0,
                             "udpread_forceipv4": True,
                             "udpread_forceipv6": True}, "udpread")


def test_select_sockspec_prefers_ipv4():
    v6 = AddrInfo(socket.AF_INET6, socket.SOCK_DGRAM, 0, "", ("::1", 1, 0, 0))
    v4 = AddrInfo(socket.AF_INET, socket.SOCK_DGRAM, 0, "", ("127.0.0.1", 1))
    assert select_sockspec([v6, v4]) is v4
    assert select_sockspec([v6]) is v6
