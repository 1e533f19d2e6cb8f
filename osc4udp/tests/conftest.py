#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/tests/conftest.py
# <pep8 compliant>
"""Common fixtures: logger, dispatcher, loopback UDP server and client.
"""

import pytest

from osc4udp.oscdispatching import Dispatcher
from osc4udp.oscudp import UdpServer, UdpClient
from osc4udp.tests.testslogger import logger as testslogger


@pytest.fixture
def logger():
    return testslogger


@pytest.fixture
def dispatcher(logger):
    disp = Dispatcher("testdisp", {"logger": logger})
    yield disp
    disp.terminate()


@pytest.fixture
def server(logger):
    srv = UdpServer("testsrv", {
                "udpread_host": "127.0.0.1",
                "udpread_port": 0,
                "execthreadscount": 2,
                "poll_period": 0.02,
                "logger": logger,
                })
    srv.open()
    yield srv
    srv.terminate()


@pytest.fixture
def client(server, logger):
    host, port = server.address
    cli = UdpClient(host, port, {"logger": logger})
    yield cli
    cli.close()
