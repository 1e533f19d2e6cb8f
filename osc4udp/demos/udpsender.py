#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/demos/udpsender.py
# <pep8 compliant>
"""Send some messages and bundles to a demo server.

Usage: ./udpsender.py [port] [nolog]
"""

# Make osc4udp available.
import sys
from os.path import abspath, dirname
PACKAGE_PATH = dirname(dirname(dirname(abspath(__file__))))
if PACKAGE_PATH not in sys.path:
    sys.path.insert(0, PACKAGE_PATH)
import time

from osc4udp.oscbuildparse import OSCMessage, OSCBundle, OSCint64
from osc4udp.osctimetag import OSCtimetag
from osc4udp.oscudp import UdpClient

if "nolog" in sys.argv[1:]:
    logger = None
else:
    from demoslogger import logger

IP = "127.0.0.1"
PORT = 8000
if len(sys.argv) > 1 and sys.argv[1].isdigit():
    PORT = int(sys.argv[1])

client = UdpClient(IP, PORT, {"logger": logger})

for i in range(3):
    client.send(OSCMessage("/message/address", "message", i + 1, 3.5, True,
                           None, OSCint64(2 ** 40), b"\x01\x02\x03"))

# Same pattern matching multiple methods.
client.send(OSCMessage("/mixer/*/gain", 0.75))
client.send(OSCMessage("/mixer/[1-2]/gain", 0.25))

# Bundle executed in 2 seconds, with a sub-bundle one second later.
now = OSCtimetag.from_unixtime(time.time())
client.send(OSCBundle(now + 2.0,
                      OSCMessage("/message/address", "delayed"),
                      OSCMessage("/mixer/{3,4}/gain", 1.0),
                      OSCBundle(now + 3.0,
                                OSCMessage("/message/address", "later"))))
client.close()
print("Packets sent, delayed ones arrive in 2 and 3 seconds.")
