#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/demos/receiveserver.py
# <pep8 compliant>
"""Receive packets one by one and print them, without dispatching.

Usage: ./receiveserver.py [port] [nolog]

Stop with Ctrl-C.
"""

# Make osc4udp available.
import sys
from os.path import abspath, dirname
PACKAGE_PATH = dirname(dirname(dirname(abspath(__file__))))
if PACKAGE_PATH not in sys.path:
    sys.path.insert(0, PACKAGE_PATH)
import time

from osc4udp import oscbuildparse
from osc4udp.oscudp import UdpServer

if "nolog" in sys.argv[1:]:
    logger = None
else:
    from demoslogger import logger

IP = "127.0.0.1"
PORT = 8000
if len(sys.argv) > 1 and sys.argv[1].isdigit():
    PORT = int(sys.argv[1])


def print_packet(packet, indent=""):
    if isinstance(packet, oscbuildparse.OSCMessage):
        print(indent + "-- OSC Message:", packet)
    else:
        print(indent + "-- OSC Bundle:", packet.timetag.to_unixtime() -
              time.time(), "sec from now")
        for elem in packet.elements():
            print_packet(elem, indent + "  ")


server = UdpServer("receiver", {
                "udpread_host": IP,
                "udpread_port": PORT,
                "execthreadscount": 0,
                "logger": logger,
                })
server.open()
print("### Welcome to osc4udp receiver demo")
print("Start listening on", server.address)
try:
    while True:
        try:
            packet = server.receive_one()
        except oscbuildparse.OSCInvalidRawError as e:
            print("Invalid datagram:", e)
            continue
        if packet is None:
            print("Unknown packet type!")
        else:
            print_packet(packet)
except KeyboardInterrupt:
    pass
finally:
    server.terminate()
