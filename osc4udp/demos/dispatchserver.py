#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/demos/dispatchserver.py
# <pep8 compliant>
"""Serve OSC methods, messages and bundles are dispatched to handlers.

Usage: ./dispatchserver.py [port] [nolog]

Press enter to stop the server.
Use udpsender.py to send some packets.
"""

# Make osc4udp available.
import sys
from os.path import abspath, dirname
PACKAGE_PATH = dirname(dirname(dirname(abspath(__file__))))
if PACKAGE_PATH not in sys.path:
    sys.path.insert(0, PACKAGE_PATH)
import threading

from osc4udp.oscmethod import (OSCARG_ADDRESS, OSCARG_DATAUNPACK,
                               OSCARG_SRCADDR)
from osc4udp.oscudp import UdpServer

if "nolog" in sys.argv[1:]:
    logger = None
else:
    from demoslogger import logger

IP = "127.0.0.1"
PORT = 8000
if len(sys.argv) > 1 and sys.argv[1].isdigit():
    PORT = int(sys.argv[1])

# The function called to handle matching messages.
hlock = threading.Lock()
hcount = 0


def handlerfunction(msg):
    global hcount
    with hlock:
        hcount += 1
        print("#####", hcount, "message", msg)


def gainhandler(address, srcaddr, *args):
    print("##### gain", address, "from", srcaddr, "=", args)


server = UdpServer("dispatcher", {
                "udpread_host": IP,
                "udpread_port": PORT,
                "logger": logger,
                })
server.register("/message/address", handlerfunction)
for channel in range(1, 5):
    server.register("/mixer/{}/gain".format(channel), gainhandler,
                    OSCARG_ADDRESS + OSCARG_SRCADDR + OSCARG_DATAUNPACK)
server.open()

print("### Welcome to osc4udp dispatcher demo")
print("Start listening on", server.address)
servethread = threading.Thread(target=server.serve_forever, name="serve")
servethread.start()
input("Press enter to stop.\n")
server.shutdown()
servethread.join()
server.terminate()
print("Handler called", hcount, "times.")
