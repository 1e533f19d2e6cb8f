#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/__init__.py
"""Receive and dispatch OSC 1.0 packets over UDP with Python3.

Modules:

- osctimetag: OSC time tags.
- oscbuildparse: encoding and decoding of messages and bundles.
- oscmethod: address patterns matching and registered methods.
- oscdispatching: dispatch of packets to methods, bundles scheduling.
- oscudp: UDP server and client.
"""

__version__ = "1.0.0"

__all__ = []
