#!/bin/env python
# -*- coding: utf-8 -*-

from setuptools import setup
import io

setup(
    name='osc4udp',
    version='1.0.0',
    description='Python3 package for Open Sound Control (OSC) 1.0 packets '
                'reception and dispatching over UDP.',
    packages=['osc4udp', 'osc4udp.tests', 'osc4udp.demos'],
    keywords=['communication', 'sound', "network", "osc", "udp"],
    python_requires='>=3.6',
    extras_require={
        'test': ['pytest'],
        },
    classifiers=[
                'Development Status :: 4 - Beta',
                'Intended Audience :: Developers',
                'Natural Language :: English',
                'Operating System :: OS Independent',
                'Programming Language :: Python :: 3',
                'Topic :: Software Development :: Libraries :: Python Modules',
                'Topic :: Multimedia :: Sound/Audio',
                'Topic :: System :: Networking',
             ],
    long_description=io.open("README.txt", encoding='utf-8').read(),
    )
