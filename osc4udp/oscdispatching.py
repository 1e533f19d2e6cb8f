#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/oscdispatching.py
# <pep8 compliant>
"""Dispatching of messages among registered OSC methods.

A :class:`Dispatcher` owns a registry of methods keyed by their literal
address. Received messages addresses are OSC patterns, each registered
address matching the pattern has its method called.

Bundles are not executed when dispatched, they are handed to a
:class:`BundleScheduler` which waits for their time tag and then execute
their content: messages first, then sub-bundles which are themselves
scheduled upon their own time tag. Dispatching a bundle never waits.

Registry is protected by a lock, methods can be added or removed while
packets are dispatched from other threads.
"""

import bisect
import collections
import itertools
import threading
import time

from . import oscbuildparse
from .oscerrors import OSCDuplicateAddressError, OSCRegistrationError
from .oscmethod import (MethodFilter, OSCARG_MESSAGE, check_address,
                        compile_pattern)
from .oscscheduling import deadline2timeout

__all__ = [
    "Dispatcher",
    "BundleScheduler",
    "NOW_RESOLUTION",
    ]

# How many +- seconds around current time is being considered "current".
# Must be positive of zero.
NOW_RESOLUTION = 0.001      # 1 ms

# Structure to store bundles delayed to late execution.
# Important: when is first field for use in sorting, seq ensure bundles
# themselves are never compared.
PendingBundle = collections.namedtuple("PendingBundle", "when seq bundle")


# ========================== DELAYED BUNDLES  ==============================
class BundleScheduler(object):
    """Bundles waiting their time to be executed, and their thread.

    Bundles are kept *sorted by ascending time*. A condition variable is used
    to insert a new bundle and reschedule the processing thread.
    We dont use a queue.PriorityQueue() as we need to manipulate "next" item
    not immediatly but only when its time has come.

    :ivar execute: function called with a bundle when its time has come.
    :type execute: callable
    :ivar workqueue: pool of threads where due bundles are executed, so that
        a long execution don't delay other bundles. None to execute each
        bundle in its own thread.
    :type workqueue: WorkQueue
    :ivar logger: Python logger to trace activity.
        Default to None
    :type logger: logging.Logger
    """
    def __init__(self, execute, workqueue=None, logger=None,
                 threadname="DelayThread"):
        self.execute = execute
        self.workqueue = workqueue
        self.logger = logger
        self.threadname = threadname
        self.pending = []
        self.condvar = threading.Condition(threading.Lock())
        self.thread = None
        self.terminated = False
        self._seq = itertools.count()

    def pending_count(self):
        with self.condvar:
            return len(self.pending)

    def delay_bundle(self, when, bundle):
        """Insert a bundle in the pending queue for late execution.

        The scheduler thread is started at first call.

        :param when: absolute time in seconds to execute the bundle.
        :type when: float
        :param bundle: the bundle to execute.
        :type bundle: OSCBundle
        """
        if self.logger is not None:
            self.logger.debug("OSC scheduler, delayed bundle id %d for %.3f "
                              "sec", id(bundle), when - time.time())
        delayed = PendingBundle(when, next(self._seq), bundle)
        with self.condvar:
            if self.terminated:
                raise RuntimeError("OSC bundle scheduler terminated.")
            bisect.insort(self.pending, delayed)
            if self.thread is None:
                self._start()
            # Thread may have to reschedule early than previously planned.
            self.condvar.notify()

    def _start(self):
        # Called with condvar locked.
        self.thread = threading.Thread(target=self.process_loop,
                                       name=self.threadname)
        self.thread.daemon = True
        self.thread.start()

    def next_bundle(self, timeout):
        """Return next available pending bundle.

        Return None if there is no *in-time* pending bundle and timeout
        elapse, or if the scheduler is terminated.

        :param timeout: maximum time to wait for a new pending bundle, 0 for
            immediate return, None for infinite wait.
        :type timeout: float or None
        :return: the next in-time bundle or None.
        :rtype: PendingBundle or None
        """
        with self.condvar:
            if self.terminated:
                return None
            pb = None
            if self.pending:
                # As list is sorted, the next scheduled bundle is first.
                # Note: delay is used for "now" test but also as wait()
                # timeout parameter.
                delay = self.pending[0].when - time.time()
                if delay < NOW_RESOLUTION:
                    pb = self.pending.pop(0)
                elif timeout is not None and delay > timeout:
                    delay = timeout
            else:
                delay = timeout

            # Wait for a new bundle to be signaled (and then be called again
            # to recalculate timings), or for delay to next bundle to elapse.
            # Note that wait() release the lock meanwhile.
            if pb is None:
                self.condvar.wait(delay)
        return pb

    def process_loop(self, deadlinetime=None):
        """Manage bundles delayed up to their time tag.

        Called as the scheduler thread entry point, or as a simple function
        to process due bundles from an existing loop.

        :param deadlinetime: exit from loop after this time, even if there
            are remaining bundles to process. Its an *absolute* time in
            seconds, in same time base as time.time().
            A 0 value process due bundles then return.
            A None value is used when in own thread.
        :type deadlinetime: float or None
        """
        if deadlinetime is None and self.logger is not None:
            self.logger.info("OSC starting bundles scheduler loop")

        while not self.terminated:
            pb = self.next_bundle(deadline2timeout(deadlinetime))

            if pb is None and deadlinetime == 0:
                break
            if pb is not None:
                self.run_bundle(pb.bundle)

            if deadlinetime and time.time() > deadlinetime:
                break

        if deadlinetime is None and self.logger is not None:
            self.logger.info("OSC finishing bundles scheduler loop")

    def run_bundle(self, bundle):
        """Start execution of a due bundle, in the workqueue if there is one,
        else in its own thread.
        """
        if self.logger is not None:
            self.logger.debug("OSC scheduler, delay elapsed for bundle id %d",
                              id(bundle))
        try:
            if self.workqueue is not None:
                self.workqueue.send_callable(self.execute, (bundle,))
            else:
                thread = threading.Thread(target=self._execute_bundle,
                            args=(bundle,),
                            name="{}-{}".format(self.threadname, id(bundle)))
                thread.daemon = True
                thread.start()
        except Exception:
            # Keep the scheduler thread alive for other bundles.
            if self.logger is None:
                raise
            self.logger.exception("OSC failure in bundle id %d execution",
                                  id(bundle))

    def _execute_bundle(self, bundle):
        try:
            self.execute(bundle)
        except Exception:
            if self.logger is None:
                raise
            self.logger.exception("OSC failure in bundle id %d execution",
                                  id(bundle))

    def terminate(self):
        """Finish scheduler thread, remaining pending bundles are dropped.

        Wait for the effective thread termination.
        """
        with self.condvar:
            self.terminated = True
            dropped = len(self.pending)
            del self.pending[:]
            self.condvar.notify_all()
            thread = self.thread
            self.thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        if dropped and self.logger is not None:
            self.logger.info("OSC scheduler dropped %d pending bundles",
                             dropped)


# ========================= OSC METHODS EXECUTION  ==========================
class Dispatcher(object):
    """System to call code when receiving decoded OSC packets.

    :ivar dispname: name of the dispatcher, for logs.
    :type dispname: str
    :ivar methods: registered filters and associated functions, by address.
    :type methods: { str: MethodFilter }
    :ivar workqueue: pool of threads where due bundles are executed.
        Default to None (each due bundle executed in its own thread).
    :type workqueue: WorkQueue
    :ivar max_delay: bundles scheduled more than this count of seconds in
        the future are dropped.
        Default to None (no limit).
    :type max_delay: float
    :ivar logger: Python logger to trace activity.
        Default to None
    :type logger: logging.Logger
    """
    def __init__(self, dispname="osc", options=None):
        if options is None:
            options = {}
        self.dispname = dispname
        self.logger = options.get("logger", None)
        self.workqueue = options.get("workqueue", None)
        self.max_delay = options.get("max_delay", None)
        self.methods = {}
        self.lock = threading.Lock()
        self.scheduler = BundleScheduler(self.execute_bundle, self.workqueue,
                                self.logger, "DelayThread-" + dispname)

    def __repr__(self):
        return "Dispatcher({!r}, {} methods)".format(self.dispname,
                                                     len(self.methods))

    def terminate(self):
        """Terminate properly the dispatcher (stop its scheduler).
        """
        self.scheduler.terminate()

    def add_method(self, address, function, argscheme=OSCARG_MESSAGE,
                   extra=None):
        """Register a function to call for messages matching an address.

        :param address: literal address, no pattern char allowed.
        :type address: str
        :param function: what to call.
        :type function: callable
        :param argscheme: how to pass message parts to the function, see
            oscmethod OSCARG_xxx.
        :type argscheme: tuple
        :param extra: extra value for OSCARG_EXTRA.
        :return: the registered method filter.
        :rtype: MethodFilter
        :raise OSCInvalidAddressError: invalid char in address.
        :raise OSCDuplicateAddressError: address already registered.
        """
        check_address(address)
        method = MethodFilter(address, function, argscheme=argscheme,
                              extra=extra, logger=self.logger)
        with self.lock:
            if address in self.methods:
                raise OSCDuplicateAddressError("OSC address {!r} exists "
                                               "already".format(address))
            self.methods[address] = method
        if self.logger is not None:
            self.logger.debug("OSC dispatcher %s registered %r",
                              self.dispname, method)
        return method

    register = add_method

    def remove_method(self, address):
        """Unregister the method of an address.
        """
        with self.lock:
            try:
                del self.methods[address]
            except KeyError:
                raise OSCRegistrationError("OSC address {!r} not "
                                           "registered".format(address))

    def registered_addresses(self):
        with self.lock:
            return list(self.methods)

    def dispatch_packet(self, packet):
        """Dispatch an OSC packet to ad-hoc processing.

        :param packet: OSC packet
        :type packet: OSCMessage or OSCBundle
        :return: count of methods immediatly called for the packet
            (bundles are always scheduled, so 0).
        :rtype: int
        """
        if isinstance(packet, oscbuildparse.OSCMessage):
            # For message packet, execution is immediate.
            return self.execute_message(packet)
        elif isinstance(packet, oscbuildparse.OSCBundle):
            self.dispatch_bundle(packet)
            return 0
        elif packet is None:
            return 0
        raise ValueError("OSC unknown packet kind {!r}".format(
                         packet.__class__.__name__))

    dispatch = dispatch_packet

    def dispatch_bundle(self, bundle):
        """Schedule the bundle execution upon its time tag.

        Immediate or late bundles are executed as soon as possible, but
        never in the caller context.

        :param bundle: the bundle to execute.
        :type bundle: OSCBundle
        """
        delay = bundle.timetag.time_until_due()
        if self.max_delay is not None and delay > self.max_delay:
            if self.logger is not None:
                self.logger.warning("OSC dispatcher %s, bundle %.3f sec in "
                        "advance dropped", self.dispname, delay)
            return
        if delay < NOW_RESOLUTION and self.workqueue is not None:
            self.workqueue.send_callable(self.execute_bundle, (bundle,))
        else:
            self.scheduler.delay_bundle(time.time() + max(delay, 0), bundle)

    def execute_bundle(self, bundle):
        """Execute elements of a bundle.

        Messages are executed here, sub-bundles are dispatched to be
        scheduled upon their own time tag.

        :param bundle: the bundle to execute.
        :type bundle: OSCBundle
        :return: count of methods called for the bundle messages.
        :rtype: int
        """
        count = 0
        for msg in bundle.messages:
            count += self.execute_message(msg)
        for subbundle in bundle.bundles:
            self.dispatch_bundle(subbundle)
        return count

    def execute_message(self, msg):
        """Execute a message with matching methods.

        Pattern matching AND call is done is this context.

        :param msg: the message to execute.
        :type msg: OSCMessage
        :return: count of methods called for the message
        :rtype: int
        """
        # Work on a copy to not hold the lock while calling functions.
        with self.lock:
            methods = list(self.methods.values())
        pattern = compile_pattern(msg.address)
        matchcount = 0
        if pattern is not None:
            for method in methods:
                if pattern.match(method.address):
                    matchcount += 1
                    method(msg)
        if self.logger is not None:
            self.logger.debug("OSC dispatcher %s found %d matchs for "
                              "message %r", self.dispname, matchcount, msg)
        return matchcount
