#!/usr/bin/env python3
# -*- encoding: utf-8 -*-
# File: osc4udp/osctoolspools.py
# <pep8 compliant>
"""Pools of threads processing jobs.

The server posts dispatch of each received packet as a job in a WorkQueue,
so that its receive loop never wait for methods execution. The dispatcher
do the same for bundles whose time tag has come.
"""
import collections
import threading

__all__ = [
    "WorkJob",
    "WorkQueue",
    "LAST_JOB",
    ]

# Marker put in the queue to make worker threads exit.
LAST_JOB = "last job"


class WorkJob:
    """A function call waiting in a WorkQueue.

    :ivar result: function return value, or the exception it raised.
    :ivar finished: set once the call is done.
    :type finished: bool
    """
    def __init__(self, function, paramstuple, needsync=False):
        self.function = function
        self.paramstuple = paramstuple
        self.result = None
        self.finished = False
        self.finishsync = threading.Event() if needsync else None

    def __repr__(self):
        return "WorkJob({!r}, finished={})".format(self.function,
                                                   self.finished)

    def _done(self, res):
        self.result = res
        self.finished = True
        if self.finishsync is not None:
            self.finishsync.set()

    def is_finished(self):
        return self.finished

    def wait_finished(self, timeout=None):
        """Block until the call is done (only for jobs built with needsync).

        :return: False if timeout elapsed first.
        :rtype: bool
        """
        if self.finishsync is None:
            raise RuntimeError("OSC job created without synchronization.")
        return self.finishsync.wait(timeout)

    def __call__(self):
        try:
            res = self.function(*self.paramstuple)
        except Exception as e:
            self._done(e)
            raise
        self._done(res)


class WorkQueue:
    """FIFO of jobs shared by some worker threads.

    :ivar logger: Python logger to trace activity.
        Default to None
    :type logger: logging.Logger
    :ivar jobs: waiting jobs, LAST_JOB once terminated.
    :type jobs: deque
    :ivar ownthreads: worker threads started by add_working_threads().
    :type ownthreads: list
    :ivar terminated: no more job accepted.
    :type terminated: bool
    """
    def __init__(self, logger=None):
        self.logger = logger
        self.jobs = collections.deque()
        # Counts jobs available in the deque.
        self.available = threading.Semaphore(0)
        self.ownthreads = []
        self.threadcount = 0
        self.terminated = False

    def send_callable(self, function, paramstuple, needsync=False):
        """Queue a call of function with paramstuple arguments.

        :return: the queued job.
        :rtype: WorkJob
        """
        job = WorkJob(function, paramstuple, needsync)
        self.send_job(job)
        return job

    def send_job(self, newjob):
        """Queue a job, RuntimeError if the queue is terminated.
        """
        if self.terminated:
            raise RuntimeError("OSC workqueue terminated.")
        if self.logger is not None:
            self.logger.debug("OSC workqueue %d queued %r", id(self), newjob)
        self.jobs.append(newjob)
        self.available.release()

    def send_terminate(self):
        """Refuse new jobs, workers exit once queued jobs are done."""
        self.terminated = True
        self.jobs.append(LAST_JOB)
        self.available.release()

    def terminate(self):
        """Terminate the queue and join its worker threads."""
        self.send_terminate()
        self.join()

    def wait_for_job(self, timeout=None):
        """Get the next job for a worker thread.

        :param timeout: seconds to wait for a job, None to wait forever.
        :type timeout: float
        :return: a job, LAST_JOB when the queue is terminated, None when
            timeout elapsed.
        :rtype: WorkJob
        """
        if not self.available.acquire(timeout=timeout):
            return None
        job = self.jobs.popleft()
        if job is LAST_JOB:
            # Leave the marker for the other workers.
            self.jobs.append(LAST_JOB)
            self.available.release()
        return job

    def _worker_loop(self):
        while True:
            job = self.wait_for_job()
            if job is LAST_JOB:
                break
            try:
                job()
            except Exception:
                if self.logger is not None:
                    self.logger.exception("OSC workqueue %d failure in %r",
                                          id(self), job)

    def add_working_threads(self, count=1):
        """Start count daemon worker threads on this queue."""
        for i in range(count):
            self.threadcount += 1
            thread = threading.Thread(target=self._worker_loop,
                        name="workqueue{}.{:02d}".format(id(self),
                                                         self.threadcount))
            thread.daemon = True
            self.ownthreads.append(thread)
            thread.start()

    def join(self):
        """Wait for the end of all worker threads."""
        for thread in self.ownthreads:
            thread.join()
        del self.ownthreads[:]
