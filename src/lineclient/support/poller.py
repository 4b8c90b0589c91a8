"""
Readiness notification for sockets and one-shot timers.

The protocol client never blocks; it asks a poller to call it back when its socket becomes
readable or writable, or when a timer expires. All callbacks are delivered on the thread
that runs the poller.
"""
import heapq
import itertools
import logging
import selectors
import time
from abc import abstractmethod

logger = logging.getLogger(__name__)


class Timer:
    """
    A one-shot timer. Setting a pending timer reschedules it.
    """

    def __init__(self, poller, callback):
        self.poller = poller
        self.callback = callback
        self.deadline = None
        self.sequence = None    # assigned by the poller on every set()

    @property
    def pending(self) -> bool:
        return self.deadline is not None

    def set(self, delay):
        """
        :param delay: seconds from now until the callback is invoked
        """
        self.deadline = self.poller.time() + delay
        self.poller._schedule(self)

    def reset(self):
        """ cancels the timer. Harmless when the timer is not pending. """
        self.deadline = None

    def _fire(self):
        self.deadline = None
        self.callback()


class Poller:
    """ The interface the protocol client needs from an event loop. """

    @abstractmethod
    def register(self, sock, readable, writable, callback):
        """
        Registers interest in the readiness of a socket, replacing any previous registration.
        :param callback: called as callback(readable, writable) with the current readiness.
        """
        raise NotImplementedError

    @abstractmethod
    def unregister(self, sock):
        """ removes the registration, if any. """
        raise NotImplementedError

    def timer(self, callback) -> Timer:
        return Timer(self, callback)

    def time(self):
        return time.monotonic()

    @abstractmethod
    def _schedule(self, timer: Timer):
        raise NotImplementedError


class SelectorPoller(Poller):
    """
    A poller built on the selectors module.

    Exceptions raised by callbacks are logged and do not stop the loop.
    """

    def __init__(self, selector=None):
        self.selector = selector or selectors.DefaultSelector()
        self._timers = []       # heap of (deadline, sequence, timer); only a timer's latest entry is live
        self._sequence = itertools.count()
        self._running = False

    def register(self, sock, readable, writable, callback):
        events = (selectors.EVENT_READ if readable else 0) | (selectors.EVENT_WRITE if writable else 0)
        try:
            key = self.selector.get_key(sock)
        except KeyError:
            key = None
        if not events:
            if key is not None:
                self.selector.unregister(sock)
        elif key is None:
            self.selector.register(sock, events, callback)
        else:
            self.selector.modify(sock, events, callback)

    def unregister(self, sock):
        try:
            self.selector.unregister(sock)
        except (KeyError, ValueError):
            pass

    def _schedule(self, timer):
        timer.sequence = next(self._sequence)
        heapq.heappush(self._timers, (timer.deadline, timer.sequence, timer))

    def _next_timeout(self, limit=None):
        while self._timers:
            deadline, seq, timer = self._timers[0]
            if not self._live(timer, seq):
                heapq.heappop(self._timers)
                continue
            delay = max(0, deadline - self.time())
            return delay if limit is None else min(delay, limit)
        return limit

    @staticmethod
    def _live(timer, seq):
        return timer.pending and timer.sequence == seq

    def _dispatch_timers(self):
        now = self.time()
        while self._timers and self._timers[0][0] <= now:
            deadline, seq, timer = heapq.heappop(self._timers)
            if self._live(timer, seq):
                self._invoke(timer._fire)

    def _invoke(self, fn, *args):
        try:
            fn(*args)
        except Exception as e:
            logger.exception("unhandled exception in poller callback: %s" % e)

    def run_once(self, timeout=None):
        """
        Waits up to timeout seconds (forever if None and no timers are pending) for readiness,
        then dispatches socket callbacks followed by expired timers.
        """
        timeout = self._next_timeout(timeout)
        if not self.selector.get_map() and timeout is None:
            raise RuntimeError("nothing to wait for")
        if self.selector.get_map():
            ready = self.selector.select(timeout)
        else:
            time.sleep(timeout)
            ready = []
        for key, events in ready:
            self._invoke(key.data, bool(events & selectors.EVENT_READ), bool(events & selectors.EVENT_WRITE))
        self._dispatch_timers()

    def run(self):
        """ runs until stop() is called from a callback. """
        self._running = True
        while self._running:
            self.run_once()

    def stop(self):
        self._running = False

    def close(self):
        self.selector.close()
        self._timers = []
