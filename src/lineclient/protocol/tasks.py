"""
Matches responses to the requests that caused them.

The servers answer strictly in the order requests were sent, so requests awaiting a response are
kept in a FIFO queue and each complete response is handed to the task at its head.
"""
import logging
from collections import deque
from concurrent.futures import Future

logger = logging.getLogger(__name__)


class FutureValue(Future):
    """ describes a value that may have not yet been computed. Callers can check if the value has arrived, or chose to
        wait until the value has arrived."""

    def _value_extractor(self, value):
        """
        The value extractor allows processing of the result to arrive at the
        value returned in `value`.
        """
        return value

    def value(self, timeout=None):
        """ allows the provider to set the result value but provide a different (derived) value to callers. """
        return self._value_extractor(self.result(timeout))


class FutureResponse(FutureValue):
    """ The response a task will complete with. The value is the response's data. """

    def __init__(self, task=None):
        super().__init__()
        self.task = task

    def _value_extractor(self, response):
        return response.value

    @property
    def response(self):
        """ the response, once the task has completed """
        return self.result(0)


class Task:
    """
    One request awaiting its response.

    :param callback: called as callback(response, context) when the response arrives. May be None.
    :param context: an opaque value passed back to the callback
    """

    def __init__(self, callback=None, context=None):
        self.callback = callback
        self.context = context
        self.future = FutureResponse(self)

    def complete(self, response):
        """ invokes the callback and resolves the future. An exception from the callback is logged. """
        try:
            if self.callback is not None:
                self.callback(response, self.context)
        except Exception as e:
            logger.exception("task callback failed: %s" % e)
        finally:
            if self.future.set_running_or_notify_cancel():
                self.future.set_result(response)

    def discard(self):
        """ the task will never complete. The callback is not invoked. """
        self.future.cancel()


class TaskQueue:

    def __init__(self):
        self._tasks = deque()

    def __len__(self):
        return len(self._tasks)

    def __iter__(self):
        return iter(tuple(self._tasks))

    def enqueue(self, callback=None, context=None) -> Task:
        task = Task(callback, context)
        self._tasks.append(task)
        return task

    @property
    def head(self):
        return self._tasks[0] if self._tasks else None

    def dispatch_next(self, response):
        """
        Completes the task at the head of the queue with the response.
        :return: the completed task, or None when no task was waiting (an unsolicited response)
        """
        if not self._tasks:
            logger.debug("ignoring unsolicited response %s" % response)
            return None
        task = self._tasks.popleft()
        task.complete(response)
        return task

    def clear(self):
        """ drops all tasks without completing them """
        tasks, self._tasks = self._tasks, deque()
        for task in tasks:
            task.discard()
