"""
The protocol specific half of a line protocol client.

The client core frames lines, keeps the task queue and handles idling; an adapter tells it what
a line means and what the protocol's commands look like. The core has no protocol literals.
"""
from abc import abstractmethod
from enum import Enum

from lineclient.protocol.framing import LineFramer
from lineclient.protocol.quoting import CommandSerializer
from lineclient.support.mixins import CommonEqualityMixin, StringerMixin


class LineKind(Enum):
    GREETING = 'greeting'       # the server's hello, which must be the first line
    DATA = 'data'               # part of the response to the current task
    SUCCESS = 'success'         # completes the current task successfully
    FAILURE = 'failure'         # completes the current task with an error
    LIST_BEGIN = 'list_begin'   # data lines follow until LIST_END
    LIST_END = 'list_end'       # completes the current task with the list data


class Response(CommonEqualityMixin, StringerMixin):
    """
    The outcome of one task.

    :param success: False when the server reported an error for the request
    :param data: the data lines received for the request, in order
    :param message: the server's error message, for failed responses
    """

    def __init__(self, success=True, data=None, message=None):
        self.success = success
        self.data = list(data) if data is not None else []
        self.message = message

    @property
    def value(self):
        return self.data


class ProtocolAdapter:
    """
    Describes a line protocol to the client core.

    Command attributes hold the argument list for the command, or None when the protocol
    does not have such a command.
    """
    name = 'LINE'
    default_service = None
    requires_greeting = False
    serializer = CommandSerializer()

    idle_command = None
    cancel_idle_command = None
    ping_command = None
    password_command = None
    list_begin_command = None
    list_end_command = None

    def new_framer(self):
        return LineFramer()

    @abstractmethod
    def classify(self, line, in_list) -> LineKind:
        """
        Determines the meaning of a framed line.
        :param line: a line as produced by the framer
        :param in_list: True between LIST_BEGIN and LIST_END lines
        :raises ProtocolError: when the line is malformed beyond recovery
        """
        raise NotImplementedError

    def build_response(self, kind: LineKind, line, data) -> Response:
        """
        Constructs the response for a terminating line.
        :param kind: SUCCESS, FAILURE or LIST_END
        :param line: the terminating line
        :param data: the data lines collected since the previous response
        """
        return Response(kind is not LineKind.FAILURE, data)

    def idle_args(self, subjects):
        """ the idle command watching the given subjects """
        return list(self.idle_command)

    def idle_subjects(self, response: Response):
        """ the subjects that changed, from the response to an idle command """
        return 0

    def format_line(self, line) -> str:
        """ renders a framed line for logging """
        return str(line)
