"""
A pipelined client for line based request/response protocols.

Requests are written to an output buffer and flushed when the socket is writable; each request that
expects a response is paired with a task via add_task(). Responses complete tasks strictly in the
order the tasks were added. Several commands may be grouped into a command list that is answered
with a single response.

When there is nothing else to do the owner may idle(): a long-poll command that the server answers
only when one of the watched subjects changes. Sending any other command while idling first cancels
the idle; the cancelled idle still completes its own task, ahead of the new command's task.

The client never reconnects by itself. Any transport or framing error resets it to DISCONNECTED,
dropping queued tasks without completing them, and then notifies the failure handlers.
"""
import logging
from enum import Enum

from lineclient.connector.base import ConnectionNotConnectedError, ConnectorError
from lineclient.connector.socketconn import TCPConnector, connect_unix, is_unix_address
from lineclient.protocol.adapter import LineKind, ProtocolAdapter
from lineclient.protocol.framing import ProtocolError
from lineclient.protocol.io import IOResult, try_read, try_write
from lineclient.protocol.tasks import FutureResponse, TaskQueue
from lineclient.support.events import EventSource

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 5 * 60


class ClientError(Exception):
    """ The client was used in a way its current state does not allow. """


class ClientStateError(ClientError):
    """ The operation is not valid in the client's current state. """


class UnsupportedCommandError(ClientError):
    """ The protocol has no such command. """


class ConnectionState(Enum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2


class LineClient:
    """
    :param poller: the poller delivering socket readiness and timers
    :param adapter: describes the protocol spoken
    :param connector_factory: creates the connector for network addresses; called with
        (poller, on_connected, on_failure)
    :param ping_interval: seconds of silence while idling after which the server is pinged

    Owners listen on three event sources:
    connected_handlers() once the connection is ready for commands,
    failure_handlers() after the client has been reset following an error or a disconnection,
    event_handlers(subjects) when an idle reports changed subjects.
    """

    def __init__(self, poller, adapter: ProtocolAdapter, connector_factory=TCPConnector,
                 ping_interval=DEFAULT_PING_INTERVAL):
        self.poller = poller
        self.adapter = adapter
        self.connector_factory = connector_factory
        self.ping_interval = ping_interval

        self.connected_handlers = EventSource()
        self.failure_handlers = EventSource()
        self.event_handlers = EventSource()

        self.state = ConnectionState.DISCONNECTED
        self.connector = None
        self.socket = None
        self.read_buffer = bytearray()
        self.write_buffer = bytearray()
        self.framer = adapter.new_framer()
        self.tasks = TaskQueue()
        self.data = []
        self.greeting = None

        self.in_list = False
        self.in_response_list = False
        self.idling = False
        self.idling_subjects = 0
        self.subjects = 0       # what the owner wants to watch
        self._idle_token = None
        self.watchdog = poller.timer(self._on_watchdog)

    @property
    def ready(self) -> bool:
        """ True once connected and, for protocols with a greeting, greeted. """
        return self.state is ConnectionState.CONNECTED and \
            (self.greeting is not None or not self.adapter.requires_greeting)

    # - - - connection - - -

    def connect(self, address, service=None) -> bool:
        """
        Starts connecting. Network addresses are connected asynchronously; a path is taken
        to be a UNIX socket, which is connected immediately.
        :return: True once the connection attempt is under way or complete
        :raises ConnectorError: when a UNIX socket cannot be connected
        :raises ClientStateError: unless the client is disconnected
        """
        if self.state is not ConnectionState.DISCONNECTED:
            raise ClientStateError("already %s" % self.state.name.lower())

        if is_unix_address(address):
            self._finish_connection(connect_unix(address))
            return True

        self.connector = self.connector_factory(self.poller, self._on_connector_connected,
                                                self._on_connector_failure)
        self.connector.add_target(address, service if service is not None else self.adapter.default_service)
        self.state = ConnectionState.CONNECTING
        return True

    def _destroy_connector(self):
        connector, self.connector = self.connector, None
        if connector is not None:
            connector.close()

    def _on_connector_connected(self, sock):
        self._destroy_connector()
        self._finish_connection(sock)

    def _on_connector_failure(self, error: ConnectorError):
        logger.debug("%s connector: %s" % (self.adapter.name, error))
        self._destroy_connector()
        self._fail()

    def _finish_connection(self, sock):
        sock.setblocking(False)
        self.socket = sock
        self.state = ConnectionState.CONNECTED
        self._update_poller()
        if self.ready:
            self.connected_handlers.fire()

    def reset(self):
        """
        Tears the connection down so that the client can connect anew. Queued tasks are dropped
        without completing. No handlers are notified.
        """
        self._destroy_connector()
        sock, self.socket = self.socket, None
        if sock is not None:
            self.poller.unregister(sock)
            sock.close()
        self.watchdog.reset()

        self.read_buffer.clear()
        self.write_buffer.clear()
        self.framer.reset()
        self.data = []
        self.greeting = None

        self.in_list = False
        self.in_response_list = False
        self.idling = False
        self.idling_subjects = 0
        self._idle_token = None

        self.tasks.clear()
        self.state = ConnectionState.DISCONNECTED

    def _fail(self):
        self.reset()
        self.failure_handlers.fire()

    def _update_poller(self):
        self.poller.register(self.socket, True, bool(self.write_buffer), self._on_ready)

    def _on_ready(self, readable, writable):
        sock = self.socket
        if sock is None:
            return      # reset earlier in the same poller turn
        received = len(self.read_buffer)
        result = try_read(sock, self.read_buffer)
        if self.idling and len(self.read_buffer) > received:
            self.watchdog.set(self.ping_interval)

        # whatever was received before an EOF may still complete tasks
        try:
            self._process_input()
        except ProtocolError as e:
            logger.warning("%s protocol error: %s" % (self.adapter.name, e))
            self._fail()
            return
        if self.socket is not sock:
            return      # reset by a callback

        if result is not IOResult.OK:
            logger.warning("%s connection %s" % (self.adapter.name,
                                                 "closed by peer" if result is IOResult.EOF else "failed"))
            self._fail()
        elif try_write(sock, self.write_buffer) is not IOResult.OK:
            self._fail()
        else:
            self._update_poller()

    def _process_input(self):
        sock = self.socket
        for line in self.framer.split(self.read_buffer):
            self._parse_line(line)
            if self.socket is not sock:
                return

    def _parse_line(self, line):
        adapter = self.adapter
        logger.debug("%s >> %s" % (adapter.name, adapter.format_line(line)))

        kind = adapter.classify(line, self.in_response_list)
        if kind is LineKind.GREETING:
            if not adapter.requires_greeting or self.greeting is not None:
                raise ProtocolError("unexpected greeting")
            self.greeting = line
            self.connected_handlers.fire()
            return
        if adapter.requires_greeting and self.greeting is None:
            raise ProtocolError("invalid greeting: %s" % adapter.format_line(line))

        if kind is LineKind.DATA:
            self.data.append(line)
        elif kind is LineKind.LIST_BEGIN:
            self.in_response_list = True
        else:
            if kind is LineKind.LIST_END:
                self.in_response_list = False
            response = adapter.build_response(kind, line, self.data)
            self.data = []
            self.tasks.dispatch_next(response)

    # - - - commands - - -

    def _check_connected(self):
        if self.state is ConnectionState.DISCONNECTED:
            raise ConnectionNotConnectedError("%s client is not connected" % self.adapter.name)

    def _write_line(self, args):
        logger.debug("%s << %s" % (self.adapter.name, self.adapter.serializer.serialize(args)))
        self.write_buffer += self.adapter.serializer.encode(args)
        if self.socket is not None:
            self._update_poller()

    def send_command(self, args):
        """
        Queues a command for sending. Follow it with add_task() to receive the response,
        unless the command is part of a command list.
        :param args: the command and its arguments
        """
        self._check_connected()
        if self.idling:
            self.watchdog.reset()
            self.idling = False
            self.idling_subjects = 0
            self._write_line(self.adapter.cancel_idle_command)
        self._write_line([str(arg) for arg in args])

    def add_task(self, callback=None, context=None) -> FutureResponse:
        """
        Expects a response to the last command, or to the last command list.
        :param callback: called as callback(response, context) when the response arrives
        :return: a future that resolves to the response
        """
        if self.in_list:
            raise ClientStateError("tasks cannot be added within a command list")
        return self.tasks.enqueue(callback, context).future

    def list_begin(self):
        """ starts a command list. Commands sent until list_end() get a single response. """
        if self.adapter.list_begin_command is None:
            raise UnsupportedCommandError("%s has no command lists" % self.adapter.name)
        if self.in_list:
            raise ClientStateError("command lists cannot be nested")
        self.send_command(self.adapter.list_begin_command)
        self.in_list = True

    def list_end(self):
        """ ends a command list. Follow it with add_task() to receive the summary response. """
        if not self.in_list:
            raise ClientStateError("no command list to end")
        self.in_list = False
        self.send_command(self.adapter.list_end_command)

    def send_command_list(self, commands, callback=None, context=None):
        """
        Sends the commands as one command list.
        :param commands: an iterable of argument lists
        :param callback: when given, a task is added for the list with this callback
        :return: the task's future, when a callback was given
        """
        self.list_begin()
        for args in commands:
            self.send_command(args)
        self.list_end()
        if callback is not None:
            return self.add_task(callback, context)

    # - - - idle - - -

    def idle(self, subjects=0):
        """
        Waits for changes in the given subjects. The protocol defines what subjects are;
        0 typically means everything. Call this whenever there is nothing else to send.
        Changed subjects are reported to event_handlers, after which idle() must be called again.
        """
        if self.adapter.idle_command is None:
            raise UnsupportedCommandError("%s cannot idle" % self.adapter.name)
        if self.in_list:
            raise ClientStateError("cannot idle within a command list")

        self.send_command(self.adapter.idle_args(subjects))
        self.watchdog.set(self.ping_interval)
        self._idle_token = token = object()
        self.add_task(self._on_idle_return, token)
        self.idling = True
        self.idling_subjects = self.subjects = subjects

    def _on_idle_return(self, response, token):
        if token is self._idle_token:
            self._idle_token = None
            if self.idling:
                self.idling = False
                self.watchdog.reset()
        if not response.success:
            logger.warning("%s idle failed: %s" % (self.adapter.name, response.message))
            return
        subjects = self.adapter.idle_subjects(response)
        if subjects:
            self.event_handlers.fire(subjects)

    def _on_watchdog(self):
        if not self.idling:
            return
        # writing to a dead connection should eventually bring it down
        self.send_command(self.adapter.ping_command)
        self.add_task(self._on_ping_return)

    def _on_ping_return(self, response, context):
        if self.ready and not self.idling and not self.in_list and not len(self.tasks):
            self.idle(self.subjects)
