import unittest
from unittest.mock import Mock, patch

from hamcrest import assert_that, is_, empty, calling, raises, none, has_length

from lineclient.connector.base import Connector, ConnectorError, ConnectionNotConnectedError
from lineclient.protocol.adapter import LineKind, ProtocolAdapter
from lineclient.protocol.client import ClientStateError, ConnectionState, LineClient, UnsupportedCommandError
from lineclient.protocol.io_test import FakeSocket
from lineclient.protocol.mpd import MpdClient, MpdResponse, MpdSubsystem
from lineclient.support.poller_test import FakePoller


class FakeConnector(Connector):

    def __init__(self, poller, on_connected, on_failure):
        super().__init__(poller, on_connected, on_failure)
        self.targets = []
        self.closed = False

    def add_target(self, host, service):
        self.targets.append((host, service))

    def close(self):
        self.closed = True


class SimpleAdapter(ProtocolAdapter):
    """ every line is a successful response on its own """
    name = 'TEST'
    default_service = 1234

    def classify(self, line, in_list):
        return LineKind.SUCCESS

    def build_response(self, kind, line, data):
        return super().build_response(kind, line, [line])


class ClientTestCase(unittest.TestCase):
    """ drives a client over a scripted socket """

    def setUp(self):
        self.poller = FakePoller()
        self.connectors = []
        self.sut = self.new_client()
        self.connected = Mock()
        self.failure = Mock()
        self.events = Mock()
        self.sut.connected_handlers += self.connected
        self.sut.failure_handlers += self.failure
        self.sut.event_handlers += self.events
        self.sock = FakeSocket()

    def new_client(self):
        return MpdClient(self.poller, connector_factory=self.new_connector)

    def new_connector(self, poller, on_connected, on_failure):
        connector = FakeConnector(poller, on_connected, on_failure)
        self.connectors.append(connector)
        return connector

    def establish(self):
        self.sut.connect("localhost")
        self.connectors[-1].on_connected(self.sock)

    def receive(self, *chunks):
        self.sock.feed(*chunks)
        self.poller.ready(self.sock)

    def flush(self):
        self.poller.ready(self.sock, False, True)
        return self.sock.take_sent()


class MpdClientTestCase(ClientTestCase):

    def setUp(self):
        super().setUp()
        self.establish()
        self.receive(b"OK MPD 0.23.5\n")


class ConnectTest(ClientTestCase):

    def test_initially_disconnected(self):
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))
        assert_that(self.sut.ready, is_(False))

    def test_connect_starts_connector(self):
        assert_that(self.sut.connect("localhost"), is_(True))
        assert_that(self.sut.state, is_(ConnectionState.CONNECTING))
        assert_that(self.connectors[0].targets, is_([("localhost", 6600)]))

    def test_connect_with_service(self):
        self.sut.connect("music.local", 6601)
        assert_that(self.connectors[0].targets, is_([("music.local", 6601)]))

    def test_connect_twice(self):
        self.sut.connect("localhost")
        assert_that(calling(self.sut.connect).with_args("localhost"), raises(ClientStateError))
        assert_that(self.connectors, has_length(1))

    def test_connected_but_not_ready_before_greeting(self):
        self.establish()
        assert_that(self.sut.state, is_(ConnectionState.CONNECTED))
        assert_that(self.sut.ready, is_(False))
        assert_that(self.sock.blocking, is_(False))
        assert_that(self.connectors[0].closed, is_(True))
        self.connected.assert_not_called()

    def test_ready_after_greeting(self):
        self.establish()
        self.receive(b"OK MPD 0.23.5\n")
        assert_that(self.sut.ready, is_(True))
        assert_that(self.sut.greeting, is_("OK MPD 0.23.5"))
        assert_that(self.sut.version, is_((0, 23, 5)))
        self.connected.assert_called_once_with()

    def test_invalid_greeting_fails(self):
        self.establish()
        self.receive(b"SSH-2.0-OpenSSH_9.6\n")
        self.failure.assert_called_once_with()
        self.connected.assert_not_called()
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))
        assert_that(self.sock.closed, is_(True))
        assert_that(self.poller.registrations, is_(empty()))

    def test_connector_failure(self):
        self.sut.connect("localhost")
        self.connectors[0].on_failure(ConnectorError("refused"))
        self.failure.assert_called_once_with()
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))
        assert_that(self.connectors[0].closed, is_(True))
        assert_that(self.sut.connector, is_(none()))

    def test_reconnect_after_failure(self):
        self.sut.connect("localhost")
        self.connectors[0].on_failure(ConnectorError("refused"))
        self.sut.connect("localhost")
        assert_that(self.connectors, has_length(2))

    @patch('lineclient.protocol.client.connect_unix')
    def test_unix_socket_connects_immediately(self, connect_unix):
        connect_unix.return_value = self.sock
        assert_that(self.sut.connect("~/.mpd/socket"), is_(True))
        connect_unix.assert_called_once_with("~/.mpd/socket")
        assert_that(self.sut.state, is_(ConnectionState.CONNECTED))
        assert_that(self.connectors, is_(empty()))
        self.receive(b"OK MPD 0.21.0\n")
        self.connected.assert_called_once_with()

    @patch('lineclient.protocol.client.connect_unix', side_effect=ConnectorError("no such file"))
    def test_unix_socket_failure_raises(self, connect_unix):
        assert_that(calling(self.sut.connect).with_args("/run/mpd/socket"), raises(ConnectorError))
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))
        self.failure.assert_not_called()

    def test_without_greeting_ready_on_connect(self):
        sut = LineClient(self.poller, SimpleAdapter(), connector_factory=self.new_connector)
        connected = Mock()
        sut.connected_handlers += connected
        sut.connect("localhost")
        assert_that(self.connectors[0].targets, is_([("localhost", 1234)]))
        self.connectors[0].on_connected(self.sock)
        assert_that(sut.ready, is_(True))
        connected.assert_called_once_with()


class ConnectionLossTest(MpdClientTestCase):

    def test_reset_drops_tasks_silently(self):
        callbacks = [Mock(), Mock(), Mock()]
        futures = []
        for callback in callbacks:
            self.sut.send_command(["status"])
            futures.append(self.sut.add_task(callback))
        self.receive(b"")
        for callback in callbacks:
            callback.assert_not_called()
        for future in futures:
            assert_that(future.cancelled(), is_(True))
        self.failure.assert_called_once_with()
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))
        assert_that(self.sut.tasks, has_length(0))

    def test_final_reply_is_delivered_before_eof(self):
        callback = Mock()
        self.sut.send_command(["close"])
        self.sut.add_task(callback)
        self.receive(b"OK\n", b"")
        callback.assert_called_once_with(MpdResponse(True, []), None)
        self.failure.assert_called_once_with()

    def test_reply_ahead_of_overlong_line_is_delivered(self):
        callback = Mock()
        self.sut.framer.max_line_length = 16
        self.sut.send_command(["status"])
        self.sut.add_task(callback)
        self.receive(b"OK\n" + b"x" * 20)
        callback.assert_called_once_with(MpdResponse(True, []), None)
        self.failure.assert_called_once_with()

    def test_read_error_fails(self):
        self.receive(ConnectionResetError())
        self.failure.assert_called_once_with()
        assert_that(self.sock.closed, is_(True))

    def test_write_error_fails(self):
        self.sut.send_command(["status"])
        self.sock.send_errors.append(BrokenPipeError())
        self.flush()
        self.failure.assert_called_once_with()

    def test_explicit_reset_fires_nothing(self):
        self.sut.send_command(["status"])
        callback = Mock()
        self.sut.add_task(callback)
        self.sut.reset()
        callback.assert_not_called()
        self.failure.assert_not_called()
        assert_that(self.sut.greeting, is_(none()))
        assert_that(self.sut.write_buffer, is_(empty()))
        assert_that(self.poller.registrations, is_(empty()))

    def test_list_ok_is_fatal(self):
        self.receive(b"list_OK\n")
        self.failure.assert_called_once_with()

    def test_reset_from_callback_stops_processing(self):
        second = Mock()
        self.sut.send_command(["status"])
        self.sut.add_task(lambda response, context: self.sut.reset())
        self.sut.send_command(["stats"])
        self.sut.add_task(second)
        self.receive(b"OK\nOK\n")
        second.assert_not_called()
        self.failure.assert_not_called()
        assert_that(self.sut.state, is_(ConnectionState.DISCONNECTED))


class CommandTest(MpdClientTestCase):

    def test_send_command_disconnected(self):
        self.sut.reset()
        assert_that(calling(self.sut.send_command).with_args(["status"]), raises(ConnectionNotConnectedError))

    def test_registers_for_write_while_output_pending(self):
        assert_that(self.poller.interest(self.sock), is_((True, False)))
        self.sut.send_command(["status"])
        assert_that(self.poller.interest(self.sock), is_((True, True)))
        assert_that(self.flush(), is_(b"status\n"))
        assert_that(self.poller.interest(self.sock), is_((True, False)))

    def test_partial_write_keeps_write_interest(self):
        self.sock.send_limit = 3
        self.sut.send_command(["status"])
        assert_that(self.flush(), is_(b"sta"))
        assert_that(self.poller.interest(self.sock), is_((True, True)))
        self.sock.send_limit = None
        assert_that(self.flush(), is_(b"tus\n"))

    def test_status(self):
        callback = Mock()
        self.sut.send_command(["status"])
        future = self.sut.add_task(callback, "ctx")
        self.flush()
        self.receive(b"volume: 50\nstate: play\nOK\n")
        callback.assert_called_once_with(MpdResponse(True, ["volume: 50", "state: play"]), "ctx")
        assert_that(future.done(), is_(True))
        assert_that(future.value(), is_(["volume: 50", "state: play"]))
        assert_that(future.response.pairs, is_([("volume", "50"), ("state", "play")]))

    def test_responses_complete_in_order(self):
        order = []
        for name in ("status", "stats", "currentsong"):
            self.sut.send_command([name])
            self.sut.add_task(lambda response, context: order.append(context), name)
        assert_that(self.flush(), is_(b"status\nstats\ncurrentsong\n"))
        self.receive(b"state: stop\nOK\nuptime: 5\nOK\nOK\n")
        assert_that(order, is_(["status", "stats", "currentsong"]))

    def test_split_line_is_reassembled(self):
        callback = Mock()
        self.sut.send_command(["status"])
        self.sut.add_task(callback)
        self.receive(b"volu")
        self.receive(b"me: 50\nO")
        callback.assert_not_called()
        self.receive(b"K\n")
        callback.assert_called_once_with(MpdResponse(True, ["volume: 50"]), None)

    def test_failure_response(self):
        callback = Mock()
        self.sut.send_command(["play", 99])
        self.sut.add_task(callback)
        assert_that(self.flush(), is_(b"play 99\n"))
        self.receive(b"ACK [2@0] {play} Bad song index\n")
        response = callback.call_args[0][0]
        assert_that(response.success, is_(False))
        assert_that(response.error, is_(2))
        assert_that(response.list_offset, is_(0))
        assert_that(response.current_command, is_("play"))
        assert_that(response.message, is_("Bad song index"))
        self.failure.assert_not_called()

    def test_unsolicited_response_is_ignored(self):
        self.receive(b"OK\n")
        self.failure.assert_not_called()
        assert_that(self.sut.ready, is_(True))

    def test_arguments_are_quoted(self):
        self.sut.send_command(["find", "artist", "Guns N' Roses"])
        assert_that(self.flush(), is_(b'find artist "Guns N\\\' Roses"\n'))

    def test_arguments_are_converted_to_strings(self):
        self.sut.send_command(["setvol", 50])
        assert_that(self.flush(), is_(b"setvol 50\n"))


class CommandListTest(MpdClientTestCase):

    def test_list_has_one_task(self):
        callback = Mock()
        self.sut.send_command_list([["clear"], ["add", "a.flac"], ["play"]])
        self.sut.add_task(callback)
        assert_that(self.sut.tasks, has_length(1))
        assert_that(self.flush(),
                    is_(b"command_list_begin\nclear\nadd a.flac\nplay\ncommand_list_end\n"))
        self.receive(b"OK\n")
        callback.assert_called_once_with(MpdResponse(True, []), None)
        assert_that(self.sut.tasks, has_length(0))

    def test_list_with_callback_adds_task(self):
        callback = Mock()
        future = self.sut.send_command_list([["status"], ["currentsong"]], callback)
        assert_that(self.sut.tasks, has_length(1))
        self.receive(b"state: play\nfile: a.flac\nOK\n")
        callback.assert_called_once_with(MpdResponse(True, ["state: play", "file: a.flac"]), None)
        assert_that(future.done(), is_(True))

    def test_list_failure_reports_offset(self):
        callback = Mock()
        self.sut.send_command_list([["clear"], ["play", 5]], callback)
        self.receive(b"ACK [2@1] {play} Bad song index\n")
        assert_that(callback.call_args[0][0].list_offset, is_(1))

    def test_list_manually(self):
        self.sut.list_begin()
        assert_that(self.sut.in_list, is_(True))
        self.sut.send_command(["stop"])
        self.sut.list_end()
        assert_that(self.sut.in_list, is_(False))
        assert_that(self.flush(), is_(b"command_list_begin\nstop\ncommand_list_end\n"))

    def test_nested_list(self):
        self.sut.list_begin()
        assert_that(calling(self.sut.list_begin), raises(ClientStateError))

    def test_list_end_without_begin(self):
        assert_that(calling(self.sut.list_end), raises(ClientStateError))

    def test_add_task_within_list(self):
        self.sut.list_begin()
        assert_that(calling(self.sut.add_task), raises(ClientStateError))

    def test_idle_within_list(self):
        self.sut.list_begin()
        assert_that(calling(self.sut.idle), raises(ClientStateError))

    def test_lists_unsupported(self):
        sut = LineClient(self.poller, SimpleAdapter(), connector_factory=self.new_connector)
        assert_that(calling(sut.list_begin), raises(UnsupportedCommandError))
        assert_that(calling(sut.idle), raises(UnsupportedCommandError))


class IdleTest(MpdClientTestCase):

    def test_idle(self):
        self.sut.idle()
        assert_that(self.sut.idling, is_(True))
        assert_that(self.sut.idling_subjects, is_(0))
        assert_that(self.flush(), is_(b"idle\n"))
        assert_that(self.sut.tasks, has_length(1))

    def test_idle_subjects(self):
        self.sut.idle(MpdSubsystem.PLAYER | MpdSubsystem.MIXER)
        assert_that(self.flush(), is_(b"idle player mixer\n"))
        assert_that(self.sut.subjects, is_(MpdSubsystem.PLAYER | MpdSubsystem.MIXER))

    def test_idle_reports_changes(self):
        self.sut.idle()
        self.flush()
        self.receive(b"changed: mixer\nchanged: player\nOK\n")
        self.events.assert_called_once_with(MpdSubsystem.MIXER | MpdSubsystem.PLAYER)
        assert_that(self.sut.idling, is_(False))

    def test_idle_without_changes_fires_no_event(self):
        self.sut.idle()
        self.receive(b"OK\n")
        self.events.assert_not_called()

    def test_command_interrupts_idle(self):
        order = []
        self.sut.event_handlers += lambda subjects: order.append("idle")
        self.sut.idle()
        self.sut.send_command(["status"])
        self.sut.add_task(lambda response, context: order.append("status"))
        assert_that(self.sut.idling, is_(False))
        assert_that(self.flush(), is_(b"idle\nnoidle\nstatus\n"))
        assert_that(self.sut.tasks, has_length(2))
        self.receive(b"changed: player\nOK\nstate: play\nOK\n")
        assert_that(order, is_(["idle", "status"]))
        self.events.assert_called_once_with(MpdSubsystem.PLAYER)

    def test_cancel_has_no_task(self):
        self.sut.idle()
        self.sut.send_command(["status"])
        self.sut.add_task()
        self.receive(b"OK\nOK\n")
        assert_that(self.sut.tasks, has_length(0))
        self.failure.assert_not_called()

    def test_only_first_command_cancels(self):
        self.sut.idle()
        self.sut.send_command(["status"])
        self.sut.add_task()
        self.sut.send_command(["stats"])
        self.sut.add_task()
        assert_that(self.flush(), is_(b"idle\nnoidle\nstatus\nstats\n"))

    def test_stale_idle_completion_keeps_new_idle(self):
        self.sut.idle()
        self.sut.send_command(["status"])
        self.sut.add_task()
        self.sut.idle()
        self.receive(b"OK\n")
        assert_that(self.sut.idling, is_(True))

    def test_failed_idle_fires_no_event(self):
        self.sut.idle(MpdSubsystem.PLAYER)
        self.receive(b"ACK [2@0] {idle} Unrecognized idle event: playr\n")
        self.events.assert_not_called()
        assert_that(self.sut.idling, is_(False))


class WatchdogTest(MpdClientTestCase):

    def test_ping_after_interval(self):
        self.sut.idle()
        self.flush()
        self.poller.advance(299)
        assert_that(self.flush(), is_(b""))
        self.poller.advance(1)
        assert_that(self.flush(), is_(b"noidle\nping\n"))
        assert_that(self.sut.idling, is_(False))

    def test_idles_again_after_ping(self):
        self.sut.idle(MpdSubsystem.PLAYER)
        self.flush()
        self.poller.advance(300)
        self.flush()
        self.receive(b"OK\nOK\n")
        assert_that(self.sock.take_sent(), is_(b"idle player\n"))
        assert_that(self.sut.idling, is_(True))
        assert_that(self.sut.tasks, has_length(1))

    def test_idles_again_with_current_subjects(self):
        self.sut.idle(MpdSubsystem.PLAYER)
        self.sut.subjects = MpdSubsystem.MIXER
        self.poller.advance(300)
        self.flush()
        self.receive(b"OK\nOK\n")
        assert_that(self.sock.take_sent(), is_(b"idle mixer\n"))

    def test_no_idle_after_ping_when_busy(self):
        self.sut.idle()
        self.poller.advance(300)
        self.sut.send_command(["status"])
        self.sut.add_task()
        self.flush()
        self.receive(b"OK\nOK\n")
        assert_that(self.sut.idling, is_(False))
        assert_that(self.sock.take_sent(), is_(b""))
        self.receive(b"OK\n")
        assert_that(self.sut.idling, is_(False))

    def test_reads_rearm_watchdog(self):
        self.sut.idle()
        self.flush()
        self.poller.advance(200)
        self.receive(b"changed: pla")
        self.poller.advance(150)
        assert_that(self.flush(), is_(b""))
        self.poller.advance(150)
        assert_that(self.flush(), is_(b"noidle\nping\n"))

    def test_no_ping_once_interrupted(self):
        self.sut.idle()
        self.sut.send_command(["status"])
        self.sut.add_task()
        self.flush()
        self.poller.advance(600)
        assert_that(self.flush(), is_(b""))

    def test_custom_interval(self):
        sut = MpdClient(self.poller, connector_factory=self.new_connector, ping_interval=10)
        sock = FakeSocket(b"OK MPD 0.23.5\n")
        sut.connect("localhost")
        self.connectors[-1].on_connected(sock)
        self.poller.ready(sock)
        sut.idle()
        self.poller.advance(10)
        self.poller.ready(sock, False, True)
        assert_that(sock.take_sent(), is_(b"idle\nnoidle\nping\n"))

    def test_reset_cancels_watchdog(self):
        self.sut.idle()
        self.sut.reset()
        assert_that(self.sut.watchdog.pending, is_(False))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
