import logging

from lineclient.connector.base import ConnectorError
from lineclient.protocol.client import ConnectionState, LineClient
from lineclient.support.events import EventSource
from lineclient.support.retry_strategy import BackoffRetryStrategy, PeriodRetryStrategy, RetryStrategy

logger = logging.getLogger(__name__)

DEFAULT_RETRY_PERIOD = 5


class ClientEvent:
    """ base class for client events. """
    def __init__(self, client):
        self.client = client


class ClientConnectedEvent(ClientEvent):
    """ The client is connected and ready for commands. """


class ClientDisconnectedEvent(ClientEvent):
    """ The client lost its connection. """


class MaintainedClient:
    """
    Attempts to keep a client connected to an endpoint, reconnecting after each failure once
    the retry strategy's delay has passed.

    Fires ClientConnectedEvent and ClientDisconnectedEvent as the connection state changes.

    :param: client          The client to keep connected.
    :param: address         The host name, address or socket path to connect to.
    :param: service         The port, or None for the protocol's default.
    :param: retry_strategy  How long to wait before reconnecting.
    :param: events          event source to post the client events to. Should support the method fire(...)
    :param: password        When set, sent to the server each time the connection is ready.
    :param: enabled         When False, start() leaves the client disconnected.
    """

    def __init__(self, client: LineClient, address, service=None, retry_strategy: RetryStrategy=None,
                 events=None, password=None, enabled=True, log=logger):
        self.client = client
        self.address = address
        self.service = service
        self.retry_strategy = retry_strategy or PeriodRetryStrategy(DEFAULT_RETRY_PERIOD)
        self.events = events if events is not None else EventSource()
        self.password = password
        self.enabled = enabled
        self.logger = log
        self.running = False
        self.connected = False
        self.retry_timer = client.poller.timer(self._open)
        client.connected_handlers.add(self._on_connected)
        client.failure_handlers.add(self._on_failure)

    @classmethod
    def from_settings(cls, client: LineClient, settings, events=None):
        """
        Creates a maintained client from ClientSettings. The settings' ping interval is applied to the client.
        """
        client.ping_interval = settings.ping_interval
        if settings.retry_max_period > settings.retry_period:
            retry = BackoffRetryStrategy(settings.retry_period, settings.retry_max_period)
        else:
            retry = PeriodRetryStrategy(settings.retry_period)
        return cls(client, settings.address, settings.service, retry, events, settings.password or None,
                   settings.enabled)

    @property
    def resource(self):
        return self.address if self.service is None else "%s:%s" % (self.address, self.service)

    def start(self):
        """ connects, and keeps reconnecting until stopped """
        if not self.enabled:
            self.logger.info("client disabled: %s" % self.resource)
        elif not self.running:
            self.running = True
            self._open()

    def stop(self):
        """ disconnects and stops reconnecting """
        self.running = False
        self.retry_timer.reset()
        self.client.reset()
        self._disconnected()

    def _open(self):
        """
        attempts to establish the connection.

        If the connection raises a connection error, it is logged, but not raised
        :return: True if the connection was tried
        """
        client = self.client
        try_open = self.running and client.state is ConnectionState.DISCONNECTED
        if try_open:
            try:
                client.connect(self.address, self.service)
            except ConnectorError as e:
                self.logger.debug("Unable to connect to %s: %s" % (self.resource, e))
                self._schedule_retry()
        return try_open

    def _schedule_retry(self):
        if self.running:
            delay = self.retry_strategy()
            self.logger.debug("retrying %s in %ss" % (self.resource, delay))
            self.retry_timer.set(delay)

    def _on_connected(self):
        self.logger.info("client connected: %s" % self.resource)
        self.connected = True
        self.retry_strategy.reset()
        if self.password and self.client.adapter.password_command:
            self.client.send_command(self.client.adapter.password_command + [self.password])
            self.client.add_task(self._on_password_response)
        self.events.fire(ClientConnectedEvent(self.client))

    def _on_password_response(self, response, context):
        if not response.success:
            self.logger.error("%s rejected the password: %s" % (self.resource, response.message))

    def _on_failure(self):
        if not self._disconnected():
            self.logger.debug("Unable to connect to %s" % self.resource)
        self._schedule_retry()

    def _disconnected(self):
        was_connected, self.connected = self.connected, False
        if was_connected:
            self.logger.warning("client disconnected: %s" % self.resource)
            self.events.fire(ClientDisconnectedEvent(self.client))
        return was_connected
