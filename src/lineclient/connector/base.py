from abc import abstractmethod


class ConnectorError(Exception):
    """ Indicates an error condition with a connection. """


class ConnectionNotConnectedError(ConnectorError):
    """ Indicates a connection is in the disconnected state when a connection is required. """


class Connector:
    """
    Turns an address into a connected socket in the background.

    Exactly one of the callbacks is eventually invoked from the poller, never from within the
    call that started the attempt.

    :param poller: the poller that drives the attempt
    :param on_connected: called with the connected socket, which then belongs to the callee
    :param on_failure: called with a ConnectorError when no target could be connected
    """

    def __init__(self, poller, on_connected, on_failure):
        self.poller = poller
        self.on_connected = on_connected
        self.on_failure = on_failure

    @abstractmethod
    def add_target(self, host, service):
        """ adds an endpoint to try. Targets are tried in the order they were added. """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """ abandons the attempt. No callback is invoked afterwards. """
        raise NotImplementedError
