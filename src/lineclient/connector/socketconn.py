import errno
import logging
import os
import socket
from collections import deque

from lineclient.connector.base import Connector, ConnectorError

logger = logging.getLogger(__name__)


def is_unix_address(address):
    """
    Addresses that look like a path name a UNIX socket.
    >>> is_unix_address('~/.mpd/socket')
    True
    >>> is_unix_address('localhost')
    False
    """
    return '/' in address


def connect_unix(path):
    """
    Connects to a UNIX socket synchronously, expanding a leading tilde.
    :return: the connected socket
    :raises ConnectorError: when the socket cannot be connected
    """
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(os.path.expanduser(path))
    except OSError as e:
        sock.close()
        raise ConnectorError("connect to %s: %s" % (path, e)) from e
    logger.info("opened socket to %s" % path)
    return sock


class TCPConnector(Connector):
    """
    Connects to the first reachable address among the targets.

    Names are resolved when the attempt starts, on the first poller turn after add_target().
    Each resolved address is then tried in turn with a non-blocking connect.
    """

    def __init__(self, poller, on_connected, on_failure):
        super().__init__(poller, on_connected, on_failure)
        self._targets = deque()
        self._addresses = deque()
        self._sock = None
        self._last_error = None
        self._closed = False
        self._start_timer = poller.timer(self._try_next)

    def add_target(self, host, service):
        self._targets.append((host, service))
        if self._sock is None and not self._start_timer.pending:
            self._start_timer.set(0)

    def close(self):
        self._closed = True
        self._start_timer.reset()
        self._targets.clear()
        self._addresses.clear()
        self._drop_socket()

    def _drop_socket(self):
        sock, self._sock = self._sock, None
        if sock is not None:
            self.poller.unregister(sock)
            sock.close()

    def _resolve_next_target(self):
        host, service = self._targets.popleft()
        try:
            infos = socket.getaddrinfo(host, service, type=socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as e:
            logger.debug("cannot resolve %s:%s: %s" % (host, service, e))
            self._last_error = e
            return
        for family, type_, proto, canonname, sockaddr in infos:
            self._addresses.append((family, type_, proto, sockaddr, host))

    def _try_next(self):
        """ starts connecting to the next address, or reports failure when none remain """
        while not self._closed:
            if not self._addresses:
                if not self._targets:
                    self._fail()
                    return
                self._resolve_next_target()
                continue
            if self._start_connect(*self._addresses.popleft()):
                return

    def _start_connect(self, family, type_, proto, sockaddr, host):
        """ :return: True when the attempt is in progress or has already succeeded """
        try:
            sock = socket.socket(family, type_, proto)
        except OSError as e:
            self._last_error = e
            return False
        sock.setblocking(False)
        result = sock.connect_ex(sockaddr)
        if result == 0:
            self._succeed(sock, sockaddr)
            return True
        if result in (errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN):
            logger.debug("connecting to %s (%s)" % (host, sockaddr[0]))
            self._sock = sock
            self.poller.register(sock, False, True, self._on_ready)
            return True
        self._last_error = OSError(result, os.strerror(result))
        logger.debug("connect to %s: %s" % (sockaddr, self._last_error))
        sock.close()
        return False

    def _on_ready(self, readable, writable):
        sock = self._sock
        self.poller.unregister(sock)
        error = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if error:
            self._last_error = OSError(error, os.strerror(error))
            logger.debug("connect: %s" % self._last_error)
            self._drop_socket()
            self._try_next()
        else:
            self._sock = None
            self._succeed(sock, sock.getpeername())

    def _succeed(self, sock, sockaddr):
        logger.info("opened socket to %s" % str(sockaddr))
        self._closed = True
        self.on_connected(sock)

    def _fail(self):
        self._closed = True
        error = ConnectorError("cannot connect: %s" % (self._last_error or "no addresses"))
        if self._last_error is not None:
            error.__cause__ = self._last_error
        self.on_failure(error)
