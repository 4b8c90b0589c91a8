"""
Non-blocking transfers between a socket and a byte buffer.
"""
import logging
from enum import Enum

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class IOResult(Enum):
    OK = 0          # completed, or the socket would block
    EOF = 1         # connection shut down by the peer
    ERROR = 2       # connection error


def try_read(sock, buffer: bytearray) -> IOResult:
    """
    Appends everything that can be read from the socket without blocking to buffer.
    :param sock: a non-blocking socket
    :param buffer: receives the data read
    """
    while True:
        try:
            data = sock.recv(READ_CHUNK)
        except InterruptedError:
            continue
        except BlockingIOError:
            return IOResult.OK
        except OSError as e:
            logger.debug("recv: %s" % e)
            return IOResult.ERROR
        if not data:
            return IOResult.EOF
        buffer += data


def try_write(sock, buffer: bytearray) -> IOResult:
    """
    Sends as much of buffer as the socket accepts without blocking, removing the sent bytes.
    """
    while buffer:
        try:
            sent = sock.send(buffer)
        except InterruptedError:
            continue
        except BlockingIOError:
            return IOResult.OK
        except OSError as e:
            logger.debug("send: %s" % e)
            return IOResult.ERROR
        del buffer[:sent]
    return IOResult.OK
