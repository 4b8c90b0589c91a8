"""
Music Player Daemon protocol.

Responses are "key: value" lines terminated by "OK", or by an "ACK" line describing the error.
The server greets with "OK MPD <version>". Changes are awaited with "idle", cancelled with "noidle".
"""
import logging
import re
from enum import IntFlag

from lineclient.protocol.adapter import LineKind, ProtocolAdapter, Response
from lineclient.protocol.client import LineClient
from lineclient.protocol.framing import ProtocolError
from lineclient.protocol.quoting import MPD_QUOTING

logger = logging.getLogger(__name__)

GREETING_PREFIX = "OK MPD "

ACK_PATTERN = re.compile(r"^ACK \[(\d+)@(\d+)\] \{([^}]*)\} (.*)$")


class MpdSubsystem(IntFlag):
    """ The subsystems reported by idle. """
    DATABASE = 1 << 0
    UPDATE = 1 << 1
    STORED_PLAYLIST = 1 << 2
    PLAYLIST = 1 << 3
    PLAYER = 1 << 4
    MIXER = 1 << 5
    OUTPUT = 1 << 6
    OPTIONS = 1 << 7
    STICKER = 1 << 8
    SUBSCRIPTION = 1 << 9
    MESSAGE = 1 << 10

    @property
    def protocol_name(self):
        return self.name.lower()

    @classmethod
    def resolve(cls, name):
        """
        >>> MpdSubsystem.resolve('Player')
        <MpdSubsystem.PLAYER: 16>
        >>> MpdSubsystem.resolve('neighbor') is None
        True
        """
        return cls.__members__.get(name.upper())

    @classmethod
    def names(cls, subsystems):
        """ the protocol names of the subsystems in the mask, lowest bit first """
        return [s.protocol_name for s in cls if subsystems & s]


def parse_kv(line):
    """
    Splits a "key: value" line.
    :return: a (key, value) tuple, or None when the line has no such form

    >>> parse_kv('volume: 50')
    ('volume', '50')
    >>> parse_kv('Title: a: b')
    ('Title', 'a: b')
    >>> parse_kv('nonsense') is None
    True
    """
    key, sep, value = line.partition(": ")
    return (key, value) if sep else None


def mpd_version(greeting):
    """
    Extracts the protocol version announced in the greeting.

    >>> mpd_version('OK MPD 0.23.5')
    (0, 23, 5)
    >>> mpd_version('OK MPD something') is None
    True
    """
    if greeting is None or not greeting.startswith(GREETING_PREFIX):
        return None
    try:
        return tuple(int(part) for part in greeting[len(GREETING_PREFIX):].split('.'))
    except ValueError:
        return None


class MpdResponse(Response):
    """
    :param error: the ACK error code
    :param list_offset: the index of the failing command within a command list
    :param current_command: the name of the failing command
    """

    def __init__(self, success=True, data=None, message=None, error=0, list_offset=0, current_command=None):
        super().__init__(success, data, message)
        self.error = error
        self.list_offset = list_offset
        self.current_command = current_command

    @property
    def pairs(self):
        """ the data lines as (key, value) tuples. Lines of another form are skipped. """
        return [kv for kv in (parse_kv(line) for line in self.data) if kv is not None]


class MpdAdapter(ProtocolAdapter):
    name = 'MPD'
    default_service = 6600
    requires_greeting = True
    serializer = MPD_QUOTING

    idle_command = ['idle']
    cancel_idle_command = ['noidle']
    ping_command = ['ping']
    password_command = ['password']
    list_begin_command = ['command_list_begin']
    list_end_command = ['command_list_end']

    def classify(self, line, in_list):
        if line.startswith(GREETING_PREFIX):
            return LineKind.GREETING
        if line == "OK":
            return LineKind.SUCCESS
        if line == "list_OK":
            # only sent for command_list_ok_begin, which is never used
            raise ProtocolError("unexpected list_OK")
        if ACK_PATTERN.match(line):
            return LineKind.FAILURE
        return LineKind.DATA

    def build_response(self, kind, line, data):
        if kind is not LineKind.FAILURE:
            return MpdResponse(True, data)
        error, offset, command, message = ACK_PATTERN.match(line).groups()
        return MpdResponse(False, data, message, int(error), int(offset), command)

    def idle_args(self, subjects):
        return self.idle_command + MpdSubsystem.names(subjects)

    def idle_subjects(self, response):
        subsystems = 0
        for line in response.data:
            kv = parse_kv(line)
            if kv is None:
                logger.debug("erroneous MPD output: %s" % line)
            elif kv[0].lower() != "changed":
                logger.debug("unexpected idle key: %s" % kv[0])
            else:
                subsystem = MpdSubsystem.resolve(kv[1])
                if subsystem is None:
                    logger.debug("unknown subsystem: %s" % kv[1])
                else:
                    subsystems |= subsystem
        return subsystems


class MpdClient(LineClient):
    """ A LineClient speaking MPD. """

    def __init__(self, poller, adapter=None, **kwargs):
        super().__init__(poller, adapter or MpdAdapter(), **kwargs)

    @property
    def version(self):
        """ the protocol version from the server's greeting, once connected """
        return mpd_version(self.greeting)
