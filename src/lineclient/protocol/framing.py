"""
Splits the bytes received from a server into protocol lines.

Framers are incremental: split() is called with the connection's input buffer after every
read and yields the complete lines it holds one at a time, leaving a partial line buffered
(or, for the tokenizer, remembered in its state) until the rest arrives. A line is yielded
before any later bytes are examined, so malformed input never swallows the lines ahead of it.
"""
from enum import Enum

DEFAULT_MAX_LINE_LENGTH = 1 << 20


class ProtocolError(IOError):
    """
    The byte stream does not follow the protocol grammar. The stream can no longer be trusted,
    so the connection must be dropped.
    """


class LineFramer:
    """
    Splits input at a delimiter and decodes each line.

    >>> buffer = bytearray(b"OK MPD 0.21\\nvolume: 5")
    >>> list(LineFramer().split(buffer))
    ['OK MPD 0.21']
    >>> bytes(buffer)
    b'volume: 5'
    """

    def __init__(self, delimiter=b"\n", encoding='utf-8', max_line_length=DEFAULT_MAX_LINE_LENGTH):
        self.delimiter = delimiter
        self.encoding = encoding
        self.max_line_length = max_line_length

    def split(self, buffer: bytearray):
        while True:
            end = buffer.find(self.delimiter)
            if end < 0:
                break
            line = buffer[:end].decode(self.encoding, 'replace')
            del buffer[:end + len(self.delimiter)]
            yield line
        if len(buffer) > self.max_line_length:
            raise ProtocolError("line exceeds %d bytes" % self.max_line_length)

    def reset(self):
        pass


class TokenizerState(Enum):
    START_LINE = 0          # start of a line
    BETWEEN = 1             # between fields, expecting non-whitespace
    UNQUOTED = 2            # within an unquoted field
    UNQUOTED_ESCAPE = 3     # within an unquoted field, after a backslash
    QUOTED = 4              # within a quoted field
    QUOTED_ESCAPE = 5       # within a quoted field, after a backslash
    QUOTED_END = 6          # after the closing quote, expecting whitespace


WHITESPACE = b" \t\n\v\f\r"
QUOTE = ord('"')
BACKSLASH = ord('\\')
NEWLINE = ord('\n')


class FieldTokenizer:
    """
    A framer fused with a tokenizer for lines of whitespace separated fields, where
    fields may be double quoted and a backslash escapes the following character.
    Each complete line is yielded as a list of fields. Blank lines are skipped.

    >>> list(FieldTokenizer().split(bytearray(b'VAR ups battery.charge "100"\\nVAR ups ups.status "OL CHRG"\\n')))
    [['VAR', 'ups', 'battery.charge', '100'], ['VAR', 'ups', 'ups.status', 'OL CHRG']]
    """

    def __init__(self, encoding='utf-8', max_line_length=DEFAULT_MAX_LINE_LENGTH):
        self.encoding = encoding
        self.max_line_length = max_line_length
        self.reset()

    def reset(self):
        self.state = TokenizerState.START_LINE
        self.fields = []
        self.field = bytearray()
        self.line_length = 0

    def split(self, buffer: bytearray):
        # a partial line lives on in the automaton state
        data = bytes(buffer)
        del buffer[:]
        for c in data:
            if self.push(c):
                yield self.fields

    def _end_field(self, c) -> bool:
        self.fields.append(self.field.decode(self.encoding, 'replace'))
        self.field = bytearray()
        if c == NEWLINE:
            self.state = TokenizerState.START_LINE
            return True
        self.state = TokenizerState.BETWEEN
        return False

    def push(self, c: int) -> bool:
        """
        Advances the automaton by one byte.
        :return: True when the byte completed a line, which is then available in `fields`
        :raises ProtocolError: when the byte is not allowed in the current state
        """
        state = self.state
        if state is TokenizerState.START_LINE:
            self.fields = []
            self.field = bytearray()
            self.line_length = 0
            state = self.state = TokenizerState.BETWEEN

        self.line_length += 1
        if self.line_length > self.max_line_length:
            raise ProtocolError("line exceeds %d bytes" % self.max_line_length)

        if state is TokenizerState.BETWEEN:
            if c == BACKSLASH:
                self.state = TokenizerState.UNQUOTED_ESCAPE
            elif c == QUOTE:
                self.state = TokenizerState.QUOTED
            elif c == NEWLINE:
                if self.fields:
                    self.state = TokenizerState.START_LINE
                    return True
                self.line_length = 0
            elif c not in WHITESPACE:
                self.field.append(c)
                self.state = TokenizerState.UNQUOTED
            return False

        if state is TokenizerState.UNQUOTED:
            if c == BACKSLASH:
                self.state = TokenizerState.UNQUOTED_ESCAPE
            elif c == QUOTE:
                raise ProtocolError("unexpected quote in an unquoted field")
            elif c not in WHITESPACE:
                self.field.append(c)
            else:
                return self._end_field(c)
            return False

        if state is TokenizerState.UNQUOTED_ESCAPE:
            self.field.append(c)
            self.state = TokenizerState.UNQUOTED
            return False

        if state is TokenizerState.QUOTED:
            if c == BACKSLASH:
                self.state = TokenizerState.QUOTED_ESCAPE
            elif c == QUOTE:
                self.state = TokenizerState.QUOTED_END
            else:
                self.field.append(c)
            return False

        if state is TokenizerState.QUOTED_ESCAPE:
            self.field.append(c)
            self.state = TokenizerState.QUOTED
            return False

        # QUOTED_END
        if c not in WHITESPACE:
            raise ProtocolError("expected whitespace after a closing quote")
        return self._end_field(c)
