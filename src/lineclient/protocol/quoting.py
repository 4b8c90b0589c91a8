class CommandSerializer:
    """
    Joins command arguments into one request line.

    An argument is quoted when it is empty, contains a control character or whitespace, or contains
    one of the `special` characters; within quotes each special character is escaped with a backslash.

    >>> print(MPD_QUOTING.serialize(["find", "artist", "Guns N' Roses"]))
    find artist "Guns N\\' Roses"
    >>> print(NUT_QUOTING.serialize(["setvar", "hello world", 'a"b']))
    setvar "hello world" "a\\"b"
    """

    def __init__(self, special='"', delimiter="\n", encoding='utf-8'):
        self.special = special
        self.delimiter = delimiter
        self.encoding = encoding

    def must_quote_char(self, c) -> bool:
        return c <= ' ' or c in self.special

    def must_quote(self, arg) -> bool:
        return not arg or any(self.must_quote_char(c) for c in arg)

    def quote(self, arg):
        return '"' + "".join('\\' + c if c in self.special else c for c in arg) + '"'

    def serialize(self, args) -> str:
        return " ".join(self.quote(arg) if self.must_quote(arg) else arg for arg in args)

    def encode(self, args) -> bytes:
        """ the request line as sent on the wire, terminated with the delimiter """
        return (self.serialize(args) + self.delimiter).encode(self.encoding)


# MPD unescapes whatever follows a backslash, but only quotes and apostrophes need it here
MPD_QUOTING = CommandSerializer(special='"\'')

# the stricter grammar also escapes the escape character, so that the tokenizer inverts it
NUT_QUOTING = CommandSerializer(special='"\\')
