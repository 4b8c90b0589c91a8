"""
Network UPS Tools protocol.

Lines are split into quoted fields. Outside of a "BEGIN LIST" ... "END LIST" block every line
answers a request on its own; "ERR <id>" reports a failure.
"""
from lineclient.protocol.adapter import LineKind, ProtocolAdapter, Response
from lineclient.protocol.client import LineClient
from lineclient.protocol.framing import FieldTokenizer, ProtocolError
from lineclient.protocol.quoting import NUT_QUOTING


def _starts(fields, *prefix):
    return list(fields[:len(prefix)]) == list(prefix)


class NutResponse(Response):
    """ The data is a list of field lists. A failed response carries the error ID as message. """

    @property
    def error_id(self):
        return self.message


class NutAdapter(ProtocolAdapter):
    name = 'NUT'
    default_service = 3493
    serializer = NUT_QUOTING
    password_command = ['PASSWORD']

    def new_framer(self):
        return FieldTokenizer()

    def classify(self, fields, in_list):
        if _starts(fields, "BEGIN", "LIST"):
            return LineKind.LIST_BEGIN
        if _starts(fields, "END", "LIST"):
            return LineKind.LIST_END
        if in_list:
            return LineKind.DATA
        if fields[0] == "ERR":
            if len(fields) < 2:
                raise ProtocolError("ERR without an error ID")
            return LineKind.FAILURE
        return LineKind.SUCCESS

    def build_response(self, kind, fields, data):
        if kind is LineKind.LIST_END:
            return NutResponse(True, data)
        data = list(data) + [fields]
        if kind is LineKind.FAILURE:
            return NutResponse(False, data, fields[1])
        return NutResponse(True, data)

    def format_line(self, fields):
        return self.serializer.serialize(fields)


class NutClient(LineClient):
    """ A LineClient speaking NUT. There is no idling and there are no command lists. """

    def __init__(self, poller, adapter=None, **kwargs):
        super().__init__(poller, adapter or NutAdapter(), **kwargs)
