"""


Line Protocol Clients

- Poller: delivers socket readiness and timer expiry to callbacks. Everything runs on the thread
  that runs the poller; nothing here blocks or starts threads. SelectorPoller is the stock implementation.
- Connector: turns an address into a connected socket in the background. TCPConnector tries every
  resolved address in turn. Paths name UNIX sockets, which are connected immediately.
- LineClient: the protocol engine. Requests are queued as tasks and matched to responses in order.
  Commands can be grouped into command lists that share one response.
- ProtocolAdapter: tells the engine what a received line means (greeting, data, success, failure,
  list markers) and what the idle/cancel/ping commands are. MpdAdapter and NutAdapter ship.
- MaintainedClient - keeps a client connected, reconnecting after a retry strategy's delay, and
  posts ClientConnectedEvent and ClientDisconnectedEvent.
- config - loads connection settings from lineclient*.cfg files.


Idling

An idle request is answered only when something changes on the server. The client remembers that
it is idling; any command sent meanwhile is preceded by the cancel command, and the server then
answers the idle request before the command. The idle task therefore always completes first, and
the cancel command never gets a task of its own.

A silent server is indistinguishable from a dead connection, so a watchdog pings the server after
ping_interval seconds without input while idling. Once the ping returns, and nothing else is pending,
the client idles again on the subjects the owner last asked for.


Failure

Any socket error, EOF or malformed input resets the client: the socket is closed, buffers are
emptied and queued tasks are dropped without their callbacks, whose futures are cancelled. Only then
are the failure handlers told. Reconnecting is up to the owner.

"""
