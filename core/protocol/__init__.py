"""core/protocol — OSC command protocol for the graph control server.

    codec.py     bytes ↔ Message / Bundle (python-osc)
    types.py     Operation and OperationResult value objects
    commands.py  Message ↔ Operation / OperationResult

No sockets here; the UDP loop lives in graph_server/transport.py.
"""
