"""
Audio graph control server package.

Receives OSC datagrams over UDP, applies them as operations on a live
signal graph and answers each operation with a response datagram.

Architecture:
    session.py   — Session state machine: graph, mixer, master bus, play/stop
    transport.py — UDP control loop + logging setup
    server.py    — CLI / environment bootstrapping and startup entrypoint
    client.py    — Request/response helper for talking to a running server
"""
