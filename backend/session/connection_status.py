"""
Upstream connection status for a relay session.

connection_status: DOWN | CONNECTING | UP

Tracked by the session gateway, independently of the client-side
ConnectionState machine. UP means the setup handshake has completed
(observed or inferred), not merely that the socket is open.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Upstream lifecycle as seen by the relay.

    Downstream messages are forwarded upstream only while UP.
    """
    DOWN = "DOWN"              # No upstream socket, or it has closed
    CONNECTING = "CONNECTING"  # Socket open, setup handshake pending
    UP = "UP"                  # Setup complete; media may flow
