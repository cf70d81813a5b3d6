"""
Upstream connection state for a ChannelRelay.

Transitions (owned exclusively by ChannelRelay):
    DISCONNECTED / CLOSING -> CONNECTING   first send or explicit connect
    CONNECTING -> READY                    socket open, config frame sent
    READY / CONNECTING -> DISCONNECTED     upstream close or error
    any -> CLOSING                         explicit session teardown
"""
from enum import Enum

class ConnectionState(str, Enum):
    """
    Lifecycle of one relay's upstream recognition socket.

    Independent per channel; the downstream socket has no state here.
    """
    DISCONNECTED = "DISCONNECTED"  # No socket, or socket fully closed
    CONNECTING = "CONNECTING"      # Attempt in flight
    READY = "READY"                # Config sent, audio flows directly
    CLOSING = "CLOSING"            # Torn down by the session; no reconnects
