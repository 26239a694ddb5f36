"""jobrelay: relays asynchronous job lifecycles to realtime subscribers.

Workers report outcomes through signed callbacks; subscribers receive them
over WebSocket.
"""

__version__ = "0.1.0"
