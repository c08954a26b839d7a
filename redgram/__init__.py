"""RedGram realtime sync: relay hub and client agent.

    from redgram import ChatAgent, Profile
    from redgram.relay import create_app
"""

from .agent import ChatAgent, ConnectionState, StatusChanged, Subscription, UserSync
from .protocol import ChatMessage, MessageRead, MessageStatus, NewMessage, Profile, ProtocolError, UserJoined
from .relay import RelayHub, create_app
from .roster import Roster

__version__ = "0.1.0"

__all__ = [
    "ChatAgent",
    "ChatMessage",
    "ConnectionState",
    "MessageRead",
    "MessageStatus",
    "NewMessage",
    "Profile",
    "ProtocolError",
    "RelayHub",
    "Roster",
    "StatusChanged",
    "Subscription",
    "UserJoined",
    "UserSync",
    "create_app",
    "__version__",
]
