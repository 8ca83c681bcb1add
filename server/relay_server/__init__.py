from .message_relay import MessageRelay
from .roster import Roster
from .server import Server

__all__ = ["Server", "Roster", "MessageRelay"]
