from lockergate.models.base import Base
from lockergate.models.command import Command, CommandAction, CommandStatus
from lockergate.models.event import Event
from lockergate.models.qr_session import QrSession, SessionState

__all__ = [
    "Base",
    "Command",
    "CommandAction",
    "CommandStatus",
    "Event",
    "QrSession",
    "SessionState",
]
