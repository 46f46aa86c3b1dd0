"""
MBBS Error Taxonomy

Session-level errors end a session and trigger a retry. Everything else is
contained where it happens.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class SessionError(BridgeError):
    """Error that ends the current session and schedules a reconnect."""


class ConnectError(SessionError):
    """Transport open failed or timed out."""


class ConfigureError(SessionError):
    """Configuration handshake rejected or timed out."""


class IdleTimeoutError(SessionError):
    """No inbound traffic within the idle threshold."""


class ConnectionLostError(SessionError):
    """Transport stream reported closed while listening."""


class DispatchError(SessionError):
    """Unexpected error escaped event dispatch."""


class DecodeError(BridgeError):
    """Malformed text or identity payload."""


class PersistenceError(BridgeError):
    """Snapshot or archive read/write failure."""


class NotificationError(BridgeError):
    """Notification sink failed to deliver a message."""


class OperationCancelled(Exception):
    """A wait was interrupted by the cancellation signal."""


class SessionStatus(Enum):
    """Session outcome status."""
    RUNNING = "running"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SessionOutcome:
    """Categorized result of one session, consumed by the lifecycle loop."""
    status: SessionStatus
    error: Optional[SessionError] = None

    @classmethod
    def failed(cls, error: SessionError) -> "SessionOutcome":
        return cls(SessionStatus.FAILED, error)

    @classmethod
    def cancelled(cls) -> "SessionOutcome":
        return cls(SessionStatus.CANCELLED)

    @property
    def is_failure(self) -> bool:
        return self.status is SessionStatus.FAILED
