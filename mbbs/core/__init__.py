"""MBBS Core Module - Lifecycle, dispatch, and cancellation."""

from .bridge import Bridge
from .cancel import CancellationToken
from .dispatcher import PacketDispatcher
from .router import DataPortRouter, PortClass
from .session import BridgeState, Session
from .watchdog import IdleWatchdog

__all__ = [
    "Bridge",
    "BridgeState",
    "CancellationToken",
    "DataPortRouter",
    "IdleWatchdog",
    "PacketDispatcher",
    "PortClass",
    "Session",
]
