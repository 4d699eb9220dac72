"""
CDP Module - transport, connection lifecycle, proxy auth and target tracking.
"""
from cdpwright.cdp.transport import PendingCall, TransportSession, setup_logging
from cdpwright.cdp.bindings import BindingBridge
from cdpwright.cdp.auth import AuthNegotiator, NegotiatorState
from cdpwright.cdp.connection import ConnectionManager, build_args, find_chrome_executable
from cdpwright.cdp.targets import BrowserContext, TargetRegistry

__all__ = [
    "PendingCall",
    "TransportSession",
    "setup_logging",
    "BindingBridge",
    "AuthNegotiator",
    "NegotiatorState",
    "ConnectionManager",
    "build_args",
    "find_chrome_executable",
    "BrowserContext",
    "TargetRegistry",
]
