"""
Core module - Configuration, data models and errors.
"""
from cdpwright.core.config import LaunchConfig, ProxyConfig, parse_proxy_url
from cdpwright.core.errors import (
    CdpwrightError,
    BrowserLaunchError,
    CDPClosedError,
    CDPConnectionError,
    CDPProtocolError,
    CDPTimeoutError,
    ElementNotFoundError,
    EvaluationError,
    NavigationError,
)
from cdpwright.core.models import (
    AuthChallenge,
    CDPEvent,
    ChallengeKind,
    ElementState,
    TargetInfo,
    WaitSpec,
    WaitUntil,
)

__all__ = [
    "LaunchConfig",
    "ProxyConfig",
    "parse_proxy_url",
    "CdpwrightError",
    "BrowserLaunchError",
    "CDPClosedError",
    "CDPConnectionError",
    "CDPProtocolError",
    "CDPTimeoutError",
    "ElementNotFoundError",
    "EvaluationError",
    "NavigationError",
    "AuthChallenge",
    "CDPEvent",
    "ChallengeKind",
    "ElementState",
    "TargetInfo",
    "WaitSpec",
    "WaitUntil",
]
